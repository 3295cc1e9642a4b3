# src/async_odm/base/identifiers.py

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Generic, Optional, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId

from async_odm.base.exceptions import MalformedIdentifierException

log = logging.getLogger(__name__)

K = TypeVar("K")


@dataclass(frozen=True)
class Id:
    """
    Marks the identity field of an entity.

    Place it in the ``Annotated`` metadata of exactly one field::

        class Person(BaseModel):
            id: Annotated[Optional[str], Id(object_id=True)] = None

    Args:
        object_id: If True, the field holds the textual form of a native
                   ObjectId and is converted on every read and write.
    """

    object_id: bool = False


# Textual ObjectId identity, e.g. ``id: Optional[ObjectIdStr] = None``
ObjectIdStr = Annotated[str, Id(object_id=True)]


def generate_id() -> str:
    """Generate a new unique application ID for string identities."""
    return str(uuid.uuid4())


class IdentifierCodec(Generic[K], ABC):
    """
    Converts identifiers between their application representation and the
    representation stored in the document store.
    """

    @property
    @abstractmethod
    def app_type(self) -> Type[K]:
        """The application-level type of the identity field."""
        pass

    @abstractmethod
    def encode(self, value: K) -> Any:
        """Convert an application identifier into the native store value."""
        pass

    @abstractmethod
    def decode(self, value: Any) -> K:
        """Convert a native store value back into an application identifier."""
        pass

    def generate(self) -> Optional[K]:
        """
        Produce a fresh application identifier, or None when the codec cannot
        generate one and the store should assign it.
        """
        return None

    @property
    def is_generating(self) -> bool:
        return False

    @property
    def accepts_store_ids(self) -> bool:
        """True if an ObjectId assigned by the store decodes to ``app_type``."""
        return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(app_type={self.app_type.__name__})"


class PassthroughCodec(IdentifierCodec[K]):
    """Application and store share one representation; encode/decode are no-ops."""

    def __init__(
        self, app_type: Type[K], generator: Optional[Callable[[], K]] = None
    ):
        self._app_type = app_type
        self._generator = generator

    @property
    def app_type(self) -> Type[K]:
        return self._app_type

    def encode(self, value: K) -> Any:
        return value

    def decode(self, value: Any) -> K:
        return value

    def generate(self) -> Optional[K]:
        if self._generator is None:
            return None
        return self._generator()

    @property
    def is_generating(self) -> bool:
        return self._generator is not None


class ObjectIdCodec(IdentifierCodec[ObjectId]):
    """The entity declares a native ObjectId identity."""

    @property
    def app_type(self) -> Type[ObjectId]:
        return ObjectId

    def encode(self, value: ObjectId) -> ObjectId:
        if not isinstance(value, ObjectId):
            raise MalformedIdentifierException(
                f"Expected an ObjectId identifier, got {type(value).__name__}: {value!r}",
                value=value,
            )
        return value

    def decode(self, value: Any) -> ObjectId:
        return value

    def generate(self) -> ObjectId:
        return ObjectId()

    @property
    def is_generating(self) -> bool:
        return True

    @property
    def accepts_store_ids(self) -> bool:
        return True


class ObjectIdStringCodec(IdentifierCodec[str]):
    """
    The entity holds the 24 character hex form of an ObjectId while the store
    keeps the native ObjectId.
    """

    @property
    def app_type(self) -> Type[str]:
        return str

    def encode(self, value: str) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if not isinstance(value, str):
            raise MalformedIdentifierException(
                f"ObjectId text must be a str, got {type(value).__name__}: {value!r}",
                value=value,
            )
        try:
            native = ObjectId(value)
        except InvalidId as e:
            raise MalformedIdentifierException(
                f"'{value}' is not a valid ObjectId", value=value
            ) from e
        # Only the lowercase form decodes back to the same text
        if str(native) != value:
            raise MalformedIdentifierException(
                f"'{value}' is not the canonical lowercase form of an ObjectId",
                value=value,
            )
        return native

    def decode(self, value: Any) -> str:
        # Documents written by other clients may hold plain strings.
        if isinstance(value, ObjectId):
            return str(value)
        return value

    def generate(self) -> str:
        return str(ObjectId())

    @property
    def is_generating(self) -> bool:
        return True

    @property
    def accepts_store_ids(self) -> bool:
        return True


def select_codec(app_type: Type[Any], marker: Optional[Id] = None) -> IdentifierCodec:
    """
    Choose the codec for an identity field from its declared type and marker.

    Args:
        app_type: The declared identity type with Optional/Annotated removed.
        marker: The Id marker found on the field, if any.

    Returns:
        The codec instance used for the lifetime of a binding.

    Raises:
        TypeError: If the field is marked as an ObjectId but is neither
                   ``str`` nor ``ObjectId``.
    """
    if marker is not None and marker.object_id:
        if app_type is str:
            codec: IdentifierCodec = ObjectIdStringCodec()
        elif app_type is ObjectId:
            codec = ObjectIdCodec()
        else:
            raise TypeError(
                f"Identity fields marked object_id=True must be str or ObjectId, "
                f"not {getattr(app_type, '__name__', app_type)}"
            )
    elif app_type is ObjectId:
        codec = ObjectIdCodec()
    elif app_type is str:
        codec = PassthroughCodec(str, generator=generate_id)
    else:
        codec = PassthroughCodec(app_type)
    log.debug(f"Selected {codec!r} for identity type {app_type!r}")
    return codec
