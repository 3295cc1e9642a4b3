# src/async_odm/base/schema.py

import dataclasses
import logging
import types
from dataclasses import dataclass, field
from typing import (Annotated, Any, Callable, Dict, List, Optional, Tuple,
                    Type, Union, get_args, get_origin, get_type_hints)

from pydantic import BaseModel
from pydantic_core import PydanticUndefined

from async_odm.base.identifiers import Id

log = logging.getLogger(__name__)

_MISSING = object()


def _is_none_type(t: Any) -> bool:
    return t is type(None)


def unwrap_annotation(annotation: Any) -> Tuple[Any, List[Any]]:
    """
    Strip ``Annotated`` and ``Optional`` wrappers from a type annotation.

    Returns:
        A tuple of the innermost type and every ``Annotated`` metadata item
        found on the way, outermost first.
    """
    metadata: List[Any] = []
    current = annotation
    while True:
        origin = get_origin(current)
        if origin is Annotated:
            args = get_args(current)
            metadata.extend(args[1:])
            current = args[0]
            continue
        if origin is Union or origin is types.UnionType:
            non_none = [a for a in get_args(current) if not _is_none_type(a)]
            if len(non_none) == 1:
                current = non_none[0]
                continue
        return current, metadata


@dataclass(frozen=True)
class FieldDescriptor:
    """
    One declared entity field.

    ``name`` is the attribute name, ``input_key`` the key used to construct
    or dump the entity (the alias when there is one) and ``key`` the key
    under which the value is stored in the document.
    """

    name: str
    key: str
    input_key: str
    annotation: Any
    base_type: Any
    metadata: Tuple[Any, ...] = ()
    default: Any = _MISSING
    default_factory: Optional[Callable[[], Any]] = None

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING or self.default_factory is not None

    def default_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is _MISSING:
            return None
        return self.default


@dataclass(frozen=True)
class IdentityDescriptor:
    """Which field is the identity field and how it is represented."""

    field: FieldDescriptor
    app_type: Any
    marker: Optional[Id] = None

    @property
    def name(self) -> str:
        return self.field.name

    @property
    def key(self) -> str:
        return self.field.key

    @property
    def object_id(self) -> bool:
        return bool(self.marker and self.marker.object_id)


@dataclass(frozen=True)
class EntitySchema:
    """
    Field descriptor table for an entity type, derived once per binding.

    Supports pydantic models and standard library dataclasses.
    """

    entity_type: Type[Any]
    fields: Tuple[FieldDescriptor, ...]
    identity: IdentityDescriptor
    frozen: bool = False
    _by_name: Dict[str, FieldDescriptor] = field(
        default_factory=dict, compare=False, repr=False
    )

    @classmethod
    def from_type(
        cls,
        entity_type: Type[Any],
        id_field: Optional[str] = None,
        id_key: str = "_id",
    ) -> "EntitySchema":
        """
        Build the descriptor table for ``entity_type``.

        Args:
            entity_type: A pydantic model class or a dataclass.
            id_field: Attribute name of the identity field. Detected when None.
            id_key: Document key the identity is stored under.

        Raises:
            TypeError: If the type is unsupported or no unique identity
                       field can be determined.
        """
        if isinstance(entity_type, type) and issubclass(entity_type, BaseModel):
            raw_fields, frozen = _pydantic_fields(entity_type)
        elif isinstance(entity_type, type) and dataclasses.is_dataclass(entity_type):
            raw_fields, frozen = _dataclass_fields(entity_type)
        else:
            raise TypeError(
                f"Entity type must be a pydantic model or a dataclass, "
                f"not {getattr(entity_type, '__name__', entity_type)!r}"
            )

        identity_name = _find_identity(entity_type, raw_fields, id_field, id_key)

        fields: List[FieldDescriptor] = []
        identity: Optional[IdentityDescriptor] = None
        for descriptor in raw_fields:
            if descriptor.name == identity_name:
                descriptor = dataclasses.replace(descriptor, key=id_key)
                markers = [m for m in descriptor.metadata if isinstance(m, Id)]
                identity = IdentityDescriptor(
                    field=descriptor,
                    app_type=descriptor.base_type,
                    marker=markers[0] if markers else None,
                )
            elif descriptor.key == id_key:
                raise TypeError(
                    f"Field '{descriptor.name}' of {entity_type.__name__} is stored "
                    f"under '{id_key}' but '{identity_name}' is the identity field."
                )
            fields.append(descriptor)

        schema = cls(
            entity_type=entity_type,
            fields=tuple(fields),
            identity=identity,
            frozen=frozen,
            _by_name={d.name: d for d in fields},
        )
        log.debug(
            f"Derived schema for {entity_type.__name__}: fields="
            f"{[d.name for d in fields]}, identity={identity_name!r} -> '{id_key}'"
        )
        return schema

    def get(self, name: str) -> Optional[FieldDescriptor]:
        return self._by_name.get(name)

    def is_present(self, entity: Any, descriptor: FieldDescriptor) -> bool:
        """
        True if the field constrains a by-example query.

        None never counts as present, whether unset or explicitly assigned.
        Pydantic models additionally require the field to have been set;
        dataclass fields must differ from their declared default.
        """
        value = getattr(entity, descriptor.name, None)
        if value is None:
            return False
        fields_set = getattr(entity, "model_fields_set", None)
        if fields_set is not None:
            return descriptor.name in fields_set
        if descriptor.has_default:
            return value != descriptor.default_value()
        return True


def _find_identity(
    entity_type: Type[Any],
    fields: List[FieldDescriptor],
    id_field: Optional[str],
    id_key: str,
) -> str:
    names = [d.name for d in fields]
    if id_field is not None:
        if id_field not in names:
            raise TypeError(
                f"{entity_type.__name__} has no field named '{id_field}'"
            )
        return id_field

    marked = [d.name for d in fields if any(isinstance(m, Id) for m in d.metadata)]
    if len(marked) > 1:
        raise TypeError(
            f"{entity_type.__name__} marks more than one identity field: {marked}"
        )
    if marked:
        return marked[0]

    for d in fields:
        if d.input_key == id_key:
            return d.name
    for candidate in ("id", "_id"):
        if candidate in names:
            return candidate

    raise TypeError(
        f"Cannot determine the identity field of {entity_type.__name__}; "
        f"mark one with Id() or pass id_field."
    )


def _pydantic_fields(model: Type[BaseModel]) -> Tuple[List[FieldDescriptor], bool]:
    result = []
    for name, info in model.model_fields.items():
        annotation = info.annotation
        base_type, metadata = unwrap_annotation(annotation)
        # pydantic moves top-level Annotated metadata onto the FieldInfo
        metadata = list(metadata) + [m for m in info.metadata if m not in metadata]
        input_key = info.alias or name
        default = _MISSING if info.default is PydanticUndefined else info.default
        result.append(
            FieldDescriptor(
                name=name,
                key=input_key,
                input_key=input_key,
                annotation=annotation,
                base_type=base_type,
                metadata=tuple(metadata),
                default=default,
                default_factory=info.default_factory,
            )
        )
    return result, bool(model.model_config.get("frozen", False))


def _dataclass_fields(cls: Type[Any]) -> Tuple[List[FieldDescriptor], bool]:
    hints = get_type_hints(cls, include_extras=True)
    result = []
    for f in dataclasses.fields(cls):
        annotation = hints.get(f.name, f.type)
        base_type, metadata = unwrap_annotation(annotation)
        result.append(
            FieldDescriptor(
                name=f.name,
                key=f.name,
                input_key=f.name,
                annotation=annotation,
                base_type=base_type,
                metadata=tuple(metadata),
                default=_MISSING if f.default is dataclasses.MISSING else f.default,
                default_factory=(
                    None
                    if f.default_factory is dataclasses.MISSING
                    else f.default_factory
                ),
            )
        )
    return result, bool(cls.__dataclass_params__.frozen)
