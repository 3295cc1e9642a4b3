# src/async_odm/base/serializer.py

import dataclasses
import logging
from typing import Any, Dict, Generic, Iterator, Mapping, Tuple, TypeVar

from pydantic import BaseModel, ValidationError

from async_odm.base.exceptions import DecodeException
from async_odm.base.schema import EntitySchema, FieldDescriptor
from async_odm.base.utils import prepare_for_storage, restore_from_storage

log = logging.getLogger(__name__)

T = TypeVar("T")


class EntitySerializer(Generic[T]):
    """
    Converts entities to store documents and back using a precomputed
    EntitySchema. Identity values are passed through untouched; converting
    them is the identifier codec's job.
    """

    def __init__(self, schema: EntitySchema):
        self._schema = schema
        self._is_model = issubclass(schema.entity_type, BaseModel)

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    def _dump(self, entity: T) -> Dict[str, Any]:
        if not isinstance(entity, self._schema.entity_type):
            raise TypeError(
                f"Entity must be of type {self._schema.entity_type.__name__}, "
                f"but received {type(entity).__name__}"
            )
        if self._is_model:
            data = entity.model_dump(mode="python", by_alias=True)
        else:
            data = dataclasses.asdict(entity)
        return prepare_for_storage(data)

    def to_document(self, entity: T) -> Dict[str, Any]:
        """
        Serialize every field of ``entity`` into a store document.

        An unset identity is left out so the caller (or the store) can assign one.
        """
        dumped = self._dump(entity)
        identity_name = self._schema.identity.name
        document: Dict[str, Any] = {}
        for descriptor in self._schema.fields:
            if descriptor.input_key not in dumped:
                continue
            value = dumped[descriptor.input_key]
            if descriptor.name == identity_name and value is None:
                continue
            document[descriptor.key] = value
        return document

    def present_items(self, entity: T) -> Iterator[Tuple[FieldDescriptor, Any]]:
        """Yield (descriptor, storage value) for each present field in declared order."""
        present = [d for d in self._schema.fields if self._schema.is_present(entity, d)]
        if not present:
            return
        dumped = self._dump(entity)
        for descriptor in present:
            yield descriptor, dumped.get(descriptor.input_key)

    def from_document(self, document: Mapping[str, Any]) -> T:
        """
        Build an entity from a store document whose identity is already in
        application form. Keys the entity does not declare are ignored.

        Raises:
            DecodeException: If the document does not fit the entity type.
        """
        entity_type = self._schema.entity_type
        if not isinstance(document, Mapping):
            raise DecodeException(
                f"Cannot decode {type(document).__name__} into {entity_type.__name__}",
                document=None,
            )
        kwargs: Dict[str, Any] = {}
        for descriptor in self._schema.fields:
            if descriptor.key in document:
                kwargs[descriptor.input_key] = restore_from_storage(
                    document[descriptor.key]
                )
        try:
            if self._is_model:
                return entity_type.model_validate(kwargs)
            return entity_type(**kwargs)
        except (ValidationError, TypeError, ValueError) as e:
            log.error(
                f"Failed to decode document into {entity_type.__name__}: {e}. "
                f"Keys: {list(kwargs.keys())!r}"
            )
            raise DecodeException(
                f"Failed to decode document into {entity_type.__name__}: {e}",
                document=dict(document),
            ) from e

    def with_identity(self, entity: T, app_id: Any) -> T:
        """Return ``entity`` with its identity set, copying frozen entities."""
        name = self._schema.identity.name
        if not self._schema.frozen:
            setattr(entity, name, app_id)
            return entity
        if self._is_model:
            return entity.model_copy(update={name: app_id})
        return dataclasses.replace(entity, **{name: app_id})
