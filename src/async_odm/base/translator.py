# src/async_odm/base/translator.py

import logging
from typing import Any, Dict, Generic, Iterable, Mapping, Optional, TypeVar, Union

from async_odm.base.identifiers import IdentifierCodec
from async_odm.base.serializer import EntitySerializer

log = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")

Document = Dict[str, Any]
QueryInput = Union[Mapping[str, Any], T, None]
KeysInput = Union[Mapping[str, Any], Iterable[str], T, None]

# Operators whose operands are single identity values
_SCALAR_ID_OPERATORS = ("$eq", "$ne")
# Operators whose operands are lists of identity values
_LIST_ID_OPERATORS = ("$in", "$nin")
# Operators whose operands are lists of sub-filters
_LOGICAL_OPERATORS = ("$and", "$or", "$nor")


class QueryTranslator(Generic[T, K]):
    """
    Produces store filter and projection documents from either an explicit
    document or a partially populated entity.

    The two input styles are separate: a call receives one or the other and
    the translator never merges them.
    """

    def __init__(
        self,
        serializer: EntitySerializer[T],
        codec: IdentifierCodec[K],
    ):
        self._serializer = serializer
        self._schema = serializer.schema
        self._codec = codec
        self._entity_type = self._schema.entity_type
        self._identity = self._schema.identity

    def build_filter(self, query: QueryInput = None) -> Document:
        """
        Build a filter document.

        Args:
            query: None (match everything), an explicit filter mapping, or an
                   entity whose present fields are matched by example.

        Returns:
            The filter document; identity values are in native form.

        Raises:
            TypeError: If ``query`` is neither a mapping nor an entity.
            MalformedIdentifierException: If an identity value cannot be encoded.
        """
        if query is None:
            return {}
        if isinstance(query, self._entity_type):
            native = self._filter_from_entity(query)
        elif isinstance(query, Mapping):
            native = self._filter_from_mapping(query)
        else:
            raise TypeError(
                f"Query must be a mapping or a {self._entity_type.__name__}, "
                f"got {type(query).__name__}"
            )
        log.debug(f"Translated query {query!r} to filter {native!r}")
        return native

    def build_projection(self, keys: KeysInput = None) -> Optional[Document]:
        """
        Build a projection document.

        Every named key becomes an inclusion, whatever value the caller gave it.

        Args:
            keys: None (all fields), a mapping or iterable of field names, or
                  an entity whose present fields are included.

        Returns:
            The projection document, or None to return whole documents.
        """
        if keys is None:
            return None
        if isinstance(keys, self._entity_type):
            names = [d.key for d, _ in self._serializer.present_items(keys)]
        elif isinstance(keys, Mapping):
            names = [self.store_key(k) for k in keys.keys()]
        elif isinstance(keys, Iterable) and not isinstance(keys, (str, bytes)):
            names = [self.store_key(k) for k in keys]
        else:
            raise TypeError(
                f"Keys must be a mapping, an iterable of field names or a "
                f"{self._entity_type.__name__}, got {type(keys).__name__}"
            )
        projection = {name: True for name in names}
        log.debug(f"Translated keys {keys!r} to projection {projection!r}")
        return projection

    def identity_filter(self, app_id: K) -> Document:
        """Filter document matching exactly the entity with ``app_id``."""
        if app_id is None:
            raise ValueError(
                f"An identifier is required to match a {self._entity_type.__name__} by id."
            )
        return {self._identity.key: self._codec.encode(app_id)}

    def _filter_from_entity(self, entity: T) -> Document:
        native: Document = {}
        for descriptor, value in self._serializer.present_items(entity):
            if descriptor.name == self._identity.name:
                value = self._codec.encode(value)
            native[descriptor.key] = value
        return native

    def _filter_from_mapping(self, query: Mapping[str, Any]) -> Document:
        native: Document = {}
        for key, value in query.items():
            if key in _LOGICAL_OPERATORS and isinstance(value, (list, tuple)):
                value = [
                    self._filter_from_mapping(clause)
                    if isinstance(clause, Mapping)
                    else clause
                    for clause in value
                ]
            else:
                key = self.store_key(key)
                if key == self._identity.key:
                    value = self._encode_condition(value)
            native[key] = value
        return native

    def store_key(self, key: str) -> str:
        # Attribute names of the entity map to their stored keys
        descriptor = self._schema.get(key)
        return descriptor.key if descriptor is not None else key

    def _encode_condition(self, condition: Any) -> Any:
        if isinstance(condition, Mapping) and any(
            str(k).startswith("$") for k in condition
        ):
            encoded = {}
            for op, operand in condition.items():
                if op in _SCALAR_ID_OPERATORS and operand is not None:
                    operand = self._codec.encode(operand)
                elif op in _LIST_ID_OPERATORS:
                    operand = [self._codec.encode(v) for v in operand]
                encoded[op] = operand
            return encoded
        if condition is None:
            return None
        return self._codec.encode(condition)
