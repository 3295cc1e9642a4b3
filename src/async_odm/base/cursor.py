# src/async_odm/base/cursor.py

import inspect
import logging
from typing import (Any, AsyncIterator, Dict, Generic, List, Mapping, Optional,
                    Sequence, Tuple, TypeVar, Union)

from pymongo.errors import PyMongoError

from async_odm.base.exceptions import DecodeException, StoreException
from async_odm.base.identifiers import IdentifierCodec
from async_odm.base.serializer import EntitySerializer

log = logging.getLogger(__name__)

T = TypeVar("T")

SortSpec = Union[str, Sequence[Tuple[str, int]]]


class ResultView(Generic[T]):
    """Decodes raw store documents into entities, identity included."""

    def __init__(self, serializer: EntitySerializer[T], codec: IdentifierCodec):
        self._serializer = serializer
        self._codec = codec
        self._id_key = serializer.schema.identity.key

    def decode_one(self, document: Mapping[str, Any]) -> T:
        """
        Decode a single document.

        Raises:
            DecodeException: If the document does not fit the entity type.
        """
        if not isinstance(document, Mapping):
            raise DecodeException(
                f"Expected a document, got {type(document).__name__}"
            )
        data: Dict[str, Any] = dict(document)
        if data.get(self._id_key) is not None:
            data[self._id_key] = self._codec.decode(data[self._id_key])
        return self._serializer.from_document(data)

    def decode_sequence(self, raw_cursor: Any) -> "TypedCursor[T]":
        """Wrap a driver cursor so that it yields entities lazily."""
        return TypedCursor(raw_cursor, self)


class TypedCursor(Generic[T]):
    """
    Lazy, single pass iteration over query results as entities.

    ``sort``, ``skip`` and ``limit`` may be chained before iteration starts.
    The driver cursor is released when iteration is exhausted, when decoding
    fails, on ``close()`` and when leaving an ``async with`` block. Iterating
    again after that yields nothing; issue the query again instead.

    Example:
        async with collection.find({"string": "ten"}) as cursor:
            async for entity in cursor:
                ...
    """

    def __init__(self, raw_cursor: Any, view: ResultView[T]):
        self._cursor = raw_cursor
        self._view = view
        self._started = False
        self._closed = False

    @property
    def raw_cursor(self) -> Any:
        """The driver cursor being wrapped."""
        return self._cursor

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_not_started(self, operation: str) -> None:
        if self._started or self._closed:
            raise RuntimeError(f"Cannot apply {operation}() after iteration has started.")

    def sort(self, key_or_list: SortSpec, direction: Optional[int] = None) -> "TypedCursor[T]":
        self._check_not_started("sort")
        # Driver cursors mutate in place and return themselves
        if direction is None:
            self._cursor.sort(key_or_list)
        else:
            self._cursor.sort(key_or_list, direction)
        return self

    def skip(self, count: int) -> "TypedCursor[T]":
        self._check_not_started("skip")
        self._cursor.skip(count)
        return self

    def limit(self, count: int) -> "TypedCursor[T]":
        self._check_not_started("limit")
        self._cursor.limit(count)
        return self

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        self._started = True
        try:
            document = await anext(self._cursor)
        except PyMongoError as e:
            await self.close()
            log.error(f"MongoDB error while iterating results: {e}", exc_info=True)
            raise StoreException(
                f"A MongoDB error occurred while iterating results: {e}", error=e
            ) from e
        except BaseException:
            # Exhaustion and cancellation both end the cursor
            await self.close()
            raise
        try:
            return self._view.decode_one(document)
        except DecodeException:
            await self.close()
            raise

    async def to_list(self, length: Optional[int] = None) -> List[T]:
        """Drain the cursor into a list, stopping after ``length`` entities if given."""
        results: List[T] = []
        if length is not None and length <= 0:
            return results
        async for entity in self:
            results.append(entity)
            if length is not None and len(results) >= length:
                await self.close()
                break
        return results

    async def close(self) -> None:
        """Release the driver cursor. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        result = self._cursor.close()
        # motor returns an awaitable, in-memory cursors close synchronously
        if inspect.isawaitable(result):
            await result
        log.debug("Closed result cursor.")

    async def __aenter__(self) -> "TypedCursor[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
