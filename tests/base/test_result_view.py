import pytest
from pymongo.errors import ExecutionTimeout

from async_odm.base.exceptions import DecodeException, StoreException
from tests.models import MockObject, MockObjectObjectIdAnnotated, make_view
from bson import ObjectId


class FakeRawCursor:
    """Minimal stand-in for a driver cursor that records what was called."""

    def __init__(self, documents, fail_after=None):
        self._documents = list(documents)
        self._fail_after = fail_after
        self.fetched = 0
        self.closed = False
        self.calls = []

    def sort(self, *args):
        self.calls.append(("sort", args))
        return self

    def skip(self, count):
        self.calls.append(("skip", count))
        return self

    def limit(self, count):
        self.calls.append(("limit", count))
        return self

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._fail_after is not None and self.fetched >= self._fail_after:
            raise ExecutionTimeout("operation exceeded time limit")
        if self.fetched >= len(self._documents):
            raise StopAsyncIteration
        document = self._documents[self.fetched]
        self.fetched += 1
        return document

    async def close(self):
        self.closed = True


DOCUMENTS = [
    {"_id": "id1", "string": "ten", "integer": 10},
    {"_id": "id2", "string": "ten", "integer": 100},
]


def test_decode_one_decodes_identity():
    view = make_view(MockObjectObjectIdAnnotated)
    oid = ObjectId()

    entity = view.decode_one({"_id": oid, "string": "a", "unknown": 1})

    assert entity == MockObjectObjectIdAnnotated(id=str(oid), string="a")


def test_decode_one_rejects_bad_documents():
    view = make_view(MockObject)

    with pytest.raises(DecodeException):
        view.decode_one(["not", "a", "document"])
    with pytest.raises(DecodeException) as exc_info:
        view.decode_one({"_id": "x", "integer": "many"})
    assert exc_info.value.document == {"_id": "x", "integer": "many"}


async def test_cursor_decodes_lazily():
    raw = FakeRawCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    assert raw.fetched == 0
    first = await cursor.__anext__()

    assert first == MockObject(id="id1", string="ten", integer=10)
    assert raw.fetched == 1
    assert not cursor.closed


async def test_cursor_closes_when_exhausted():
    raw = FakeRawCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    results = [entity async for entity in cursor]

    assert [r.id for r in results] == ["id1", "id2"]
    assert cursor.closed and raw.closed
    # a second pass yields nothing
    assert await cursor.to_list() == []


async def test_to_list_with_length_closes_early():
    raw = FakeRawCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    results = await cursor.to_list(1)

    assert len(results) == 1
    assert raw.closed


async def test_cursor_closes_on_decode_error():
    raw = FakeRawCursor([{"_id": "bad", "integer": "NaN"}] + DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    with pytest.raises(DecodeException):
        await cursor.to_list()
    assert raw.closed


async def test_cursor_wraps_driver_errors():
    raw = FakeRawCursor(DOCUMENTS, fail_after=1)
    cursor = make_view(MockObject).decode_sequence(raw)

    with pytest.raises(StoreException) as exc_info:
        await cursor.to_list()
    assert isinstance(exc_info.value.error, ExecutionTimeout)
    assert exc_info.value.__cause__ is exc_info.value.error
    assert raw.closed


async def test_context_manager_releases_cursor():
    raw = FakeRawCursor(DOCUMENTS)

    async with make_view(MockObject).decode_sequence(raw) as cursor:
        async for _ in cursor:
            break

    assert raw.closed
    assert raw.fetched == 1


async def test_modifiers_are_forwarded_before_iteration():
    raw = FakeRawCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    assert cursor.sort("integer", -1).skip(1).limit(5) is cursor
    assert raw.calls == [("sort", ("integer", -1)), ("skip", 1), ("limit", 5)]

    await cursor.__anext__()
    with pytest.raises(RuntimeError):
        cursor.limit(1)


async def test_synchronous_close_is_supported():
    class SyncCloseCursor(FakeRawCursor):
        def close(self):
            self.closed = True

    raw = SyncCloseCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    await cursor.close()
    await cursor.close()

    assert raw.closed
    assert cursor.closed


async def test_to_list_with_zero_length_fetches_nothing():
    raw = FakeRawCursor(DOCUMENTS)
    cursor = make_view(MockObject).decode_sequence(raw)

    assert await cursor.to_list(0) == []
    assert raw.fetched == 0
    assert [r.id for r in await cursor.to_list()] == ["id1", "id2"]
