import pytest
from bson import ObjectId

from async_odm.base.exceptions import DecodeException, MalformedIdentifierException
from tests.models import MockObject, MockObjectObjectIdAnnotated, Person, Address


async def _insert_scenario(coll, logger, with_ids=False):
    """Inserts ten/10, ten/100 and twenty/20; returns the saved objects."""
    ids = ["id1", "id2", "id3"] if with_ids else [None, None, None]
    saved = []
    for id_, string, integer in zip(ids, ["ten", "ten", "twenty"], [10, 100, 20]):
        result = await coll.insert(
            MockObject(id=id_, string=string, integer=integer), logger=logger
        )
        saved.append(result.saved_object)
    return saved


async def test_query(collection_factory, logger):
    coll = collection_factory(MockObject, str)
    o1, o2, _ = await _insert_scenario(coll, logger)

    results = await coll.find({"string": "ten"}, logger=logger).to_list()
    assert results == [o1, o2]


async def test_query_with_entity(collection_factory, logger):
    coll = collection_factory(MockObject, str)
    o1, o2, _ = await _insert_scenario(coll, logger)

    results = await coll.find(MockObject(string="ten", integer=None)).to_list()
    assert results == [o1, o2]


async def test_query_by_example_matches_explicit_filter(collection_factory, logger):
    coll = collection_factory(MockObject)
    await _insert_scenario(coll, logger)

    by_example = await coll.find(MockObject(string="ten", integer=100)).to_list()
    explicit = await coll.find({"string": "ten", "integer": 100}).to_list()
    assert by_example == explicit
    assert len(by_example) == 1


async def test_query_with_limited_keys(collection_factory, logger):
    coll = collection_factory(MockObject, str)
    await _insert_scenario(coll, logger)

    results = await coll.find(
        {"string": "ten"}, {"string": "something not null"}
    ).to_list()
    assert len(results) == 2
    for result in results:
        assert result.integer is None
        assert result.string == "ten"
        assert result.id is not None


async def test_query_with_limited_keys_from_entity(collection_factory, logger):
    coll = collection_factory(MockObject, str)
    await _insert_scenario(coll, logger)

    results = await coll.find(
        MockObject(string="ten"), MockObject(string="something not null")
    ).to_list()
    assert len(results) == 2
    for result in results:
        assert result.integer is None
        assert result.string == "ten"


async def test_query_with_keys_by_attribute_name(collection_factory, logger):
    coll = collection_factory(Person)
    await coll.insert(Person(name="Ada", age=36, address=Address(street="A", city="B")))

    result = await coll.find_one({"name": "Ada"}, ["age"])
    assert result.age == 36
    assert result.name is None
    assert result.address is None
    assert result.person_id is not None


async def test_find_all_when_no_arguments(collection_factory, logger):
    coll = collection_factory(MockObject)
    saved = await _insert_scenario(coll, logger)

    assert await coll.find().to_list() == saved


async def test_find_returns_empty_when_nothing_matches(collection_factory, logger):
    coll = collection_factory(MockObject)
    await _insert_scenario(coll, logger)

    assert await coll.find({"string": "thirty"}).to_list() == []
    assert await coll.find_one({"string": "thirty"}) is None


async def test_find_with_sort_skip_limit(collection_factory, logger):
    coll = collection_factory(MockObject)
    await _insert_scenario(coll, logger)

    results = await coll.find().sort("integer", -1).skip(1).limit(1).to_list()
    assert [r.integer for r in results] == [20]


async def test_find_by_example_with_defaults_and_nesting(collection_factory, logger):
    coll = collection_factory(Person)
    ada = (await coll.insert(Person(name="Ada", age=36, tags=["math"]))).saved_object
    await coll.insert(Person(name="Alan", age=41, address=Address(street="S", city="M")))

    # age keeps its default and does not constrain the match
    assert await coll.find(Person(name="Ada")).to_list() == [ada]
    # explicitly set to the default value, so it does
    assert await coll.find(Person(name="Ada", age=0)).to_list() == []
    matches = await coll.find(Person(address=Address(street="S", city="M"))).to_list()
    assert [p.name for p in matches] == ["Alan"]


async def test_find_by_example_ignores_explicit_none(collection_factory, logger):
    coll = collection_factory(MockObject)
    await _insert_scenario(coll, logger)

    results = await coll.find(MockObject(id=None, string=None, integer=20)).to_list()
    assert [r.string for r in results] == ["twenty"]


async def test_count(collection_factory, logger):
    coll = collection_factory(MockObject)
    await _insert_scenario(coll, logger)

    assert await coll.count(logger=logger) == 3
    assert await coll.count({"string": "ten"}) == 2
    assert await coll.count(MockObject(string="twenty")) == 1


async def test_find_one_by_id(collection_factory, logger):
    coll = collection_factory(MockObject, str)
    _, _, o3 = await _insert_scenario(coll, logger, with_ids=True)

    assert await coll.find_one_by_id("id3") == o3
    assert await coll.find_one_by_id("missing") is None


async def test_find_one_by_id_with_object_id(collection_factory, logger):
    coll = collection_factory(MockObjectObjectIdAnnotated, str)
    entity = MockObjectObjectIdAnnotated()
    write_result = await coll.insert(entity, logger=logger)

    assert isinstance(write_result.db_object["_id"], ObjectId)
    saved_id = write_result.saved_id
    assert isinstance(saved_id, str)
    assert entity.id == saved_id

    result = await coll.find_one_by_id(saved_id)
    assert result.id == saved_id


async def test_query_by_example_encodes_object_id(collection_factory, logger):
    coll = collection_factory(MockObjectObjectIdAnnotated)
    saved = (await coll.insert(MockObjectObjectIdAnnotated(string="a"))).saved_object
    await coll.insert(MockObjectObjectIdAnnotated(string="a"))

    raw = await coll.collection.find_one({"_id": ObjectId(saved.id)})
    assert raw["string"] == "a"

    assert await coll.find(MockObjectObjectIdAnnotated(id=saved.id)).to_list() == [saved]
    assert await coll.find({"id": saved.id}).to_list() == [saved]
    assert await coll.find({"_id": {"$in": [saved.id]}}).to_list() == [saved]
    assert await coll.find({"$or": [{"_id": saved.id}, {"string": "b"}]}).to_list() == [
        saved
    ]


async def test_find_one_by_id_with_malformed_object_id(collection_factory, logger):
    coll = collection_factory(MockObjectObjectIdAnnotated, str)

    with pytest.raises(MalformedIdentifierException):
        await coll.find_one_by_id("not-an-object-id")


async def test_decode_error_is_not_an_empty_result(collection_factory, logger):
    coll = collection_factory(MockObject)
    await coll.collection.insert_one({"_id": "bad", "string": "x", "integer": "NaN"})

    with pytest.raises(DecodeException):
        await coll.find().to_list()
    with pytest.raises(DecodeException):
        await coll.find_one_by_id("bad")
