# tests/conftest.py
import logging
import os

import motor.motor_asyncio
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from async_odm import bind

# Silence verbose loggers
logging.getLogger("pymongo").setLevel(logging.ERROR)
logging.getLogger("motor").setLevel(logging.ERROR)


# --- Constants ---
TEST_MONGO_DB_NAME = "pytest_async_odm_db"
MONGO_URI = os.getenv("TEST_MONGO_URI", "mongodb://localhost:27017")

# --- List of available backend keys ---
BACKENDS = ["mongomock", "mongodb"]


# --- Availability Checks ---
def is_mongodb_available():
    """Check if a MongoDB server answers at MONGO_URI."""
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=500)
    try:
        client.admin.command("ping")
        logging.info(f"MongoDB found and responsive at {MONGO_URI}")
        return True
    except PyMongoError as e:
        logging.warning(
            f"MongoDB not found or not responsive at {MONGO_URI}: {e}. "
            "Skipping MongoDB tests."
        )
        return False
    finally:
        client.close()


AVAILABLE_BACKENDS = ["mongomock"]
if is_mongodb_available():
    AVAILABLE_BACKENDS.append("mongodb")


# --- Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def mongomock_database():
    """Provides an in-memory Motor compatible database for each test."""
    client = AsyncMongoMockClient()
    yield client[TEST_MONGO_DB_NAME]


@pytest_asyncio.fixture(scope="function")
async def mongodb_database():
    """Provides a real Motor database, emptied before each test."""
    if "mongodb" not in AVAILABLE_BACKENDS:
        pytest.skip("MongoDB not available or connection failed.")

    client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URI)
    try:
        db = client[TEST_MONGO_DB_NAME]
        for name in await db.list_collection_names():
            if not name.startswith("system."):
                await db.drop_collection(name)
                logging.debug(f"Dropped collection: {name}")
        yield db
    finally:
        client.close()
        logging.debug("Motor client closed for test function scope.")


@pytest.fixture(params=BACKENDS)
def database(request):
    """Parametrized fixture returning the database of each backend."""
    backend = request.param
    if backend == "mongomock":
        yield request.getfixturevalue("mongomock_database")
    elif backend == "mongodb":
        yield request.getfixturevalue("mongodb_database")
    else:
        raise ValueError(f"Unknown backend key: {backend}")


@pytest.fixture(scope="function")
def collection_factory(database):
    """Factory binding a fresh collection of ``database`` to an entity type."""

    def _create(entity_cls, id_type=None, **options):
        collection_name = f"{entity_cls.__name__.lower()}s_pytest"
        return bind(database[collection_name], entity_cls, id_type, **options)

    return _create


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_odm_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})
