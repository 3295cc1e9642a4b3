# src/async_odm/__init__.py

"""
Async ODM Library Initialization.

This package maps typed entities (pydantic models or dataclasses) onto
MongoDB collections through Motor: queries by example, projections from
entities, transparent identifier conversion and typed write results.

It initializes a logger with a NullHandler and makes the collection
binding, identifier markers, exceptions, and result types available at the
top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "async_odm".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False  # Prevent log messages from propagating to the root logger

# --------------------------------------------------------------------------
# Core Interface and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import TypedCollection
from .base.exceptions import (
    DecodeException,
    KeyAlreadyExistsException,
    MalformedIdentifierException,
    StoreException,
)

# --------------------------------------------------------------------------
# Identifier Exports
# --------------------------------------------------------------------------
from .base.identifiers import (
    Id,
    IdentifierCodec,
    ObjectIdCodec,
    ObjectIdStr,
    ObjectIdStringCodec,
    PassthroughCodec,
)

# --------------------------------------------------------------------------
# Result Exports
# --------------------------------------------------------------------------
from .base.cursor import TypedCursor
from .base.write_result import WriteResult

# --------------------------------------------------------------------------
# Implementation Exports
# --------------------------------------------------------------------------
from .db_implementations.mongodb_collection import MongoDBCollection, bind

__all__ = [
    # Core
    "TypedCollection",
    "MongoDBCollection",
    "bind",
    # Exceptions
    "DecodeException",
    "KeyAlreadyExistsException",
    "MalformedIdentifierException",
    "StoreException",
    # Identifiers
    "Id",
    "ObjectIdStr",
    "IdentifierCodec",
    "PassthroughCodec",
    "ObjectIdCodec",
    "ObjectIdStringCodec",
    # Results
    "TypedCursor",
    "WriteResult",
    # Logging
    "logger",
]

__version__ = "0.1.0"
