# src/async_odm/base/interfaces.py

import dataclasses
from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, Generic, Iterable, Mapping, Optional, Type, TypeVar, Union

from async_odm.base.cursor import TypedCursor
from async_odm.base.translator import KeysInput, QueryInput
from async_odm.base.write_result import WriteResult

# Type variable for any entity
T = TypeVar("T")
# Type variable for the application-level identifier
K = TypeVar("K")


class TypedCollection(Generic[T, K], ABC):
    """
    Collection interface bound to one (entity type, identifier type) pair.

    Queries and removes accept either an explicit filter document or a
    partially populated entity (query by example). Every operation takes an
    optional ``logger``; the collection's own logger is used when omitted.
    """

    @property
    @abstractmethod
    def entity_type(self) -> Type[T]:
        """The entity type this collection maps."""
        pass

    @property
    @abstractmethod
    def id_type(self) -> Type[K]:
        """The application-level identifier type."""
        pass

    @property
    @abstractmethod
    def id_field(self) -> str:
        """Attribute name of the identity field on the entity."""
        pass

    # --- Queries ---

    @abstractmethod
    def find(
        self,
        query: QueryInput = None,
        keys: KeysInput = None,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> TypedCursor[T]:
        """
        Query the collection.

        Args:
            query: Explicit filter document or entity to match by example.
                   None matches every document.
            keys: Explicit keys document, iterable of field names or entity
                  whose present fields are returned. None returns all fields.
            logger: Logger adapter for recording operations.

        Returns:
            A lazy cursor yielding entities.
        """
        pass

    async def find_one(
        self,
        query: QueryInput = None,
        keys: KeysInput = None,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> Optional[T]:
        """
        Find a single entity matching ``query``.

        This default implementation limits ``find`` to one result.

        Returns:
            The first matching entity, or None when nothing matches.
        """
        async with self.find(query, keys, logger=logger).limit(1) as cursor:
            async for entity in cursor:
                return entity
        return None

    async def find_one_by_id(
        self, id: K, keys: KeysInput = None, *, logger: Optional[LoggerAdapter] = None
    ) -> Optional[T]:
        """
        Retrieve an entity by its application identifier.

        This default implementation reuses ``find_one`` with a filter on the
        identity field only.

        Returns:
            The entity, or None when no document has that identifier.

        Raises:
            ValueError: If ``id`` is None.
            MalformedIdentifierException: If ``id`` cannot be encoded.
        """
        if id is None:
            raise ValueError("find_one_by_id requires an identifier.")
        return await self.find_one({self.id_field: id}, keys, logger=logger)

    @abstractmethod
    async def count(
        self, query: QueryInput = None, *, logger: Optional[LoggerAdapter] = None
    ) -> int:
        """Count the documents matching ``query``."""
        pass

    # --- Writes ---

    @abstractmethod
    async def insert(
        self, entity: T, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        """
        Insert a new entity.

        An unset identity is generated when the identifier type supports it,
        otherwise the store assigns an ObjectId. Either way it is written back
        to the entity once the write succeeds and reported as ``saved_id``.

        Raises:
            ValueError: If the identity is unset and the store cannot assign
                        one of the declared type.
            KeyAlreadyExistsException: If the identifier is already taken.
            StoreException: If the driver reports any other failure.
        """
        pass

    @abstractmethod
    async def insert_many(
        self, entities: Iterable[T], *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        """Insert several entities in one driver call."""
        pass

    @abstractmethod
    async def update(
        self,
        query: QueryInput,
        document: Union[Mapping[str, Any], T],
        upsert: bool = False,
        multi: bool = False,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> WriteResult[T, K]:
        """
        Update documents matching ``query``.

        Args:
            query: Explicit filter document or entity to match by example.
            document: An entity or plain document replacing the match, or an
                      update document of ``$`` operators.
            upsert: Insert when nothing matches.
            multi: Apply an operator update to every match. Replacements
                   always affect a single document.
        """
        pass

    async def update_by_id(
        self,
        id: K,
        document: Union[Mapping[str, Any], T],
        upsert: bool = False,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> WriteResult[T, K]:
        """Update the document with identifier ``id``. Reuses ``update``."""
        if id is None:
            raise ValueError("update_by_id requires an identifier.")
        result = await self.update(
            {self.id_field: id}, document, upsert=upsert, logger=logger
        )
        return dataclasses.replace(result, saved_id=id)

    @abstractmethod
    async def save(
        self, entity: T, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        """Insert ``entity`` if it has no identifier, otherwise replace or create it."""
        pass

    @abstractmethod
    async def remove(
        self, query: QueryInput, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        """
        Delete all documents matching ``query``.

        Raises:
            ValueError: If the query does not constrain anything.
        """
        pass

    async def remove_by_id(
        self, id: K, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        """
        Delete the document with identifier ``id``.

        This default implementation reuses ``remove`` with a filter on the
        identity field only.
        """
        if id is None:
            raise ValueError("remove_by_id requires an identifier.")
        result = await self.remove({self.id_field: id}, logger=logger)
        return dataclasses.replace(result, saved_id=id)

    @abstractmethod
    async def drop(self, *, logger: Optional[LoggerAdapter] = None) -> None:
        """Drop the underlying collection."""
        pass
