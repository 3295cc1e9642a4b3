# src/async_odm/db_implementations/mongodb_collection.py

import logging
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import (Any, AsyncGenerator, Dict, Generic, Iterable, List,
                    Mapping, Optional, Type, TypeVar, Union)

# --- Motor Driver Import ---
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

# --- Framework Imports ---
from async_odm.base.cursor import ResultView, TypedCursor
from async_odm.base.exceptions import (KeyAlreadyExistsException,
                                       StoreException)
from async_odm.base.identifiers import IdentifierCodec, select_codec
from async_odm.base.interfaces import KeysInput, QueryInput, TypedCollection
from async_odm.base.schema import EntitySchema
from async_odm.base.serializer import EntitySerializer
from async_odm.base.translator import QueryTranslator
from async_odm.base.write_result import WriteResult

# --- Type Variables ---
T = TypeVar("T")
K = TypeVar("K")
DB_RECORD_TYPE = Dict[str, Any]

DUPLICATE_KEY_ERROR_CODE = 11000


class MongoDBCollection(TypedCollection[T, K], Generic[T, K]):
    """
    Typed wrapper around a Motor collection.

    Build instances with ``MongoDBCollection.bind``; the entity schema, the
    identifier codec and the query translator are derived once there and
    never change afterwards. The instance keeps no per-call state, so one
    bound collection can serve concurrent callers.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        schema: EntitySchema,
        codec: IdentifierCodec[K],
        generate_ids: bool = True,
    ):
        """
        Args:
            collection: The Motor collection to wrap.
            schema: Field descriptor table of the entity type.
            codec: Identifier codec selected for the identity field.
            generate_ids: If True, unset identities are generated on insert
                          when the codec supports it.
        """
        self._collection = collection
        self._schema = schema
        self._codec = codec
        self._generate_ids = generate_ids
        self._serializer: EntitySerializer[T] = EntitySerializer(schema)
        self._translator: QueryTranslator[T, K] = QueryTranslator(
            self._serializer, codec
        )
        self._view: ResultView[T] = ResultView(self._serializer, codec)

        entity_name = schema.entity_type.__name__
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{entity_name}]"
        )
        self._logger.info(
            f"Collection bound for {entity_name} "
            f"(collection: '{getattr(collection, 'name', collection)}', "
            f"identity: '{schema.identity.name}' -> '{schema.identity.key}', "
            f"codec: {codec!r})."
        )

    @classmethod
    def bind(
        cls,
        collection: AsyncIOMotorCollection,
        entity_type: Type[T],
        id_type: Optional[Type[K]] = None,
        *,
        id_field: Optional[str] = None,
        id_key: str = "_id",
        generate_ids: bool = True,
    ) -> "MongoDBCollection[T, K]":
        """
        Bind a Motor collection to an entity type and identifier type.

        Args:
            collection: The Motor collection to wrap.
            entity_type: A pydantic model or dataclass with one identity field.
            id_type: The application-level identifier type. Inferred from the
                     identity field when None; must match it otherwise.
            id_field: Attribute name of the identity field, when it cannot
                      be detected from an ``Id`` marker, an ``_id`` alias or
                      the names ``id``/``_id``.
            id_key: Document key holding the identity.
            generate_ids: Generate unset identities on insert.

        Raises:
            TypeError: If the entity type has no usable identity field or
                       ``id_type`` does not match its declared type.
        """
        schema = EntitySchema.from_type(entity_type, id_field=id_field, id_key=id_key)
        codec = select_codec(schema.identity.app_type, schema.identity.marker)
        if id_type is not None and id_type is not codec.app_type:
            raise TypeError(
                f"{entity_type.__name__}.{schema.identity.name} is declared as "
                f"{getattr(codec.app_type, '__name__', codec.app_type)}, "
                f"not {getattr(id_type, '__name__', id_type)}"
            )
        return cls(collection, schema, codec, generate_ids=generate_ids)

    @property
    def entity_type(self) -> Type[T]:
        return self._schema.entity_type

    @property
    def id_type(self) -> Type[K]:
        return self._codec.app_type

    @property
    def id_field(self) -> str:
        return self._schema.identity.name

    @property
    def collection(self) -> AsyncIOMotorCollection:
        """The wrapped Motor collection."""
        return self._collection

    @property
    def codec(self) -> IdentifierCodec[K]:
        return self._codec

    @property
    def translator(self) -> QueryTranslator[T, K]:
        return self._translator

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[AsyncIOMotorCollection, None]:
        """
        Provides the collection object directly. Lets operational exceptions
        propagate to the caller.
        """
        yield self._collection

    # --- Queries ---

    def find(
        self,
        query: QueryInput = None,
        keys: KeysInput = None,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> TypedCursor[T]:
        logger = logger or self._logger
        try:
            query_filter = self._translator.build_filter(query)
            projection = self._translator.build_projection(keys)
        except (ValueError, TypeError) as translation_error:
            logger.error(
                f"Failed to translate query for find: {translation_error}",
                exc_info=True,
            )
            raise
        logger.debug(
            f"Finding {self.entity_type.__name__}(s) with filter: {query_filter}, "
            f"projection: {projection}"
        )
        raw_cursor = self._collection.find(query_filter, projection)
        return self._view.decode_sequence(raw_cursor)

    async def count(
        self, query: QueryInput = None, *, logger: Optional[LoggerAdapter] = None
    ) -> int:
        logger = logger or self._logger
        try:
            query_filter = self._translator.build_filter(query)
        except (ValueError, TypeError) as translation_error:
            logger.error(
                f"Failed to translate query for count: {translation_error}",
                exc_info=True,
            )
            raise
        logger.debug(f"MongoDB count filter: {query_filter}")
        try:
            async with self._get_session() as collection:
                count_val = await collection.count_documents(query_filter)
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "counting entities", logger)
        logger.info(f"Counted {count_val} {self.entity_type.__name__}(s).")
        return int(count_val)

    # --- Writes ---

    def _prepare_insert(self, entity: T, logger: LoggerAdapter) -> tuple:
        """
        Returns (entity, app_id, document). A generated identity goes into the
        document only; the entity is left untouched until the write succeeds.
        """
        if not isinstance(entity, self.entity_type):
            raise TypeError(
                f"Entity must be of type {self.entity_type.__name__}, "
                f"but received {type(entity).__name__}"
            )
        app_id = getattr(entity, self.id_field, None)
        if app_id is None and self._generate_ids and self._codec.is_generating:
            app_id = self._codec.generate()
            logger.debug(
                f"Generated identifier '{app_id}' for new {self.entity_type.__name__}"
            )
        if app_id is None and not self._codec.accepts_store_ids:
            raise ValueError(
                f"{self.entity_type.__name__}.{self.id_field} must be set before "
                f"insert; the store cannot assign a "
                f"{getattr(self.id_type, '__name__', self.id_type)} identifier."
            )
        document = self._serializer.to_document(entity)
        if app_id is not None:
            document[self._schema.identity.key] = self._codec.encode(app_id)
        return entity, app_id, document

    def _complete_insert(
        self, entity: T, app_id: Any, document: DB_RECORD_TYPE, inserted_id: Any
    ) -> tuple:
        """Writes the stored identity back, picking up one assigned by the driver."""
        if app_id is None:
            native = document.get(self._schema.identity.key, inserted_id)
            if native is not None:
                app_id = self._codec.decode(native)
        if app_id is not None and getattr(entity, self.id_field, None) is None:
            entity = self._serializer.with_identity(entity, app_id)
        return entity, app_id

    async def insert(
        self, entity: T, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        logger = logger or self._logger
        entity, app_id, document = self._prepare_insert(entity, logger)
        logger.debug(f"Inserting {self.entity_type.__name__}: {document}")
        try:
            async with self._get_session() as collection:
                result = await collection.insert_one(document)
        except PyMongoError as db_error:
            self._handle_db_error(db_error, f"inserting entity id {app_id}", logger)
        entity, app_id = self._complete_insert(
            entity, app_id, document, result.inserted_id
        )
        logger.info(
            f"Inserted {self.entity_type.__name__} with id '{app_id}' "
            f"(acknowledged: {result.acknowledged})."
        )
        return WriteResult(
            raw_result=result,
            saved_object=entity,
            saved_id=app_id,
            db_object=document,
            id_decoder=self._codec.decode,
        )

    async def insert_many(
        self, entities: Iterable[T], *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        logger = logger or self._logger
        prepared = [self._prepare_insert(entity, logger) for entity in entities]
        if not prepared:
            raise ValueError("insert_many requires at least one entity.")
        documents = [document for _, _, document in prepared]
        logger.debug(
            f"Inserting {len(documents)} {self.entity_type.__name__}(s)"
        )
        try:
            async with self._get_session() as collection:
                result = await collection.insert_many(documents)
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "inserting many entities", logger)
        saved_objects: List[T] = []
        saved_ids: List[K] = []
        for (entity, app_id, document), inserted_id in zip(
            prepared, result.inserted_ids
        ):
            entity, app_id = self._complete_insert(
                entity, app_id, document, inserted_id
            )
            saved_objects.append(entity)
            saved_ids.append(app_id)
        logger.info(f"Inserted {len(saved_objects)} {self.entity_type.__name__}(s).")
        return WriteResult(
            raw_result=result,
            saved_objects=saved_objects,
            saved_ids=saved_ids,
            id_decoder=self._codec.decode,
        )

    async def update(
        self,
        query: QueryInput,
        document: Union[Mapping[str, Any], T],
        upsert: bool = False,
        multi: bool = False,
        *,
        logger: Optional[LoggerAdapter] = None,
    ) -> WriteResult[T, K]:
        logger = logger or self._logger
        saved_object: Optional[T] = None
        saved_id: Optional[K] = None
        try:
            query_filter = self._translator.build_filter(query)
            if isinstance(document, self.entity_type):
                saved_object = document
                saved_id = getattr(document, self.id_field, None)
                update_doc = self._serializer.to_document(document)
                if saved_id is not None:
                    update_doc[self._schema.identity.key] = self._codec.encode(saved_id)
                is_replacement = True
            elif isinstance(document, Mapping):
                update_doc, is_replacement = self._translate_update(document)
            else:
                raise TypeError(
                    f"Update must be a mapping or a {self.entity_type.__name__}, "
                    f"got {type(document).__name__}"
                )
            if is_replacement and multi:
                raise ValueError(
                    "A replacement document updates a single document; use $ operators with multi=True."
                )
        except (ValueError, TypeError) as translation_error:
            logger.error(
                f"Failed to translate update: {translation_error}", exc_info=True
            )
            raise
        logger.debug(
            f"MongoDB update filter: {query_filter}, document: {update_doc}, "
            f"upsert: {upsert}, multi: {multi}"
        )
        try:
            async with self._get_session() as collection:
                if is_replacement:
                    result = await collection.replace_one(
                        query_filter, update_doc, upsert=upsert
                    )
                elif multi:
                    result = await collection.update_many(
                        query_filter, update_doc, upsert=upsert
                    )
                else:
                    result = await collection.update_one(
                        query_filter, update_doc, upsert=upsert
                    )
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "updating entities", logger)
        write_result = WriteResult(
            raw_result=result,
            saved_object=saved_object,
            saved_id=saved_id,
            db_object=update_doc,
            id_decoder=self._codec.decode,
        )
        if saved_id is None and write_result.upserted_id is not None:
            saved_id = write_result.upserted_id
            if saved_object is not None:
                saved_object = self._serializer.with_identity(saved_object, saved_id)
            write_result = WriteResult(
                raw_result=result,
                saved_object=saved_object,
                saved_id=saved_id,
                db_object=update_doc,
                id_decoder=self._codec.decode,
            )
        logger.info(
            f"Updated {write_result.affected_count} {self.entity_type.__name__}(s)."
        )
        return write_result

    async def save(
        self, entity: T, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        logger = logger or self._logger
        app_id = getattr(entity, self.id_field, None)
        if app_id is None:
            return await self.insert(entity, logger=logger)
        return await self.update(
            self._translator.identity_filter(app_id), entity, upsert=True, logger=logger
        )

    async def remove(
        self, query: QueryInput, *, logger: Optional[LoggerAdapter] = None
    ) -> WriteResult[T, K]:
        logger = logger or self._logger
        try:
            query_filter = self._translator.build_filter(query)
            if not query_filter:
                raise ValueError(
                    "Cannot remove without a valid filter; use drop() to clear the collection."
                )
        except (ValueError, TypeError) as translation_error:
            logger.error(
                f"Failed to translate query for remove: {translation_error}",
                exc_info=True,
            )
            raise
        logger.debug(f"MongoDB remove filter: {query_filter}")
        try:
            async with self._get_session() as collection:
                result = await collection.delete_many(query_filter)
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "removing entities", logger)
        write_result = WriteResult(raw_result=result, db_object=query_filter)
        logger.info(
            f"Removed {write_result.affected_count} {self.entity_type.__name__}(s)."
        )
        return write_result

    async def drop(self, *, logger: Optional[LoggerAdapter] = None) -> None:
        logger = logger or self._logger
        try:
            async with self._get_session() as collection:
                await collection.drop()
        except PyMongoError as db_error:
            self._handle_db_error(db_error, "dropping collection", logger)
        logger.info(f"Dropped collection for {self.entity_type.__name__}.")

    # --- Helper Method Implementations ---

    def _translate_update(self, document: Mapping[str, Any]) -> tuple:
        """
        Returns (update document, is_replacement). Attribute names inside
        operator documents are mapped to their stored keys.
        """
        operators = [k for k in document if str(k).startswith("$")]
        if not operators:
            replacement = {
                self._translator.store_key(k): v for k, v in document.items()
            }
            identity_key = self._schema.identity.key
            if replacement.get(identity_key) is not None:
                replacement[identity_key] = self._codec.encode(replacement[identity_key])
            return replacement, True
        if len(operators) != len(document):
            raise ValueError(
                "An update document cannot mix $ operators and plain fields."
            )
        update_doc: Dict[str, Any] = {}
        for op, fields in document.items():
            if not isinstance(fields, Mapping):
                raise TypeError(f"Operand of {op} must be a mapping of fields.")
            update_doc[op] = {self._translator.store_key(k): v for k, v in fields.items()}
        self._logger.debug(f" -> Translated MongoDB update document: {update_doc}")
        return update_doc, False

    def _handle_db_error(
        self, error: Exception, context: str, logger: LoggerAdapter
    ) -> None:
        logger.error(f"MongoDB error during {context}: {error}", exc_info=True)
        if isinstance(error, DuplicateKeyError) or (
            getattr(error, "code", None) == DUPLICATE_KEY_ERROR_CODE
        ):
            details = getattr(error, "details", None) or {}
            raise KeyAlreadyExistsException(
                f"Duplicate key during {context}. Key: {details.get('keyValue', 'unknown')}",
                error=error,
            ) from error
        raise StoreException(
            f"A MongoDB error occurred during {context}: {error}", error=error
        ) from error


def bind(
    collection: AsyncIOMotorCollection,
    entity_type: Type[T],
    id_type: Optional[Type[K]] = None,
    **options: Any,
) -> MongoDBCollection[T, K]:
    """Shortcut for ``MongoDBCollection.bind``."""
    return MongoDBCollection.bind(collection, entity_type, id_type, **options)
