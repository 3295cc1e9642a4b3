# src/async_odm/base/write_result.py

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")
K = TypeVar("K")


@dataclass(frozen=True)
class WriteResult(Generic[T, K]):
    """
    Outcome of a single insert, update or remove call.

    Attributes:
        raw_result: The driver acknowledgement (InsertOneResult,
                    InsertManyResult, UpdateResult or DeleteResult).
        saved_object: The entity as persisted, identity populated. None for
                      removes and operator based updates.
        saved_id: The persisted identifier in application form.
        db_object: The document or filter actually sent to the store.
        saved_objects: All persisted entities for multi-document inserts.
        saved_ids: All persisted identifiers for multi-document inserts.
    """

    raw_result: Any
    saved_object: Optional[T] = None
    saved_id: Optional[K] = None
    db_object: Optional[Dict[str, Any]] = None
    saved_objects: List[T] = field(default_factory=list)
    saved_ids: List[K] = field(default_factory=list)
    id_decoder: Optional[Callable[[Any], K]] = field(
        default=None, repr=False, compare=False
    )

    @property
    def is_success(self) -> bool:
        """True if the store acknowledged the write."""
        return bool(getattr(self.raw_result, "acknowledged", False))

    @property
    def affected_count(self) -> int:
        """Documents inserted, matched by an update, or deleted."""
        raw = self.raw_result
        if not self.is_success:
            return 0
        if hasattr(raw, "deleted_count"):
            return raw.deleted_count
        if hasattr(raw, "matched_count"):
            return raw.matched_count
        if hasattr(raw, "inserted_ids"):
            return len(raw.inserted_ids)
        if hasattr(raw, "inserted_id"):
            return 1
        return 0

    @property
    def upserted_id(self) -> Optional[K]:
        """Identifier of a document created by an upsert, in application form."""
        if not self.is_success:
            return None
        native = getattr(self.raw_result, "upserted_id", None)
        if native is None or self.id_decoder is None:
            return native
        return self.id_decoder(native)
