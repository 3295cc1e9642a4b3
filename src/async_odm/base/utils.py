import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to BSON-compatible values.

    It handles:
    - Pydantic BaseModel instances (dumped in python mode, by alias)
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item; sets become lists)
    - Pydantic URL types (converting to strings)

    Native BSON values such as ObjectId, datetime and bytes are returned as-is.

    Args:
        data: The data to convert

    Returns:
        The converted data, ready for storage
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        return prepare_for_storage(data.model_dump(mode="python", by_alias=True))

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, list):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, tuple):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, (set, frozenset)):
        return [prepare_for_storage(item) for item in data]

    if hasattr(data, "__class__") and data.__class__.__module__.startswith(
        ("pydantic.networks", "pydantic_core")
    ):
        return str(data)

    return data


def restore_from_storage(data: Any) -> Any:
    """
    Recursively make naive datetimes read back from the store timezone-aware (UTC).

    BSON keeps datetimes as UTC milliseconds without zone information.
    """
    if isinstance(data, datetime) and data.tzinfo is None:
        return data.replace(tzinfo=timezone.utc)
    if isinstance(data, dict):
        return {k: restore_from_storage(v) for k, v in data.items()}
    if isinstance(data, list):
        return [restore_from_storage(item) for item in data]
    return data
