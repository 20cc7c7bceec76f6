import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .fields import Point

logger = logging.getLogger(__name__)

# Characters with syntactic meaning in the search query language
_SPECIAL_CHARS = set(",.<>{}[]\"':;!@#$%^&*()-+=~|/\\ ")


def escape(value: str, keep: str = "") -> str:
    """Backslash-escapes query syntax characters in ``value`` (except those in ``keep``)."""
    return "".join(
        f"\\{ch}" if ch in _SPECIAL_CHARS and ch not in keep else ch for ch in value
    )


def epoch_millis(value: Any) -> int:
    """Datetimes and dates as epoch milliseconds; naive values are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, date):
        return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp() * 1000)
    raise TypeError(f"Cannot convert {type(value).__name__} to epoch milliseconds")


def to_index_value(value: Any) -> str:
    """
    Renders a single bound value the way the index stores it.

    Shared by the query compiler and the document mapper so that a value written
    to the store and a value bound to a clause always compare equal.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return to_index_value(value.value)
    if isinstance(value, (datetime, date)):
        return str(epoch_millis(value))
    if isinstance(value, Point):
        return str(value)
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to storage-compatible formats.

    It handles:
    - Pydantic BaseModel instances with field aliases
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item)
    - Datetimes and dates (epoch milliseconds, so numeric indexes can range over them)
    - Enums, UUIDs, Decimals and geographic points

    Args:
        data: The data to convert

    Returns:
        The converted data, ready for storage
    """
    # Handle None
    if data is None:
        return None

    # Handle dataclasses
    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    # Handle Pydantic models
    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        return prepare_for_storage(data.model_dump(by_alias=True))

    if isinstance(data, bool):
        return data
    if isinstance(data, Enum):
        return prepare_for_storage(data.value)
    if isinstance(data, (datetime, date)):
        return epoch_millis(data)
    if isinstance(data, Point):
        return str(data)
    if isinstance(data, uuid.UUID):
        return str(data)
    if isinstance(data, Decimal):
        return float(data)

    # Handle dictionaries
    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    # Handle lists, tuples and sets
    if isinstance(data, (list, tuple, set, frozenset)):
        return [prepare_for_storage(item) for item in data]

    # Return primitives as-is
    return data


def id_from_key(key: str, prefix: Optional[str] = None) -> str:
    """Strips the key prefix (``Person:abc`` -> ``abc``)."""
    if prefix and key.startswith(prefix):
        return key[len(prefix):]
    return key.split(":")[-1]
