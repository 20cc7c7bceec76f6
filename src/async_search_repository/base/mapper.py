# src/async_search_repository/base/mapper.py

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from async_search_repository.base.exceptions import ValidationError
from async_search_repository.base.interfaces import DocumentMapper, RawDocument
from async_search_repository.base.schema import (
    collection_element,
    is_model_class,
    model_hints,
    unwrap_type,
)
from async_search_repository.base.utils import id_from_key, prepare_for_storage

log = logging.getLogger(__name__)

T = TypeVar("T")


def _from_epoch_millis(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            return value
        value = int(stripped)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return value


def _restore(value: Any, hint: Any) -> Any:
    """Undo the storage conversions that pydantic would not undo on its own."""
    if value is None:
        return None
    collection, element = collection_element(hint)
    if collection:
        if isinstance(value, str):
            # Projected collection fields come back as JSON text
            try:
                value = json.loads(value)
            except ValueError:
                return value
        if isinstance(value, list):
            return [_restore(item, element) for item in value]
        return value

    tp = unwrap_type(hint)
    if tp is datetime:
        return _from_epoch_millis(value)
    if tp is date:
        restored = _from_epoch_millis(value)
        return restored.date() if isinstance(restored, datetime) else restored
    if is_model_class(tp):
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return value
        if isinstance(value, dict):
            return _restore_fields(value, tp)
    return value


def _restore_fields(raw: Dict[str, Any], model: type) -> Dict[str, Any]:
    hints = model_hints(model)
    return {
        name: _restore(value, hints[name]) if name in hints else value
        for name, value in raw.items()
    }


class PydanticDocumentMapper(DocumentMapper[Any]):
    """
    Maps JSON documents to pydantic models.

    Datetimes and dates are stored as epoch milliseconds (so numeric indexes can
    range over them) and restored here; everything else is left to pydantic's
    own validation.
    """

    def decode(self, raw: RawDocument, target_type: Type[T]) -> T:
        if raw is None:
            raise ValueError("Cannot decode a missing document.")
        data = _restore_fields(dict(raw), target_type)
        try:
            if hasattr(target_type, "model_validate"):
                return target_type.model_validate(data)
            return target_type(**data)
        except PydanticValidationError as e:
            log.error(f"Failed to decode document into {target_type.__name__}: {e}")
            raise ValidationError(
                f"Stored document does not fit {target_type.__name__}: {e}"
            ) from e

    def encode(self, entity: Any) -> RawDocument:
        data = prepare_for_storage(entity)
        if not isinstance(data, dict):
            raise TypeError(f"Cannot encode {type(entity).__name__} as a document")
        return data

    def attach_key(
        self, entity: T, key: str, id_field: str = "id", prefix: Optional[str] = None
    ) -> T:
        if not hasattr(entity, id_field) or getattr(entity, id_field) is not None:
            return entity
        id_value = id_from_key(key, prefix)
        if hasattr(entity, "model_copy"):
            return entity.model_copy(update={id_field: id_value})
        setattr(entity, id_field, id_value)
        return entity
