"""Firestore serialization helpers.

Handles conversion between Python snake_case and Firestore camelCase,
and parsing of document snapshots into models.
"""

import re
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def to_snake(string: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", string).lower()


def model_to_firestore(model: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    """Convert a pydantic model to Firestore document format.

    - Converts field names from snake_case to camelCase
    - Converts enums to their string values
    - Drops the ``id`` field, which lives in the document path
    """
    data = model.model_dump(mode="python", exclude={"id", *(exclude or set())})
    return fields_to_firestore(data)


def fields_to_firestore(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a snake_case field mapping for a create or update call."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        result[to_camel(key)] = _to_firestore_value(value)
    return result


def _to_firestore_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return fields_to_firestore(value)
    if isinstance(value, list):
        return [_to_firestore_value(item) for item in value]
    return value


def firestore_to_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Convert Firestore document to snake_case dict for pydantic parsing."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        snake_key = to_snake(key)
        if isinstance(value, dict):
            result[snake_key] = firestore_to_dict(value)
        else:
            result[snake_key] = value
    return result


def document_to_model(doc_id: str, data: dict[str, Any] | None, model: type[M]) -> M:
    """Parse a Firestore document into ``model``, carrying the document id."""
    fields = firestore_to_dict(data or {})
    fields["id"] = doc_id
    return model.model_validate(fields)
