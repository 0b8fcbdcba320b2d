"""
Utility functions for mapping between API field names and the internal schema

The API speaks camelCase (``stateVoterId``); models and the import pipeline use
snake_case column names (``state_voter_id``).
"""
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    """stateVoterId -> state_voter_id (snake_case input is returned unchanged)"""
    return _CAMEL_BOUNDARY.sub("_", name.strip()).lower()


def to_camel(name: str) -> str:
    """state_voter_id -> stateVoterId"""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def model_to_dict(obj: Any, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Serialize an ORM row to a camelCase dict of its columns.

    Args:
        obj: SQLAlchemy model instance
        exclude: Column names (snake_case) to leave out

    Returns:
        Dictionary keyed by camelCase column name
    """
    skip = set(exclude)
    return {
        to_camel(column.key): _json_value(getattr(obj, column.key))
        for column in obj.__table__.columns
        if column.key not in skip
    }


def map_payload_fields(
    payload: Dict[str, Any],
    allowed: Iterable[str],
    protected: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """
    Map a camelCase request body onto model columns.

    Unknown and protected keys are dropped.

    Args:
        payload: Request body
        allowed: Column names that may be written
        protected: Column names that may never be written from a request

    Returns:
        snake_case column -> value
    """
    allowed_set = set(allowed) - set(protected or ())
    mapped: Dict[str, Any] = {}
    for key, value in payload.items():
        column = to_snake(key)
        if column in allowed_set:
            mapped[column] = value
    return mapped
