"""
Payload value helpers.

Workflow payloads are stored as JSON.  Monetary amounts travel as decimal
strings so nothing is ever rounded through float; identifiers and
timestamps travel as strings too.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Parse a payload amount.  Floats are rejected to avoid binary rounding."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"{field_name} must be a decimal string or integer, not {type(value).__name__}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, AttributeError):
            raise ValueError(f"{field_name} is not a valid amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite")
    return result


def to_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def json_safe(value: Any) -> Any:
    """Convert a payload tree to JSON-native types."""
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (UUID,)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
