"""
Deterministic hashing for the audit trail.

Each transition row stores the hash of its own content chained to the hash
of the previous row of the same instance.  Recomputing the chain detects
any edit made behind the ORM's back.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable encoding of Decimal/UUID/datetime."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_transition(
    instance_id: UUID,
    seq: int,
    action: str,
    from_state: str | None,
    to_state: str,
    actor_id: UUID,
    occurred_at: datetime,
    params: dict,
    prev_hash: str | None,
) -> str:
    """
    Hash one audit entry, chained to its predecessor.

    ``prev_hash`` is None for the creation entry and is then replaced by the
    GENESIS marker so the first hash is still deterministic.
    """
    components = [
        str(instance_id),
        str(seq),
        action,
        from_state or "",
        to_state,
        str(actor_id),
        occurred_at.astimezone(timezone.utc).isoformat(),
        hash_payload(params),
        prev_hash or "GENESIS",
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
