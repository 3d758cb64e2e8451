"""
AuditTrailService -- append-only, hash-chained transition log per instance.

Responsibility:
    Records one TransitionModel row for every state change (and one for the
    creation of the instance), and validates the stored chain on demand.

Architecture position:
    Kernel > Services -- imperative shell called by the WorkflowEngine in the
    same session that writes the instance state.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners).
    - Per-instance ordering: ``seq`` is last seq + 1 under the instance's
      row lock / version check; UNIQUE(instance_id, seq) rejects a racing
      duplicate.
    - Chain integrity: ``hash = H(content, prev_hash)``.

Failure modes:
    - AuditChainBrokenError from validate_chain() when a stored hash or
      link does not match.

Audit relevance:
    The transition table is the authoritative history; replaying it from the
    kind's initial state reproduces the instance's current state.
"""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import TransitionRecord
from workflow_kernel.domain.values import json_safe
from workflow_kernel.exceptions import AuditChainBrokenError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow import TransitionModel
from workflow_kernel.utils.hashing import hash_transition

logger = get_logger("services.audit_trail")

CREATE_ACTION = "create"


class AuditTrailService:
    """
    Contract:
        ``record()`` adds a row to the session and flushes it; it never
        commits.

    Non-goals:
        Does NOT decide whether a transition is legal; the engine does.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _last_entry(self, instance_id: UUID) -> TransitionModel | None:
        return self._session.execute(
            select(TransitionModel)
            .where(TransitionModel.instance_id == instance_id)
            .order_by(TransitionModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        instance_id: UUID,
        action: str,
        from_state: str | None,
        to_state: str,
        actor: ActorContext,
        notes: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> TransitionModel:
        """
        Append one audit entry for ``instance_id``.

        Postconditions:
            The new row is flushed with ``seq = previous seq + 1`` (1 for the
            first row) and a hash linked to the previous row's hash.
        """
        last = self._last_entry(instance_id)
        seq = 1 if last is None else last.seq + 1
        prev_hash = None if last is None else last.hash

        occurred_at = self._clock.now()
        safe_params = json_safe(dict(params or {}))
        entry = TransitionModel(
            instance_id=instance_id,
            seq=seq,
            action=action,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor.actor_id,
            actor_roles=sorted(actor.roles),
            notes=notes,
            params=safe_params,
            occurred_at=occurred_at,
            prev_hash=prev_hash,
            hash=hash_transition(
                instance_id=instance_id,
                seq=seq,
                action=action,
                from_state=from_state,
                to_state=to_state,
                actor_id=actor.actor_id,
                occurred_at=occurred_at,
                params=safe_params,
                prev_hash=prev_hash,
            ),
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "audit_entry_recorded",
            extra={
                "instance_id": str(instance_id),
                "seq": seq,
                "from_state": from_state,
                "to_state": to_state,
            },
        )
        return entry

    def entries(self, instance_id: UUID) -> tuple[TransitionRecord, ...]:
        rows = self._session.execute(
            select(TransitionModel)
            .where(TransitionModel.instance_id == instance_id)
            .order_by(TransitionModel.seq)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def validate_chain(self, instance_id: UUID) -> bool:
        """
        Recompute every hash of the instance's trail.

        Raises:
            AuditChainBrokenError: On a seq gap, a broken prev_hash link or a
                hash that no longer matches the row content.
        """
        prev_hash: str | None = None
        for expected_seq, entry in enumerate(self.entries(instance_id), start=1):
            if entry.seq != expected_seq:
                raise AuditChainBrokenError(
                    instance_id, entry.seq, f"expected seq {expected_seq}"
                )
            if entry.prev_hash != prev_hash:
                raise AuditChainBrokenError(
                    instance_id, entry.seq, "prev_hash does not link to predecessor"
                )
            recomputed = hash_transition(
                instance_id=entry.instance_id,
                seq=entry.seq,
                action=entry.action,
                from_state=entry.from_state,
                to_state=entry.to_state,
                actor_id=entry.actor_id,
                occurred_at=entry.occurred_at,
                params=dict(entry.params),
                prev_hash=entry.prev_hash,
            )
            if recomputed != entry.hash:
                raise AuditChainBrokenError(
                    instance_id, entry.seq, "stored hash does not match content"
                )
            prev_hash = entry.hash
        return True
