"""
Double-verification domain types (``workflow_kernel.domain.verification``).

A ValueVerificationRecord asks an independent second actor to confirm or
reject a monetary figure before the workflow that owns it may be approved.

Invariants enforced
-------------------
* The verifier is never the requester (checked by the gate and the
  ``verifier_not_requester`` guard).
* ``VERIFICATION_TRANSITIONS`` is the only lifecycle; resolved records
  have no outgoing edges and are immutable in storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class VerificationDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def action(self) -> str:
        """Workflow action of the ValueVerification kind for this decision."""
        return "verify" if self is VerificationDecision.APPROVE else "reject"


VERIFICATION_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.PENDING: frozenset({
        VerificationStatus.VERIFIED,
        VerificationStatus.REJECTED,
    }),
    VerificationStatus.VERIFIED: frozenset(),
    VerificationStatus.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class EntityRef:
    """The business object whose value is being verified."""

    kind: str
    entity_id: UUID


@dataclass(frozen=True)
class ValueVerificationRecord:
    id: UUID
    instance_id: UUID
    entity: EntityRef
    value_type: str
    original_value: Decimal
    requester_id: UUID
    status: VerificationStatus
    created_at: datetime
    verified_value: Decimal | None = None
    verifier_id: UUID | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == VerificationStatus.PENDING
