"""
VerificationRecordService -- persistence rules for value verification records.

Responsibility:
    Opens pending ValueVerification records and applies resolutions to them,
    enforcing the two-actor rule and the pending-only lifecycle.

Architecture position:
    Kernel > Services.  Called by the WorkflowEngine's creation hook and
    side effect for the ValueVerification kind, and by the engine's value
    gate check.  Flush-only.

Invariants enforced:
    - verifier_id != requester_id (SelfVerificationNotAllowedError).
    - Only pending records are resolved (AlreadyResolvedError); resolved
      rows are additionally frozen by an ORM listener.
    - A rejection carries a non-empty reason.
    - An approval without an explicit value verifies the original value.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.verification import (
    VERIFICATION_TRANSITIONS,
    EntityRef,
    VerificationDecision,
    VerificationStatus,
)
from workflow_kernel.exceptions import (
    AlreadyResolvedError,
    RejectionReasonRequiredError,
    SelfVerificationNotAllowedError,
    VerificationNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.verification import ValueVerificationModel

logger = get_logger("services.verification")


class VerificationRecordService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def open(
        self,
        instance_id: UUID,
        entity: EntityRef,
        value_type: str,
        original_value: Decimal,
        requester_id: UUID,
        notes: str | None = None,
    ) -> ValueVerificationModel:
        record = ValueVerificationModel(
            instance_id=instance_id,
            entity_kind=entity.kind,
            entity_id=entity.entity_id,
            value_type=value_type,
            original_value=original_value,
            requester_id=requester_id,
            status=VerificationStatus.PENDING.value,
            notes=notes,
            created_at=self._clock.now(),
        )
        self._session.add(record)
        self._session.flush()

        logger.info(
            "value_verification_opened",
            extra={
                "record_id": str(record.id),
                "entity_kind": entity.kind,
                "entity_id": str(entity.entity_id),
                "original_value": str(original_value),
            },
        )
        return record

    def get(self, record_id: UUID) -> ValueVerificationModel:
        record = self._session.get(ValueVerificationModel, record_id)
        if record is None:
            raise VerificationNotFoundError(str(record_id))
        return record

    def for_instance(self, instance_id: UUID) -> ValueVerificationModel:
        record = self._session.execute(
            select(ValueVerificationModel).where(
                ValueVerificationModel.instance_id == instance_id
            )
        ).scalar_one_or_none()
        if record is None:
            raise VerificationNotFoundError(str(instance_id))
        return record

    def latest_for_entity(self, entity_id: UUID) -> ValueVerificationModel | None:
        return self._session.execute(
            select(ValueVerificationModel)
            .where(ValueVerificationModel.entity_id == entity_id)
            .order_by(ValueVerificationModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def ensure_resolvable(self, record: ValueVerificationModel, verifier_id: UUID) -> None:
        """Raise unless ``verifier_id`` may resolve ``record`` right now."""
        if record.status != VerificationStatus.PENDING.value:
            raise AlreadyResolvedError(str(record.id), record.status)
        if verifier_id == record.requester_id:
            raise SelfVerificationNotAllowedError(str(record.id), str(verifier_id))

    def apply_resolution(
        self,
        record: ValueVerificationModel,
        verifier_id: UUID,
        decision: VerificationDecision,
        verified_value: Decimal | None = None,
        reason: str | None = None,
    ) -> ValueVerificationModel:
        """
        Resolve a pending record.

        Postconditions:
            approve -> status verified, verified_value set (original value
            when none given).  reject -> status rejected with reason.
        """
        self.ensure_resolvable(record, verifier_id)

        if decision == VerificationDecision.APPROVE:
            target = VerificationStatus.VERIFIED
        else:
            target = VerificationStatus.REJECTED
            if not reason or not reason.strip():
                raise RejectionReasonRequiredError(decision.action)

        # Lifecycle table is the single source of legal moves.
        assert target in VERIFICATION_TRANSITIONS[VerificationStatus.PENDING]

        record.status = target.value
        record.verifier_id = verifier_id
        record.resolved_at = self._clock.now()
        if target == VerificationStatus.VERIFIED:
            record.verified_value = (
                verified_value if verified_value is not None else record.original_value
            )
        else:
            record.rejection_reason = reason.strip()
        self._session.flush()

        logger.info(
            "value_verification_resolved",
            extra={
                "record_id": str(record.id),
                "status": record.status,
                "verifier_id": str(verifier_id),
                "verified_value": (
                    str(record.verified_value) if record.verified_value is not None else None
                ),
            },
        )
        return record
