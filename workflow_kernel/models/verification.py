"""
Module: workflow_kernel.models.verification
Responsibility: ORM persistence for value verification records.

Invariants enforced:
    - One record per ValueVerification workflow instance (UNIQUE instance_id).
    - Status limited to pending/verified/rejected by CHECK constraint.
    - Once the stored status has left ``pending`` the row is immutable:
      the before_update listener compares against the loaded status, and
      before_delete always refuses.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.verification import ValueVerificationRecord


class ValueVerificationModel(Base):
    __tablename__ = "value_verifications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'verified', 'rejected')",
            name="chk_value_verification_status",
        ),
        CheckConstraint(
            "verifier_id IS NULL OR verifier_id <> requester_id",
            name="chk_value_verification_not_self",
        ),
        UniqueConstraint("instance_id", name="uq_value_verification_instance"),
        Index("idx_value_verification_entity", "entity_id", "created_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    entity_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    value_type: Mapped[str] = mapped_column(String(50), nullable=False)
    original_value: Mapped[Decimal] = mapped_column(nullable=False)
    verified_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    verifier_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> ValueVerificationRecord:
        from workflow_kernel.domain.verification import (
            EntityRef,
            ValueVerificationRecord as RecordDTO,
            VerificationStatus,
        )

        return RecordDTO(
            id=self.id,
            instance_id=self.instance_id,
            entity=EntityRef(kind=self.entity_kind, entity_id=self.entity_id),
            value_type=self.value_type,
            original_value=self.original_value,
            requester_id=self.requester_id,
            status=VerificationStatus(self.status),
            created_at=self.created_at,
            verified_value=self.verified_value,
            verifier_id=self.verifier_id,
            notes=self.notes,
            rejection_reason=self.rejection_reason,
            resolved_at=self.resolved_at,
        )


@event.listens_for(ValueVerificationModel, "before_update")
def prevent_resolved_verification_update(mapper, connection, target):
    history = inspect(target).attrs.status.history
    stored = history.deleted[0] if history.deleted else target.status
    if stored != "pending":
        raise ImmutabilityViolationError(
            entity_type="ValueVerification",
            entity_id=str(target.id),
            reason=f"Record is {stored} -- resolved verifications cannot change",
        )


@event.listens_for(ValueVerificationModel, "before_delete")
def prevent_verification_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ValueVerification",
        entity_id=str(target.id),
        reason="Verification records cannot be deleted",
    )
