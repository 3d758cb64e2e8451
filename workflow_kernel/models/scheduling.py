"""
Module: workflow_kernel.models.scheduling
Responsibility: ORM persistence for scheduling solicitations and appointments,
    the rows the scheduling-exception flow reads and writes.

Invariants enforced:
    - Status columns limited to their enum values by CHECK constraints.
    - A provider slot counts as occupied when a non-cancelled appointment
      exists for the same provider and exact timestamp (enforced by the
      slot search, indexed here).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.scheduling import SolicitationSnapshot


class SolicitationModel(Base):
    """A patient's request for a procedure awaiting an appointment."""

    __tablename__ = "solicitations"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'scheduled', 'completed', "
            "'cancelled', 'failed')",
            name="chk_solicitation_status",
        ),
        Index("idx_solicitations_health_plan", "health_plan_id"),
    )

    health_plan_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    patient_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    procedure_code: Mapped[str] = mapped_column(String(20), nullable=False)
    preferred_start: Mapped[datetime] = mapped_column(nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    scheduled_automatically: Mapped[bool] = mapped_column(nullable=False, default=False)
    requested_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_snapshot(self) -> SolicitationSnapshot:
        from workflow_kernel.domain.scheduling import SolicitationSnapshot, SolicitationStatus

        return SolicitationSnapshot(
            solicitation_id=self.id,
            procedure_code=self.procedure_code,
            preferred_start=self.preferred_start,
            status=SolicitationStatus(self.status),
            health_plan_id=self.health_plan_id,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class AppointmentModel(Base):
    __tablename__ = "appointments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'completed', 'cancelled', 'missed')",
            name="chk_appointment_status",
        ),
        Index(
            "idx_appointments_provider_slot",
            "provider_type",
            "provider_id",
            "scheduled_at",
        ),
    )

    solicitation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("solicitations.id"),
        nullable=False,
    )
    provider_type: Mapped[str] = mapped_column(String(30), nullable=False)
    provider_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    source_instance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
