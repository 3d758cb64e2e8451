"""
Scheduling domain types (``workflow_kernel.domain.scheduling``).

Value objects used by the scheduling-exception flow and by
``workflow_engines.scheduling``: provider references and candidates, the
solicitation snapshot a fallback is computed for, and the outcome types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class SchedulingPriority(str, Enum):
    """How FindFallback ranks eligible providers."""

    COST = "cost"
    DISTANCE = "distance"
    AVAILABILITY = "availability"
    BALANCED = "balanced"


class SolicitationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


@dataclass(frozen=True, order=True)
class ProviderRef:
    """A clinic or professional, identified by type and id."""

    provider_type: str
    provider_id: UUID

    def __str__(self) -> str:
        return f"{self.provider_type}:{self.provider_id}"


@dataclass(frozen=True)
class ProviderCandidate:
    """A provider able to perform a procedure, as offered by the directory.

    ``price`` is None when the provider has no price for the procedure;
    such candidates are never selected.  ``load`` is the number of
    non-cancelled appointments already booked with the provider.
    """

    ref: ProviderRef
    name: str
    price: Decimal | None
    latitude: float | None = None
    longitude: float | None = None
    load: int = 0


@dataclass(frozen=True)
class SolicitationSnapshot:
    solicitation_id: UUID
    procedure_code: str
    preferred_start: datetime
    status: SolicitationStatus
    health_plan_id: UUID | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class ProviderAssignment:
    candidate: ProviderCandidate
    priority: SchedulingPriority
    distance_km: float | None = None
    score: float | None = None

    @property
    def ref(self) -> ProviderRef:
        return self.candidate.ref


@dataclass(frozen=True)
class ScheduledSlot:
    provider: ProviderRef
    start: datetime
    attempt: int


@dataclass(frozen=True)
class FallbackOutcome:
    """Result of an automatic fallback attempt after an exception rejection."""

    solicitation_id: UUID
    status: SolicitationStatus
    assignment: ProviderAssignment | None = None
    slot: ScheduledSlot | None = None
    appointment_id: UUID | None = None
    failure_code: str | None = None

    @property
    def scheduled(self) -> bool:
        return self.status == SolicitationStatus.SCHEDULED
