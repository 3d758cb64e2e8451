"""
workflow_services.scheduling_service -- SchedulingProviderSelector.

Responsibility:
    Database-facing half of provider selection for the scheduling-exception
    flow: reads solicitations, counts provider load and occupied slots,
    books appointments, and runs the automatic fallback after an exception
    is rejected.  Ranking and slot arithmetic are delegated to the pure
    ``workflow_engines.scheduling`` functions.

Architecture position:
    Services layer.  Flush-only; runs inside the WorkflowEngine's unit of
    work so a failed booking rolls back with the transition that caused it.

Invariants enforced:
    - FindFallback never returns the excluded (just rejected) provider.
    - A slot is occupied when a non-cancelled appointment exists for the
      same provider at the exact timestamp.
    - A fallback that finds no provider or no slot leaves the solicitation
      ``failed``, never ``pending`` or ``processing``.

Failure modes:
    - SolicitationNotFoundError for an unknown solicitation id.
    - NoProviderAvailableError from find_fallback().
    - NoSlotAvailableError from assign_slot().
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workflow_config.schema import SchedulingSettings
from workflow_engines.scheduling import (
    RankingParams,
    find_free_slot,
    rank_candidates,
    roll_forward,
    select_fallback,
    slot_attempts,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.scheduling import (
    AppointmentStatus,
    FallbackOutcome,
    ProviderAssignment,
    ProviderCandidate,
    ProviderRef,
    ScheduledSlot,
    SolicitationSnapshot,
    SolicitationStatus,
)
from workflow_kernel.exceptions import (
    NoProviderAvailableError,
    NoSlotAvailableError,
    SolicitationNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.scheduling import AppointmentModel, SolicitationModel

logger = get_logger("services.scheduling")


class ProviderDirectory(Protocol):
    """Source of providers able to perform a solicitation's procedure."""

    def candidates_for(self, solicitation: SolicitationSnapshot) -> list[ProviderCandidate]:
        ...


class StaticProviderDirectory:
    """In-memory ProviderDirectory keyed by procedure code."""

    def __init__(self, by_procedure: dict[str, Sequence[ProviderCandidate]] | None = None):
        self._by_procedure: dict[str, list[ProviderCandidate]] = {
            code: list(candidates) for code, candidates in (by_procedure or {}).items()
        }

    def add(self, procedure_code: str, *candidates: ProviderCandidate) -> None:
        self._by_procedure.setdefault(procedure_code, []).extend(candidates)

    def candidates_for(self, solicitation: SolicitationSnapshot) -> list[ProviderCandidate]:
        return list(self._by_procedure.get(solicitation.procedure_code, ()))


class SchedulingProviderSelector:
    """
    Contract:
        ``find_fallback`` and ``assign_slot`` only read.  ``book`` and
        ``auto_schedule`` add rows and flush; the caller commits.

    Non-goals:
        Does NOT own provider master data; that comes from the directory.
    """

    def __init__(
        self,
        session: Session,
        directory: ProviderDirectory,
        clock: Clock | None = None,
        settings: SchedulingSettings | None = None,
    ):
        self._session = session
        self._directory = directory
        self._clock = clock or SystemClock()
        self._settings = settings or SchedulingSettings()

    @property
    def ranking_params(self) -> RankingParams:
        return RankingParams(
            priority=self._settings.priority,
            max_distance_km=self._settings.max_distance_km,
            max_provider_load=self._settings.max_provider_load,
            price_ceiling=self._settings.price_ceiling,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_solicitation(self, solicitation_id: UUID) -> SolicitationModel:
        solicitation = self._session.get(SolicitationModel, solicitation_id)
        if solicitation is None:
            raise SolicitationNotFoundError(str(solicitation_id))
        return solicitation

    def provider_load(self, ref: ProviderRef) -> int:
        return self._session.execute(
            select(func.count(AppointmentModel.id)).where(
                AppointmentModel.provider_type == ref.provider_type,
                AppointmentModel.provider_id == ref.provider_id,
                AppointmentModel.status != AppointmentStatus.CANCELLED.value,
            )
        ).scalar_one()

    def candidates(self, solicitation: SolicitationSnapshot) -> list[ProviderCandidate]:
        """Directory candidates with their current appointment load."""
        return [
            replace(candidate, load=self.provider_load(candidate.ref))
            for candidate in self._directory.candidates_for(solicitation)
        ]

    def find_candidate(
        self, solicitation: SolicitationSnapshot, ref: ProviderRef
    ) -> ProviderCandidate | None:
        for candidate in self._directory.candidates_for(solicitation):
            if candidate.ref == ref:
                return candidate
        return None

    def occupied_slots(self, ref: ProviderRef, instants: Iterable[datetime]) -> set[datetime]:
        rows = self._session.execute(
            select(AppointmentModel.scheduled_at).where(
                AppointmentModel.provider_type == ref.provider_type,
                AppointmentModel.provider_id == ref.provider_id,
                AppointmentModel.status != AppointmentStatus.CANCELLED.value,
                AppointmentModel.scheduled_at.in_(list(instants)),
            )
        ).scalars().all()
        return set(rows)

    # ------------------------------------------------------------------
    # FindFallback / AssignSlot
    # ------------------------------------------------------------------

    def rank(
        self,
        solicitation: SolicitationSnapshot,
        exclude: ProviderRef | None = None,
    ) -> list[ProviderAssignment]:
        return rank_candidates(
            self.candidates(solicitation),
            solicitation,
            exclude=exclude,
            params=self.ranking_params,
        )

    def find_fallback(
        self,
        solicitation: SolicitationSnapshot,
        exclude: ProviderRef | None = None,
    ) -> ProviderAssignment:
        """Best eligible provider other than ``exclude``.

        Raises:
            NoProviderAvailableError: No priced, in-range candidate remains.
        """
        best = select_fallback(
            self.candidates(solicitation),
            solicitation,
            exclude=exclude,
            params=self.ranking_params,
        )
        if best is None:
            raise NoProviderAvailableError(
                str(solicitation.solicitation_id),
                excluded=str(exclude) if exclude is not None else None,
            )
        return best

    def assign_slot(self, provider: ProviderRef, preferred_start: datetime) -> ScheduledSlot:
        """First free slot among: preferred start, +1 hour, next day same time.

        A preferred start in the past rolls forward by whole days first.

        Raises:
            NoSlotAvailableError: All three instants are occupied.
        """
        start = roll_forward(preferred_start, self._clock.now())
        attempts = slot_attempts(start)
        found = find_free_slot(start, self.occupied_slots(provider, attempts))
        if found is None:
            raise NoSlotAvailableError(str(provider), start.isoformat())
        attempt, slot_start = found
        return ScheduledSlot(provider=provider, start=slot_start, attempt=attempt)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def book(
        self,
        solicitation: SolicitationModel,
        slot: ScheduledSlot,
        created_by: UUID,
        source_instance_id: UUID | None = None,
    ) -> AppointmentModel:
        appointment = AppointmentModel(
            solicitation_id=solicitation.id,
            provider_type=slot.provider.provider_type,
            provider_id=slot.provider.provider_id,
            scheduled_at=slot.start,
            status=AppointmentStatus.SCHEDULED.value,
            created_by=created_by,
            source_instance_id=source_instance_id,
            created_at=self._clock.now(),
        )
        self._session.add(appointment)
        self._session.flush()

        logger.info(
            "appointment_booked",
            extra={
                "appointment_id": str(appointment.id),
                "solicitation_id": str(solicitation.id),
                "provider": str(slot.provider),
                "scheduled_at": slot.start.isoformat(),
                "slot_attempt": slot.attempt,
            },
        )
        return appointment

    def auto_schedule(
        self,
        solicitation_id: UUID,
        exclude: ProviderRef | None,
        actor_id: UUID,
        source_instance_id: UUID | None = None,
    ) -> FallbackOutcome:
        """Fallback scheduling after an exception rejection.

        Postconditions:
            The solicitation is ``scheduled`` (automatically) with a booked
            appointment, or ``failed`` with the reason in ``failure_code``.
        """
        solicitation = self.get_solicitation(solicitation_id)
        solicitation.status = SolicitationStatus.PROCESSING.value
        self._session.flush()

        logger.info(
            "fallback_scheduling_started",
            extra={
                "solicitation_id": str(solicitation_id),
                "excluded_provider": str(exclude) if exclude is not None else None,
            },
        )

        snapshot = solicitation.to_snapshot()
        assignment: ProviderAssignment | None = None
        try:
            assignment = self.find_fallback(snapshot, exclude)
            slot = self.assign_slot(assignment.ref, snapshot.preferred_start)
        except (NoProviderAvailableError, NoSlotAvailableError) as exc:
            solicitation.status = SolicitationStatus.FAILED.value
            self._session.flush()
            logger.warning(
                "fallback_scheduling_failed",
                extra={
                    "solicitation_id": str(solicitation_id),
                    "failure_code": exc.code,
                    "provider": str(assignment.ref) if assignment else None,
                },
            )
            return FallbackOutcome(
                solicitation_id=solicitation_id,
                status=SolicitationStatus.FAILED,
                assignment=assignment,
                failure_code=exc.code,
            )

        appointment = self.book(solicitation, slot, actor_id, source_instance_id)
        solicitation.status = SolicitationStatus.SCHEDULED.value
        solicitation.scheduled_automatically = True
        self._session.flush()

        logger.info(
            "fallback_scheduling_succeeded",
            extra={
                "solicitation_id": str(solicitation_id),
                "provider": str(assignment.ref),
                "priority": assignment.priority.value,
                "scheduled_at": slot.start.isoformat(),
            },
        )
        return FallbackOutcome(
            solicitation_id=solicitation_id,
            status=SolicitationStatus.SCHEDULED,
            assignment=assignment,
            slot=slot,
            appointment_id=appointment.id,
        )
