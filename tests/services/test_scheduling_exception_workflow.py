"""
Scheduling exceptions: a plan admin asks for a specific provider; approval
books that provider, rejection hands the solicitation to fallback
scheduling with the requested provider excluded.
"""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.instance import ExecutionOptions
from workflow_kernel.exceptions import (
    ForbiddenError,
    InvalidPayloadError,
    NoSlotAvailableError,
    RejectionReasonRequiredError,
    SideEffectFailedError,
    SolicitationNotFoundError,
)
from workflow_kernel.models.scheduling import AppointmentModel, SolicitationModel

ISOLATED_PROCEDURE = "99999999"


@pytest.fixture
def solicitation_row(session_factory):
    """Read back a solicitation and its appointments as plain values."""

    def _read(solicitation_id):
        with session_scope(session_factory) as sess:
            row = sess.get(SolicitationModel, UUID(str(solicitation_id)))
            appointments = sess.execute(
                select(AppointmentModel).where(AppointmentModel.solicitation_id == solicitation_id)
            ).scalars().all()
            return {
                "status": row.status,
                "scheduled_automatically": row.scheduled_automatically,
                "appointments": [
                    (f"{a.provider_type}:{a.provider_id}", a.scheduled_at) for a in appointments
                ],
            }

    return _read


@pytest.fixture
def create_exception(service, plan_admin, exception_payload, make_solicitation):
    def _create(solicitation_id=None, provider="premium", actor=None, **overrides):
        solicitation_id = solicitation_id or make_solicitation()
        return service.create_instance(
            "scheduling_exception",
            exception_payload(solicitation_id, provider, **overrides),
            actor or plan_admin,
        ).instance

    return _create


class TestCreate:
    def test_priced_and_recommended(self, create_exception, providers, health_plan_id):
        instance = create_exception()
        assert instance.state == "pending"
        assert instance.reference.startswith("SEX-2026-")
        assert instance.scope_entity_id == health_plan_id
        assert instance.payload["provider_name"] == "Hospital Premium"
        assert instance.payload["provider_price"] == "450.00"
        assert instance.payload["recommended_provider"] == str(providers["cheap"].ref)
        assert instance.payload["recommended_provider_price"] == "120.00"

    def test_admins_notified(self, create_exception, notifier):
        create_exception()
        (event,) = notifier.of_type("scheduling_exception.create")
        assert event.recipient.role == "admin"
        assert "Hospital Premium" in event.message

    def test_plan_admin_limited_to_own_plan(self, create_exception, make_solicitation):
        foreign = make_solicitation(plan_id=uuid4())
        with pytest.raises(ForbiddenError):
            create_exception(foreign)

    def test_admin_may_cover_any_plan(self, create_exception, make_solicitation, admin):
        foreign = make_solicitation(plan_id=uuid4())
        assert create_exception(foreign, actor=admin).state == "pending"

    @pytest.mark.parametrize("status", ["scheduled", "completed", "cancelled"])
    def test_closed_solicitation_rejected(self, create_exception, make_solicitation, status):
        with pytest.raises(InvalidPayloadError) as exc_info:
            create_exception(make_solicitation(status=status))
        assert f"solicitation is {status}" in exc_info.value.errors[0]

    def test_failed_solicitation_accepted(self, create_exception, make_solicitation):
        assert create_exception(make_solicitation(status="failed")).state == "pending"

    def test_provider_without_price(self, create_exception):
        with pytest.raises(InvalidPayloadError):
            create_exception(provider="unpriced")

    def test_unknown_solicitation(self, service, plan_admin, exception_payload):
        with pytest.raises(SolicitationNotFoundError):
            service.create_instance("scheduling_exception", exception_payload(uuid4()), plan_admin)

    def test_operator_cannot_request(self, create_exception, operator):
        with pytest.raises(ForbiddenError):
            create_exception(actor=operator)


class TestApprove:
    def test_books_requested_provider(
        self, service, create_exception, admin, providers, deterministic_clock, solicitation_row
    ):
        instance = create_exception()
        preferred = deterministic_clock.now() + timedelta(days=3)

        result = service.execute(instance.id, "approve", admin)

        assert result.instance.state == "approved"
        assert result.instance.payload["scheduled_at"] == preferred.isoformat()
        row = solicitation_row(result.instance.payload["solicitation_id"])
        assert row["status"] == "scheduled"
        assert row["appointments"] == [(str(providers["premium"].ref), preferred)]

    def test_occupied_preferred_slot_moves_one_hour(
        self, service, create_exception, make_solicitation, book_appointment,
        admin, providers, deterministic_clock,
    ):
        solicitation_id = make_solicitation()
        preferred = deterministic_clock.now() + timedelta(days=3)
        book_appointment(make_solicitation(), providers["premium"].ref, preferred)

        instance = create_exception(solicitation_id)
        result = service.execute(instance.id, "approve", admin)
        assert result.instance.payload["scheduled_at"] == (preferred + timedelta(hours=1)).isoformat()

    def test_no_slot_rolls_back_approval(
        self, service, create_exception, make_solicitation, book_appointment,
        admin, providers, deterministic_clock, table_counts,
    ):
        solicitation_id = make_solicitation()
        preferred = deterministic_clock.now() + timedelta(days=3)
        other = make_solicitation()
        for at in (preferred, preferred + timedelta(hours=1), preferred + timedelta(days=1)):
            book_appointment(other, providers["premium"].ref, at)

        instance = create_exception(solicitation_id)
        with pytest.raises(SideEffectFailedError) as exc_info:
            service.execute(instance.id, "approve", admin)
        assert isinstance(exc_info.value.__cause__, NoSlotAvailableError)
        assert exc_info.value.effect == "book_exception_appointment"

        assert service.get_instance(instance.id).state == "pending"
        assert table_counts()["appointments"] == 3

    def test_plan_admin_cannot_approve(self, service, create_exception, plan_admin):
        instance = create_exception()
        with pytest.raises(ForbiddenError):
            service.execute(instance.id, "approve", plan_admin)


class TestRejectFallback:
    def test_fallback_books_cheapest_other_provider(
        self, service, create_exception, admin, providers, solicitation_row, notifier
    ):
        instance = create_exception(provider="premium")
        result = service.execute(instance.id, "reject", admin, {"reason": "Fora da rede preferencial"})

        payload = result.instance.payload
        assert result.instance.state == "rejected"
        assert payload["fallback_status"] == "scheduled"
        assert payload["fallback_provider"] == str(providers["cheap"].ref)
        assert payload["rejection_reason"] == "Fora da rede preferencial"

        row = solicitation_row(payload["solicitation_id"])
        assert row["status"] == "scheduled"
        assert row["scheduled_automatically"] is True
        assert [p for p, _ in row["appointments"]] == [str(providers["cheap"].ref)]

        (event,) = notifier.of_type("scheduling_exception.reject")
        assert "Fallback scheduling: scheduled" in event.message

    def test_rejected_provider_is_excluded(self, service, create_exception, admin, providers):
        instance = create_exception(provider="cheap")
        result = service.execute(instance.id, "reject", admin, {"reason": "Sem agenda"})
        assert result.instance.payload["fallback_provider"] == str(providers["mid"].ref)

    def test_fallback_disabled_per_call(
        self, service, create_exception, admin, solicitation_row, table_counts
    ):
        instance = create_exception()
        result = service.execute(
            instance.id,
            "reject",
            admin,
            {"reason": "Manual"},
            options=ExecutionOptions(auto_scheduling_enabled=False),
        )
        assert result.instance.state == "rejected"
        assert result.instance.payload["fallback_status"] == "disabled"
        assert solicitation_row(result.instance.payload["solicitation_id"])["status"] == "pending"
        assert table_counts()["appointments"] == 0

    def test_no_alternative_marks_solicitation_failed(
        self, service, create_exception, make_solicitation, provider_directory,
        providers, admin, solicitation_row,
    ):
        provider_directory.add(ISOLATED_PROCEDURE, providers["premium"])
        solicitation_id = make_solicitation(procedure_code=ISOLATED_PROCEDURE)
        instance = create_exception(solicitation_id)

        result = service.execute(instance.id, "reject", admin, {"reason": "Recusado"})

        assert result.instance.state == "rejected"
        assert result.instance.payload["fallback_status"] == "failed"
        assert result.instance.payload["fallback_failure_code"] == "NO_PROVIDER_AVAILABLE"
        assert solicitation_row(solicitation_id)["status"] == "failed"

    def test_reject_requires_reason(self, service, create_exception, admin, session_factory):
        instance = create_exception()
        with pytest.raises(RejectionReasonRequiredError):
            service.execute(instance.id, "reject", admin)
        with session_scope(session_factory) as sess:
            booked = sess.execute(select(func.count(AppointmentModel.id))).scalar_one()
        assert booked == 0
