"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- A file-backed SQLite database per test (or PostgreSQL via DATABASE_URL)
- WorkflowService wired with a deterministic clock and a recording notifier
- Actor factories for every role used by the bundled workflow definitions
- Solicitation / provider fixtures for the scheduling-exception flow

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of a PostgreSQL test database.  When unset,
  every test gets its own SQLite file under tmp_path.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text

from workflow_config import get_active_config
from workflow_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    make_session_factory,
    session_scope,
)
from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.scheduling import ProviderCandidate, ProviderRef
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.models.scheduling import AppointmentModel, SolicitationModel
from workflow_services.scheduling_service import StaticProviderDirectory
from workflow_services.workflow_service import WorkflowService

PROCEDURE_CODE = "40301630"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.execute(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL when set, otherwise a fresh SQLite file for this test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'workflow.db'}"


@pytest.fixture
def db_engine(tmp_path):
    eng = build_engine(get_database_url(tmp_path), sqlite_busy_timeout=30.0)
    if eng.dialect.name == "postgresql":
        drop_tables(eng)
    create_tables(eng)
    yield eng
    if eng.dialect.name == "postgresql":
        drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def session(session_factory):
    """A bare session for direct kernel-service tests.  Rolled back on exit."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def table_counts(session_factory):
    """Row counts per table, read in a fresh session."""

    def _counts() -> dict[str, int]:
        with session_scope(session_factory) as sess:
            return {
                table: sess.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
                for table in (
                    "workflow_instances",
                    "workflow_transitions",
                    "value_verifications",
                    "appointments",
                )
            }

    return _counts


# =============================================================================
# Clock, config, notifier
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def workflow_config():
    return get_active_config()


class RecordingNotifier:
    """Notifier that keeps every dispatched event in memory."""

    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# =============================================================================
# Providers and solicitations
# =============================================================================


@pytest.fixture
def health_plan_id() -> UUID:
    return uuid4()


@pytest.fixture
def providers():
    """Three clinics for PROCEDURE_CODE plus one that has no price for it."""
    return {
        "cheap": ProviderCandidate(
            ref=ProviderRef("clinic", uuid4()),
            name="Clinica Economica",
            price=Decimal("120.00"),
            latitude=-23.55,
            longitude=-46.63,
        ),
        "mid": ProviderCandidate(
            ref=ProviderRef("clinic", uuid4()),
            name="Clinica Central",
            price=Decimal("180.00"),
            latitude=-23.56,
            longitude=-46.64,
        ),
        "premium": ProviderCandidate(
            ref=ProviderRef("clinic", uuid4()),
            name="Hospital Premium",
            price=Decimal("450.00"),
            latitude=-23.58,
            longitude=-46.66,
        ),
        "unpriced": ProviderCandidate(
            ref=ProviderRef("professional", uuid4()),
            name="Dr. Sem Tabela",
            price=None,
        ),
    }


@pytest.fixture
def provider_directory(providers):
    directory = StaticProviderDirectory()
    directory.add(PROCEDURE_CODE, *providers.values())
    return directory


@pytest.fixture
def make_solicitation(session_factory, deterministic_clock, health_plan_id):
    """Insert a solicitation and return its id."""

    def _make(
        status: str = "pending",
        preferred_start: datetime | None = None,
        plan_id: UUID | None = None,
        procedure_code: str = PROCEDURE_CODE,
    ) -> UUID:
        now = deterministic_clock.now()
        with session_scope(session_factory) as sess:
            solicitation = SolicitationModel(
                id=uuid4(),
                health_plan_id=plan_id or health_plan_id,
                patient_id=uuid4(),
                procedure_code=procedure_code,
                preferred_start=preferred_start or (now + timedelta(days=3)),
                latitude=-23.55,
                longitude=-46.63,
                status=status,
                created_at=now,
            )
            sess.add(solicitation)
            sess.flush()
            return solicitation.id

    return _make


@pytest.fixture
def book_appointment(session_factory, deterministic_clock):
    """Occupy a provider slot directly."""

    def _book(solicitation_id: UUID, provider: ProviderRef, at: datetime) -> UUID:
        with session_scope(session_factory) as sess:
            appointment = AppointmentModel(
                id=uuid4(),
                solicitation_id=solicitation_id,
                provider_type=provider.provider_type,
                provider_id=provider.provider_id,
                scheduled_at=at,
                status="scheduled",
                created_by=uuid4(),
                created_at=deterministic_clock.now(),
            )
            sess.add(appointment)
            sess.flush()
            return appointment.id

    return _book


# =============================================================================
# Service
# =============================================================================


@pytest.fixture
def service(session_factory, workflow_config, notifier, deterministic_clock, provider_directory):
    return WorkflowService(
        session_factory,
        config=workflow_config,
        notifier=notifier,
        clock=deterministic_clock,
        provider_directory=provider_directory,
    )


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def make_actor():
    def _make(*roles: str, entity_id: UUID | None = None, name: str | None = None) -> ActorContext:
        return ActorContext.of(uuid4(), *roles, entity_id=entity_id, name=name)

    return _make


@pytest.fixture
def commercial(make_actor):
    return make_actor("commercial", name="Carla Commercial")


@pytest.fixture
def legal(make_actor):
    return make_actor("legal", name="Lucas Legal")


@pytest.fixture
def director(make_actor):
    return make_actor("director", name="Diana Director")


@pytest.fixture
def second_director(make_actor):
    return make_actor("director", name="Davi Director")


@pytest.fixture
def network_manager(make_actor):
    return make_actor("network_manager", name="Nina Network")


@pytest.fixture
def operator(make_actor):
    return make_actor("operator", name="Otto Operator")


@pytest.fixture
def billing(make_actor):
    return make_actor("billing", name="Bia Billing")


@pytest.fixture
def admin(make_actor):
    return make_actor("admin", name="Ana Admin")


@pytest.fixture
def plan_admin(make_actor, health_plan_id):
    return make_actor("plan_admin", entity_id=health_plan_id, name="Paulo PlanAdmin")


@pytest.fixture
def viewer(make_actor):
    return make_actor("viewer")


# =============================================================================
# Payload builders
# =============================================================================


@pytest.fixture
def contract_payload():
    def _make(**overrides):
        payload = {
            "title": "Prestacao de servicos 2026",
            "contractable_type": "clinic",
            "contractable_id": uuid4(),
            "value": Decimal("150000.00"),
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def deliberation_payload(health_plan_id):
    def _make(**overrides):
        payload = {
            "health_plan_id": health_plan_id,
            "negotiated_value": Decimal("1000.00"),
            "medlar_percentage": Decimal("10"),
            "description": "Cirurgia bariatrica",
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def negotiation_payload():
    def _make(**overrides):
        payload = {
            "contract_id": uuid4(),
            "procedure_code": PROCEDURE_CODE,
            "requested_value": Decimal("850.00"),
            "justification": "Paciente com urgencia clinica documentada",
            "entity_id": uuid4(),
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def exception_payload(providers):
    def _make(solicitation_id: UUID, provider: str = "premium", **overrides):
        ref = providers[provider].ref
        payload = {
            "solicitation_id": solicitation_id,
            "provider_type": ref.provider_type,
            "provider_id": ref.provider_id,
            "justification": "Paciente ja acompanhado por este hospital",
        }
        payload.update(overrides)
        return payload

    return _make
