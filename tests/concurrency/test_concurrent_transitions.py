"""
Per-instance single writer under real threads.

Several actors fire the same action at the same instance at once.  Exactly
one must win; every loser must see a typed error (never a half-written
transition), and the audit trail must hold exactly one entry for the race.

Each thread goes through WorkflowService, so each gets its own session and
the version-column / UNIQUE(instance_id, seq) checks decide the winner.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest

from workflow_kernel.domain.verification import EntityRef, VerificationStatus
from workflow_kernel.exceptions import (
    AlreadyResolvedError,
    ConcurrentTransitionError,
    InvalidStateError,
)
from workflow_services.guards import GuardExecutor
from workflow_services.workflow_engine import WorkflowEngine

pytestmark = pytest.mark.slow_locks

THREADS = 4


def _race(fn, n=THREADS):
    """Run ``fn(i)`` in ``n`` threads released together; return outcomes."""
    barrier = Barrier(n)

    def _run(i):
        barrier.wait()
        try:
            return ("ok", fn(i))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_run, range(n)))


class TestConcurrentApproval:
    def test_single_winner(self, service, network_manager, deliberation_payload):
        instance = service.create_instance(
            "deliberation", deliberation_payload(), network_manager
        ).instance

        outcomes = _race(lambda i: service.execute(instance.id, "approve", network_manager))

        winners = [r for kind, r in outcomes if kind == "ok"]
        losers = [r for kind, r in outcomes if kind == "error"]
        assert len(winners) == 1
        assert all(isinstance(e, InvalidStateError) for e in losers), losers

        final = service.get_instance(instance.id)
        assert final.state == "approved"
        assert [e.action for e in final.trail] == ["create", "approve"]
        assert service.verify_audit_trail(instance.id) == "approved"

    def test_conflicting_actions(self, service, network_manager, deliberation_payload):
        instance = service.create_instance(
            "deliberation", deliberation_payload(), network_manager
        ).instance

        def act(i):
            if i % 2:
                return service.execute(instance.id, "approve", network_manager)
            return service.execute(instance.id, "reject", network_manager, {"reason": f"r{i}"})

        outcomes = _race(act)
        assert sum(1 for kind, _ in outcomes if kind == "ok") == 1

        final = service.get_instance(instance.id)
        assert final.state in ("approved", "rejected")
        assert len(final.trail) == 2
        assert service.verify_audit_trail(instance.id) == final.state


class TestConcurrentVerification:
    def test_single_resolution(self, service, commercial, make_actor):
        gate = service.require_verification(
            commercial, EntityRef("contract", uuid4()), Decimal("900")
        )
        directors = [make_actor("director") for _ in range(THREADS)]

        outcomes = _race(
            lambda i: service.resolve_verification(gate.record.id, directors[i], "approve")
        )

        winners = [r for kind, r in outcomes if kind == "ok"]
        losers = [r for kind, r in outcomes if kind == "error"]
        assert len(winners) == 1
        assert all(isinstance(e, (AlreadyResolvedError, InvalidStateError)) for e in losers), losers

        record = service.get_verification(gate.record.id)
        assert record.status == VerificationStatus.VERIFIED
        assert record.verifier_id == winners[0].record.verifier_id


class TestRetryLoop:
    def test_lost_race_is_retried(
        self, service, monkeypatch, captured_logs, network_manager, deliberation_payload
    ):
        instance = service.create_instance(
            "deliberation", deliberation_payload(), network_manager
        ).instance
        original = WorkflowEngine.execute
        calls = []

        def flaky(self, request):
            calls.append(request.action)
            if len(calls) == 1:
                raise ConcurrentTransitionError(str(request.instance_id))
            return original(self, request)

        monkeypatch.setattr(WorkflowEngine, "execute", flaky)
        result = service.execute(instance.id, "approve", network_manager)

        assert result.instance.state == "approved"
        assert calls == ["approve", "approve"]
        retries = [r for r in captured_logs() if r["message"] == "concurrent_transition_retry"]
        assert [r["attempt"] for r in retries] == [1]
        assert retries[0]["conflict_instance_id"] == str(instance.id)

    def test_retries_exhausted(
        self, service, monkeypatch, captured_logs, network_manager, deliberation_payload
    ):
        instance = service.create_instance(
            "deliberation", deliberation_payload(), network_manager
        ).instance
        calls = []

        def always_conflicts(self, request):
            calls.append(request.action)
            raise ConcurrentTransitionError(str(request.instance_id))

        monkeypatch.setattr(WorkflowEngine, "execute", always_conflicts)
        with pytest.raises(ConcurrentTransitionError):
            service.execute(instance.id, "approve", network_manager)

        assert len(calls) == service.config.settings.max_transition_attempts
        retries = [r for r in captured_logs() if r["message"] == "concurrent_transition_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]
        assert service.get_instance(instance.id).state == "pending_approval"

    def test_stale_write_is_retried_as_conflict(
        self,
        service,
        db_engine,
        monkeypatch,
        captured_logs,
        network_manager,
        deliberation_payload,
    ):
        """A write that loses after its read fails typed, then re-validates."""
        if db_engine.dialect.name == "postgresql":
            pytest.skip("the row lock would block the interleaved writer")
        instance = service.create_instance(
            "deliberation", deliberation_payload(), network_manager
        ).instance
        original = GuardExecutor.check_all
        interleaved = []

        def commit_rival_approval(self, guard_names, ctx):
            original(self, guard_names, ctx)
            if not interleaved:
                interleaved.append(ctx.action)
                service.execute(instance.id, "approve", network_manager)

        monkeypatch.setattr(GuardExecutor, "check_all", commit_rival_approval)
        with pytest.raises(InvalidStateError):
            service.execute(
                instance.id, "reject", network_manager, {"reason": "Valor acima da tabela"}
            )

        assert interleaved == ["reject"]
        retries = [r for r in captured_logs() if r["message"] == "concurrent_transition_retry"]
        assert [r["conflict_instance_id"] for r in retries] == [str(instance.id)]
        final = service.get_instance(instance.id)
        assert final.state == "approved"
        assert [e.action for e in final.trail] == ["create", "approve"]
        assert service.verify_audit_trail(instance.id) == "approved"
