"""
Pure transition legality, authorization and replay.

Runs against the bundled definitions; no database.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from workflow_engines.transitions import (
    authorize_actor,
    changed_frozen_fields,
    is_authorized,
    missing_required_fields,
    replay_trail,
    resolve_transition,
)
from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.instance import TransitionRecord
from workflow_kernel.domain.workflow import WorkflowKind
from workflow_kernel.exceptions import (
    AuditChainBrokenError,
    ForbiddenError,
    InvalidStateError,
)


@pytest.fixture
def registry(workflow_config):
    return workflow_config.registry()


@pytest.fixture
def contract(registry):
    return registry.get(WorkflowKind.CONTRACT)


@pytest.fixture
def deliberation(registry):
    return registry.get(WorkflowKind.DELIBERATION)


def _entry(seq, action, from_state, to_state, instance_id):
    return TransitionRecord(
        instance_id=instance_id,
        seq=seq,
        action=action,
        from_state=from_state,
        to_state=to_state,
        actor_id=uuid4(),
        actor_roles=("legal",),
        occurred_at=datetime(2026, 3, 2, 9, 0, seq, tzinfo=timezone.utc),
    )


class TestResolveTransition:
    def test_legal_action_resolves(self, contract):
        t = resolve_transition(contract, "draft", "submit")
        assert t.to_state == "pending_approval"

    def test_action_from_wrong_state(self, contract):
        with pytest.raises(InvalidStateError) as exc_info:
            resolve_transition(contract, "draft", "director_approve")
        assert exc_info.value.current_state == "draft"
        assert exc_info.value.action == "director_approve"

    def test_unknown_action(self, contract):
        with pytest.raises(InvalidStateError):
            resolve_transition(contract, "draft", "teleport")

    @pytest.mark.parametrize("state", ["approved", "cancelled"])
    def test_terminal_state_accepts_nothing(self, contract, state):
        assert contract.legal_transitions(state) == []
        with pytest.raises(InvalidStateError):
            resolve_transition(contract, state, "cancel")

    def test_legal_reject_is_a_self_loop(self, contract):
        t = resolve_transition(contract, "legal_review", "legal_reject")
        assert t.is_self_loop
        assert t.to_state == "legal_review"

    def test_cancel_declared_from_every_open_contract_state(self, contract):
        for state in contract.states:
            if contract.is_terminal(state):
                continue
            assert resolve_transition(contract, state, "cancel").to_state == "cancelled"

    def test_deliberation_approved_is_not_terminal(self, deliberation):
        actions = {t.action for t in deliberation.legal_transitions("approved")}
        assert actions == {"cancel", "mark_billed"}


class TestAuthorization:
    def test_role_holder_authorized(self, contract):
        t = resolve_transition(contract, "legal_review", "legal_approve")
        legal = ActorContext.of(uuid4(), "legal")
        assert is_authorized(t, legal, created_by=uuid4())

    def test_other_role_forbidden(self, contract):
        t = resolve_transition(contract, "legal_review", "legal_approve")
        commercial = ActorContext.of(uuid4(), "commercial")
        with pytest.raises(ForbiddenError) as exc_info:
            authorize_actor(t, commercial, created_by=commercial.actor_id)
        assert exc_info.value.allowed_roles == ["legal"]

    def test_creator_allowed_where_transition_allows_it(self, contract):
        t = resolve_transition(contract, "draft", "submit")
        creator = ActorContext.of(uuid4(), "admin")
        assert is_authorized(t, creator, created_by=creator.actor_id)

    def test_creator_not_allowed_without_flag(self, contract):
        t = resolve_transition(contract, "legal_review", "legal_approve")
        creator = ActorContext.of(uuid4(), "commercial")
        assert not is_authorized(t, creator, created_by=creator.actor_id)

    def test_role_check_is_case_insensitive(self, contract):
        t = resolve_transition(contract, "pending_director_approval", "director_approve")
        director = ActorContext.of(uuid4(), "DIRECTOR")
        assert is_authorized(t, director, created_by=None)


class TestPayloadRules:
    def test_missing_required_fields_treats_blank_as_missing(self):
        missing = missing_required_fields(
            ("title", "contractable_id", "contractable_type"),
            {"title": "  ", "contractable_id": None, "contractable_type": "clinic"},
        )
        assert missing == ["title", "contractable_id"]

    def test_changed_frozen_fields(self):
        before = {"a": "1", "b": "2"}
        after = {"a": "1", "b": "3", "c": "new"}
        assert changed_frozen_fields(("a", "b"), before, after) == ["b"]

    def test_removing_a_frozen_field_counts_as_change(self):
        assert changed_frozen_fields(("a",), {"a": "1"}, {}) == ["a"]


class TestReplay:
    def test_replays_full_contract_path(self, contract):
        iid = uuid4()
        trail = [
            _entry(1, "create", None, "draft", iid),
            _entry(2, "submit", "draft", "pending_approval", iid),
            _entry(3, "begin_legal_review", "pending_approval", "legal_review", iid),
            _entry(4, "legal_reject", "legal_review", "legal_review", iid),
            _entry(5, "legal_approve", "legal_review", "commercial_review", iid),
            _entry(6, "commercial_approve", "commercial_review", "pending_director_approval", iid),
            _entry(7, "director_approve", "pending_director_approval", "approved", iid),
        ]
        assert replay_trail(contract, trail) == "approved"

    def test_discontinuity_detected(self, contract):
        iid = uuid4()
        trail = [
            _entry(1, "create", None, "draft", iid),
            _entry(2, "legal_approve", "legal_review", "commercial_review", iid),
        ]
        with pytest.raises(AuditChainBrokenError) as exc_info:
            replay_trail(contract, trail)
        assert exc_info.value.seq == 2

    def test_undeclared_move_detected(self, contract):
        iid = uuid4()
        trail = [
            _entry(1, "create", None, "draft", iid),
            _entry(2, "submit", "draft", "approved", iid),
        ]
        with pytest.raises(AuditChainBrokenError):
            replay_trail(contract, trail)

    def test_creation_entry_must_come_first(self, contract):
        iid = uuid4()
        trail = [
            _entry(1, "create", None, "draft", iid),
            _entry(2, "create", None, "draft", iid),
        ]
        with pytest.raises(AuditChainBrokenError):
            replay_trail(contract, trail)
