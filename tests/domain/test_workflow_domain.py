"""Domain value objects: actors, payload values, definitions, recipients."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

import pytest

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.events import Recipient
from workflow_kernel.domain.values import json_safe, to_decimal, to_uuid
from workflow_kernel.domain.verification import (
    VERIFICATION_TRANSITIONS,
    VerificationDecision,
    VerificationStatus,
)
from workflow_kernel.domain.workflow import (
    DefinitionRegistry,
    NotifyTarget,
    RecipientType,
    WorkflowKind,
)
from workflow_kernel.exceptions import UnknownKindError


class TestActorContext:
    def test_roles_normalised_to_lowercase(self):
        actor = ActorContext.of(uuid4(), "Director", "LEGAL")
        assert actor.roles == frozenset({"director", "legal"})
        assert actor.has_role("legal")
        assert actor.has_any_role(["admin", "Director"])

    def test_roles_coerced_to_frozenset(self):
        actor = ActorContext(actor_id=uuid4(), roles=["admin"])
        assert isinstance(actor.roles, frozenset)

    def test_display_name_falls_back_to_id(self):
        actor = ActorContext.of(uuid4())
        assert actor.display_name == str(actor.actor_id)
        assert ActorContext.of(uuid4(), name="Ana").display_name == "Ana"


class TestValues:
    def test_to_decimal_accepts_strings_and_ints(self):
        assert to_decimal("12.50") == Decimal("12.50")
        assert to_decimal(7) == Decimal(7)
        assert to_decimal(" 3.1 ") == Decimal("3.1")

    @pytest.mark.parametrize("raw", [1.5, True, "abc", None, "NaN", "Infinity"])
    def test_to_decimal_rejects(self, raw):
        with pytest.raises(ValueError):
            to_decimal(raw, "amount")

    def test_to_uuid(self):
        uid = uuid4()
        assert to_uuid(str(uid)) == uid
        assert to_uuid(uid) is uid
        assert to_uuid(None) is None
        with pytest.raises(ValueError):
            to_uuid("not-a-uuid")

    def test_json_safe_converts_nested_values(self):
        class Colour(Enum):
            RED = "red"

        uid = uuid4()
        converted = json_safe({
            "amount": Decimal("1.10"),
            "id": uid,
            "when": datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
            "day": date(2026, 3, 2),
            "colour": Colour.RED,
            "items": (Decimal("1"), {uid}),
        })
        assert converted == {
            "amount": "1.10",
            "id": str(uid),
            "when": "2026-03-02T09:00:00+00:00",
            "day": "2026-03-02",
            "colour": "red",
            "items": ["1", [str(uid)]],
        }


class TestWorkflowKind:
    def test_parse_accepts_enum_and_string(self):
        assert WorkflowKind.parse("contract") is WorkflowKind.CONTRACT
        assert WorkflowKind.parse(WorkflowKind.DELIBERATION) is WorkflowKind.DELIBERATION

    def test_parse_unknown(self):
        with pytest.raises(UnknownKindError):
            WorkflowKind.parse("purchase_order")


class TestRegistry:
    def test_all_kinds_registered(self, workflow_config):
        registry = workflow_config.registry()
        assert set(registry.kinds()) == set(WorkflowKind)
        assert len(registry) == 5
        assert "contract" in registry
        assert WorkflowKind.VALUE_VERIFICATION in registry
        assert "unknown" not in registry

    def test_unknown_kind_in_empty_registry(self):
        with pytest.raises(UnknownKindError):
            DefinitionRegistry([]).get(WorkflowKind.CONTRACT)

    def test_legal_transitions_view(self, workflow_config):
        legal = workflow_config.registry().legal_transitions("deliberation", "pending_approval")
        by_action = {t.action: t for t in legal}
        assert set(by_action) == {
            "approve", "reject", "operator_approve", "operator_reject", "cancel",
        }
        assert by_action["approve"].requires_precondition
        assert by_action["approve"].to_state == "approved"
        assert "network_manager" in by_action["approve"].allowed_roles

    def test_actionable_states(self, workflow_config):
        contract = workflow_config.registry().get("contract")
        assert contract.actionable_states(["legal"]) == frozenset({"pending_approval", "legal_review"})
        assert contract.actionable_states(["viewer"]) == frozenset()

    def test_value_of(self, workflow_config):
        deliberation = workflow_config.registry().get("deliberation")
        assert deliberation.value_of({"total_value": "1100.00"}) == Decimal("1100.00")
        assert deliberation.value_of({}) is None
        assert workflow_config.registry().get("contract").value_of({"value": "1"}) is None


class TestNotifyTarget:
    def test_parse_role(self):
        target = NotifyTarget.parse("role:legal")
        assert target.recipient == RecipientType.ROLE
        assert target.role == "legal"

    def test_parse_keyword(self):
        assert NotifyTarget.parse("entity_admins").recipient == RecipientType.ENTITY_ADMINS

    def test_recipient_needs_exactly_one_address(self):
        with pytest.raises(ValueError):
            Recipient()
        with pytest.raises(ValueError):
            Recipient(role="admin", user_id=uuid4())


class TestVerificationLifecycle:
    def test_resolved_states_have_no_exits(self):
        assert VERIFICATION_TRANSITIONS[VerificationStatus.VERIFIED] == frozenset()
        assert VERIFICATION_TRANSITIONS[VerificationStatus.REJECTED] == frozenset()

    def test_decision_maps_to_workflow_action(self):
        assert VerificationDecision.APPROVE.action == "verify"
        assert VerificationDecision.REJECT.action == "reject"
