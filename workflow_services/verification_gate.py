"""
workflow_services.verification_gate -- DoubleVerificationGate.

Responsibility:
    The composable two-actor check for monetary values.  RequireVerification
    opens a ValueVerification workflow instance (and its pending record)
    for any business object; Resolve lets a second actor verify or reject
    it.  Consuming workflows mark their approving transition ``value_gated``
    and the engine refuses it until the latest record for the object is
    verified.

Architecture position:
    Services layer.  Both operations run through the WorkflowEngine so the
    ValueVerification instance gets the same audit trail, role checks and
    notifications as every other kind.

Invariants enforced:
    - AlreadyResolved is checked before anything else, then the
      verifier-is-not-requester rule, for either decision.
    - Approve without a value verifies the original value.
    - Reject requires a non-empty reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.events import NotificationEvent
from workflow_kernel.domain.instance import ActionRequest, WorkflowInstance
from workflow_kernel.domain.verification import (
    EntityRef,
    ValueVerificationRecord,
    VerificationDecision,
)
from workflow_kernel.domain.workflow import WorkflowKind
from workflow_services.workflow_engine import WorkflowEngine


@dataclass(frozen=True)
class GateResult:
    record: ValueVerificationRecord
    instance: WorkflowInstance
    events: tuple[NotificationEvent, ...] = ()


class DoubleVerificationGate:
    def __init__(self, engine: WorkflowEngine):
        self._engine = engine
        self._records = engine.verifications

    def require_verification(
        self,
        requester: ActorContext,
        entity: EntityRef,
        original_value: Decimal,
        notes: str | None = None,
        value_type: str = "total",
    ) -> GateResult:
        """Open a pending verification of ``original_value`` for ``entity``."""
        result = self._engine.create_instance(
            WorkflowKind.VALUE_VERIFICATION,
            {
                "entity_kind": entity.kind,
                "entity_id": entity.entity_id,
                "original_value": original_value,
                "value_type": value_type,
                "notes": notes,
            },
            requester,
            enforce_roles=False,
        )
        record = self._records.for_instance(result.instance.id)
        return GateResult(record=record.to_dto(), instance=result.instance, events=result.events)

    def resolve(
        self,
        record_id: UUID,
        verifier: ActorContext,
        decision: VerificationDecision,
        verified_value: Decimal | None = None,
        reason: str | None = None,
    ) -> GateResult:
        """
        Verify or reject a pending record.

        Raises:
            VerificationNotFoundError: Unknown ``record_id``.
            AlreadyResolvedError: The record is no longer pending.
            SelfVerificationNotAllowedError: ``verifier`` requested it.
            RejectionReasonRequiredError: Reject without a reason.
            ForbiddenError: ``verifier`` lacks a resolving role.
        """
        record = self._records.get(record_id)
        self._records.ensure_resolvable(record, verifier.actor_id)

        params: dict[str, Any] = {}
        if verified_value is not None:
            params["verified_value"] = verified_value
        if reason is not None:
            params["reason"] = reason

        result = self._engine.execute(
            ActionRequest(
                instance_id=record.instance_id,
                action=VerificationDecision(decision).action,
                actor=verifier,
                params=params,
                workflow_kind=WorkflowKind.VALUE_VERIFICATION,
            )
        )
        return GateResult(
            record=self._records.get(record_id).to_dto(),
            instance=result.instance,
            events=result.events,
        )
