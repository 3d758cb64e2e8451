"""
workflow_services.side_effects -- Transition effects and creation hooks.

Responsibility:
    Kind-specific work the engine runs inside the same unit of work as the
    state change: stamping who decided and when, activating a contract,
    booking an appointment, running the scheduling fallback, resolving a
    value verification record.  Creation hooks compute and validate
    derived payload fields before the instance's first audit entry.

Architecture position:
    Services layer.  Effects receive a TransitionContext and return a
    mapping of payload updates (or None).  They may write other tables
    through the context's services; they never touch the instance state
    column or the audit trail.

Invariants enforced:
    - Effects run after the state change and audit entry are flushed and
      before commit; any exception is surfaced by the engine as
      SideEffectFailedError and the caller rolls the whole unit back.
    - Deliberation amounts are computed once, by the creation hook, and are
      frozen afterwards.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from workflow_engines.deliberation import compute_amounts, validate_inputs
from workflow_kernel.domain.scheduling import ProviderRef, SolicitationStatus
from workflow_kernel.domain.values import to_decimal, to_uuid
from workflow_kernel.domain.verification import EntityRef, VerificationDecision
from workflow_kernel.exceptions import ForbiddenError, InvalidPayloadError
from workflow_kernel.logging_config import get_logger
from workflow_services.context import TransitionContext

logger = get_logger("services.side_effects")

Effect = Callable[[TransitionContext], Mapping[str, Any] | None]

URGENCY_LEVELS = ("low", "medium", "high")
MIN_JUSTIFICATION_LENGTH = 10
SOLICITATION_STATES_OPEN_TO_EXCEPTIONS = frozenset({
    SolicitationStatus.PENDING.value,
    SolicitationStatus.PROCESSING.value,
    SolicitationStatus.FAILED.value,
})


def _stamp(ctx: TransitionContext, prefix: str) -> dict[str, Any]:
    return {
        f"{prefix}_by": str(ctx.actor.actor_id),
        f"{prefix}_at": ctx.clock.now().isoformat(),
    }


def _amount(ctx: TransitionContext, field_name: str) -> Decimal:
    try:
        return to_decimal(ctx.payload.get(field_name), field_name)
    except ValueError as exc:
        raise InvalidPayloadError(ctx.definition.kind.value, [str(exc)]) from None


def _provider_ref(ctx: TransitionContext) -> ProviderRef:
    return ProviderRef(
        provider_type=str(ctx.payload["provider_type"]),
        provider_id=to_uuid(ctx.payload["provider_id"]),
    )


# =============================================================================
# Creation hooks
# =============================================================================


def compute_deliberation_amounts(ctx: TransitionContext) -> dict[str, Any]:
    negotiated = _amount(ctx, "negotiated_value")
    percentage = _amount(ctx, "medlar_percentage")
    errors = validate_inputs(negotiated, percentage)
    if errors:
        raise InvalidPayloadError(ctx.definition.kind.value, errors)
    amounts = compute_amounts(negotiated, percentage)
    return {
        "negotiated_value": amounts.negotiated_value,
        "medlar_percentage": amounts.medlar_percentage,
        "medlar_amount": amounts.medlar_amount,
        "total_value": amounts.total_value,
    }


def validate_negotiation(ctx: TransitionContext) -> dict[str, Any]:
    errors = []
    requested: Decimal | None = None
    try:
        requested = to_decimal(ctx.payload.get("requested_value"), "requested_value")
    except ValueError as exc:
        errors.append(str(exc))
    if requested is not None and requested < 0:
        errors.append("requested_value must not be negative")

    urgency = str(ctx.payload.get("urgency_level", "medium")).lower()
    if urgency not in URGENCY_LEVELS:
        errors.append(f"urgency_level must be one of {', '.join(URGENCY_LEVELS)}")

    justification = str(ctx.payload.get("justification", "")).strip()
    if len(justification) < MIN_JUSTIFICATION_LENGTH:
        errors.append(
            f"justification must have at least {MIN_JUSTIFICATION_LENGTH} characters"
        )

    if errors:
        raise InvalidPayloadError(ctx.definition.kind.value, errors)
    return {
        "requested_value": requested,
        "urgency_level": urgency,
        "justification": justification,
    }


def attach_solicitation(ctx: TransitionContext) -> dict[str, Any]:
    """Bind a scheduling exception to its solicitation and price the provider."""
    kind = ctx.definition.kind.value
    scheduler = ctx.require_scheduler()
    try:
        solicitation_id = to_uuid(ctx.payload["solicitation_id"])
        ref = _provider_ref(ctx)
    except ValueError as exc:
        raise InvalidPayloadError(kind, [str(exc)]) from None

    solicitation = scheduler.get_solicitation(solicitation_id)
    if (
        ctx.actor.has_role("plan_admin")
        and not ctx.actor.has_any_role(("admin", "super_admin"))
        and ctx.actor.entity_id != solicitation.health_plan_id
    ):
        raise ForbiddenError(
            actor_id=str(ctx.actor.actor_id),
            action="create",
            allowed_roles=("admin", "super_admin"),
            actor_roles=ctx.actor.roles,
        )
    if solicitation.status not in SOLICITATION_STATES_OPEN_TO_EXCEPTIONS:
        raise InvalidPayloadError(
            kind, [f"solicitation is {solicitation.status} and cannot receive exceptions"]
        )

    snapshot = solicitation.to_snapshot()
    candidate = scheduler.find_candidate(snapshot, ref)
    if candidate is None or candidate.price is None:
        raise InvalidPayloadError(
            kind, [f"provider {ref} does not offer procedure {snapshot.procedure_code}"]
        )

    ranked = scheduler.rank(snapshot)
    recommended = ranked[0] if ranked else None
    return {
        "health_plan_id": solicitation.health_plan_id,
        "provider_name": candidate.name,
        "provider_price": candidate.price,
        "recommended_provider": str(recommended.ref) if recommended else None,
        "recommended_provider_price": recommended.candidate.price if recommended else None,
    }


def open_verification_record(ctx: TransitionContext) -> dict[str, Any]:
    kind = ctx.definition.kind.value
    try:
        entity_id = to_uuid(ctx.payload["entity_id"])
        original = to_decimal(ctx.payload["original_value"], "original_value")
    except ValueError as exc:
        raise InvalidPayloadError(kind, [str(exc)]) from None

    record = ctx.verifications.open(
        instance_id=ctx.instance.id,
        entity=EntityRef(kind=str(ctx.payload["entity_kind"]), entity_id=entity_id),
        value_type=str(ctx.payload.get("value_type", "total")),
        original_value=original,
        requester_id=ctx.actor.actor_id,
        notes=ctx.payload.get("notes"),
    )
    return {
        "verification_id": record.id,
        "original_value": original,
        "requester_id": ctx.actor.actor_id,
    }


# =============================================================================
# Transition effects
# =============================================================================


def stamp_submission(ctx: TransitionContext) -> dict[str, Any]:
    return _stamp(ctx, "submitted")


def activate_contract(ctx: TransitionContext) -> dict[str, Any]:
    return {
        **_stamp(ctx, "approved"),
        "is_active": True,
        "signature_status": "requested",
    }


def stamp_approval(ctx: TransitionContext) -> dict[str, Any]:
    updates = _stamp(ctx, "approved")
    notes = ctx.param("notes")
    if notes is not None:
        updates["approval_notes"] = str(notes)
    if ctx.verified_value is not None:
        updates["verified_value"] = ctx.verified_value
    return updates


def stamp_rejection(ctx: TransitionContext) -> dict[str, Any]:
    return {**_stamp(ctx, "rejected"), "rejection_reason": ctx.reason}


def stamp_cancellation(ctx: TransitionContext) -> dict[str, Any]:
    return {**_stamp(ctx, "cancelled"), "cancellation_reason": ctx.reason}


def record_operator_decision(ctx: TransitionContext) -> dict[str, Any]:
    approved = ctx.action == "operator_approve"
    updates: dict[str, Any] = {
        "operator_approved": approved,
        **_stamp(ctx, "operator_approved"),
    }
    if approved:
        updates["operator_approval_notes"] = ctx.param("notes")
    else:
        updates["operator_rejection_reason"] = ctx.reason
    return updates


def stamp_billing(ctx: TransitionContext) -> dict[str, Any]:
    return {
        "billing_item_id": ctx.param("billing_item_id"),
        "billing_batch_number": ctx.param("billing_batch_number"),
        "billed_at": ctx.clock.now().isoformat(),
    }


def settle_negotiated_value(ctx: TransitionContext) -> dict[str, Any]:
    """approved_value: explicit param, else verified value, else requested value."""
    explicit = ctx.param("approved_value")
    if explicit is not None:
        approved_value = to_decimal(explicit, "approved_value")
    elif ctx.verified_value is not None:
        approved_value = ctx.verified_value
    else:
        approved_value = _amount(ctx, "requested_value")
    return {
        **_stamp(ctx, "approved"),
        "approved_value": approved_value,
        "approval_notes": ctx.param("notes"),
    }


def record_addendum(ctx: TransitionContext) -> dict[str, Any]:
    return {
        "addendum_included": True,
        "addendum_number": str(ctx.param("addendum_number")).strip(),
        "addendum_date": ctx.param("addendum_date", ctx.clock.now().date().isoformat()),
        "addendum_notes": ctx.param("notes"),
        "addendum_updated_by": str(ctx.actor.actor_id),
    }


def book_exception_appointment(ctx: TransitionContext) -> dict[str, Any]:
    """Book the exception's own provider; NoSlotAvailable aborts the approval."""
    scheduler = ctx.require_scheduler()
    solicitation = scheduler.get_solicitation(to_uuid(ctx.payload["solicitation_id"]))
    slot = scheduler.assign_slot(_provider_ref(ctx), solicitation.preferred_start)
    appointment = scheduler.book(
        solicitation, slot, ctx.actor.actor_id, source_instance_id=ctx.instance.id
    )
    solicitation.status = SolicitationStatus.SCHEDULED.value
    ctx.session.flush()
    return {
        **_stamp(ctx, "approved"),
        "appointment_id": appointment.id,
        "scheduled_at": slot.start.isoformat(),
    }


def schedule_fallback(ctx: TransitionContext) -> dict[str, Any]:
    if not ctx.options.auto_scheduling_enabled:
        logger.info(
            "fallback_scheduling_skipped",
            extra={"instance_id": str(ctx.instance.id)},
        )
        return {"fallback_status": "disabled"}

    outcome = ctx.require_scheduler().auto_schedule(
        solicitation_id=to_uuid(ctx.payload["solicitation_id"]),
        exclude=_provider_ref(ctx),
        actor_id=ctx.actor.actor_id,
        source_instance_id=ctx.instance.id,
    )
    return {
        "fallback_status": outcome.status.value,
        "fallback_provider": str(outcome.assignment.ref) if outcome.assignment else None,
        "fallback_appointment_id": outcome.appointment_id,
        "fallback_scheduled_at": outcome.slot.start.isoformat() if outcome.slot else None,
        "fallback_failure_code": outcome.failure_code,
    }


def resolve_value_verification(ctx: TransitionContext) -> dict[str, Any]:
    record = ctx.verifications.for_instance(ctx.instance.id)
    decision = (
        VerificationDecision.APPROVE if ctx.action == "verify" else VerificationDecision.REJECT
    )
    raw_value = ctx.param("verified_value")
    record = ctx.verifications.apply_resolution(
        record,
        verifier_id=ctx.actor.actor_id,
        decision=decision,
        verified_value=None if raw_value is None else to_decimal(raw_value, "verified_value"),
        reason=ctx.reason,
    )
    return {
        "verification_status": record.status,
        "verifier_id": ctx.actor.actor_id,
        "verified_value": record.verified_value,
        "rejection_reason": record.rejection_reason,
        "resolved_at": record.resolved_at.isoformat(),
    }


class SideEffectRegistry:
    """Named effects and creation hooks.

    Effects run on transitions (``effects:`` in YAML); hooks run once at
    creation (``on_create:``).  Both return payload updates.
    """

    def __init__(self) -> None:
        self._effects: dict[str, Effect] = {}
        self._hooks: dict[str, Effect] = {}

    def register_effect(self, name: str, fn: Effect) -> None:
        self._effects[name] = fn

    def register_hook(self, name: str, fn: Effect) -> None:
        self._hooks[name] = fn

    def effect_names(self) -> frozenset[str]:
        return frozenset(self._effects)

    def hook_names(self) -> frozenset[str]:
        return frozenset(self._hooks)

    def run_effect(self, name: str, ctx: TransitionContext) -> Mapping[str, Any]:
        return self._effects[name](ctx) or {}

    def run_hook(self, name: str, ctx: TransitionContext) -> Mapping[str, Any]:
        return self._hooks[name](ctx) or {}


def default_side_effects() -> SideEffectRegistry:
    """Return a SideEffectRegistry with the built-in effects and hooks."""
    reg = SideEffectRegistry()
    reg.register_hook("compute_deliberation_amounts", compute_deliberation_amounts)
    reg.register_hook("validate_negotiation", validate_negotiation)
    reg.register_hook("attach_solicitation", attach_solicitation)
    reg.register_hook("open_verification_record", open_verification_record)

    reg.register_effect("stamp_submission", stamp_submission)
    reg.register_effect("activate_contract", activate_contract)
    reg.register_effect("stamp_approval", stamp_approval)
    reg.register_effect("stamp_rejection", stamp_rejection)
    reg.register_effect("stamp_cancellation", stamp_cancellation)
    reg.register_effect("record_operator_decision", record_operator_decision)
    reg.register_effect("stamp_billing", stamp_billing)
    reg.register_effect("settle_negotiated_value", settle_negotiated_value)
    reg.register_effect("record_addendum", record_addendum)
    reg.register_effect("book_exception_appointment", book_exception_appointment)
    reg.register_effect("schedule_fallback", schedule_fallback)
    reg.register_effect("resolve_value_verification", resolve_value_verification)
    return reg
