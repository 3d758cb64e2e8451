"""
workflow_services.guards -- Named transition preconditions.

Responsibility:
    Holds the evaluation logic for every guard name a workflow definition
    may reference.  The engine evaluates a transition's guards, in declared
    order, after the state and role checks and before anything is written.

Architecture position:
    Services layer.  Guards read the TransitionContext only; they never
    write to the session.

Invariants enforced:
    - A guard either returns None or raises a typed WorkflowKernelError
      (PreconditionNotMetError and subclasses, SelfVerificationNotAllowedError).
    - Unregistered guard names are rejected at service start-up by the
      config validator, and at evaluation time as PreconditionNotMet.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from workflow_kernel.exceptions import (
    PreconditionNotMetError,
    RejectionReasonRequiredError,
    SelfVerificationNotAllowedError,
)
from workflow_kernel.logging_config import get_logger
from workflow_services.context import TransitionContext

logger = get_logger("services.guards")

Guard = Callable[[TransitionContext], None]


def _reason_required(ctx: TransitionContext) -> None:
    if ctx.reason is None:
        raise RejectionReasonRequiredError(ctx.action)


def _operator_review_settled(ctx: TransitionContext) -> None:
    """Deliberation approval: an outstanding operator review blocks it."""
    if not ctx.payload.get("requires_operator_approval"):
        return
    decision = ctx.payload.get("operator_approved")
    if decision is None:
        raise PreconditionNotMetError(
            "operator_approval", "operator approval is still outstanding"
        )
    if decision is False:
        raise PreconditionNotMetError(
            "operator_approval", "the operator rejected this deliberation"
        )


def _operator_review_open(ctx: TransitionContext) -> None:
    if not ctx.payload.get("requires_operator_approval"):
        raise PreconditionNotMetError(
            "operator_review_open", "operator approval is not required"
        )
    if ctx.payload.get("operator_approved") is not None:
        raise PreconditionNotMetError(
            "operator_review_open", "the operator has already decided"
        )


def _billing_reference_present(ctx: TransitionContext) -> None:
    if ctx.param("billing_item_id") is None:
        raise PreconditionNotMetError(
            "billing_reference_present", "billing_item_id is required"
        )


def _addendum_required(ctx: TransitionContext) -> None:
    if not ctx.payload.get("is_requiring_addendum"):
        raise PreconditionNotMetError(
            "addendum_required", "negotiation does not require an addendum"
        )
    number = ctx.param("addendum_number")
    if number is None or not str(number).strip():
        raise PreconditionNotMetError(
            "addendum_required", "addendum_number is required"
        )


def _verifier_not_requester(ctx: TransitionContext) -> None:
    record = ctx.verifications.for_instance(ctx.instance.id)
    if ctx.actor.actor_id == record.requester_id:
        raise SelfVerificationNotAllowedError(str(record.id), str(ctx.actor.actor_id))


class GuardExecutor:
    """Evaluates transition guards by name.

    Guards are declared on transitions (names only).  This executor holds
    the evaluator per name and is called by the WorkflowEngine.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Guard] = {}

    def register(self, guard_name: str, evaluator: Guard) -> None:
        self._evaluators[guard_name] = evaluator

    def names(self) -> frozenset[str]:
        return frozenset(self._evaluators)

    def check(self, guard_name: str, ctx: TransitionContext) -> None:
        fn = self._evaluators.get(guard_name)
        if fn is None:
            raise PreconditionNotMetError(guard_name, "no evaluator registered")
        fn(ctx)

    def check_all(self, guard_names: Iterable[str], ctx: TransitionContext) -> None:
        for name in guard_names:
            self.check(name, ctx)
            logger.debug("guard_passed", extra={"guard_name": name})


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the built-in guards registered."""
    ex = GuardExecutor()
    ex.register("reason_required", _reason_required)
    ex.register("operator_review_settled", _operator_review_settled)
    ex.register("operator_review_open", _operator_review_open)
    ex.register("billing_reference_present", _billing_reference_present)
    ex.register("addendum_required", _addendum_required)
    ex.register("verifier_not_requester", _verifier_not_requester)
    return ex
