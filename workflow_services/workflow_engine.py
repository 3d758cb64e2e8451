"""
workflow_services.workflow_engine -- The state machine executor.

Responsibility:
    Creates workflow instances in their kind's initial state and executes
    actions against them: legality, role authorization, guards, the value
    verification gate, the state write with its audit entry, side effects,
    the frozen-field check and notification intents, in that order.

Architecture position:
    Services layer.  Thin coordinator -- transition resolution and
    authorization come from ``workflow_engines.transitions``; persistence
    from the kernel services.  Flush-only: WorkflowService owns commit,
    rollback and retry.

Invariants enforced:
    - ``state`` is only written here, and always together with an audit
      entry in the same flush.
    - Terminal states accept no action (InvalidStateError).
    - Role and state checks are both applied to every action, cancel
      included.
    - A side effect failure surfaces as SideEffectFailedError with the
      original exception chained; the caller rolls back the whole unit.
    - Payload fields listed as frozen never change after creation.

Failure modes:
    - InstanceNotFoundError, UnknownKindError, InvalidStateError,
      ForbiddenError, PreconditionNotMetError, InvalidPayloadError,
      AwaitingVerificationError, SelfVerificationNotAllowedError,
      SideEffectFailedError, FrozenFieldViolationError.
    - ConcurrentTransitionError when another writer won the race; the
      session is unusable afterwards and must be rolled back.
    - A gated transition with no verification yet does not raise: the
      result carries ``awaiting_verification`` and the state is unchanged.

Audit relevance:
    Every successful call appends exactly one hash-chained audit entry per
    instance touched and logs ``workflow_instance_created`` or
    ``workflow_transition``.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_config.schema import EngineSettings
from workflow_engines.transitions import (
    authorize_actor,
    changed_frozen_fields,
    missing_required_fields,
    resolve_transition,
)
from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import (
    ActionRequest,
    ExecutionResult,
)
from workflow_kernel.domain.values import json_safe, to_uuid
from workflow_kernel.domain.verification import VerificationStatus
from workflow_kernel.domain.workflow import (
    DefinitionRegistry,
    WorkflowDefinition,
    WorkflowKind,
)
from workflow_kernel.exceptions import (
    AwaitingVerificationError,
    ConcurrentTransitionError,
    ForbiddenError,
    FrozenFieldViolationError,
    InstanceNotFoundError,
    InvalidPayloadError,
    PreconditionNotMetError,
    SideEffectFailedError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.workflow import WorkflowInstanceModel
from workflow_kernel.services.audit_trail import CREATE_ACTION, AuditTrailService
from workflow_kernel.services.verification_service import VerificationRecordService
from workflow_kernel.services.workflow_store import WorkflowStore
from workflow_services.context import TransitionContext
from workflow_services.guards import GuardExecutor, default_guard_executor
from workflow_services.notifications import build_events
from workflow_services.scheduling_service import SchedulingProviderSelector
from workflow_services.side_effects import SideEffectRegistry, default_side_effects

logger = get_logger("services.engine")

VALUE_GATE_FLAG = "requires_value_verification"


def make_reference(prefix: str, created_at: datetime, instance_id: UUID) -> str:
    """Human-readable number, e.g. ``DEL-2026-3F9A01BC``."""
    return f"{prefix}-{created_at.year}-{instance_id.hex[:8].upper()}"


class WorkflowEngine:
    """
    Contract:
        One engine per session.  ``create_instance`` and ``execute`` flush
        but never commit.

    Guarantees:
        On any raised error nothing has been committed; the caller's
        rollback leaves the instance exactly as it was.

    Non-goals:
        Does NOT deliver notifications; it returns them.
        Does NOT retry; WorkflowService does.
    """

    def __init__(
        self,
        session: Session,
        registry: DefinitionRegistry,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        guards: GuardExecutor | None = None,
        effects: SideEffectRegistry | None = None,
        scheduler: SchedulingProviderSelector | None = None,
    ):
        self._session = session
        self._registry = registry
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._guards = guards or default_guard_executor()
        self._effects = effects or default_side_effects()
        self._scheduler = scheduler
        self._audit = AuditTrailService(session, self._clock)
        self._store = WorkflowStore(session, self._audit)
        self._verifications = VerificationRecordService(session, self._clock)

    @property
    def registry(self) -> DefinitionRegistry:
        return self._registry

    @property
    def audit(self) -> AuditTrailService:
        return self._audit

    @property
    def verifications(self) -> VerificationRecordService:
        return self._verifications

    # ------------------------------------------------------------------
    # CreateInstance
    # ------------------------------------------------------------------

    def create_instance(
        self,
        kind: WorkflowKind | str,
        payload: Mapping[str, Any],
        actor: ActorContext,
        enforce_roles: bool = True,
    ) -> ExecutionResult:
        """
        Create an instance in its kind's initial state.

        Args:
            enforce_roles: False only for instances the engine opens on the
                actor's behalf (the value verification sub-workflow).

        Postconditions:
            The instance row and its ``create`` audit entry are flushed.
            A value-gated instance has a pending ValueVerification attached.
        """
        definition = self._registry.get(kind)
        with LogContext.bind(
            actor_id=actor.actor_id,
            workflow_kind=definition.kind.value,
            action=CREATE_ACTION,
        ):
            if enforce_roles and not actor.has_any_role(definition.creator_roles):
                raise ForbiddenError(
                    actor_id=str(actor.actor_id),
                    action=CREATE_ACTION,
                    allowed_roles=definition.creator_roles,
                    actor_roles=actor.roles,
                )

            working: dict[str, Any] = {**definition.defaults, **json_safe(dict(payload))}
            missing = missing_required_fields(definition.required_fields, working)
            if missing:
                raise InvalidPayloadError(
                    definition.kind.value,
                    [f"missing required field '{name}'" for name in missing],
                )

            now = self._clock.now()
            instance_id = uuid4()
            model = WorkflowInstanceModel(
                id=instance_id,
                kind=definition.kind.value,
                state=definition.initial_state,
                reference=make_reference(definition.reference_prefix, now, instance_id),
                payload=json_safe(working),
                created_by=actor.actor_id,
                created_at=now,
                updated_at=now,
            )
            self._store.add(model)

            with LogContext.bind(instance_id=instance_id):
                ctx = TransitionContext(
                    session=self._session,
                    clock=self._clock,
                    definition=definition,
                    instance=model,
                    actor=actor,
                    action=CREATE_ACTION,
                    from_state=None,
                    to_state=definition.initial_state,
                    payload=working,
                    verifications=self._verifications,
                    scheduler=self._scheduler,
                )
                for hook in definition.on_create:
                    ctx.payload.update(self._effects.run_hook(hook, ctx))

                model.scope_entity_id = self._scope_entity(definition, ctx.payload)
                model.payload = json_safe(ctx.payload)
                self._flush(instance_id)
                self._audit.record(
                    instance_id, CREATE_ACTION, None, definition.initial_state, actor
                )

                gate_events, _ = self._open_value_gate(definition, model, actor)

                events = build_events(
                    definition,
                    definition.creation_notification,
                    instance_id=instance_id,
                    reference=model.reference,
                    action=CREATE_ACTION,
                    actor=actor,
                    created_by=model.created_by,
                    scope_entity_id=model.scope_entity_id,
                    payload=model.payload,
                    occurred_at=now,
                    from_state=None,
                    to_state=model.state,
                )

                logger.info(
                    "workflow_instance_created",
                    extra={
                        "reference": model.reference,
                        "state": model.state,
                        "value_gated": "value_verification_instance_id" in model.payload,
                    },
                )
                return ExecutionResult(
                    instance=self._store.to_dto(model),
                    events=events + gate_events,
                )

    def _scope_entity(
        self, definition: WorkflowDefinition, payload: Mapping[str, Any]
    ) -> UUID | None:
        if definition.scope_field is None:
            return None
        try:
            return to_uuid(payload.get(definition.scope_field))
        except ValueError:
            raise InvalidPayloadError(
                definition.kind.value,
                [f"{definition.scope_field} is not a valid identifier"],
            ) from None

    # ------------------------------------------------------------------
    # Value gate
    # ------------------------------------------------------------------

    def is_value_gated(
        self, definition: WorkflowDefinition, payload: Mapping[str, Any]
    ) -> bool:
        """Opt-in flag, or value at or above the kind's configured threshold."""
        if definition.value_field is None:
            return False
        if payload.get(VALUE_GATE_FLAG):
            return True
        threshold = self._settings.verification.threshold_for(definition.kind)
        value = definition.value_of(payload)
        return threshold is not None and value is not None and value >= threshold

    def _open_value_gate(
        self,
        definition: WorkflowDefinition,
        model: WorkflowInstanceModel,
        actor: ActorContext,
    ) -> tuple[tuple, str | None]:
        """Open a verification when gated; return its events and record id."""
        if not self.is_value_gated(definition, model.payload):
            return (), None
        verification = self.create_instance(
            WorkflowKind.VALUE_VERIFICATION,
            {
                "entity_kind": definition.kind.value,
                "entity_id": str(model.id),
                "original_value": model.payload[definition.value_field],
                "value_type": definition.value_field,
                "notes": f"Value verification for {model.reference}",
            },
            actor,
            enforce_roles=False,
        )
        model.payload = {
            **model.payload,
            "value_verification_instance_id": str(verification.instance.id),
            "verification_id": verification.instance.payload["verification_id"],
        }
        self._flush(model.id)
        return verification.events, str(verification.instance.payload["verification_id"])

    def _await_verification(
        self,
        definition: WorkflowDefinition,
        model: WorkflowInstanceModel,
        actor: ActorContext,
        reference: str,
    ) -> ExecutionResult:
        """
        Open the missing verification for a gated transition.

        The state is left unchanged.  The result carries the record id so the
        caller can commit the record and then report AwaitingVerification.
        """
        events, record_id = self._open_value_gate(definition, model, actor)
        logger.info(
            "workflow_transition_rejected",
            extra={
                "reference": reference,
                "from_state": model.state,
                "code": AwaitingVerificationError.code,
                "reason": f"value verification {record_id} opened",
            },
        )
        return ExecutionResult(
            instance=self._store.to_dto(model),
            events=events,
            awaiting_verification=record_id,
        )

    def _check_value_gate(self, instance_id: UUID, record) -> Decimal | None:
        """Return the verified value, or raise while the gate is closed."""
        if record is None:
            return None
        if record.status == VerificationStatus.PENDING.value:
            raise AwaitingVerificationError(str(instance_id), str(record.id))
        if record.status == VerificationStatus.REJECTED.value:
            raise PreconditionNotMetError(
                "value_verified",
                f"value verification {record.id} was rejected: {record.rejection_reason}",
            )
        return record.verified_value

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def execute(self, request: ActionRequest) -> ExecutionResult:
        """
        Apply ``request.action`` to the instance.

        Preconditions:
            The session has no pending changes for this instance.

        Postconditions:
            State, audit entry and effect writes are flushed together.
        """
        start = time.monotonic()
        with LogContext.bind(
            instance_id=request.instance_id,
            actor_id=request.actor.actor_id,
            action=request.action,
        ):
            model = self._store.load_for_update(request.instance_id)
            definition = self._registry.get(model.kind)
            if (
                request.workflow_kind is not None
                and WorkflowKind.parse(request.workflow_kind) != definition.kind
            ):
                raise InstanceNotFoundError(str(request.instance_id))

            with LogContext.bind(workflow_kind=definition.kind.value):
                return self._execute(request, model, definition, start)

    def _execute(
        self,
        request: ActionRequest,
        model: WorkflowInstanceModel,
        definition: WorkflowDefinition,
        start: float,
    ) -> ExecutionResult:
        actor = request.actor
        # Read before any write: a failed flush expires ``model``.
        instance_id = model.id
        reference = model.reference
        from_state = model.state
        before = dict(model.payload or {})

        try:
            transition = resolve_transition(definition, from_state, request.action)
            authorize_actor(transition, actor, model.created_by)
            ctx = TransitionContext(
                session=self._session,
                clock=self._clock,
                definition=definition,
                instance=model,
                actor=actor,
                action=transition.action,
                from_state=from_state,
                to_state=transition.to_state,
                payload=dict(before),
                verifications=self._verifications,
                scheduler=self._scheduler,
                transition=transition,
                params=dict(request.params),
                options=request.options,
            )
            self._guards.check_all(transition.guards, ctx)
            if transition.value_gated:
                record = self._verifications.latest_for_entity(instance_id)
                if record is None and self.is_value_gated(definition, before):
                    return self._await_verification(definition, model, actor, reference)
                ctx.verified_value = self._check_value_gate(instance_id, record)
        except WorkflowKernelError as exc:
            logger.info(
                "workflow_transition_rejected",
                extra={
                    "reference": reference,
                    "from_state": from_state,
                    "code": exc.code,
                    "reason": str(exc),
                },
            )
            raise

        now = self._clock.now()
        model.state = transition.to_state
        model.updated_at = now
        try:
            self._audit.record(
                instance_id,
                transition.action,
                from_state,
                transition.to_state,
                actor,
                notes=request.notes,
                params=request.params,
            )
        except (StaleDataError, IntegrityError) as exc:
            raise ConcurrentTransitionError(str(instance_id)) from exc

        for name in transition.effects:
            try:
                ctx.payload.update(self._effects.run_effect(name, ctx))
            except Exception as exc:
                logger.warning(
                    "side_effect_failed",
                    extra={"effect": name, "reference": reference},
                    exc_info=True,
                )
                raise SideEffectFailedError(name, str(instance_id), str(exc)) from exc

        after = json_safe(ctx.payload)
        changed = changed_frozen_fields(definition.frozen_fields, before, after)
        if changed:
            raise FrozenFieldViolationError(str(instance_id), changed)

        model.payload = after
        self._flush(instance_id)

        events = build_events(
            definition,
            transition.notification,
            instance_id=instance_id,
            reference=reference,
            action=transition.action,
            actor=actor,
            created_by=model.created_by,
            scope_entity_id=model.scope_entity_id,
            payload=after,
            occurred_at=now,
            from_state=from_state,
            to_state=transition.to_state,
            reason=ctx.reason,
        )

        logger.info(
            "workflow_transition",
            extra={
                "reference": reference,
                "from_state": from_state,
                "to_state": transition.to_state,
                "events": len(events),
                "duration_ms": round((time.monotonic() - start) * 1000, 3),
            },
        )
        return ExecutionResult(instance=self._store.to_dto(model), events=events)

    def _flush(self, instance_id: UUID) -> None:
        try:
            self._session.flush()
        except (StaleDataError, IntegrityError) as exc:
            raise ConcurrentTransitionError(str(instance_id)) from exc
