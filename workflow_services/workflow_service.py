"""
workflow_services.workflow_service -- The operation surface.

Responsibility:
    CreateInstance, Execute, GetInstance, ListInstances, LegalTransitions
    and the DoubleVerificationGate operations, each run in its own unit of
    work.  Wires the engine, gate and provider selector per session, retries
    lost races, and dispatches notification events after commit.

Architecture position:
    Services -- top of the stack; the layer an HTTP adapter or batch job
    would call.  Owns every commit boundary.

Invariants enforced:
    - Per-instance single writer: a ConcurrentTransitionError rolls the
      unit back and the whole operation is re-run on a fresh session, up to
      ``max_transition_attempts``; the re-run re-validates against the
      committed state, so a racing loser sees InvalidStateError.
    - Notifications are dispatched only after commit, and a failing
      notifier never undoes the committed transition.
    - Every guard, effect and hook named by the configuration is registered
      (checked at construction).

Failure modes:
    - Every typed error raised by WorkflowEngine and the gate propagates
      unchanged after rollback.
    - AwaitingVerificationError after commit when execute() had to open
      the value verification itself.
    - DefinitionValidationError at construction for an inconsistent
      configuration.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from workflow_config import get_active_config
from workflow_config.schema import WorkflowConfigSet
from workflow_config.validator import validate_config_set
from workflow_engines.transitions import replay_trail
from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import (
    ActionRequest,
    ExecutionOptions,
    ExecutionResult,
    InstanceFilter,
    Page,
    VisibilityScope,
    WorkflowInstance,
)
from workflow_kernel.domain.verification import (
    EntityRef,
    ValueVerificationRecord,
    VerificationDecision,
)
from workflow_kernel.domain.workflow import (
    LegalTransition,
    WorkflowDefinition,
    WorkflowKind,
)
from workflow_kernel.exceptions import (
    AuditChainBrokenError,
    AwaitingVerificationError,
    ConcurrentTransitionError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.services.audit_trail import AuditTrailService
from workflow_kernel.services.verification_service import VerificationRecordService
from workflow_services.guards import GuardExecutor, default_guard_executor
from workflow_services.notifications import LoggingNotifier, Notifier, dispatch_events
from workflow_services.scheduling_service import (
    ProviderDirectory,
    SchedulingProviderSelector,
    StaticProviderDirectory,
)
from workflow_services.side_effects import SideEffectRegistry, default_side_effects
from workflow_services.verification_gate import DoubleVerificationGate, GateResult
from workflow_services.workflow_engine import WorkflowEngine

logger = get_logger("services.workflow")

T = TypeVar("T")


class WorkflowService:
    """
    Contract:
        Stateless between calls apart from its collaborators; safe to share
        across threads because every call takes its own session.

    Non-goals:
        Does NOT authenticate actors; callers pass a trusted ActorContext.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: WorkflowConfigSet | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        provider_directory: ProviderDirectory | None = None,
        guards: GuardExecutor | None = None,
        effects: SideEffectRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._registry = self._config.registry()
        self._settings = self._config.settings
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or SystemClock()
        self._directory = provider_directory or StaticProviderDirectory()
        self._guards = guards or default_guard_executor()
        self._effects = effects or default_side_effects()

        validate_config_set(
            self._config,
            known_guards=self._guards.names(),
            known_effects=self._effects.effect_names(),
            known_hooks=self._effects.hook_names(),
        )

    @property
    def config(self) -> WorkflowConfigSet:
        return self._config

    def definition(self, kind: WorkflowKind | str) -> WorkflowDefinition:
        return self._registry.get(kind)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _engine(self, session: Session) -> WorkflowEngine:
        return WorkflowEngine(
            session,
            self._registry,
            settings=self._settings,
            clock=self._clock,
            guards=self._guards,
            effects=self._effects,
            scheduler=SchedulingProviderSelector(
                session, self._directory, self._clock, self._settings.scheduling
            ),
        )

    def _run(self, operation: str, fn: Callable[[WorkflowEngine], T]) -> T:
        attempts = max(1, self._settings.max_transition_attempts)
        for attempt in range(1, attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    return fn(self._engine(session))
            except ConcurrentTransitionError as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "concurrent_transition_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "conflict_instance_id": exc.instance_id,
                    },
                )
        raise AssertionError("unreachable")

    def _read(self, fn: Callable[[Session], T]) -> T:
        with session_scope(self._session_factory) as session:
            return fn(session)

    def _dispatch(self, result: ExecutionResult) -> ExecutionResult:
        dispatch_events(self._notifier, result.events)
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_instance(
        self,
        kind: WorkflowKind | str,
        payload: Mapping[str, Any],
        actor: ActorContext,
    ) -> ExecutionResult:
        result = self._run(
            "create_instance",
            lambda engine: engine.create_instance(kind, payload, actor),
        )
        return self._dispatch(result)

    def execute(
        self,
        instance_id: UUID,
        action: str,
        actor: ActorContext,
        params: Mapping[str, Any] | None = None,
        *,
        workflow_kind: WorkflowKind | str | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """
        Execute ``action`` on an instance.

        ``options`` defaults to the configured ``auto_scheduling_enabled``.
        """
        request = ActionRequest(
            instance_id=instance_id,
            action=action,
            actor=actor,
            params=dict(params or {}),
            workflow_kind=(
                WorkflowKind.parse(workflow_kind) if workflow_kind is not None else None
            ),
            options=options or ExecutionOptions(
                auto_scheduling_enabled=self._settings.auto_scheduling_enabled
            ),
        )
        return self.execute_request(request)

    def execute_request(self, request: ActionRequest) -> ExecutionResult:
        with LogContext.bind(correlation_id=request.instance_id):
            result = self._run("execute", lambda engine: engine.execute(request))
        self._dispatch(result)
        if result.awaiting_verification is not None:
            # The opened verification is committed; the transition did not run.
            raise AwaitingVerificationError(
                str(request.instance_id), result.awaiting_verification
            )
        return result

    def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        return self._read(lambda session: InstanceSelector(session).get(instance_id))

    def list_instances(
        self,
        kind: WorkflowKind | str,
        actor: ActorContext,
        filters: InstanceFilter | None = None,
    ) -> Page:
        definition = self._registry.get(kind)
        filters = filters or InstanceFilter()
        listing = self._settings.listing
        per_page = filters.per_page or listing.default_page_size
        per_page = min(max(per_page, 1), listing.max_page_size)
        scope = self.visibility_for(definition, actor)
        return self._read(
            lambda session: InstanceSelector(session).list(
                definition.kind, scope, filters, per_page
            )
        )

    def visibility_for(
        self, definition: WorkflowDefinition, actor: ActorContext
    ) -> VisibilityScope:
        roles = self._settings.roles
        if actor.has_any_role(roles.admin):
            return VisibilityScope(see_all=True)
        entity_id = actor.entity_id if actor.has_any_role(roles.entity_scoped) else None
        return VisibilityScope(
            creator_id=actor.actor_id,
            entity_id=entity_id,
            queue_states=definition.actionable_states(actor.roles),
        )

    def legal_transitions(
        self, kind: WorkflowKind | str, from_state: str
    ) -> list[LegalTransition]:
        return self._registry.legal_transitions(kind, from_state)

    def verify_audit_trail(self, instance_id: UUID) -> str:
        """Validate the hash chain and replay it; return the replayed state.

        Raises:
            AuditChainBrokenError: A link, hash or replayed state mismatch.
        """

        def _verify(session: Session) -> str:
            instance = InstanceSelector(session).get(instance_id)
            AuditTrailService(session, self._clock).validate_chain(instance_id)
            replayed = replay_trail(self._registry.get(instance.kind), instance.trail)
            if replayed != instance.state:
                last_seq = instance.trail[-1].seq if instance.trail else 0
                raise AuditChainBrokenError(
                    instance_id,
                    last_seq,
                    f"trail replays to '{replayed}' but instance is '{instance.state}'",
                )
            return replayed

        return self._read(_verify)

    # ------------------------------------------------------------------
    # DoubleVerificationGate
    # ------------------------------------------------------------------

    def require_verification(
        self,
        requester: ActorContext,
        entity: EntityRef,
        original_value: Decimal,
        notes: str | None = None,
    ) -> GateResult:
        result = self._run(
            "require_verification",
            lambda engine: DoubleVerificationGate(engine).require_verification(
                requester, entity, original_value, notes
            ),
        )
        dispatch_events(self._notifier, result.events)
        return result

    def resolve_verification(
        self,
        record_id: UUID,
        verifier: ActorContext,
        decision: VerificationDecision | str,
        verified_value: Decimal | None = None,
        reason: str | None = None,
    ) -> GateResult:
        result = self._run(
            "resolve_verification",
            lambda engine: DoubleVerificationGate(engine).resolve(
                record_id,
                verifier,
                VerificationDecision(decision),
                verified_value=verified_value,
                reason=reason,
            ),
        )
        dispatch_events(self._notifier, result.events)
        return result

    def get_verification(self, record_id: UUID) -> ValueVerificationRecord:
        return self._read(
            lambda session: VerificationRecordService(session, self._clock)
            .get(record_id)
            .to_dto()
        )
