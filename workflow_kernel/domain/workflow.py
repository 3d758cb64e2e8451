"""
Workflow definition types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing, per workflow kind, the state graph, the legal
transitions, who may fire them and what must hold before they fire.  The
engine reads these; nothing mutates them after load.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``(from_state, action)`` resolves to at most one TransitionDef per kind.
* ``legal_transitions`` of a terminal state is empty.
* Structural invariants (declared states, reachability of a success and a
  failure terminal, non-empty roles) are checked by
  ``workflow_config.validator`` at load time.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any

from workflow_kernel.exceptions import UnknownKindError


class WorkflowKind(str, Enum):
    """The business objects tracked by the engine."""

    CONTRACT = "contract"
    DELIBERATION = "deliberation"
    EXTEMPORANEOUS_NEGOTIATION = "extemporaneous_negotiation"
    SCHEDULING_EXCEPTION = "scheduling_exception"
    VALUE_VERIFICATION = "value_verification"

    @classmethod
    def parse(cls, value: "WorkflowKind | str") -> "WorkflowKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise UnknownKindError(str(value)) from None


class RecipientType(str, Enum):
    CREATOR = "creator"
    ACTOR = "actor"
    ROLE = "role"
    ENTITY_ADMINS = "entity_admins"


@dataclass(frozen=True)
class NotifyTarget:
    """Who is told about a transition.

    ``role`` is set only for RecipientType.ROLE.  ``when`` names a payload
    flag that must be truthy for the target to receive the notification.
    """

    recipient: RecipientType
    role: str | None = None
    when: str | None = None

    @classmethod
    def parse(cls, raw: str) -> "NotifyTarget":
        if raw.startswith("role:"):
            return cls(RecipientType.ROLE, raw.split(":", 1)[1].strip())
        return cls(RecipientType(raw))


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    message: str
    targets: tuple[NotifyTarget, ...] = ()
    priority: str = "normal"


@dataclass(frozen=True)
class TransitionDef:
    """A legal move of the state graph.

    Contract:
        ``allowed_roles`` empty together with ``allow_creator=False`` is a
        configuration error caught by the validator.  ``guards`` and
        ``effects`` name callables registered in ``workflow_services``.
        ``value_gated`` marks the gate trigger for DoubleVerificationGate.
    """

    action: str
    from_state: str
    to_state: str
    allowed_roles: frozenset[str]
    allow_creator: bool = False
    guards: tuple[str, ...] = ()
    effects: tuple[str, ...] = ()
    value_gated: bool = False
    notification: NotificationTemplate | None = None

    @property
    def requires_precondition(self) -> bool:
        return bool(self.guards) or self.value_gated

    @property
    def is_self_loop(self) -> bool:
        return self.from_state == self.to_state


@dataclass(frozen=True)
class LegalTransition:
    """Read view returned by ``LegalTransitions(kind, from_state)``."""

    action: str
    to_state: str
    allowed_roles: frozenset[str]
    allow_creator: bool
    requires_precondition: bool


@dataclass(frozen=True)
class WorkflowDefinition:
    """A state machine for one workflow kind.

    Contract: frozen; loaded once at process start.
    Guarantees: ``states`` keeps declaration order; ``initial_state`` is
    a member of ``states``.
    """

    kind: WorkflowKind
    label: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[TransitionDef, ...]
    success_states: frozenset[str]
    failure_states: frozenset[str]
    terminal_states: frozenset[str]
    reference_prefix: str
    creator_roles: frozenset[str]
    required_fields: tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    on_create: tuple[str, ...] = ()
    frozen_fields: tuple[str, ...] = ()
    value_field: str | None = None
    scope_field: str | None = None
    creation_notification: NotificationTemplate | None = None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def has_state(self, state: str) -> bool:
        return state in self.states

    def outgoing(self, from_state: str) -> tuple[TransitionDef, ...]:
        if self.is_terminal(from_state):
            return ()
        return tuple(t for t in self.transitions if t.from_state == from_state)

    def find_transition(self, from_state: str, action: str) -> TransitionDef | None:
        for t in self.outgoing(from_state):
            if t.action == action:
                return t
        return None

    def legal_transitions(self, from_state: str) -> list[LegalTransition]:
        return [
            LegalTransition(
                action=t.action,
                to_state=t.to_state,
                allowed_roles=t.allowed_roles,
                allow_creator=t.allow_creator,
                requires_precondition=t.requires_precondition,
            )
            for t in self.outgoing(from_state)
        ]

    def actionable_states(self, roles: Iterable[str]) -> frozenset[str]:
        """States from which a holder of any of ``roles`` may act."""
        held = {r.lower() for r in roles}
        return frozenset(
            t.from_state
            for t in self.transitions
            if t.allowed_roles & held and not self.is_terminal(t.from_state)
        )

    def value_of(self, payload: Mapping[str, Any]) -> Decimal | None:
        if self.value_field is None:
            return None
        raw = payload.get(self.value_field)
        return None if raw is None else Decimal(str(raw))


class DefinitionRegistry:
    """Immutable lookup of WorkflowDefinitions by kind."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]):
        self._by_kind: dict[WorkflowKind, WorkflowDefinition] = {
            d.kind: d for d in definitions
        }

    def get(self, kind: WorkflowKind | str) -> WorkflowDefinition:
        parsed = WorkflowKind.parse(kind)
        try:
            return self._by_kind[parsed]
        except KeyError:
            raise UnknownKindError(parsed.value) from None

    def legal_transitions(
        self, kind: WorkflowKind | str, from_state: str
    ) -> list[LegalTransition]:
        return self.get(kind).legal_transitions(from_state)

    def kinds(self) -> tuple[WorkflowKind, ...]:
        return tuple(self._by_kind)

    def __contains__(self, kind: object) -> bool:
        try:
            return WorkflowKind.parse(kind) in self._by_kind  # type: ignore[arg-type]
        except UnknownKindError:
            return False

    def __iter__(self):
        return iter(self._by_kind.values())

    def __len__(self) -> int:
        return len(self._by_kind)
