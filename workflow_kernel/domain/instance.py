"""
Instance and audit DTOs (``workflow_kernel.domain.instance``).

Responsibility
--------------
Frozen read models handed across the service boundary: a WorkflowInstance
with its audit trail, the ActionRequest the engine executes, and the paged
listing result.  ORM models convert to these via ``to_dto``; callers never
receive ORM objects.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any
from uuid import UUID

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.events import NotificationEvent
from workflow_kernel.domain.workflow import WorkflowKind


def _empty() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class TransitionRecord:
    """One immutable audit entry.

    ``from_state`` is None only for the creation entry.
    """

    instance_id: UUID
    seq: int
    action: str
    from_state: str | None
    to_state: str
    actor_id: UUID
    actor_roles: tuple[str, ...]
    occurred_at: datetime
    notes: str | None = None
    params: Mapping[str, Any] = field(default_factory=_empty)
    prev_hash: str | None = None
    hash: str | None = None

    @property
    def is_creation(self) -> bool:
        return self.from_state is None


@dataclass(frozen=True)
class WorkflowInstance:
    id: UUID
    kind: WorkflowKind
    state: str
    reference: str
    payload: Mapping[str, Any]
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    version: int
    scope_entity_id: UUID | None = None
    trail: tuple[TransitionRecord, ...] = ()

    @property
    def last_transition(self) -> TransitionRecord | None:
        return self.trail[-1] if self.trail else None


@dataclass(frozen=True)
class ExecutionOptions:
    """Per-call configuration passed into the engine.

    ``auto_scheduling_enabled`` decides whether rejecting a scheduling
    exception triggers fallback scheduling.
    """

    auto_scheduling_enabled: bool = False


@dataclass(frozen=True)
class ActionRequest:
    instance_id: UUID
    action: str
    actor: ActorContext
    params: Mapping[str, Any] = field(default_factory=_empty)
    workflow_kind: WorkflowKind | None = None
    options: ExecutionOptions = field(default_factory=ExecutionOptions)

    @property
    def notes(self) -> str | None:
        value = self.params.get("notes") or self.params.get("reason")
        return None if value is None else str(value)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of create or execute.

    ``awaiting_verification`` is the id of a verification record opened for
    a gated transition that did not run; the state is unchanged.
    """

    instance: WorkflowInstance
    events: tuple[NotificationEvent, ...] = ()
    awaiting_verification: str | None = None


@dataclass(frozen=True)
class InstanceFilter:
    state: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page: int = 1
    per_page: int | None = None


@dataclass(frozen=True)
class Page:
    items: tuple[WorkflowInstance, ...]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        if self.per_page <= 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


@dataclass(frozen=True)
class VisibilityScope:
    """Which instances of one kind an actor may list.

    ``see_all`` short-circuits the rest.  Otherwise an instance is visible
    when any of: the actor created it, its scope entity is ``entity_id``,
    or its state is in ``queue_states``.
    """

    see_all: bool = False
    creator_id: UUID | None = None
    entity_id: UUID | None = None
    queue_states: frozenset[str] = frozenset()
