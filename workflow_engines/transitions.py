"""
workflow_engines.transitions -- Pure transition legality and replay.

Responsibility:
    Decide whether an action is legal from a state, whether an actor may
    perform it, whether a payload change touched frozen fields, and what
    state an audit trail replays to.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain/ types and exceptions.

Invariants enforced:
    - Terminal states accept no action (WorkflowDefinition.outgoing is empty).
    - Role authorization and state legality are always both checked: the
      engine calls resolve_transition() and then authorize_actor() for
      every request, cancel included.
    - Replay: each entry's from_state equals the state reached so far.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.instance import TransitionRecord
from workflow_kernel.domain.workflow import TransitionDef, WorkflowDefinition
from workflow_kernel.exceptions import (
    AuditChainBrokenError,
    ForbiddenError,
    InvalidStateError,
)

_MISSING = object()


def resolve_transition(
    definition: WorkflowDefinition,
    current_state: str,
    action: str,
) -> TransitionDef:
    """Return the transition for ``action`` from ``current_state``.

    Raises:
        InvalidStateError: terminal state, unknown action, or an action that
            exists but not from this state.
    """
    transition = definition.find_transition(current_state, action)
    if transition is None:
        raise InvalidStateError(definition.kind.value, current_state, action)
    return transition


def is_authorized(
    transition: TransitionDef,
    actor: ActorContext,
    created_by: UUID | None,
) -> bool:
    if actor.has_any_role(transition.allowed_roles):
        return True
    return transition.allow_creator and created_by is not None and actor.actor_id == created_by


def authorize_actor(
    transition: TransitionDef,
    actor: ActorContext,
    created_by: UUID | None,
) -> None:
    """Raise ForbiddenError unless the actor holds an allowed role
    (or is the creator, where the transition allows that)."""
    if not is_authorized(transition, actor, created_by):
        raise ForbiddenError(
            actor_id=str(actor.actor_id),
            action=transition.action,
            allowed_roles=transition.allowed_roles,
            actor_roles=actor.roles,
        )


def missing_required_fields(
    required: Iterable[str],
    payload: Mapping[str, Any],
) -> list[str]:
    return [
        name
        for name in required
        if payload.get(name) is None or (isinstance(payload.get(name), str) and not payload[name].strip())
    ]


def changed_frozen_fields(
    frozen_fields: Iterable[str],
    before: Mapping[str, Any],
    after: Mapping[str, Any],
) -> list[str]:
    return [
        name
        for name in frozen_fields
        if before.get(name, _MISSING) != after.get(name, _MISSING)
    ]


def replay_trail(
    definition: WorkflowDefinition,
    trail: Iterable[TransitionRecord],
) -> str:
    """Reconstruct the current state from the audit trail.

    The creation entry (from_state None) must land on the initial state;
    every later entry must start where the previous one ended and name a
    transition the definition declares.

    Raises:
        AuditChainBrokenError: On any discontinuity.
    """
    state = definition.initial_state
    for entry in trail:
        if entry.from_state is None:
            if entry.seq != 1 or entry.to_state != definition.initial_state:
                raise AuditChainBrokenError(
                    entry.instance_id, entry.seq, "creation entry out of place"
                )
            continue
        if entry.from_state != state:
            raise AuditChainBrokenError(
                entry.instance_id,
                entry.seq,
                f"entry starts at '{entry.from_state}' but state was '{state}'",
            )
        declared = definition.find_transition(entry.from_state, entry.action)
        if declared is None or declared.to_state != entry.to_state:
            raise AuditChainBrokenError(
                entry.instance_id,
                entry.seq,
                f"'{entry.action}' {entry.from_state}->{entry.to_state} is not declared",
            )
        state = entry.to_state
    return state
