"""
Structural validation of workflow definitions.

Runs once at load time so that a malformed graph never reaches the engine.
Each check appends a human-readable message; a definition is valid when
the list is empty.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from workflow_config.schema import WorkflowConfigSet
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import DefinitionValidationError


def validate_definition(
    definition: WorkflowDefinition,
    known_guards: Iterable[str] | None = None,
    known_effects: Iterable[str] | None = None,
    known_hooks: Iterable[str] | None = None,
) -> list[str]:
    """Return every structural problem of ``definition``.

    Name checks against guard/effect/hook registries run only when the
    corresponding ``known_*`` collection is given.
    """
    errors: list[str] = []
    states = set(definition.states)

    if len(states) != len(definition.states):
        errors.append("states contains duplicates")
    if definition.initial_state not in states:
        errors.append(f"initial_state '{definition.initial_state}' is not declared")

    for name, subset in (
        ("success_states", definition.success_states),
        ("failure_states", definition.failure_states),
        ("terminal_states", definition.terminal_states),
    ):
        if not subset:
            errors.append(f"{name} is empty")
        for state in sorted(subset - states):
            errors.append(f"{name} references undeclared state '{state}'")

    if not definition.success_states & definition.terminal_states:
        errors.append("no terminal success state")
    if not definition.failure_states & definition.terminal_states:
        errors.append("no terminal failure state")
    if definition.initial_state in definition.terminal_states:
        errors.append("initial_state cannot be terminal")
    if not definition.creator_roles:
        errors.append("creator_roles is empty")

    pairs = Counter((t.from_state, t.action) for t in definition.transitions)
    for (from_state, action), count in sorted(pairs.items()):
        if count > 1:
            errors.append(f"'{action}' declared {count} times from '{from_state}'")

    for t in definition.transitions:
        label = f"{t.action} {t.from_state}->{t.to_state}"
        if t.from_state not in states:
            errors.append(f"{label}: from_state not declared")
        if t.to_state not in states:
            errors.append(f"{label}: to_state not declared")
        if t.from_state in definition.terminal_states:
            errors.append(f"{label}: leaves a terminal state")
        if not t.allowed_roles and not t.allow_creator:
            errors.append(f"{label}: no allowed roles")
        if t.value_gated and definition.value_field is None:
            errors.append(f"{label}: value_gated but kind has no value_field")
        if known_guards is not None:
            for guard in t.guards:
                if guard not in set(known_guards):
                    errors.append(f"{label}: unknown guard '{guard}'")
        if known_effects is not None:
            for effect in t.effects:
                if effect not in set(known_effects):
                    errors.append(f"{label}: unknown effect '{effect}'")

    if known_hooks is not None:
        for hook in definition.on_create:
            if hook not in set(known_hooks):
                errors.append(f"unknown on_create hook '{hook}'")

    outgoing = {t.from_state for t in definition.transitions}
    for state in definition.states:
        if state not in definition.terminal_states and state not in outgoing:
            errors.append(f"non-terminal state '{state}' has no outgoing transition")

    return errors


def validate_config_set(
    config: WorkflowConfigSet,
    known_guards: Iterable[str] | None = None,
    known_effects: Iterable[str] | None = None,
    known_hooks: Iterable[str] | None = None,
) -> None:
    """Raise DefinitionValidationError for the first invalid definition."""
    kinds = Counter(d.kind for d in config.definitions)
    for kind, count in kinds.items():
        if count > 1:
            raise DefinitionValidationError(kind.value, [f"defined {count} times"])

    for definition in config.definitions:
        errors = validate_definition(
            definition,
            known_guards=known_guards,
            known_effects=known_effects,
            known_hooks=known_hooks,
        )
        if errors:
            raise DefinitionValidationError(definition.kind.value, errors)
