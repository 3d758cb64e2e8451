"""
Configuration loader (``workflow_config.loader``).

Responsibility
--------------
Reads the YAML files of a configuration set and parses them into frozen
dataclasses: WorkflowDefinitions for each kind and the EngineSettings.
Runtime callers go through ``workflow_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` / ``KeyError`` naming the offending
  file and key; required keys have no silent defaults.
* ``compute_checksum`` is a deterministic SHA-256 over the raw bytes of
  every file in the set, in load order.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from workflow_config.schema import (
    EngineSettings,
    ListingSettings,
    RoleSettings,
    SchedulingSettings,
    VerificationSettings,
    WorkflowConfigSet,
)
from workflow_kernel.domain.scheduling import SchedulingPriority
from workflow_kernel.domain.workflow import (
    NotificationTemplate,
    NotifyTarget,
    RecipientType,
    TransitionDef,
    WorkflowDefinition,
    WorkflowKind,
)

ROOT_FILE = "root.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def compute_checksum(paths: Iterable[Path]) -> str:
    digest = hashlib.sha256()
    for path in paths:
        digest.update(path.name.encode("utf-8"))
        digest.update(path.read_bytes())
    return digest.hexdigest()


def _roles(raw: Any) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        raw = [raw]
    return frozenset(str(r).strip().lower() for r in raw)


def _names(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(r) for r in raw)


def parse_notify_target(raw: Any) -> NotifyTarget:
    """Accepts ``"creator"``, ``"role:legal"`` or a mapping with a ``when`` flag."""
    if isinstance(raw, str):
        return NotifyTarget.parse(raw)
    recipient = raw.get("recipient")
    role = raw.get("role")
    if recipient is None:
        recipient = RecipientType.ROLE.value if role else None
    if recipient is None:
        raise KeyError(f"notify target needs 'recipient' or 'role': {raw!r}")
    return NotifyTarget(
        recipient=RecipientType(recipient),
        role=role,
        when=raw.get("when"),
    )


def parse_notification(raw: dict[str, Any] | None) -> NotificationTemplate | None:
    if not raw:
        return None
    return NotificationTemplate(
        title=raw["title"],
        message=raw["message"],
        targets=tuple(parse_notify_target(t) for t in raw.get("targets", ())),
        priority=raw.get("priority", "normal"),
    )


def parse_transitions(raw: dict[str, Any]) -> list[TransitionDef]:
    """One YAML entry may list several ``from`` states; each becomes a TransitionDef."""
    sources = raw["from"]
    if isinstance(sources, str):
        sources = [sources]
    notification = parse_notification(raw.get("notify"))
    return [
        TransitionDef(
            action=raw["action"],
            from_state=str(source),
            to_state=raw["to"],
            allowed_roles=_roles(raw.get("roles")),
            allow_creator=bool(raw.get("allow_creator", False)),
            guards=_names(raw.get("guards")),
            effects=_names(raw.get("effects")),
            value_gated=bool(raw.get("value_gated", False)),
            notification=notification,
        )
        for source in sources
    ]


def parse_definition(data: dict[str, Any]) -> WorkflowDefinition:
    transitions: list[TransitionDef] = []
    for raw in data.get("transitions", ()):
        transitions.extend(parse_transitions(raw))

    return WorkflowDefinition(
        kind=WorkflowKind(data["kind"]),
        label=data.get("label", data["kind"]),
        initial_state=data["initial_state"],
        states=tuple(data["states"]),
        transitions=tuple(transitions),
        success_states=frozenset(data["success_states"]),
        failure_states=frozenset(data["failure_states"]),
        terminal_states=frozenset(data["terminal_states"]),
        reference_prefix=data["reference_prefix"],
        creator_roles=_roles(data.get("creator_roles")),
        required_fields=_names(data.get("required_fields")),
        defaults=MappingProxyType(dict(data.get("defaults") or {})),
        on_create=_names(data.get("on_create")),
        frozen_fields=_names(data.get("frozen_fields")),
        value_field=data.get("value_field"),
        scope_field=data.get("scope_field"),
        creation_notification=parse_notification(data.get("notify_on_create")),
    )


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    scheduling = data.get("scheduling") or {}
    verification = data.get("verification") or {}
    listing = data.get("listing") or {}
    roles = data.get("roles") or {}

    thresholds = {
        WorkflowKind(kind): Decimal(str(value))
        for kind, value in (verification.get("thresholds") or {}).items()
    }

    defaults = EngineSettings()
    return EngineSettings(
        auto_scheduling_enabled=bool(
            data.get("auto_scheduling_enabled", defaults.auto_scheduling_enabled)
        ),
        max_transition_attempts=int(
            data.get("max_transition_attempts", defaults.max_transition_attempts)
        ),
        scheduling=SchedulingSettings(
            priority=SchedulingPriority(scheduling.get("priority", "cost")),
            max_distance_km=float(scheduling.get("max_distance_km", 50)),
            max_provider_load=int(scheduling.get("max_provider_load", 50)),
            price_ceiling=Decimal(str(scheduling.get("price_ceiling", "10000"))),
        ),
        verification=VerificationSettings(thresholds=thresholds),
        listing=ListingSettings(
            default_page_size=int(listing.get("default_page_size", 20)),
            max_page_size=int(listing.get("max_page_size", 100)),
        ),
        roles=RoleSettings(
            admin=_roles(roles.get("admin", ["admin", "super_admin"])),
            entity_scoped=_roles(roles.get("entity_scoped", ["plan_admin", "clinic_admin"])),
        ),
    )


def load_config_set(set_dir: Path) -> WorkflowConfigSet:
    """Load ``root.yaml`` and every workflow file it lists."""
    root_path = set_dir / ROOT_FILE
    root = load_yaml_file(root_path)

    paths = [root_path]
    definitions = []
    for relative in root.get("workflows", ()):
        path = set_dir / relative
        paths.append(path)
        definitions.append(parse_definition(load_yaml_file(path)))

    return WorkflowConfigSet(
        config_id=root["config_id"],
        version=int(root.get("version", 1)),
        settings=parse_settings(root.get("settings") or {}),
        definitions=tuple(definitions),
        checksum=compute_checksum(paths),
    )
