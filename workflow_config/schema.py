"""
Configuration schema (``workflow_config.schema``).

Frozen dataclasses for the engine settings section of a configuration set.
Workflow graphs parse directly into ``workflow_kernel.domain.workflow``
types, so the kernel never depends on this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from workflow_kernel.domain.scheduling import SchedulingPriority
from workflow_kernel.domain.workflow import (
    DefinitionRegistry,
    WorkflowDefinition,
    WorkflowKind,
)


@dataclass(frozen=True)
class SchedulingSettings:
    priority: SchedulingPriority = SchedulingPriority.COST
    max_distance_km: float = 50.0
    max_provider_load: int = 50
    price_ceiling: Decimal = Decimal("10000")


@dataclass(frozen=True)
class VerificationSettings:
    """``thresholds`` maps a kind to the value at or above which its
    instances are value-gated even without the payload opt-in flag."""

    thresholds: dict[WorkflowKind, Decimal] = field(default_factory=dict)

    def threshold_for(self, kind: WorkflowKind) -> Decimal | None:
        return self.thresholds.get(kind)


@dataclass(frozen=True)
class ListingSettings:
    default_page_size: int = 20
    max_page_size: int = 100


@dataclass(frozen=True)
class RoleSettings:
    admin: frozenset[str] = frozenset({"admin", "super_admin"})
    entity_scoped: frozenset[str] = frozenset({"plan_admin", "clinic_admin"})


@dataclass(frozen=True)
class EngineSettings:
    auto_scheduling_enabled: bool = False
    max_transition_attempts: int = 3
    scheduling: SchedulingSettings = field(default_factory=SchedulingSettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)
    listing: ListingSettings = field(default_factory=ListingSettings)
    roles: RoleSettings = field(default_factory=RoleSettings)


@dataclass(frozen=True)
class WorkflowConfigSet:
    """The runtime artifact returned by ``get_active_config()``."""

    config_id: str
    version: int
    settings: EngineSettings
    definitions: tuple[WorkflowDefinition, ...]
    checksum: str

    def registry(self) -> DefinitionRegistry:
        return DefinitionRegistry(self.definitions)
