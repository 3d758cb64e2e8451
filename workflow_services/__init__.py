"""
workflow_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel and the pure engines: the
    generic WorkflowEngine, its guard and side-effect registries, the
    DoubleVerificationGate, the SchedulingProviderSelector and the
    WorkflowService operation surface.  This is the only layer that holds
    sessions across calls, reads the wall clock or dispatches
    notifications.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        workflow_services/ -> workflow_engines/  (allowed)
        workflow_services/ -> workflow_kernel/   (allowed)
        workflow_services/ -> workflow_config/   (allowed)
        workflow_engines/  -> workflow_services/ (FORBIDDEN)
        workflow_kernel/   -> workflow_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: workflow_kernel and workflow_engines never import
      from this package.
    - All per-session wiring is centralised in WorkflowService.
"""

from workflow_kernel.logging_config import get_logger

logger = get_logger("services")

from workflow_services.guards import GuardExecutor, default_guard_executor
from workflow_services.notifications import LoggingNotifier, Notifier
from workflow_services.scheduling_service import (
    SchedulingProviderSelector,
    StaticProviderDirectory,
)
from workflow_services.side_effects import SideEffectRegistry, default_side_effects
from workflow_services.verification_gate import DoubleVerificationGate, GateResult
from workflow_services.workflow_engine import WorkflowEngine
from workflow_services.workflow_service import WorkflowService

__all__ = [
    "DoubleVerificationGate",
    "GateResult",
    "GuardExecutor",
    "LoggingNotifier",
    "Notifier",
    "SchedulingProviderSelector",
    "SideEffectRegistry",
    "StaticProviderDirectory",
    "WorkflowEngine",
    "WorkflowService",
    "default_guard_executor",
    "default_side_effects",
]
