"""
Pure domain layer.

Frozen value objects and enums with NO dependencies on the ORM, the
database, the clock or any I/O.
"""

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.events import NotificationEvent, Recipient
from workflow_kernel.domain.instance import (
    ActionRequest,
    ExecutionOptions,
    ExecutionResult,
    InstanceFilter,
    Page,
    TransitionRecord,
    WorkflowInstance,
)
from workflow_kernel.domain.scheduling import (
    AppointmentStatus,
    FallbackOutcome,
    ProviderAssignment,
    ProviderCandidate,
    ProviderRef,
    ScheduledSlot,
    SchedulingPriority,
    SolicitationSnapshot,
    SolicitationStatus,
)
from workflow_kernel.domain.verification import (
    EntityRef,
    ValueVerificationRecord,
    VerificationDecision,
    VerificationStatus,
)
from workflow_kernel.domain.workflow import (
    DefinitionRegistry,
    LegalTransition,
    NotificationTemplate,
    NotifyTarget,
    RecipientType,
    TransitionDef,
    WorkflowDefinition,
    WorkflowKind,
)

__all__ = [
    "ActionRequest",
    "ActorContext",
    "AppointmentStatus",
    "Clock",
    "DefinitionRegistry",
    "DeterministicClock",
    "EntityRef",
    "ExecutionOptions",
    "ExecutionResult",
    "FallbackOutcome",
    "InstanceFilter",
    "LegalTransition",
    "NotificationEvent",
    "NotificationTemplate",
    "NotifyTarget",
    "Page",
    "ProviderAssignment",
    "ProviderCandidate",
    "ProviderRef",
    "Recipient",
    "RecipientType",
    "ScheduledSlot",
    "SchedulingPriority",
    "SolicitationSnapshot",
    "SolicitationStatus",
    "SystemClock",
    "TransitionDef",
    "TransitionRecord",
    "ValueVerificationRecord",
    "VerificationDecision",
    "VerificationStatus",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowKind",
]
