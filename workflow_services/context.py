"""
TransitionContext -- everything a guard, effect or creation hook may read.

One context is built per create/execute call.  ``payload`` is a working
copy of the instance payload; effects return updates which the engine
merges into it, so the frozen-field check sees every change in one place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.instance import ExecutionOptions
from workflow_kernel.domain.workflow import TransitionDef, WorkflowDefinition
from workflow_kernel.models.workflow import WorkflowInstanceModel
from workflow_kernel.services.verification_service import VerificationRecordService

if TYPE_CHECKING:
    from workflow_services.scheduling_service import SchedulingProviderSelector


@dataclass
class TransitionContext:
    session: Session
    clock: Clock
    definition: WorkflowDefinition
    instance: WorkflowInstanceModel
    actor: ActorContext
    action: str
    from_state: str | None
    to_state: str
    payload: dict[str, Any]
    verifications: VerificationRecordService
    scheduler: SchedulingProviderSelector | None = None
    transition: TransitionDef | None = None
    params: Mapping[str, Any] = field(default_factory=dict)
    options: ExecutionOptions = field(default_factory=ExecutionOptions)
    verified_value: Decimal | None = None

    def param(self, name: str, default: Any = None) -> Any:
        value = self.params.get(name)
        return default if value is None else value

    @property
    def reason(self) -> str | None:
        """Stripped ``reason`` (or ``notes``) param; None when blank."""
        raw = self.params.get("reason") or self.params.get("notes")
        if raw is None:
            return None
        text = str(raw).strip()
        return text or None

    @property
    def is_creation(self) -> bool:
        return self.from_state is None

    def require_scheduler(self) -> SchedulingProviderSelector:
        if self.scheduler is None:
            raise RuntimeError("No SchedulingProviderSelector configured for this engine")
        return self.scheduler
