"""ORM models for the workflow kernel."""

from workflow_kernel.models.scheduling import AppointmentModel, SolicitationModel
from workflow_kernel.models.verification import ValueVerificationModel
from workflow_kernel.models.workflow import TransitionModel, WorkflowInstanceModel

__all__ = [
    "AppointmentModel",
    "SolicitationModel",
    "TransitionModel",
    "ValueVerificationModel",
    "WorkflowInstanceModel",
]
