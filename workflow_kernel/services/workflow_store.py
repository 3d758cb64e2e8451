"""
WorkflowStore -- load and persist workflow instances.

Responsibility:
    The single place that reads WorkflowInstanceModel rows for mutation.
    ``load_for_update`` takes the per-instance write lock on PostgreSQL
    (SELECT ... FOR UPDATE) and always refreshes the identity map, so a
    retried operation re-reads the committed state.

Architecture position:
    Kernel > Services.  Flush-only; the caller owns the transaction.

Failure modes:
    - InstanceNotFoundError when the id is unknown.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_kernel.domain.instance import WorkflowInstance
from workflow_kernel.exceptions import InstanceNotFoundError
from workflow_kernel.models.workflow import WorkflowInstanceModel
from workflow_kernel.services.audit_trail import AuditTrailService


class WorkflowStore:
    def __init__(self, session: Session, audit: AuditTrailService):
        self._session = session
        self._audit = audit

    def add(self, instance: WorkflowInstanceModel) -> WorkflowInstanceModel:
        self._session.add(instance)
        self._session.flush()
        return instance

    def load(self, instance_id: UUID) -> WorkflowInstanceModel:
        instance = self._session.get(WorkflowInstanceModel, instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def load_for_update(self, instance_id: UUID) -> WorkflowInstanceModel:
        instance = self._session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def to_dto(self, instance: WorkflowInstanceModel) -> WorkflowInstance:
        return instance.to_dto(trail=self._audit.entries(instance.id))
