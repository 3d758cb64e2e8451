"""
InstanceSelector -- GetInstance and ListInstances read paths.

Responsibility:
    Returns instance DTOs with their full audit trail, and paginated,
    role-scoped listings per workflow kind.

Architecture position:
    Kernel > Selectors.  The visibility rules arrive precomputed as a
    VisibilityScope; this module only translates them into SQL.
"""

from sqlalchemy import false, func, or_, select

from workflow_kernel.domain.instance import (
    InstanceFilter,
    Page,
    VisibilityScope,
    WorkflowInstance,
)
from workflow_kernel.domain.workflow import WorkflowKind
from workflow_kernel.exceptions import InstanceNotFoundError
from workflow_kernel.models.workflow import TransitionModel, WorkflowInstanceModel
from workflow_kernel.selectors.base import BaseSelector


class InstanceSelector(BaseSelector):
    def get(self, instance_id) -> WorkflowInstance:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        trail = self.session.execute(
            select(TransitionModel)
            .where(TransitionModel.instance_id == instance_id)
            .order_by(TransitionModel.seq)
        ).scalars().all()
        return model.to_dto(trail=tuple(t.to_dto() for t in trail))

    def list(
        self,
        kind: WorkflowKind,
        scope: VisibilityScope,
        filters: InstanceFilter,
        per_page: int,
    ) -> Page:
        """
        List instances of ``kind`` visible under ``scope``, newest first.

        Listed DTOs carry no trail; use get() for the history of one instance.
        """
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.kind == kind.value
        )

        if not scope.see_all:
            clauses = []
            if scope.creator_id is not None:
                clauses.append(WorkflowInstanceModel.created_by == scope.creator_id)
            if scope.entity_id is not None:
                clauses.append(WorkflowInstanceModel.scope_entity_id == scope.entity_id)
            if scope.queue_states:
                clauses.append(WorkflowInstanceModel.state.in_(sorted(scope.queue_states)))
            stmt = stmt.where(or_(*clauses) if clauses else false())

        if filters.state is not None:
            stmt = stmt.where(WorkflowInstanceModel.state == filters.state)
        if filters.created_from is not None:
            stmt = stmt.where(WorkflowInstanceModel.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(WorkflowInstanceModel.created_at <= filters.created_to)

        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        page = max(filters.page, 1)
        rows = self.session.execute(
            stmt.order_by(
                WorkflowInstanceModel.created_at.desc(),
                WorkflowInstanceModel.reference.desc(),
            )
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars().all()

        return Page(
            items=tuple(r.to_dto() for r in rows),
            total=total,
            page=page,
            per_page=per_page,
        )
