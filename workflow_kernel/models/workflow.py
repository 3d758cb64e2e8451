"""
Module: workflow_kernel.models.workflow
Responsibility: ORM persistence for workflow instances and their audit trail.

Architecture position: Kernel > Models.  May import from db/base.py, the
    exception module and domain DTOs (inside to_dto only).

Invariants enforced:
    - Optimistic locking: ``version`` is SQLAlchemy's version_id_col, so an
      UPDATE issued from a stale read affects zero rows and raises
      StaleDataError.
    - Audit ordering: UNIQUE(instance_id, seq) gives each instance one
      gap-free sequence of transitions; two writers cannot both record
      transition n+1.
    - Append-only audit: ORM listeners reject UPDATE and DELETE on
      TransitionModel.

Failure modes:
    - StaleDataError / IntegrityError on a lost race (mapped to
      ConcurrentTransitionError by the engine).
    - ImmutabilityViolationError on any attempt to alter an audit row.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.instance import TransitionRecord, WorkflowInstance


class WorkflowInstanceModel(Base):
    """One business object under approval tracking.

    ``state`` is only ever written by the WorkflowEngine.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("idx_workflow_instances_kind_state", "kind", "state"),
        Index("idx_workflow_instances_kind_created", "kind", "created_at"),
        Index("idx_workflow_instances_scope", "scope_entity_id"),
        UniqueConstraint("reference", name="uq_workflow_instances_reference"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    reference: Mapped[str] = mapped_column(String(40), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    scope_entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.reference} {self.kind}:{self.state}>"

    def to_dto(self, trail: tuple[TransitionRecord, ...] = ()) -> WorkflowInstance:
        from types import MappingProxyType

        from workflow_kernel.domain.instance import WorkflowInstance as InstanceDTO
        from workflow_kernel.domain.workflow import WorkflowKind

        return InstanceDTO(
            id=self.id,
            kind=WorkflowKind(self.kind),
            state=self.state,
            reference=self.reference,
            payload=MappingProxyType(dict(self.payload or {})),
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
            scope_entity_id=self.scope_entity_id,
            trail=trail,
        )


class TransitionModel(Base):
    """Append-only audit entry.  ``from_state`` is NULL for the creation entry."""

    __tablename__ = "workflow_transitions"

    __table_args__ = (
        UniqueConstraint("instance_id", "seq", name="uq_workflow_transitions_seq"),
        Index("idx_workflow_transitions_actor", "actor_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    params: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def to_dto(self) -> TransitionRecord:
        from types import MappingProxyType

        from workflow_kernel.domain.instance import TransitionRecord as RecordDTO

        return RecordDTO(
            instance_id=self.instance_id,
            seq=self.seq,
            action=self.action,
            from_state=self.from_state,
            to_state=self.to_state,
            actor_id=self.actor_id,
            actor_roles=tuple(self.actor_roles or ()),
            occurred_at=self.occurred_at,
            notes=self.notes,
            params=MappingProxyType(dict(self.params or {})),
            prev_hash=self.prev_hash,
            hash=self.hash,
        )


@event.listens_for(TransitionModel, "before_update")
def prevent_transition_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowTransition",
        entity_id=f"{target.instance_id}#{target.seq}",
        reason="Audit entries are append-only -- cannot modify",
    )


@event.listens_for(TransitionModel, "before_delete")
def prevent_transition_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowTransition",
        entity_id=f"{target.instance_id}#{target.seq}",
        reason="Audit entries are append-only -- cannot delete",
    )
