"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow instances, their steps and
    the append-only transition history.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Valid statuses: DB check constraints limit instance and step status
      values; the sequencer enforces transition rules.
    - One in-flight chain per subject: partial unique index on
      (tenant_id, subject_ref) over non-terminal instances.
    - Single pending step: partial unique index on instance_id over steps
      whose status is 'action_pending'.  Concurrent writers that would
      both activate a step fail at the database, not in a later scan.
    - Contiguous chain: UNIQUE(instance_id, sequence).
    - Append-only history: ORM before_update/before_delete listeners raise
      ImmutabilityViolationError; UNIQUE(instance_id, entry_seq) orders
      entries that share a timestamp.

Failure modes:
    - IntegrityError on a second in-flight instance for a subject.
    - IntegrityError on a second action_pending step for an instance.
    - ImmutabilityViolationError on history UPDATE/DELETE.

Audit relevance:
    The history table is the audit trail: every step or instance status
    change writes exactly one row, naming the actor ("system:escalation"
    for the sweeper).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        WorkflowHistoryEntry,
        WorkflowInstance,
        WorkflowStep,
    )


_IN_FLIGHT = "status IN ('initiated', 'in_progress')"
_PENDING = "status = 'action_pending'"


class WorkflowInstanceModel(Base):
    """Persistent workflow instance (header).

    Contract:
        ``cutoff_date`` is computed once at creation
        (due_date - lead_time_days) and never recomputed.
        ``escalated_at`` is set by the sweeper the first time it forces the
        instance forward; an instance is force-advanced at most once.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('initiated', 'in_progress', 'completed', 'cancelled')",
            name="ck_workflow_instances_valid_status",
        ),
        CheckConstraint(
            "lead_time_days >= 0",
            name="ck_workflow_instances_lead_time",
        ),
        Index(
            "ix_workflow_instances_subject_in_flight",
            "tenant_id", "subject_ref",
            unique=True,
            postgresql_where=text(_IN_FLIGHT),
            sqlite_where=text(_IN_FLIGHT),
        ),
        # Sweeper scan: in_progress instances past their cutoff
        Index(
            "ix_workflow_instances_sweep",
            "status", "cutoff_date",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cutoff_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="initiated",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    escalated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="instance",
        order_by="WorkflowStepModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.workflow_type} "
            f"subject={self.subject_ref} status={self.status}>"
        )

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            InstanceStatus,
            WorkflowInstance as WorkflowInstanceDTO,
        )

        return WorkflowInstanceDTO(
            instance_id=self.id,
            tenant_id=self.tenant_id,
            workflow_type=self.workflow_type,
            subject_ref=self.subject_ref,
            due_date=self.due_date,
            lead_time_days=self.lead_time_days,
            cutoff_date=self.cutoff_date,
            status=InstanceStatus(self.status),
            created_at=self.created_at,
            created_by=self.created_by,
            resolved_at=self.resolved_at,
            escalated_at=self.escalated_at,
        )


class WorkflowStepModel(Base):
    """Persistent workflow step (detail).

    Contract:
        Steps are created in bulk with their instance and never deleted.
        The ``action_pending -> decided`` change is only ever made by the
        conditional UPDATE in DecisionProcessor.
    """

    __tablename__ = "workflow_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('inactive', 'action_pending', 'approved', "
            "'rejected', 'escalated')",
            name="ck_workflow_steps_valid_status",
        ),
        CheckConstraint("sequence >= 1", name="ck_workflow_steps_sequence"),
        UniqueConstraint(
            "instance_id", "sequence",
            name="uq_workflow_steps_sequence",
        ),
        Index(
            "ix_workflow_steps_single_pending",
            "instance_id",
            unique=True,
            postgresql_where=text(_PENDING),
            sqlite_where=text(_PENDING),
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="inactive",
    )
    decided_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    instance: Mapped["WorkflowInstanceModel"] = relationship(
        "WorkflowInstanceModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowStep {self.id} seq={self.sequence} "
            f"role={self.role} status={self.status}>"
        )

    def to_dto(self) -> WorkflowStep:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            StepStatus,
            WorkflowStep as WorkflowStepDTO,
        )

        return WorkflowStepDTO(
            step_id=self.id,
            instance_id=self.instance_id,
            sequence=self.sequence,
            role=self.role,
            status=StepStatus(self.status),
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            notes=self.notes,
        )


class WorkflowHistoryModel(Base):
    """Persistent audit trail entry. Append-only.

    Contract:
        History rows are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "workflow_history"

    __table_args__ = (
        CheckConstraint(
            "action IN ('initiated', 'activated', 'approved', 'rejected', "
            "'escalated', 'reverted', 'completed', 'cancelled')",
            name="ck_workflow_history_valid_action",
        ),
        UniqueConstraint(
            "instance_id", "entry_seq",
            name="uq_workflow_history_entry_seq",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    entry_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    step_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_steps.id"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowHistory {self.instance_id}#{self.entry_seq} "
            f"{self.action} by {self.actor}>"
        )

    def to_dto(self) -> WorkflowHistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            HistoryAction,
            WorkflowHistoryEntry as HistoryDTO,
        )

        return HistoryDTO(
            entry_id=self.id,
            instance_id=self.instance_id,
            step_id=self.step_id,
            action=HistoryAction(self.action),
            actor=self.actor,
            timestamp=self.timestamp,
            from_status=self.from_status,
            to_status=self.to_status,
            notes=self.notes,
        )


# =============================================================================
# ORM-Level Immutability for History (Append-Only)
# =============================================================================


@event.listens_for(WorkflowHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to workflow history records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistory",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot modify",
    )


@event.listens_for(WorkflowHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of workflow history records."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowHistory",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot delete",
    )
