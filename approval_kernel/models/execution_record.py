"""
Module: approval_kernel.models.execution_record
Responsibility: ORM persistence for the downstream unit of work created
    when an approval chain completes (maintenance job, inspection job,
    contract renewal).

Architecture position: Kernel > Models.  May import from db/base.py.

Invariants enforced:
    - Exactly-once completion: UNIQUE(instance_id) and UNIQUE(idempotency_key).
      The completion handler checks first and the constraint backs it up
      when two completers race.

Failure modes:
    - IntegrityError on a second record for the same instance.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ExecutionRecord


class ExecutionRecordModel(Base):
    """Downstream record produced by a completed workflow instance."""

    __tablename__ = "execution_records"

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
        unique=True,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(300), nullable=False, unique=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    record_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ExecutionRecord {self.id} {self.record_type} "
            f"instance={self.instance_id}>"
        )

    def to_dto(self) -> ExecutionRecord:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ExecutionRecord as ExecutionRecordDTO,
        )

        return ExecutionRecordDTO(
            record_id=self.id,
            instance_id=self.instance_id,
            tenant_id=self.tenant_id,
            record_type=self.record_type,
            subject_ref=self.subject_ref,
            idempotency_key=self.idempotency_key,
            created_at=self.created_at,
        )
