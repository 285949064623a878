"""
approval_kernel.services.audit_trail -- Append-only workflow history.

Responsibility:
    Records one history entry per step or instance status change and reads
    the trail back in order.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Append-only: entries are only ever INSERTed (ORM listeners reject
      UPDATE/DELETE on WorkflowHistoryModel).
    - Total order per instance: ``entry_seq`` is max+1 within the
      instance and unique, so entries written in the same clock instant
      keep their causal order.

Failure modes:
    - IntegrityError if two writers append to the same instance at the same
      moment (the loser's transaction rolls back).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    HistoryAction,
    StepStatus,
    WorkflowHistoryEntry,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import WorkflowHistoryModel

logger = get_logger("services.audit_trail")


def _status_value(status: StepStatus | str | None) -> str | None:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else str(status)


class AuditTrail:
    """Append-only history writer and reader.

    Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        instance_id: UUID,
        action: HistoryAction,
        actor: str,
        *,
        step_id: UUID | None = None,
        from_status: StepStatus | str | None = None,
        to_status: StepStatus | str | None = None,
        notes: str | None = None,
        timestamp: datetime | None = None,
    ) -> WorkflowHistoryEntry:
        """Append one entry to the instance's history."""
        current = self._session.execute(
            select(func.max(WorkflowHistoryModel.entry_seq)).where(
                WorkflowHistoryModel.instance_id == instance_id,
            )
        ).scalar_one()

        model = WorkflowHistoryModel(
            instance_id=instance_id,
            entry_seq=(current or 0) + 1,
            step_id=step_id,
            action=action.value,
            actor=actor,
            timestamp=timestamp or self._clock.now(),
            from_status=_status_value(from_status),
            to_status=_status_value(to_status),
            notes=notes,
        )
        self._session.add(model)
        self._session.flush()

        logger.debug(
            "history_recorded",
            extra={
                "instance_id": str(instance_id),
                "entry_seq": model.entry_seq,
                "action": action.value,
                "history_actor": actor,
            },
        )
        return model.to_dto()

    def entries_for(self, instance_id: UUID) -> list[WorkflowHistoryEntry]:
        """Full trail for an instance, oldest first."""
        models = self._session.execute(
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.instance_id == instance_id)
            .order_by(WorkflowHistoryModel.entry_seq)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def entries_for_step(self, step_id: UUID) -> list[WorkflowHistoryEntry]:
        models = self._session.execute(
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.step_id == step_id)
            .order_by(WorkflowHistoryModel.entry_seq)
        ).scalars().all()
        return [m.to_dto() for m in models]
