"""
CompletionRetrier -- Re-drives failed completion side effects.

Contract:
    Finds ``completed`` instances that have no execution record (the side
    effect failed after the decision committed) and re-invokes the
    idempotent completion handler for each, one SAVEPOINT per instance.

Architecture: approval_batch.  Imports from approval_kernel.

Invariants enforced:
    - Idempotent: the handler is keyed on the instance id, so a retry that
      races a late original never creates a second record.
    - SAVEPOINT isolation per instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.workflow import InstanceStatus
from approval_kernel.logging_config import get_logger
from approval_kernel.models.execution_record import ExecutionRecordModel
from approval_kernel.models.workflow import WorkflowInstanceModel
from approval_kernel.services.completion_handler import CompletionHandler

logger = get_logger("batch.completion_retry")


@dataclass(frozen=True)
class CompletionRetrySummary:
    scanned: int = 0
    created: int = 0
    failed: int = 0
    failed_instance_ids: tuple[UUID, ...] = field(default_factory=tuple)


class CompletionRetrier:
    """Retries completion for completed instances missing their record.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        handler: CompletionHandler,
        batch_limit: int | None = None,
    ) -> None:
        self._session = session
        self._handler = handler
        self._batch_limit = batch_limit

    def missing_records(self) -> list[WorkflowInstanceModel]:
        has_record = select(ExecutionRecordModel.id).where(
            ExecutionRecordModel.instance_id == WorkflowInstanceModel.id,
        ).exists()
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.status == InstanceStatus.COMPLETED.value,
                ~has_record,
            )
            .order_by(WorkflowInstanceModel.resolved_at)
        )
        if self._batch_limit is not None:
            stmt = stmt.limit(self._batch_limit)
        return list(self._session.execute(stmt).scalars().all())

    def run(self) -> CompletionRetrySummary:
        instances = self.missing_records()
        created = 0
        failed: list[UUID] = []

        for instance in instances:
            dto = instance.to_dto()
            savepoint = self._session.begin_nested()
            try:
                outcome = self._handler.on_completed(dto)
                savepoint.commit()
                if outcome.created:
                    created += 1
            except Exception:
                savepoint.rollback()
                failed.append(dto.instance_id)
                logger.exception(
                    "completion_retry_failed",
                    extra={
                        "instance_id": str(dto.instance_id),
                        "workflow_type": dto.workflow_type,
                    },
                )

        summary = CompletionRetrySummary(
            scanned=len(instances),
            created=created,
            failed=len(failed),
            failed_instance_ids=tuple(failed),
        )
        if instances:
            logger.info(
                "completion_retry_completed",
                extra={
                    "scanned": summary.scanned,
                    "records_created": summary.created,
                    "failed": summary.failed,
                },
            )
        return summary
