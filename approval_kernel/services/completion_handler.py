"""
approval_kernel.services.completion_handler -- Exactly-once completion side effect.

Responsibility:
    When a chain reaches ``completed``, create the downstream execution
    record configured for its workflow type (maintenance job, inspection
    job, contract renewal) and notify the responsible role.

Architecture position:
    Kernel > Services.  May import from domain/, models/, utils/.

Invariants enforced:
    - Idempotent completion: keyed on the instance id.  A second call finds
      the existing record and returns it with ``created=False``; a racing
      insert loses on UNIQUE(instance_id) inside a SAVEPOINT and is
      resolved the same way.
    - Completion never reverts workflow state: this handler does not touch
      the instance or its steps.

Failure modes:
    - UnknownWorkflowTypeError if no strategy is registered for the type.
    - DownstreamRecordError if the instance is not completed or the record
      cannot be written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.notifications import NotificationEvent
from approval_kernel.domain.workflow import (
    Assignee,
    CompletionOutcome,
    InstanceStatus,
    WorkflowInstance,
)
from approval_kernel.exceptions import (
    DownstreamRecordError,
    UnknownWorkflowTypeError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.execution_record import ExecutionRecordModel
from approval_kernel.services.notification_dispatcher import NotificationDispatcher
from approval_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.completion")


# =============================================================================
# Strategy + registry
# =============================================================================


@dataclass(frozen=True)
class CompletionStrategy:
    """What a completed chain of one workflow type produces."""

    workflow_type: str
    record_type: str
    notify_role: str | None = None


class CompletionRegistry:
    """Registry mapping workflow_type strings to completion strategies.

    Contract:
        - ``register()`` adds a strategy; raises ValueError on duplicate.
        - ``get()`` raises UnknownWorkflowTypeError if missing.
    """

    def __init__(self, strategies: list[CompletionStrategy] | None = None) -> None:
        self._strategies: dict[str, CompletionStrategy] = {}
        for strategy in strategies or ():
            self.register(strategy)

    def register(self, strategy: CompletionStrategy) -> None:
        if strategy.workflow_type in self._strategies:
            raise ValueError(
                f"Workflow type '{strategy.workflow_type}' is already registered"
            )
        self._strategies[strategy.workflow_type] = strategy

    def get(self, workflow_type: str) -> CompletionStrategy:
        try:
            return self._strategies[workflow_type]
        except KeyError:
            raise UnknownWorkflowTypeError(workflow_type) from None

    def list_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._strategies))

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, workflow_type: str) -> bool:
        return workflow_type in self._strategies


# =============================================================================
# Handler
# =============================================================================


@runtime_checkable
class CompletionHandler(Protocol):
    """Side effect run once per completed workflow instance."""

    def on_completed(self, instance: WorkflowInstance) -> CompletionOutcome:
        ...


class ExecutionRecordCompletionHandler:
    """Creates one ExecutionRecord per completed instance.

    Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        registry: CompletionRegistry,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._clock = clock or SystemClock()

    def on_completed(self, instance: WorkflowInstance) -> CompletionOutcome:
        if instance.status != InstanceStatus.COMPLETED:
            raise DownstreamRecordError(
                str(instance.instance_id),
                "execution_record",
                f"instance is {instance.status.value}, not completed",
            )

        strategy = self._registry.get(instance.workflow_type)

        existing = self._find(instance)
        if existing is not None:
            logger.info(
                "execution_record_exists",
                extra={
                    "instance_id": str(instance.instance_id),
                    "record_id": str(existing.id),
                },
            )
            return CompletionOutcome(
                instance_id=instance.instance_id,
                record=existing.to_dto(),
                created=False,
            )

        model = ExecutionRecordModel(
            instance_id=instance.instance_id,
            idempotency_key=generate_idempotency_key(
                instance.workflow_type, strategy.record_type, instance.instance_id,
            ),
            tenant_id=instance.tenant_id,
            record_type=strategy.record_type,
            subject_ref=instance.subject_ref,
            details={
                "workflow_type": instance.workflow_type,
                "due_date": instance.due_date.isoformat(),
                "escalated": instance.escalated_at is not None,
            },
            created_at=self._clock.now(),
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            existing = self._find(instance)
            if existing is None:
                raise DownstreamRecordError(
                    str(instance.instance_id), strategy.record_type, str(exc.orig),
                ) from exc
            return CompletionOutcome(
                instance_id=instance.instance_id,
                record=existing.to_dto(),
                created=False,
            )
        savepoint.commit()

        logger.info(
            "execution_record_created",
            extra={
                "instance_id": str(instance.instance_id),
                "record_id": str(model.id),
                "record_type": strategy.record_type,
                "subject_ref": instance.subject_ref,
            },
        )

        if strategy.notify_role:
            self._dispatcher.dispatch(
                Assignee.role(strategy.notify_role),
                NotificationEvent.WORKFLOW_COMPLETED,
                {
                    "instance_id": str(instance.instance_id),
                    "workflow_type": instance.workflow_type,
                    "subject_ref": instance.subject_ref,
                    "record_id": str(model.id),
                    "record_type": strategy.record_type,
                },
            )

        return CompletionOutcome(
            instance_id=instance.instance_id,
            record=model.to_dto(),
            created=True,
        )

    def _find(self, instance: WorkflowInstance) -> ExecutionRecordModel | None:
        return self._session.execute(
            select(ExecutionRecordModel).where(
                ExecutionRecordModel.instance_id == instance.instance_id,
            )
        ).scalar_one_or_none()
