"""ORM models for the approval kernel."""

from approval_kernel.models.execution_record import ExecutionRecordModel
from approval_kernel.models.workflow import (
    WorkflowHistoryModel,
    WorkflowInstanceModel,
    WorkflowStepModel,
)

__all__ = [
    "ExecutionRecordModel",
    "WorkflowHistoryModel",
    "WorkflowInstanceModel",
    "WorkflowStepModel",
]
