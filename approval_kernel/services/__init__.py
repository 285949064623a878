"""Services for the approval kernel (write side)."""

from approval_kernel.services.audit_trail import AuditTrail
from approval_kernel.services.completion_handler import (
    CompletionHandler,
    CompletionRegistry,
    CompletionStrategy,
    ExecutionRecordCompletionHandler,
)
from approval_kernel.services.decision_processor import (
    SYSTEM_ESCALATION_ACTOR,
    DecisionProcessor,
)
from approval_kernel.services.notification_dispatcher import NotificationDispatcher
from approval_kernel.services.workflow_service import WorkflowService

__all__ = [
    "AuditTrail",
    "CompletionHandler",
    "CompletionRegistry",
    "CompletionStrategy",
    "DecisionProcessor",
    "ExecutionRecordCompletionHandler",
    "NotificationDispatcher",
    "SYSTEM_ESCALATION_ACTOR",
    "WorkflowService",
]
