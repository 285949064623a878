"""
Pure domain layer.

This module contains pure data transfer objects and protocols
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.notifications import (
    NotificationEvent,
    Notifier,
    NullNotifier,
    RecordingNotifier,
    SubjectLookup,
)
from approval_kernel.domain.roles import RoleDirectory, StaticRoleDirectory
from approval_kernel.domain.workflow import (
    Assignee,
    AssigneeKind,
    CompletionOutcome,
    DecisionAction,
    DecisionOutcome,
    DecisionResult,
    ExecutionRecord,
    HistoryAction,
    InstanceStatus,
    RoutingStep,
    SequencerOutcome,
    StepStatus,
    StepTransition,
    SweepDetail,
    SweepItemStatus,
    SweepSummary,
    WorkflowHistoryEntry,
    WorkflowInstance,
    WorkflowSnapshot,
    WorkflowStep,
)

__all__ = [
    "Assignee",
    "AssigneeKind",
    "Clock",
    "CompletionOutcome",
    "DecisionAction",
    "DecisionOutcome",
    "DecisionResult",
    "DeterministicClock",
    "ExecutionRecord",
    "HistoryAction",
    "InstanceStatus",
    "NotificationEvent",
    "Notifier",
    "NullNotifier",
    "RecordingNotifier",
    "RoleDirectory",
    "RoutingStep",
    "SequencerOutcome",
    "StaticRoleDirectory",
    "StepStatus",
    "StepTransition",
    "SubjectLookup",
    "SweepDetail",
    "SweepItemStatus",
    "SweepSummary",
    "SystemClock",
    "WorkflowHistoryEntry",
    "WorkflowInstance",
    "WorkflowSnapshot",
    "WorkflowStep",
]
