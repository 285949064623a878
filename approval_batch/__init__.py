"""
approval_batch -- Periodic work for the approval engine.

Provides the escalation sweeper (SAVEPOINT per instance), the completion
retry pass, automatic instance triggers for subjects coming due, and an
in-process polling scheduler that runs them.

Architecture:
    approval_batch/ is a top-level package.  Nothing in approval_kernel/
    or approval_engines/ imports from approval_batch.
"""

from approval_batch.completion_retry import CompletionRetrier, CompletionRetrySummary
from approval_batch.scheduler import SweepScheduler
from approval_batch.sweeper import EscalationSweeper
from approval_batch.triggers import (
    DueSubject,
    DueSubjectSource,
    InstanceTrigger,
    TriggerSummary,
)

__all__ = [
    "CompletionRetrier",
    "CompletionRetrySummary",
    "DueSubject",
    "DueSubjectSource",
    "EscalationSweeper",
    "InstanceTrigger",
    "SweepScheduler",
    "TriggerSummary",
]
