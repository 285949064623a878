"""
Workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the sequential approval engine.  Defines the
instance and step lifecycle state machines, the frozen DTOs that services
return to callers, and the result types of decisions and sweeps.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Instance lifecycle -- ``INSTANCE_TRANSITIONS`` defines the only valid
  instance status changes.  ``completed`` and ``cancelled`` are terminal.
* Step lifecycle -- ``STEP_TRANSITIONS`` defines the only valid step status
  changes.  A decided step only ever returns to ``action_pending`` (push-back
  or re-activation); it never returns to ``inactive``.
* Single pending step -- ``WorkflowSnapshot.pending_step`` raises if more
  than one step is ``action_pending``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID


# =========================================================================
# Instance lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Workflow instance (header) lifecycle states."""

    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.INITIATED: frozenset({InstanceStatus.IN_PROGRESS}),
    InstanceStatus.IN_PROGRESS: frozenset({
        InstanceStatus.IN_PROGRESS,
        InstanceStatus.COMPLETED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.COMPLETED,
    InstanceStatus.CANCELLED,
})


# =========================================================================
# Step lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Workflow step (detail) lifecycle states."""

    INACTIVE = "inactive"
    ACTION_PENDING = "action_pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.INACTIVE: frozenset({StepStatus.ACTION_PENDING}),
    StepStatus.ACTION_PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.ESCALATED,
    }),
    # Push-back reopens a previously approved or escalated step.
    StepStatus.APPROVED: frozenset({StepStatus.ACTION_PENDING}),
    StepStatus.ESCALATED: frozenset({StepStatus.ACTION_PENDING}),
    # A rejected step is re-activated when the chain comes back up to it.
    StepStatus.REJECTED: frozenset({StepStatus.ACTION_PENDING}),
}

DECIDED_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.ESCALATED,
})

# Statuses a push-back may return to.  Escalation counts as a pass.
PASSED_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.ESCALATED,
})


class HistoryAction(str, Enum):
    """Actions recorded in the append-only workflow history."""

    INITIATED = "initiated"
    ACTIVATED = "activated"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    REVERTED = "reverted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DecisionAction(str, Enum):
    """Decisions a human approver can submit."""

    APPROVE = "approve"
    REJECT = "reject"


class DecisionOutcome(str, Enum):
    """Outcome reported by ``submit_decision``."""

    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    STALE_STEP = "stale_step"
    NOT_FOUND = "not_found"


# =========================================================================
# Notification addressing
# =========================================================================


class AssigneeKind(str, Enum):
    ROLE = "role"
    ACTOR = "actor"


@dataclass(frozen=True)
class Assignee:
    """A notification recipient: either a whole role or one actor."""

    kind: AssigneeKind
    value: str

    @classmethod
    def role(cls, role: str) -> Assignee:
        return cls(AssigneeKind.ROLE, role)

    @classmethod
    def actor(cls, actor: str) -> Assignee:
        return cls(AssigneeKind.ACTOR, actor)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


# =========================================================================
# Instance, step and history records
# =========================================================================


@dataclass(frozen=True)
class RoutingStep:
    """One entry in the routing chain supplied at instance creation."""

    sequence: int
    role: str


@dataclass(frozen=True)
class WorkflowStep:
    """Immutable view of one step in an approval chain."""

    step_id: UUID
    instance_id: UUID
    sequence: int
    role: str
    status: StepStatus
    decided_by: str | None = None
    decided_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable view of a workflow instance header."""

    instance_id: UUID
    tenant_id: str
    workflow_type: str
    subject_ref: str
    due_date: date
    lead_time_days: int
    cutoff_date: date
    status: InstanceStatus
    created_at: datetime
    created_by: str
    resolved_at: datetime | None = None
    escalated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """One immutable line of the audit trail."""

    entry_id: UUID
    instance_id: UUID
    action: HistoryAction
    actor: str
    timestamp: datetime
    step_id: UUID | None = None
    from_status: str | None = None
    to_status: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Instance header with its steps (by sequence) and history (by time)."""

    instance: WorkflowInstance
    steps: tuple[WorkflowStep, ...]
    history: tuple[WorkflowHistoryEntry, ...] = ()

    @property
    def pending_step(self) -> WorkflowStep | None:
        pending = [s for s in self.steps if s.status == StepStatus.ACTION_PENDING]
        if len(pending) > 1:
            raise ValueError(
                f"Instance {self.instance.instance_id} has "
                f"{len(pending)} pending steps"
            )
        return pending[0] if pending else None

    def step(self, sequence: int) -> WorkflowStep:
        for s in self.steps:
            if s.sequence == sequence:
                return s
        raise KeyError(sequence)


# =========================================================================
# Sequencer results
# =========================================================================


@dataclass(frozen=True)
class StepTransition:
    """A single step status change computed by the sequencer."""

    step_id: UUID
    sequence: int
    from_status: StepStatus
    to_status: StepStatus
    action: HistoryAction


@dataclass(frozen=True)
class SequencerOutcome:
    """Everything a decision or escalation changes, in application order.

    ``transitions`` always starts with the change to the acted-on step.
    ``activated_step_id`` is the step that became ``action_pending`` (by
    activation or push-back), or None when the instance reached a terminal
    status.
    """

    transitions: tuple[StepTransition, ...]
    instance_status: InstanceStatus
    activated_step_id: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.instance_status in TERMINAL_INSTANCE_STATUSES

    @property
    def reverted(self) -> bool:
        return any(t.action == HistoryAction.REVERTED for t in self.transitions)


# =========================================================================
# Completion and decision results
# =========================================================================


@dataclass(frozen=True)
class ExecutionRecord:
    """The downstream unit of work produced when a chain completes."""

    record_id: UUID
    instance_id: UUID
    tenant_id: str
    record_type: str
    subject_ref: str
    idempotency_key: str
    created_at: datetime


@dataclass(frozen=True)
class CompletionOutcome:
    """Result of a completion handler invocation.

    ``created`` is False when the record already existed (idempotent replay).
    """

    instance_id: UUID
    record: ExecutionRecord
    created: bool


@dataclass(frozen=True)
class DecisionResult:
    """Result of ``submit_decision`` or a forced escalation."""

    outcome: DecisionOutcome
    instance_id: UUID
    step_id: UUID
    action: str | None = None
    instance_status: InstanceStatus | None = None
    activated_step_id: UUID | None = None
    completion: CompletionOutcome | None = None
    completion_error: str | None = None
    error_code: str | None = None
    message: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.outcome == DecisionOutcome.OK


# =========================================================================
# Sweep results
# =========================================================================


class SweepItemStatus(str, Enum):
    """Per-instance outcome of an escalation sweep."""

    ESCALATED = "escalated"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    NO_NEXT_APPROVER = "no_next_approver"
    ERROR = "error"


@dataclass(frozen=True)
class SweepDetail:
    instance_id: UUID
    status: SweepItemStatus
    step_id: UUID | None = None
    subject_ref: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class SweepSummary:
    """Aggregate result of one escalation sweep.

    ``escalated`` counts every forced advancement, including those that
    completed the chain; ``completed`` is the subset that did.
    ``no_next_approver`` counts overdue instances left as they were
    because every higher step had already rejected.
    """

    scanned: int = 0
    escalated: int = 0
    completed: int = 0
    skipped: int = 0
    no_next_approver: int = 0
    errors: int = 0
    details: tuple[SweepDetail, ...] = field(default_factory=tuple)
