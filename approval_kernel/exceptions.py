"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (HTTP handlers, the escalation sweeper, batch
triggers) must distinguish "you are not allowed to act on this step" from
"somebody already acted on this step" without parsing message strings.

Every exception in this module:
  1. Is a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        processor.submit_decision(instance_id, step_id, "approve", actor)
    except StaleStepError as e:
        api_response(code=e.code, step=e.step_id, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- WorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- StepNotFoundError
    |   +-- StaleStepError
    |   +-- InstanceNotInProgressError
    |   +-- DuplicateInstanceError
    |   +-- NoNextApproverError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedActorError
    |
    +-- RoutingError
    |   +-- EmptyRoutingError
    |   +-- InvalidSequenceError
    |   +-- MissingRoleError
    |
    +-- CompletionError
    |   +-- DownstreamRecordError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- UnknownWorkflowTypeError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Workflow        | NOT_FOUND                   | Instance id doesn't exist
                | STEP_NOT_FOUND              | Step id unknown or not on that instance
                | STALE_STEP                  | Step no longer ActionPending (lost race)
                | INSTANCE_NOT_IN_PROGRESS    | Instance already completed/cancelled
                | DUPLICATE_INSTANCE          | Subject already has an in-flight chain
                | NO_NEXT_APPROVER            | Escalation found no inactive higher step
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | Actor does not hold the step's role
----------------|-----------------------------|-----------------------------------------
Routing         | EMPTY_ROUTING               | No routing steps supplied
                | INVALID_SEQUENCE            | Gaps, duplicates or non-positive sequences
                | MISSING_ROLE                | Routing step without a role
----------------|-----------------------------|-----------------------------------------
Completion      | DOWNSTREAM_RECORD_FAILED    | Completion side effect failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an audit history row
----------------|-----------------------------|-----------------------------------------
Configuration   | UNKNOWN_WORKFLOW_TYPE       | No configuration for workflow_type

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Decision outcomes (UNAUTHORIZED, STALE_STEP, NOT_FOUND) are the same codes
   the public ``DecisionOutcome`` enum uses, so the facade can map an
   exception to an outcome with ``DecisionOutcome(exc.code.lower())``.

2. Routing errors are raised before anything is written.  Instance creation
   fails closed: an invalid chain never reaches the database.

3. CompletionError is never allowed to revert a completed instance.  The
   decision processor catches it, logs it and reports it on the result.

===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Workflow-state exceptions


class WorkflowError(ApprovalKernelError):
    """Base exception for workflow instance / step state errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotFoundError(WorkflowError):
    """Workflow instance with given ID was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


class StepNotFoundError(WorkflowError):
    """Step does not exist or does not belong to the given instance."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, instance_id: str, step_id: str):
        self.instance_id = instance_id
        self.step_id = step_id
        super().__init__(
            f"Step {step_id} not found on workflow instance {instance_id}"
        )


class StaleStepError(WorkflowError):
    """
    The step is no longer awaiting a decision.

    Raised when the step was already decided, escalated or reverted by a
    concurrent writer.  The conditional UPDATE matched zero rows.
    """

    code: str = "STALE_STEP"

    def __init__(self, step_id: str, current_status: str | None = None):
        self.step_id = step_id
        self.current_status = current_status
        super().__init__(
            f"Step {step_id} is not awaiting a decision "
            f"(current status: {current_status or 'unknown'})"
        )


class InstanceNotInProgressError(WorkflowError):
    """The workflow instance is not accepting decisions."""

    code: str = "INSTANCE_NOT_IN_PROGRESS"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Workflow instance {instance_id} is {status}, not in_progress"
        )


class DuplicateInstanceError(WorkflowError):
    """A non-terminal instance already exists for this subject."""

    code: str = "DUPLICATE_INSTANCE"

    def __init__(self, tenant_id: str, subject_ref: str, existing_id: str | None = None):
        self.tenant_id = tenant_id
        self.subject_ref = subject_ref
        self.existing_id = existing_id
        super().__init__(
            f"Subject {subject_ref} (tenant {tenant_id}) already has an "
            f"in-flight workflow instance"
        )


class NoNextApproverError(WorkflowError):
    """
    Escalation has nowhere to go.

    Every step above the stalled one already decided (rejected) and is not
    reopened by a forced advancement.  Nothing is changed; a human decision
    has to move the chain.
    """

    code: str = "NO_NEXT_APPROVER"

    def __init__(self, step_id: str, sequence: int):
        self.step_id = step_id
        self.sequence = sequence
        super().__init__(
            f"No inactive step above sequence {sequence} to escalate "
            f"step {step_id} to"
        )


# Authorization exceptions


class AuthorizationError(ApprovalKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedActorError(AuthorizationError):
    """Actor does not hold the role required by the step."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor: str, required_role: str, step_id: str):
        self.actor = actor
        self.required_role = required_role
        self.step_id = step_id
        super().__init__(
            f"Actor {actor} does not hold role {required_role} "
            f"required by step {step_id}"
        )


# Routing exceptions


class RoutingError(ApprovalKernelError):
    """Base exception for invalid routing step lists."""

    code: str = "ROUTING_ERROR"


class EmptyRoutingError(RoutingError):
    """No routing steps were supplied."""

    code: str = "EMPTY_ROUTING"

    def __init__(self, subject_ref: str):
        self.subject_ref = subject_ref
        super().__init__(f"No routing steps supplied for subject {subject_ref}")


class InvalidSequenceError(RoutingError):
    """Routing sequences are not 1..N without gaps or duplicates."""

    code: str = "INVALID_SEQUENCE"

    def __init__(self, sequences: list[int], reason: str):
        self.sequences = sequences
        self.reason = reason
        super().__init__(f"Invalid routing sequences {sequences}: {reason}")


class MissingRoleError(RoutingError):
    """A routing step has no role assigned."""

    code: str = "MISSING_ROLE"

    def __init__(self, sequence: int):
        self.sequence = sequence
        super().__init__(f"Routing step {sequence} has no role")


# Completion exceptions


class CompletionError(ApprovalKernelError):
    """Base exception for completion side-effect errors."""

    code: str = "COMPLETION_ERROR"


class DownstreamRecordError(CompletionError):
    """The downstream execution record could not be created."""

    code: str = "DOWNSTREAM_RECORD_FAILED"

    def __init__(self, instance_id: str, record_type: str, reason: str):
        self.instance_id = instance_id
        self.record_type = record_type
        self.reason = reason
        super().__init__(
            f"Could not create {record_type} for workflow instance "
            f"{instance_id}: {reason}"
        )


# Immutability exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(ApprovalKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class UnknownWorkflowTypeError(ConfigurationError):
    """No configuration or completion strategy exists for a workflow type."""

    code: str = "UNKNOWN_WORKFLOW_TYPE"

    def __init__(self, workflow_type: str):
        self.workflow_type = workflow_type
        super().__init__(f"Unknown workflow type: {workflow_type}")
