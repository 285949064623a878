"""
approval_services -- Package init and public API.

Responsibility:
    Composition of kernel services, batch jobs and configuration into the
    engine surface callers use: create an instance, submit a decision,
    read an instance, run the escalation sweep.

Architecture position:
    Services -- top of the stack.

        approval_services/ -> approval_batch/   (allowed)
        approval_services/ -> approval_config/  (allowed)
        approval_services/ -> approval_kernel/  (allowed)
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_services.engine import WorkflowEngine

__all__ = ["WorkflowEngine"]
