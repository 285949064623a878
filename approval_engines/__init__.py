"""
Module: approval_engines
Responsibility:
    Package entrypoint for the pure calculation engines used by the
    approval kernel.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and kernel exceptions.
    MUST NOT import approval_kernel services, models or approval_batch.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in as explicit parameters.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.sequencer import (
    DEFAULT_LEAD_TIME_DAYS,
    activate_first,
    advance_on_approval,
    advance_on_escalation,
    apply_outcome,
    compute_cutoff_date,
    escalation_target,
    find_pending_step,
    is_past_cutoff,
    revert_on_rejection,
    validate_routing,
)

__all__ = [
    "DEFAULT_LEAD_TIME_DAYS",
    "activate_first",
    "advance_on_approval",
    "advance_on_escalation",
    "apply_outcome",
    "compute_cutoff_date",
    "escalation_target",
    "find_pending_step",
    "is_past_cutoff",
    "revert_on_rejection",
    "validate_routing",
]
