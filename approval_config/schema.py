"""
ApprovalConfigurationSet schema.

The human-authored, reviewable source artifact for the approval engine.
YAML files are parsed into these types by the loader; bridges translate
them into kernel inputs (routing chains, completion registry).
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Workflow types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowTypeDef:
    """One approval family (maintenance, inspection, contract renewal).

    ``routing`` lists roles in sign-off order; sequence numbers are the
    1-based positions.
    """

    workflow_type: str
    record_type: str
    routing: tuple[str, ...]
    default_lead_time_days: int = 5
    notify_role: str | None = None
    trigger_horizon_days: int | None = None
    description: str = ""


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the sweep scheduler and database."""

    sweep_interval_seconds: int = 300
    sweep_batch_limit: int | None = None
    escalation_actor: str = "system:escalation"
    database_url: str | None = None


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """Complete configuration: engine settings plus every workflow type."""

    config_id: str
    version: int
    engine: EngineSettings
    workflow_types: tuple[WorkflowTypeDef, ...] = ()
    checksum: str = field(default="", compare=False)

    def workflow(self, workflow_type: str) -> WorkflowTypeDef:
        from approval_kernel.exceptions import UnknownWorkflowTypeError

        for definition in self.workflow_types:
            if definition.workflow_type == workflow_type:
                return definition
        raise UnknownWorkflowTypeError(workflow_type)

    @property
    def workflow_type_names(self) -> tuple[str, ...]:
        return tuple(d.workflow_type for d in self.workflow_types)
