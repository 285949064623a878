"""
Config -> Kernel Bridges.

Functions that convert configuration artifacts into kernel inputs.  These
live in approval_config (the producer) because the kernel must never
import approval_config.

Usage:
    config = get_active_config()
    registry = build_completion_registry(config)
    routing = routing_for(config, "maintenance")
"""

from __future__ import annotations

from approval_config.schema import ApprovalConfigurationSet
from approval_kernel.domain.workflow import RoutingStep
from approval_kernel.services.completion_handler import (
    CompletionRegistry,
    CompletionStrategy,
)


def routing_for(config: ApprovalConfigurationSet, workflow_type: str) -> tuple[RoutingStep, ...]:
    """The configured routing chain for a workflow type, sequenced from 1."""
    definition = config.workflow(workflow_type)
    return tuple(
        RoutingStep(sequence=index, role=role)
        for index, role in enumerate(definition.routing, start=1)
    )


def build_completion_registry(config: ApprovalConfigurationSet) -> CompletionRegistry:
    """One completion strategy per configured workflow type."""
    return CompletionRegistry([
        CompletionStrategy(
            workflow_type=d.workflow_type,
            record_type=d.record_type,
            notify_role=d.notify_role,
        )
        for d in config.workflow_types
    ])
