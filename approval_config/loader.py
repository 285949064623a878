"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into typed
``approval_config.schema`` dataclass instances.  The single public entry
point for runtime config is ``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfigurationSet,
    EngineSettings,
    WorkflowTypeDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def parse_workflow_type(data: dict[str, Any]) -> WorkflowTypeDef:
    """Parse a WorkflowTypeDef from a dict."""
    routing = data["routing"]
    if isinstance(routing, str) or not isinstance(routing, list):
        raise ValueError(
            f"routing for {data['workflow_type']!r} must be a list of roles"
        )
    return WorkflowTypeDef(
        workflow_type=data["workflow_type"],
        record_type=data["record_type"],
        routing=tuple(str(role) for role in routing),
        default_lead_time_days=int(data.get("default_lead_time_days", 5)),
        notify_role=data.get("notify_role"),
        trigger_horizon_days=_optional_int(data.get("trigger_horizon_days")),
        description=data.get("description", ""),
    )


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse EngineSettings from a dict (every key optional)."""
    return EngineSettings(
        sweep_interval_seconds=int(data.get("sweep_interval_seconds", 300)),
        sweep_batch_limit=_optional_int(data.get("sweep_batch_limit")),
        escalation_actor=data.get("escalation_actor", "system:escalation"),
        database_url=data.get("database_url"),
    )


def parse_configuration_set(data: dict[str, Any]) -> ApprovalConfigurationSet:
    """Parse a full configuration set from a dict."""
    return ApprovalConfigurationSet(
        config_id=data["config_id"],
        version=int(data["version"]),
        engine=parse_engine_settings(data.get("engine") or {}),
        workflow_types=tuple(
            parse_workflow_type(w) for w in data.get("workflow_types") or ()
        ),
        checksum=compute_checksum(data),
    )


def validate_configuration_set(config: ApprovalConfigurationSet) -> list[str]:
    """Return human-readable problems; empty means valid."""
    errors: list[str] = []
    seen: set[str] = set()
    for definition in config.workflow_types:
        name = definition.workflow_type
        if name in seen:
            errors.append(f"workflow type {name!r} is defined twice")
        seen.add(name)
        if not definition.routing:
            errors.append(f"workflow type {name!r} has no routing roles")
        if any(not role.strip() for role in definition.routing):
            errors.append(f"workflow type {name!r} has a blank routing role")
        if definition.default_lead_time_days < 0:
            errors.append(f"workflow type {name!r} has a negative lead time")
        if definition.trigger_horizon_days is not None and definition.trigger_horizon_days < 0:
            errors.append(f"workflow type {name!r} has a negative trigger horizon")
    if config.engine.sweep_interval_seconds <= 0:
        errors.append("engine.sweep_interval_seconds must be positive")
    return errors


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
