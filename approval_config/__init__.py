"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns an ``ApprovalConfigurationSet``
    describing engine settings and every workflow type (routing roles,
    default lead time, downstream record type, responsible role).

Architecture position:
    Configuration -- YAML-driven, validated on load.  This package sits
    above ``approval_kernel`` and below ``approval_services``.  The kernel
    MUST NEVER import from ``approval_config``; ``bridges`` translates
    configuration into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` -- validation failures (duplicate workflow types,
      empty routing, negative lead times).

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the config_id, version and
    checksum, tying each approval chain to the configuration that built it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import (
    load_yaml_file,
    parse_configuration_set,
    validate_configuration_set,
)
from approval_config.schema import (
    ApprovalConfigurationSet,
    EngineSettings,
    WorkflowTypeDef,
)

_logger = logging.getLogger("approval_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> ApprovalConfigurationSet:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to configuration sets directory.
            Defaults to approval_config/sets/.
        set_name: File stem of the set to load (``<set_name>.yaml``).

    Raises:
        FileNotFoundError: If the set file does not exist.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = parse_configuration_set(load_yaml_file(path))

    errors = validate_configuration_set(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "workflow_type_count": len(config.workflow_types),
        },
    )
    return config


__all__ = [
    "ApprovalConfigurationSet",
    "EngineSettings",
    "WorkflowTypeDef",
    "get_active_config",
]
