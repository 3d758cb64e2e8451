"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain workflow definitions
    and engine settings at runtime.  YAML loading is internal.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` and below
    ``workflow_services``.  The kernel never imports from this package.

Invariants enforced:
    - Every returned configuration set has passed structural validation.
    - Same YAML sources always produce the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the set directory or a listed file is missing.
    - ``DefinitionValidationError`` -- a graph fails validation.

Audit relevance:
    Every successful call logs ``config_loaded`` with config id, version
    and checksum, tying each transition to the graph that allowed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from workflow_config.loader import load_config_set
from workflow_config.schema import EngineSettings, WorkflowConfigSet
from workflow_config.validator import validate_config_set

_logger = logging.getLogger("workflow_kernel.config")

DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets" / "default"

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "EngineSettings",
    "WorkflowConfigSet",
    "get_active_config",
]


def get_active_config(config_dir: Path | None = None) -> WorkflowConfigSet:
    """Load, validate and return the workflow configuration set.

    Args:
        config_dir: Directory holding ``root.yaml``.  Defaults to the
            bundled ``sets/default``.
    """
    config = load_config_set(config_dir or DEFAULT_CONFIG_DIR)
    validate_config_set(config)

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "kinds": [d.kind.value for d in config.definitions],
            "auto_scheduling_enabled": config.settings.auto_scheduling_enabled,
        },
    )
    return config
