"""
notes_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``EngineConfig``; the
    bridges in ``notes_config.bridges`` translate it into kernel inputs.

Architecture position:
    Configuration.  This package sits above ``notes_kernel``.  The kernel
    never imports from ``notes_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` -- a required key is missing.
    - ``ValueError`` -- a value is out of range.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``NOTES_CONFIG_TRACE`` log entry carrying the config_id, version and
    checksum, tying issued notes back to the configuration that governed
    their computation and authorisation.
"""

from __future__ import annotations

import logging
from pathlib import Path

from notes_config.loader import load_yaml_file, parse_engine_config
from notes_config.schema import EngineConfig

_logger = logging.getLogger("notes_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """Load, validate and return the engine configuration.

    Args:
        path: Override path to a YAML file.  Defaults to the packaged
            ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value fails validation.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_engine_config(load_yaml_file(config_path))

    _logger.info(
        "NOTES_CONFIG_TRACE",
        extra={
            "trace_type": "NOTES_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "capability_count": len(config.capabilities),
            "reminder_rule_count": len(config.reminders),
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "EngineConfig", "get_active_config"]
