"""
availability_config -- batch settings for the availability bulk editor.

Responsibility:
    Provides the way to obtain ``BatchSettings`` at runtime through
    ``get_batch_settings()``.  YAML loading lives in ``loader``.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` / ``KeyError`` -- invalid or unknown settings.

Audit relevance:
    Every call emits an ``AVAILABILITY_CONFIG_TRACE`` log entry with the
    source path and checksum of the settings in force.
"""

from __future__ import annotations

from pathlib import Path

from availability_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_batch_settings,
)
from availability_config.schema import BatchSettings
from availability_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_batch_settings(path: Path | str | None = None) -> BatchSettings:
    """Load batch settings from ``path`` (default: the packaged defaults)."""
    source = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = parse_batch_settings(load_yaml_file(source))
    _logger.info(
        "AVAILABILITY_CONFIG_TRACE",
        extra={
            "trace_type": "AVAILABILITY_CONFIG_TRACE",
            "source": str(source),
            "checksum": compute_checksum(settings),
            "chunk_size": settings.chunk_size,
            "time_budget_seconds": settings.time_budget_seconds,
        },
    )
    return settings


__all__ = [
    "BatchSettings",
    "DEFAULT_SETTINGS_PATH",
    "compute_checksum",
    "get_batch_settings",
    "load_yaml_file",
    "parse_batch_settings",
]
