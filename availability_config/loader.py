"""
Configuration Loader (``availability_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a ``BatchSettings``
instance.  Callers normally go through
``availability_config.get_batch_settings()``.

Invariants enforced
-------------------
* Unknown keys raise ``KeyError``; invalid values raise ``ValueError``
  naming the key.  No silent fallbacks for misspelled settings.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from availability_config.schema import BatchSettings
from availability_kernel.utils.hashing import hash_payload

_INT_KEYS = frozenset({
    "chunk_size",
    "max_items",
    "resume_ttl_seconds",
    "progress_ttl_seconds",
    "retention_seconds",
    "preview_sample_size",
    "preview_window_days",
})
_FLOAT_KEYS = frozenset({"time_budget_seconds", "safety_margin_seconds"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def parse_batch_settings(data: dict[str, Any]) -> BatchSettings:
    """Parse ``BatchSettings`` from a dict (the ``batch`` section or the root)."""
    section = data.get("batch", data)
    if not isinstance(section, dict):
        raise ValueError("batch: expected a mapping")

    known = {f.name for f in fields(BatchSettings)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise KeyError(f"Unknown batch setting(s): {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in section.items():
        if key in _INT_KEYS:
            values[key] = _coerce(key, value, int)
        elif key in _FLOAT_KEYS:
            values[key] = _coerce(key, value, float)
        else:
            values[key] = str(value)
    return BatchSettings(**values)


def compute_checksum(settings: BatchSettings) -> str:
    """SHA-256 of the settings in canonical JSON; equal settings, equal checksum."""
    return hash_payload(settings.to_dict())


def _coerce(key: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key}: expected a number, got {value!r}") from None
