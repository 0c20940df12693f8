"""
Configuration Loader (``impound_config.loader``).

Responsibility
--------------
Loads the packaged defaults and an optional override file, applies
``IMPOUND_*`` environment overrides, and parses the result into the
frozen ``impound_config.schema`` dataclasses.  Internal tooling: callers
use ``impound_config.get_active_config()``.

Invariants enforced
-------------------
* Override order is defaults.yaml < override file < environment.
* Every parse error raises ``ValueError`` naming the offending key.
* The SMS API key is read from the environment or the override file and
  never logged; ``compute_checksum`` redacts it.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from impound_config.schema import (
    ImpoundConfig,
    NotificationConfig,
    RetryConfig,
    SmsConfig,
    StoreConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "IMPOUND_DATABASE_URL": ("store", "database_url"),
    "IMPOUND_SMS_ENDPOINT": ("sms", "endpoint"),
    "IMPOUND_SMS_API_KEY": ("sms", "api_key"),
}

_REDACTED = "***"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Section-wise merge; override wins key by key."""
    merged = copy.deepcopy(dict(base))
    for section, values in override.items():
        if isinstance(values, Mapping) and isinstance(merged.get(section), Mapping):
            merged[section] = {**merged[section], **values}
        else:
            merged[section] = copy.deepcopy(values)
    return merged


def apply_env_overrides(data: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    result = copy.deepcopy(dict(data))
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            result.setdefault(section, {})[key] = value
    return result


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"{name}: must be a mapping")
    return dict(section)


def _int(section: str, data: Mapping[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key}: must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{section}.{key}: must be >= {minimum}, got {value}")
    return value


def _float(section: str, data: Mapping[str, Any], key: str, default: float, minimum: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{section}.{key}: must be a number, got {value!r}")
    if value < minimum:
        raise ValueError(f"{section}.{key}: must be >= {minimum}, got {value}")
    return float(value)


def _bool(section: str, data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key}: must be true or false, got {value!r}")
    return value


def parse_config(data: Mapping[str, Any]) -> ImpoundConfig:
    """
    Parse merged configuration data.

    Raises:
        ValueError: for any missing or invalid value.
    """
    store = _section(data, "store")
    database_url = str(store.get("database_url") or "").strip()
    if not database_url:
        raise ValueError("store.database_url: is required")

    retry = _section(data, "retry")
    sms = _section(data, "sms")
    sms_enabled = _bool("sms", sms, "enabled", True)
    endpoint = str(sms.get("endpoint") or "").strip()
    if sms_enabled and not endpoint.startswith(("http://", "https://")):
        raise ValueError(f"sms.endpoint: must be an http(s) URL, got {endpoint!r}")

    notification = _section(data, "notification")

    return ImpoundConfig(
        store=StoreConfig(
            database_url=database_url,
            echo=_bool("store", store, "echo", False),
            pool_size=_int("store", store, "pool_size", 20, 1),
            max_overflow=_int("store", store, "max_overflow", 10, 0),
            pool_timeout_seconds=_int("store", store, "pool_timeout_seconds", 30, 1),
            busy_timeout_seconds=_float("store", store, "busy_timeout_seconds", 10.0, 0.0),
        ),
        retry=RetryConfig(
            max_attempts=_int("retry", retry, "max_attempts", 3, 1),
            base_delay_seconds=_float("retry", retry, "base_delay_seconds", 0.05, 0.0),
            max_delay_seconds=_float("retry", retry, "max_delay_seconds", 1.0, 0.0),
            max_conflict_retries=_int("retry", retry, "max_conflict_retries", 5, 1),
        ),
        sms=SmsConfig(
            endpoint=endpoint,
            api_key=str(sms.get("api_key") or ""),
            enabled=sms_enabled,
            timeout_seconds=_float("sms", sms, "timeout_seconds", 10.0, 0.001),
            max_attempts=_int("sms", sms, "max_attempts", 2, 1),
            base_delay_seconds=_float("sms", sms, "base_delay_seconds", 0.5, 0.0),
        ),
        notification=NotificationConfig(
            notify_in_background=_bool("notification", notification, "notify_in_background", False),
            max_workers=_int("notification", notification, "max_workers", 2, 1),
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON form, with the SMS API key redacted."""
    redacted = copy.deepcopy(dict(data))
    sms = redacted.get("sms")
    if isinstance(sms, dict) and sms.get("api_key"):
        sms["api_key"] = _REDACTED
    canonical = json.dumps(redacted, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
