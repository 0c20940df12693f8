"""
impound_config -- single public entrypoint for impound kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration sits above ``impound_kernel``.  The kernel MUST NEVER
    import from ``impound_config``; ``impound_config.bridges`` translates
    the resolved configuration into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ValueError`` -- a value failed validation.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from impound_config.loader import (
    DEFAULTS_PATH,
    apply_env_overrides,
    load_yaml_file,
    merge,
    parse_config,
)
from impound_config.schema import (
    ImpoundConfig,
    NotificationConfig,
    RetryConfig,
    SmsConfig,
    StoreConfig,
)

_logger = logging.getLogger("impound_kernel.config")


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ImpoundConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional YAML file overriding the packaged defaults.
        environ: Environment to read ``IMPOUND_*`` overrides from.
            Defaults to ``os.environ``.

    Returns:
        A frozen ``ImpoundConfig``.

    Raises:
        FileNotFoundError: If config_path does not exist.
        ValueError: If validation fails.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = merge(data, load_yaml_file(Path(config_path)))
    data = apply_env_overrides(data, os.environ if environ is None else environ)

    config = parse_config(data)

    _logger.info(
        "IMPOUND_CONFIG_TRACE",
        extra={
            "checksum": config.checksum,
            "config_path": str(config_path) if config_path else None,
            "sms_enabled": config.sms.enabled,
            "sms_api_key_set": bool(config.sms.api_key),
        },
    )
    return config


__all__ = [
    "ImpoundConfig",
    "NotificationConfig",
    "RetryConfig",
    "SmsConfig",
    "StoreConfig",
    "get_active_config",
]
