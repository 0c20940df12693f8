"""
Configuration Schema (``impound_config.schema``).

Frozen dataclasses describing one resolved configuration.  Every value has
been validated by ``loader.parse_config``; nothing here reads files or the
environment.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreConfig:
    database_url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_seconds: int = 30
    busy_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class RetryConfig:
    """Coordinator retry budget for transient store errors and conflicts."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    max_conflict_retries: int = 5


@dataclass(frozen=True)
class SmsConfig:
    """SMS transport.  Its timeout is independent of the store's."""

    endpoint: str
    api_key: str = ""
    enabled: bool = True
    timeout_seconds: float = 10.0
    max_attempts: int = 2
    base_delay_seconds: float = 0.5


@dataclass(frozen=True)
class NotificationConfig:
    notify_in_background: bool = False
    max_workers: int = 2


@dataclass(frozen=True)
class ImpoundConfig:
    """The resolved configuration returned by get_active_config()."""

    store: StoreConfig
    retry: RetryConfig
    sms: SmsConfig
    notification: NotificationConfig
    checksum: str = ""
