"""
Config -> Kernel Bridges.

Functions that turn an ``ImpoundConfig`` into wired kernel objects.  They
live in impound_config (the producer) because the kernel must NEVER import
impound_config.

Usage:
    from impound_config import get_active_config
    from impound_config.bridges import build_release_workflow

    stack = build_release_workflow(get_active_config())
    outcome = stack.workflow.submit_release(...)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from impound_config.schema import ImpoundConfig, RetryConfig, SmsConfig
from impound_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from impound_kernel.db.immutability import register_immutability_listeners
from impound_kernel.domain.clock import Clock, SystemClock
from impound_kernel.domain.retry_policy import RetryPolicy
from impound_kernel.services.inspection_service import InspectionService
from impound_kernel.services.notification_dispatcher import NotificationDispatcher
from impound_kernel.services.reconciliation_coordinator import ReconciliationCoordinator
from impound_kernel.services.release_workflow import ReleaseWorkflow
from impound_kernel.services.sms_gateway import SmsGateway

_logger = logging.getLogger("impound_kernel.config.bridges")


def build_retry_policy(config: RetryConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.max_attempts,
        base_delay_seconds=config.base_delay_seconds,
        max_delay_seconds=config.max_delay_seconds,
        max_conflict_retries=config.max_conflict_retries,
    )


def build_sms_gateway(config: SmsConfig) -> SmsGateway | None:
    """None when SMS is disabled."""
    if not config.enabled:
        return None
    return SmsGateway(
        endpoint=config.endpoint,
        api_key=config.api_key,
        timeout_seconds=config.timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=max(config.base_delay_seconds, 5.0),
        ),
    )


@dataclass(frozen=True)
class ReleaseStack:
    session_factory: sessionmaker[Session]
    coordinator: ReconciliationCoordinator
    dispatcher: NotificationDispatcher | None
    workflow: ReleaseWorkflow
    inspections: InspectionService


def build_release_workflow(
    config: ImpoundConfig,
    clock: Clock | None = None,
    create_schema: bool = True,
) -> ReleaseStack:
    """
    Initialize the store and wire coordinator, dispatcher and workflow.

    Postconditions:
        - The module-level engine is initialized from config.store.
        - Immutability listeners are registered.
        - With SMS enabled and notify_in_background off, submit_release()
          blocks on the gateway after the commit, for up to
          gateway.max_blocking_seconds (about 21s with the defaults).  The
          bound is logged as sms_inline_dispatch.
    """
    store = config.store
    init_engine_from_url(
        store.database_url,
        echo=store.echo,
        pool_size=store.pool_size,
        max_overflow=store.max_overflow,
        pool_timeout=store.pool_timeout_seconds,
        busy_timeout_seconds=store.busy_timeout_seconds,
    )
    if create_schema:
        create_tables()
    register_immutability_listeners()

    clock = clock or SystemClock()
    session_factory = get_session_factory()
    coordinator = ReconciliationCoordinator(
        session_factory,
        clock=clock,
        retry_policy=build_retry_policy(config.retry),
    )

    gateway = build_sms_gateway(config.sms)
    dispatcher = None
    if gateway is not None:
        dispatcher = NotificationDispatcher(
            gateway,
            session_factory=session_factory,
            clock=clock,
            executor=ThreadPoolExecutor(
                max_workers=config.notification.max_workers,
                thread_name_prefix="impound-sms",
            ),
        )
        if not config.notification.notify_in_background:
            _logger.info(
                "sms_inline_dispatch",
                extra={"max_blocking_seconds": round(gateway.max_blocking_seconds, 1)},
            )

    workflow = ReleaseWorkflow(
        coordinator,
        dispatcher=dispatcher,
        notify_in_background=config.notification.notify_in_background,
    )
    return ReleaseStack(
        session_factory=session_factory,
        coordinator=coordinator,
        dispatcher=dispatcher,
        workflow=workflow,
        inspections=InspectionService(session_factory, clock=clock, dispatcher=dispatcher),
    )
