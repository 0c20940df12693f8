"""
NotificationDispatcher -- best-effort SMS after a committed change.

Responsibility:
    Formats the release and impound messages, hands them to the SMS
    transport and records the outcome as audit flags on the Inspection
    and the ReleaseRecord.

Architecture position:
    Kernel > Services -- side channel downstream of the reconciliation
    coordinator.  It only ever runs after a commit and never touches the
    quantity, status or version columns.

Invariants enforced:
    - Delivery failure never raises out of notify_*(); it becomes a
      NotificationOutcome with status FAILED.
    - Audit flags are written in their own session.  A failure to write
      them is logged (notification_audit_failed) and swallowed.

Failure modes:
    - None surfaced.  Every failure is a FAILED outcome or a log line.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from impound_kernel.domain.clock import Clock, SystemClock
from impound_kernel.domain.dtos import InspectionSnapshot, ReleaseCommit, ReleaseMetadata
from impound_kernel.exceptions import NotificationFailedError
from impound_kernel.logging_config import get_logger
from impound_kernel.models.inspection import Inspection
from impound_kernel.models.release_record import ReleaseRecord
from impound_kernel.services.sms_gateway import SmsTransport

logger = get_logger("services.notification")

DEFAULT_SHOP_NAME = "Drugshop"
MISSING_SERIAL = "—"
WHEN_FORMAT = "%d %b %Y, %H:%M"


def format_when(when: datetime | None) -> str:
    if when is None:
        return ""
    return when.strftime(WHEN_FORMAT)


def format_release_message(
    *,
    drugshop_name: str | None,
    serial_number: str | None,
    released: int,
    remaining: int,
    released_on: datetime | None,
    officer: str,
) -> str:
    return (
        f"Dear {drugshop_name or DEFAULT_SHOP_NAME}, "
        f"{released} box(es) have been released on {format_when(released_on)}. "
        f"Serial: {serial_number or MISSING_SERIAL}. "
        f"Remaining: {remaining}. "
        f"Officer: {officer}."
    )


def format_impound_message(
    *,
    drugshop_name: str | None,
    serial_number: str | None,
    boxes_impounded: int,
    impounded_on: datetime | None,
    officer: str,
) -> str:
    return (
        f"Dear {drugshop_name or DEFAULT_SHOP_NAME}, "
        f"{boxes_impounded} box(es) were impounded on {format_when(impounded_on)}. "
        f"Serial: {serial_number or MISSING_SERIAL}. Officer: {officer}."
    )


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class NotificationOutcome:
    """What happened to one notification.  Never an error."""

    status: NotificationStatus
    reason: str | None = None
    destinations: tuple[str, ...] = ()

    @property
    def attempted(self) -> bool:
        return self.status is not NotificationStatus.SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.status is NotificationStatus.SENT


class NotificationDispatcher:
    """
    Sends release/impound SMS and records whether it worked.

    Contract:
        notify_release() / notify_impound() always return a
        NotificationOutcome.  The committed store state they describe is
        never modified beyond the notification audit columns.

    Non-goals:
        - Phone normalization; destinations arrive already validated.
        - Guaranteed delivery; the transport is at-least-once at best.
    """

    def __init__(
        self,
        transport: SmsTransport,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self._transport = transport
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._executor = executor

    def notify_release(
        self,
        commit: ReleaseCommit,
        inspection: InspectionSnapshot,
        metadata: ReleaseMetadata,
        destinations: Sequence[str],
    ) -> NotificationOutcome:
        message = format_release_message(
            drugshop_name=inspection.drugshop_name,
            serial_number=inspection.serial_number,
            released=commit.released,
            remaining=commit.remaining,
            released_on=metadata.released_on,
            officer=metadata.released_by,
        )
        outcome = self._deliver("release", message, destinations)
        if outcome.attempted:
            self._record_audit(ReleaseRecord, commit.release_id, outcome)
            self._record_audit(Inspection, commit.inspection_id, outcome)
        return outcome

    def notify_impound(
        self,
        inspection: InspectionSnapshot,
        destinations: Sequence[str],
    ) -> NotificationOutcome:
        if inspection.original_boxes_impounded <= 0:
            logger.info("notification_skipped", extra={"kind": "impound", "reason": "no_boxes"})
            return NotificationOutcome(NotificationStatus.SKIPPED, reason="no boxes impounded")

        message = format_impound_message(
            drugshop_name=inspection.drugshop_name,
            serial_number=inspection.serial_number,
            boxes_impounded=inspection.original_boxes_impounded,
            impounded_on=inspection.impounded_on,
            officer=inspection.impounded_by,
        )
        outcome = self._deliver("impound", message, destinations)
        if outcome.attempted:
            self._record_audit(Inspection, inspection.id, outcome)
        return outcome

    def dispatch_in_background(
        self,
        fn: Callable[..., NotificationOutcome],
        *args: Any,
        **kwargs: Any,
    ) -> Future:
        """
        Run a notify_* call detached from the caller.

        The caller has already committed; the returned future is for
        observation only.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="impound-sms"
            )
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _deliver(
        self,
        kind: str,
        message: str,
        destinations: Sequence[str],
    ) -> NotificationOutcome:
        targets = tuple(d for d in destinations if d)
        if not targets:
            logger.info("notification_skipped", extra={"kind": kind, "reason": "no_destinations"})
            return NotificationOutcome(NotificationStatus.SKIPPED, reason="no destinations")

        try:
            self._transport.send(targets, message)
        except NotificationFailedError as exc:
            logger.warning(
                "notification_failed",
                extra={"kind": kind, "reason": exc.reason, "status_code": exc.status_code},
            )
            return NotificationOutcome(NotificationStatus.FAILED, reason=exc.reason, destinations=targets)
        except Exception as exc:
            # Transport bug or unexpected client error; the change is already committed.
            reason = f"{type(exc).__name__}: {str(exc)[:200]}"
            logger.exception(
                "notification_failed",
                extra={"kind": kind, "reason": reason, "status_code": None},
            )
            return NotificationOutcome(NotificationStatus.FAILED, reason=reason, destinations=targets)

        logger.info("notification_sent", extra={"kind": kind, "destinations": len(targets)})
        return NotificationOutcome(NotificationStatus.SENT, destinations=targets)

    def _record_audit(
        self,
        model: type[Inspection] | type[ReleaseRecord],
        entity_id: UUID,
        outcome: NotificationOutcome,
    ) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                row = session.get(model, entity_id)
                if row is None:
                    logger.warning(
                        "notification_audit_target_missing",
                        extra={"entity_type": model.__name__, "entity_id": str(entity_id)},
                    )
                    return
                row.notification_attempted = True
                row.notification_succeeded = outcome.succeeded
                row.notification_error = outcome.reason if not outcome.succeeded else None
                row.notified_at = self._clock.now()
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "notification_audit_failed",
                extra={
                    "entity_type": model.__name__,
                    "entity_id": str(entity_id),
                    "error": str(exc)[:256],
                },
            )
