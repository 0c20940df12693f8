"""
InspectionService -- inspection intake and legacy import.

Responsibility:
    Creates Inspection rows from the intake form (the store-facing half of
    the intake workflow) and migrates records from the legacy keyed store,
    whose box counts are numbers on some records and numeric strings on
    others.

Architecture position:
    Kernel > Services.  Owns its transactions through a session factory,
    like the reconciliation coordinator, because the impound SMS is sent
    only after the intake has committed.

Invariants enforced:
    - A new inspection starts at version 0 with boxes_impounded equal to
      original_boxes_impounded.
    - status is Submitted, or Completed when nothing was impounded
      (status = Completed iff boxes_impounded = 0).
    - Legacy import keeps the box representation it found and rebuilds
      the release history so original - sum(releases) = boxes_impounded.

Failure modes:
    - InvalidIntakeError: intake fields missing or malformed; nothing
      written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session, sessionmaker

from impound_kernel.domain.clock import Clock, SystemClock
from impound_kernel.domain.contacts import (
    normalize_telephone,
    phone_list_error,
    split_phones,
)
from impound_kernel.domain.dtos import InspectionIntake, InspectionSnapshot, Principal
from impound_kernel.domain.quantity_ledger import derive_status
from impound_kernel.domain.values import InspectionStatus, parse_box_count
from impound_kernel.exceptions import InvalidIntakeError, InvalidQuantityError
from impound_kernel.invariants import verify_inspection_invariants
from impound_kernel.logging_config import LogContext, get_logger
from impound_kernel.models.inspection import Inspection
from impound_kernel.models.release_record import ReleaseRecord
from impound_kernel.selectors.inspection_selector import inspection_snapshot
from impound_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationOutcome,
)

logger = get_logger("services.inspection")


def parse_contact_phones(raw: str | None) -> tuple[str, ...]:
    """
    Comma-separated drugshop contacts to a destination tuple.

    Raises:
        InvalidIntakeError: No tokens, or a token that is not an
            E.164-ish number.
    """
    error = phone_list_error(raw)
    if error:
        raise InvalidIntakeError({"contact_phones": error})
    return tuple(split_phones(raw))


def _parse_legacy_time(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class IntakeOutcome:
    inspection: InspectionSnapshot
    notification: NotificationOutcome | None = None


class InspectionService:
    """
    Records new inspections.

    Non-goals:
        - Geolocation; only the formatted address is stored.
        - Editing descriptive fields after creation.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher

    def record_inspection(
        self,
        intake: InspectionIntake,
        principal: Principal,
    ) -> IntakeOutcome:
        """
        Create an inspection and, when asked, send the impound SMS.

        Raises:
            InvalidIntakeError: With every invalid field.
        """
        errors = intake.field_errors()
        if errors:
            logger.info("intake_invalid", extra={"fields": sorted(errors)})
            raise InvalidIntakeError(errors)

        box_count = intake.box_count
        now = self._clock.now()
        inspection = Inspection(
            serial_number=intake.serial_number.strip(),
            drugshop_name=intake.drugshop_name.strip(),
            boxes_impounded=box_count.value,
            original_boxes_impounded=box_count.value,
            boxes_representation=box_count.representation.value,
            status=self._initial_status(box_count.value).value,
            version=0,
            contact_phones=",".join(intake.destinations),
            client_telephone=normalize_telephone(intake.client_telephone) or None,
            impounded_by=intake.impounded_by.strip(),
            impounded_on=intake.impounded_on,
            location_address=intake.location_address.strip(),
            created_by_uid=principal.uid,
            created_by_email=principal.email,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(inspection)
            session.commit()
            snapshot = inspection_snapshot(inspection)

        with LogContext.bind(inspection_id=str(snapshot.id), actor_id=principal.uid):
            logger.info(
                "inspection_recorded",
                extra={
                    "serial_number": snapshot.serial_number,
                    "boxes_impounded": snapshot.boxes_impounded,
                    "status": snapshot.status.value,
                },
            )

            notification = None
            if self._dispatcher is not None and intake.send_sms and box_count.value > 0:
                notification = self._dispatcher.notify_impound(snapshot, intake.destinations)

        return IntakeOutcome(inspection=snapshot, notification=notification)

    def import_legacy_inspection(
        self,
        record: Mapping[str, Any],
        releases: Iterable[Mapping[str, Any]] = (),
    ) -> InspectionSnapshot:
        """
        Migrate one record from the legacy keyed store.

        Args:
            record: Legacy inspection fields (serialNumber, drugshopName,
                boxesImpounded as a number or numeric string, status, ...).
            releases: The legacy release entries filed under this
                inspection; replayed oldest first into ReleaseRecords.

        Raises:
            InvalidIntakeError: Unusable box counts or missing fields.
            InvariantViolationError: The imported history does not add up.
        """
        try:
            box_count = parse_box_count(record.get("boxesImpounded", 0))
        except InvalidQuantityError as exc:
            raise InvalidIntakeError({"boxesImpounded": exc.reason}) from exc

        history = sorted(
            releases,
            key=lambda r: _parse_legacy_time(r.get("createdAt")) or datetime.min.replace(tzinfo=timezone.utc),
        )
        quantities: list[int] = []
        for entry in history:
            try:
                quantities.append(parse_box_count(entry.get("boxesReleased")).value)
            except InvalidQuantityError as exc:
                raise InvalidIntakeError({"boxesReleased": exc.reason}) from exc
        if any(q <= 0 for q in quantities):
            raise InvalidIntakeError({"boxesReleased": "must be positive"})

        serial = str(record.get("serialNumber") or "").strip()
        if not serial:
            raise InvalidIntakeError({"serialNumber": "This field is required"})

        original = box_count.value + sum(quantities)
        status = InspectionStatus.from_legacy(record.get("status"))
        if box_count.value == 0:
            status = InspectionStatus.COMPLETED
        elif status is InspectionStatus.COMPLETED or (quantities and status is InspectionStatus.SUBMITTED):
            status = InspectionStatus.PENDING_REVIEW

        location = record.get("location") or {}
        now = self._clock.now()
        inspection = Inspection(
            serial_number=serial,
            drugshop_name=str(record.get("drugshopName") or "").strip(),
            boxes_impounded=box_count.value,
            original_boxes_impounded=original,
            boxes_representation=box_count.representation.value,
            status=status.value,
            version=len(quantities),
            contact_phones=",".join(split_phones(record.get("drugshopContactPhones"))),
            impounded_by=str(record.get("impoundedBy") or "").strip(),
            impounded_on=_parse_legacy_time(record.get("date")),
            location_address=str(location.get("formattedAddress") or "").strip(),
            created_by_uid=str(record.get("createdBy") or "anonymous"),
            created_by_email=record.get("createdBy"),
            notification_attempted=bool(record.get("smsAttempted", False)),
            notification_succeeded=bool(record.get("smsSuccess", False)),
            created_at=_parse_legacy_time(record.get("createdAt")) or now,
            updated_at=now,
        )

        with self._session_factory() as session:
            session.add(inspection)
            session.flush()
            before = original
            for entry, quantity in zip(history, quantities):
                released_on = _parse_legacy_time(entry.get("date")) or now
                session.add(
                    ReleaseRecord(
                        inspection_id=inspection.id,
                        quantity=quantity,
                        quantity_before=before,
                        quantity_after=before - quantity,
                        released_by=str(entry.get("releasedBy") or "").strip(),
                        released_by_uid=str(entry.get("createdByUid") or "anonymous"),
                        released_by_email=entry.get("createdByEmail"),
                        released_by_name=entry.get("createdByName"),
                        client_name=str(entry.get("clientName") or "").strip(),
                        client_telephone=normalize_telephone(entry.get("telephone")),
                        note=str(entry.get("comment") or "").strip(),
                        released_on=released_on,
                        created_at=_parse_legacy_time(entry.get("createdAt")) or released_on,
                    )
                )
                before -= quantity
            session.flush()
            verify_inspection_invariants(session, inspection.id)
            session.commit()
            snapshot = inspection_snapshot(inspection)

        logger.info(
            "legacy_inspection_imported",
            extra={
                "inspection_id": str(snapshot.id),
                "representation": snapshot.boxes_representation.value,
                "releases": len(quantities),
            },
        )
        return snapshot

    @staticmethod
    def _initial_status(boxes: int) -> InspectionStatus:
        if boxes == 0:
            return derive_status(0)
        return InspectionStatus.SUBMITTED
