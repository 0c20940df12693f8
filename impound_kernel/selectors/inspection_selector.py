"""
Module: impound_kernel.selectors.inspection_selector
Responsibility: Read-only queries over inspections and their release
    history for list/detail views and for the release workflow.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns InspectionSnapshot / ReleaseRecordSnapshot DTOs.
    - releases_for() is ordered oldest first so a caller can replay the
      quantity history from original_boxes_impounded.

Audit relevance:
    release_records is the authoritative history; the last_release_*
    columns on the inspection are a convenience copy.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, or_, select

from impound_kernel.db.base import Base
from impound_kernel.domain.contacts import split_phones
from impound_kernel.domain.dtos import InspectionSnapshot, ReleaseRecordSnapshot
from impound_kernel.domain.values import BoxRepresentation, InspectionStatus
from impound_kernel.models.inspection import Inspection
from impound_kernel.models.release_record import ReleaseRecord
from impound_kernel.selectors.base import BaseSelector


def coerce_uuid(value: UUID | str) -> UUID | None:
    """UUID from a UUID or its string form; None when malformed."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def inspection_snapshot(row: Inspection) -> InspectionSnapshot:
    return InspectionSnapshot(
        id=row.id,
        serial_number=row.serial_number,
        drugshop_name=row.drugshop_name,
        boxes_impounded=row.boxes_impounded,
        original_boxes_impounded=row.original_boxes_impounded,
        boxes_representation=BoxRepresentation(row.boxes_representation),
        status=InspectionStatus(row.status),
        version=row.version,
        contact_phones=tuple(split_phones(row.contact_phones)),
        impounded_by=row.impounded_by,
        impounded_on=row.impounded_on,
        location_address=row.location_address,
        notification_attempted=row.notification_attempted,
        notification_succeeded=row.notification_succeeded,
    )


def release_snapshot(row: ReleaseRecord) -> ReleaseRecordSnapshot:
    return ReleaseRecordSnapshot(
        id=row.id,
        inspection_id=row.inspection_id,
        quantity=row.quantity,
        quantity_before=row.quantity_before,
        quantity_after=row.quantity_after,
        released_by=row.released_by,
        released_by_uid=row.released_by_uid,
        client_name=row.client_name,
        client_telephone=row.client_telephone,
        note=row.note,
        released_on=row.released_on,
        created_at=row.created_at,
        notification_attempted=row.notification_attempted,
        notification_succeeded=row.notification_succeeded,
    )


class InspectionSelector(BaseSelector[Base]):
    """
    Queries for inspections and release records.

    Non-goals:
        - Live subscriptions; callers poll list_inspections().
    """

    def get(self, inspection_id: UUID | str) -> InspectionSnapshot | None:
        key = coerce_uuid(inspection_id)
        if key is None:
            return None
        row = self.session.execute(
            select(Inspection)
            .where(Inspection.id == key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return inspection_snapshot(row) if row is not None else None

    def list_inspections(self, search: str | None = None) -> list[InspectionSnapshot]:
        """
        All inspections, newest impound date first.

        Args:
            search: Case-insensitive substring matched against drugshop
                name, serial number, status and location.
        """
        stmt = select(Inspection)
        term = (search or "").strip().lower()
        if term:
            stmt = stmt.where(
                or_(
                    func.lower(Inspection.drugshop_name).contains(term, autoescape=True),
                    func.lower(Inspection.serial_number).contains(term, autoescape=True),
                    func.lower(Inspection.status).contains(term, autoescape=True),
                    func.lower(Inspection.location_address).contains(term, autoescape=True),
                )
            )
        stmt = stmt.order_by(
            Inspection.impounded_on.desc().nulls_last(),
            Inspection.created_at.desc(),
        )
        return [inspection_snapshot(row) for row in self.session.execute(stmt).scalars()]

    def releases_for(self, inspection_id: UUID | str) -> list[ReleaseRecordSnapshot]:
        key = coerce_uuid(inspection_id)
        if key is None:
            return []
        rows = self.session.execute(
            select(ReleaseRecord)
            .where(ReleaseRecord.inspection_id == key)
            .order_by(ReleaseRecord.created_at, ReleaseRecord.quantity_before.desc())
        ).scalars()
        return [release_snapshot(row) for row in rows]

    def total_released(self, inspection_id: UUID | str) -> int:
        key = coerce_uuid(inspection_id)
        if key is None:
            return 0
        total = self.session.execute(
            select(func.coalesce(func.sum(ReleaseRecord.quantity), 0))
            .where(ReleaseRecord.inspection_id == key)
        ).scalar_one()
        return int(total)

    def find_release(self, release_id: UUID | str) -> ReleaseRecordSnapshot | None:
        key = coerce_uuid(release_id)
        if key is None:
            return None
        row = self.session.get(ReleaseRecord, key, populate_existing=True)
        return release_snapshot(row) if row is not None else None
