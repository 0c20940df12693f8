"""
Module: impound_kernel.models.inspection
Responsibility: ORM persistence for one impound event and its remaining
    box quantity.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - boxes_impounded >= 0 (CHECK constraint ck_inspection_boxes_nonneg).
    - boxes_impounded <= original_boxes_impounded (CHECK constraint).
    - version increases by one on every quantity change; it is the
      compare-and-swap token of the reconciliation coordinator.
    - Never deleted; descriptive fields frozen (db/immutability.py).

Failure modes:
    - sqlalchemy IntegrityError if a write would break a CHECK constraint.

Audit relevance:
    The last_release_* stamps mirror the most recent ReleaseRecord for list
    views; the release_records table is the authoritative history.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from impound_kernel.db.base import TrackedBase
from impound_kernel.domain.contacts import split_phones
from impound_kernel.domain.values import (
    BoxRepresentation,
    InspectionStatus,
    render_box_count,
)


class Inspection(TrackedBase):
    """
    One drug-impound inspection.

    Contract:
        boxes_impounded is mutated only by the ReconciliationCoordinator's
        version-guarded UPDATE.  status is derived from boxes_impounded.

    Non-goals:
        - Geolocation capture; only the formatted address is kept.
    """

    __tablename__ = "inspections"

    __table_args__ = (
        CheckConstraint("boxes_impounded >= 0", name="ck_inspection_boxes_nonneg"),
        CheckConstraint(
            "boxes_impounded <= original_boxes_impounded",
            name="ck_inspection_boxes_le_original",
        ),
        Index("idx_inspection_serial", "serial_number"),
        Index("idx_inspection_status", "status"),
        Index("idx_inspection_impounded_on", "impounded_on"),
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)

    drugshop_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Remaining boxes; the governed quantity
    boxes_impounded: Mapped[int] = mapped_column(Integer, nullable=False)

    # Quantity at intake, never changes
    original_boxes_impounded: Mapped[int] = mapped_column(Integer, nullable=False)

    # Legacy representation of boxes_impounded ("number" / "string")
    boxes_representation: Mapped[str] = mapped_column(
        String(10),
        default=BoxRepresentation.NUMBER.value,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=InspectionStatus.SUBMITTED.value,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # Comma-separated SMS destinations
    contact_phones: Mapped[str] = mapped_column(Text, default="", nullable=False)

    client_telephone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    impounded_by: Mapped[str] = mapped_column(String(200), default="", nullable=False)

    impounded_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    location_address: Mapped[str] = mapped_column(Text, default="", nullable=False)

    created_by_uid: Mapped[str] = mapped_column(String(128), nullable=False)

    created_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Most recent release
    last_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_released_by_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_released_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_release_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_release_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Best-effort notification audit
    notification_attempted: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notification_succeeded: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notification_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Inspection {self.serial_number}: {self.boxes_impounded} boxes, "
            f"{self.status}>"
        )

    @property
    def destinations(self) -> tuple[str, ...]:
        return tuple(split_phones(self.contact_phones))

    def to_legacy_dict(self) -> dict[str, Any]:
        """Render in the legacy store's field names and box representation."""
        return {
            "id": str(self.id),
            "serialNumber": self.serial_number,
            "drugshopName": self.drugshop_name,
            "drugshopContactPhones": self.contact_phones,
            "boxesImpounded": render_box_count(
                self.boxes_impounded, self.boxes_representation
            ),
            "impoundedBy": self.impounded_by,
            "date": self.impounded_on.isoformat() if self.impounded_on else None,
            "location": {"formattedAddress": self.location_address},
            "status": self.status,
            "createdBy": self.created_by_email or self.created_by_uid,
            "smsAttempted": self.notification_attempted,
            "smsSuccess": self.notification_succeeded,
            "lastReleaseCount": self.last_release_count,
            "lastReleaseNote": self.last_release_note,
        }
