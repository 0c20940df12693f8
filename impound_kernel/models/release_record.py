"""
Module: impound_kernel.models.release_record
Responsibility: ORM persistence for the append-only release audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0 and quantity_after = quantity_before - quantity
      (CHECK constraints).
    - Append-only: UPDATE/DELETE blocked by db/immutability.py, except the
      notification audit fields.
    - Exactly one row per committed decrement: written in the same
      transaction as the inspection's version-guarded UPDATE.

Audit relevance:
    The id is the caller's release_id, so a release whose commit outcome was
    lost in flight can be resolved by looking the row up.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from impound_kernel.db.base import Base, UUIDString


class ReleaseRecord(Base):
    """
    One accepted release of boxes from an inspection.

    Guarantees:
        - quantity_before / quantity_after capture the ledger decision that
          was applied, so the history replays without the inspection row.
    """

    __tablename__ = "release_records"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_release_quantity_positive"),
        CheckConstraint(
            "quantity_after = quantity_before - quantity",
            name="ck_release_quantity_balanced",
        ),
        CheckConstraint("quantity_after >= 0", name="ck_release_after_nonneg"),
        Index("idx_release_inspection", "inspection_id", "created_at"),
    )

    inspection_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inspections.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)

    # Releasing party as entered on the form
    released_by: Mapped[str] = mapped_column(String(200), nullable=False)

    # Authenticated principal
    released_by_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    released_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    released_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    client_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    client_telephone: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Operator-entered release date
    released_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Notification audit (mutable)
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
            f"<ReleaseRecord {self.id}: {self.quantity} "
            f"({self.quantity_before} -> {self.quantity_after})>"
        )
