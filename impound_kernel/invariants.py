"""
Release Invariants Contract.

These invariants are structural law for every inspection.  They are
hardcoded in the quantity ledger, the reconciliation coordinator's
version-guarded write and the table CHECK constraints.  No configuration
may relax them.

The coordinator calls ``verify_inspection_invariants`` inside each release
transaction, after the quantity UPDATE and the ReleaseRecord INSERT and
before COMMIT, so a violation rolls both writes back.
"""

from __future__ import annotations

from enum import Enum, unique
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from impound_kernel.domain.values import InspectionStatus
from impound_kernel.exceptions import (
    InspectionNotFoundError,
    InvariantViolationError,
)
from impound_kernel.logging_config import get_logger

logger = get_logger("invariants")


@unique
class ReleaseInvariant(str, Enum):
    """Non-configurable invariants of the release ledger."""

    NON_NEGATIVE_QUANTITY = "non_negative_quantity"
    """boxes_impounded >= 0.  Enforced by the quantity ledger and the
    ck_inspection_boxes_nonneg CHECK constraint."""

    RELEASES_WITHIN_ORIGINAL = "releases_within_original"
    """The sum of release quantities never exceeds the quantity recorded
    at intake."""

    STATUS_MATCHES_QUANTITY = "status_matches_quantity"
    """status is Completed iff boxes_impounded is 0, and an inspection with
    at least one release is no longer Submitted."""

    DECREMENT_HAS_AUDIT = "decrement_has_audit"
    """original - sum(releases) == boxes_impounded: every decrement has
    exactly one ReleaseRecord and every ReleaseRecord one decrement."""


ALL_RELEASE_INVARIANTS: frozenset[ReleaseInvariant] = frozenset(ReleaseInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = ("impound_config",)


def check_invariants(
    *,
    boxes_impounded: int,
    original_boxes_impounded: int,
    status: InspectionStatus | str,
    release_count: int,
    total_released: int,
) -> list[tuple[ReleaseInvariant, str]]:
    """
    Pure check of the release invariants over already-loaded values.

    Returns:
        (invariant, detail) for every invariant that does not hold; empty
        when the inspection is consistent.
    """
    status = InspectionStatus(status)
    violations: list[tuple[ReleaseInvariant, str]] = []

    if boxes_impounded < 0:
        violations.append((
            ReleaseInvariant.NON_NEGATIVE_QUANTITY,
            f"boxes_impounded is {boxes_impounded}",
        ))

    if total_released > original_boxes_impounded:
        violations.append((
            ReleaseInvariant.RELEASES_WITHIN_ORIGINAL,
            f"released {total_released} of {original_boxes_impounded}",
        ))

    if (status is InspectionStatus.COMPLETED) != (boxes_impounded == 0):
        violations.append((
            ReleaseInvariant.STATUS_MATCHES_QUANTITY,
            f"status {status.value} with {boxes_impounded} boxes remaining",
        ))
    elif release_count > 0 and status is InspectionStatus.SUBMITTED:
        violations.append((
            ReleaseInvariant.STATUS_MATCHES_QUANTITY,
            f"status {status.value} after {release_count} release(s)",
        ))

    if original_boxes_impounded - total_released != boxes_impounded:
        violations.append((
            ReleaseInvariant.DECREMENT_HAS_AUDIT,
            f"original {original_boxes_impounded} - released {total_released} "
            f"!= remaining {boxes_impounded}",
        ))

    return violations


def verify_inspection_invariants(session: Session, inspection_id: UUID) -> None:
    """
    Re-read an inspection and its releases inside the caller's transaction
    and check every release invariant.

    Raises:
        InspectionNotFoundError: The inspection does not exist.
        InvariantViolationError: For the first invariant that does not hold.
    """
    from impound_kernel.models.inspection import Inspection
    from impound_kernel.models.release_record import ReleaseRecord

    row = session.execute(
        select(
            Inspection.boxes_impounded,
            Inspection.original_boxes_impounded,
            Inspection.status,
        ).where(Inspection.id == inspection_id)
    ).one_or_none()
    if row is None:
        raise InspectionNotFoundError(inspection_id)

    release_count, total_released = session.execute(
        select(
            func.count(ReleaseRecord.id),
            func.coalesce(func.sum(ReleaseRecord.quantity), 0),
        ).where(ReleaseRecord.inspection_id == inspection_id)
    ).one()

    violations = check_invariants(
        boxes_impounded=row.boxes_impounded,
        original_boxes_impounded=row.original_boxes_impounded,
        status=row.status,
        release_count=int(release_count),
        total_released=int(total_released),
    )
    if violations:
        invariant, detail = violations[0]
        logger.critical(
            "invariant_violation_detected",
            extra={
                "inspection_id": str(inspection_id),
                "violations": [v.value for v, _ in violations],
            },
        )
        raise InvariantViolationError(invariant.value, inspection_id, detail)
