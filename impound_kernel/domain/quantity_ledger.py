"""
Quantity Ledger -- pure release decisions.

Responsibility:
    Validates a requested release against the authoritative remaining
    quantity of an inspection and computes the resulting quantity and
    status.  Nothing here reads or writes the store.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    ReconciliationCoordinator with a quantity it has just read under lock.

Invariants enforced:
    - remaining >= 0: a release larger than the current quantity is
      rejected, never clamped.
    - status == COMPLETED iff remaining == 0, otherwise PENDING_REVIEW.

Failure modes:
    - InvalidQuantityError: requested quantity is not a positive integer,
      or the current quantity is not a non-negative integer.
    - OverReleaseError: requested > current; carries both values.

Determinism:
    Same inputs -> same decision or an equal rejection.  Safe to call any
    number of times.
"""

from __future__ import annotations

from dataclasses import dataclass

from impound_kernel.domain.values import InspectionStatus
from impound_kernel.exceptions import InvalidQuantityError, OverReleaseError


@dataclass(frozen=True)
class ReleaseDecision:
    """Outcome of a valid release."""

    previous: int
    released: int
    remaining: int
    status: InspectionStatus

    @property
    def is_final(self) -> bool:
        return self.remaining == 0


def derive_status(remaining: int) -> InspectionStatus:
    """Status implied by the quantity left after a release."""
    if remaining == 0:
        return InspectionStatus.COMPLETED
    return InspectionStatus.PENDING_REVIEW


def _require_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(value, f"{name} must be an integer")
    return value


def apply_release(current_quantity: int, requested_quantity: int) -> ReleaseDecision:
    """
    Decide the effect of releasing ``requested_quantity`` boxes.

    Preconditions (each a distinct rejection):
        - requested_quantity is a positive integer (InvalidQuantityError).
        - requested_quantity <= current_quantity (OverReleaseError).

    Args:
        current_quantity: Authoritative remaining quantity, read at the
            moment of the attempt.
        requested_quantity: Boxes the operator is releasing.

    Returns:
        ReleaseDecision with remaining = current - requested.
    """
    requested = _require_int(requested_quantity, "requested quantity")
    if requested <= 0:
        raise InvalidQuantityError(requested, "requested quantity must be positive")

    current = _require_int(current_quantity, "current quantity")
    if current < 0:
        raise InvalidQuantityError(current, "current quantity must not be negative")

    if requested > current:
        raise OverReleaseError(requested=requested, available=current)

    remaining = current - requested
    return ReleaseDecision(
        previous=current,
        released=requested,
        remaining=remaining,
        status=derive_status(remaining),
    )
