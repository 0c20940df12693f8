"""
Typed Exception Hierarchy for the Impound Kernel.

===============================================================================
CONVENTIONS
===============================================================================

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

    try:
        coordinator.commit_release(inspection_id, 6, metadata)
    except OverReleaseError as e:
        show(f"Requested {e.requested}, only {e.available} available")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ImpoundKernelError (base)
    |
    +-- ReleaseError
    |   +-- InvalidQuantityError
    |   +-- OverReleaseError
    |   +-- InvalidReleaseRequestError
    |   +-- ConfirmationRequiredError
    |
    +-- InspectionError
    |   +-- InspectionNotFoundError
    |   +-- InvalidIntakeError
    |
    +-- StoreError
    |   +-- StoreUnavailableError
    |       +-- ReleaseOutcomeUnknownError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- NotificationError
    |   +-- NotificationFailedError
    |
    +-- IntegrityError
        +-- InvariantViolationError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                      | When Raised
----------------|---------------------------|-------------------------------------------
Release         | INVALID_QUANTITY          | Requested quantity not a positive integer
                | OVER_RELEASE              | Requested more boxes than remain impounded
                | INVALID_RELEASE_REQUEST   | Release form fields missing or malformed
                | CONFIRMATION_REQUIRED     | Operator acknowledgements not complete
----------------|---------------------------|-------------------------------------------
Inspection      | NOT_FOUND                 | Inspection id does not exist
                | INVALID_INTAKE            | Intake fields missing or malformed
----------------|---------------------------|-------------------------------------------
Store           | STORE_UNAVAILABLE         | Transient store failure after retries
                | RELEASE_OUTCOME_UNKNOWN   | Commit outcome could not be determined
----------------|---------------------------|-------------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT  | Version check kept losing to other writers
----------------|---------------------------|-------------------------------------------
Notification    | NOTIFICATION_FAILED       | SMS transport did not accept the message
----------------|---------------------------|-------------------------------------------
Integrity       | INVARIANT_VIOLATION       | Post-write invariant check failed
                | IMMUTABILITY_VIOLATION    | Modifying an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

Release rejections (InvalidQuantity, OverRelease, NotFound) are terminal:
the operator corrects the input.  StoreUnavailableError has already been
retried with backoff by the coordinator.  ReleaseOutcomeUnknownError must be
resolved by re-reading (``ReconciliationCoordinator.resolve_release``),
never by resubmitting blindly.  NotificationFailedError never escapes the
notification dispatcher; it is recorded as audit state.
"""

from __future__ import annotations

from uuid import UUID


class ImpoundKernelError(Exception):
    """
    Base exception for all impound kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "IMPOUND_KERNEL_ERROR"


# Release-related exceptions


class ReleaseError(ImpoundKernelError):
    """Base exception for release transaction errors."""

    code: str = "RELEASE_ERROR"


class InvalidQuantityError(ReleaseError):
    """A quantity is not a valid box count."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid quantity {value!r}: {reason}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InvalidQuantityError):
            return NotImplemented
        return (self.value, self.reason) == (other.value, other.reason)

    def __hash__(self) -> int:
        return hash((self.code, repr(self.value), self.reason))


class OverReleaseError(ReleaseError):
    """Release would take the impounded quantity below zero."""

    code: str = "OVER_RELEASE"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Over-release: requested {requested}, only {available} available"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OverReleaseError):
            return NotImplemented
        return (self.requested, self.available) == (other.requested, other.available)

    def __hash__(self) -> int:
        return hash((self.code, self.requested, self.available))


class InvalidReleaseRequestError(ReleaseError):
    """Release form fields are missing or malformed."""

    code: str = "INVALID_RELEASE_REQUEST"

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        super().__init__(
            f"Invalid release request: {', '.join(sorted(self.field_errors))}"
        )


class ConfirmationRequiredError(ReleaseError):
    """Operator has not completed the release confirmation."""

    code: str = "CONFIRMATION_REQUIRED"

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"Release confirmation incomplete: {', '.join(self.missing)}"
        )


# Inspection-related exceptions


class InspectionError(ImpoundKernelError):
    """Base exception for inspection errors."""

    code: str = "INSPECTION_ERROR"


class InspectionNotFoundError(InspectionError):
    """Inspection with given ID was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, inspection_id: UUID | str):
        self.inspection_id = str(inspection_id)
        super().__init__(f"Inspection not found: {inspection_id}")


class InvalidIntakeError(InspectionError):
    """Inspection intake fields are missing or malformed."""

    code: str = "INVALID_INTAKE"

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        super().__init__(
            f"Invalid inspection intake: {', '.join(sorted(self.field_errors))}"
        )


# Store exceptions


class StoreError(ImpoundKernelError):
    """Base exception for store access errors."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """The store kept failing transiently after bounded retries."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, attempts: int, last_error: str):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Store unavailable during {operation} after {attempts} attempt(s): "
            f"{last_error}"
        )


class ReleaseOutcomeUnknownError(StoreUnavailableError):
    """
    A release commit failed in flight and re-reading could not tell
    whether it was applied.  Resolve by release_id; never resubmit blindly.
    """

    code: str = "RELEASE_OUTCOME_UNKNOWN"

    def __init__(self, release_id: UUID, inspection_id: UUID, last_error: str):
        self.release_id = release_id
        self.inspection_id = inspection_id
        self.operation = "commit_release"
        self.attempts = 1
        self.last_error = last_error
        StoreError.__init__(
            self,
            f"Outcome of release {release_id} on inspection {inspection_id} "
            f"is unknown: {last_error}",
        )


# Concurrency exceptions


class ConcurrencyError(ImpoundKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification kept invalidating the read version."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, inspection_id: UUID, expected_version: int, attempts: int):
        self.inspection_id = inspection_id
        self.expected_version = expected_version
        self.attempts = attempts
        super().__init__(
            f"Inspection {inspection_id} changed concurrently "
            f"(expected version {expected_version}) after {attempts} attempt(s)"
        )


# Notification exceptions


class NotificationError(ImpoundKernelError):
    """Base exception for notification errors."""

    code: str = "NOTIFICATION_ERROR"


class NotificationFailedError(NotificationError):
    """The SMS transport did not accept the message."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Notification failed: {reason}")


# Integrity exceptions


class IntegrityError(ImpoundKernelError):
    """Base exception for data integrity errors."""

    code: str = "INTEGRITY_ERROR"


class InvariantViolationError(IntegrityError):
    """A release invariant does not hold."""

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, inspection_id: UUID, detail: str):
        self.invariant = invariant
        self.inspection_id = inspection_id
        self.detail = detail
        super().__init__(
            f"Invariant {invariant} violated for inspection {inspection_id}: {detail}"
        )


class ImmutabilityViolationError(IntegrityError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
