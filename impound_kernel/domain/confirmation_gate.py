"""
Release Confirmation Gate.

Responsibility:
    Decides whether the operator has confirmed a release strongly enough
    for it to reach the ReconciliationCoordinator.  A committed release
    cannot be undone, so three independent confirmations are required:

      1. The physical count was verified with the facility representative.
      2. The operator accepts responsibility for the handover record.
      3. The typed confirmation text equals ``RELEASE`` or the inspection's
         serial number, case-insensitively, ignoring surrounding spaces.

Architecture position:
    Kernel > Domain -- pure, no I/O.  The confirmation state itself is
    operator UI state; reopening the release form calls ``reset()``.
"""

from __future__ import annotations

from dataclasses import dataclass

from impound_kernel.exceptions import ConfirmationRequiredError

RELEASE_TOKEN = "RELEASE"

MISSING_COUNT_VERIFIED = "counted_and_verified"
MISSING_RESPONSIBILITY = "accepts_responsibility"
MISSING_CONFIRMATION_TEXT = "confirmation_text"


@dataclass
class ReleaseConfirmation:
    """Operator acknowledgements collected on the release form."""

    counted_and_verified: bool = False
    accepts_responsibility: bool = False
    confirmation_text: str = ""

    def reset(self) -> None:
        self.counted_and_verified = False
        self.accepts_responsibility = False
        self.confirmation_text = ""


def confirmation_text_matches(text: str | None, serial_number: str | None) -> bool:
    typed = (text or "").strip()
    if not typed:
        return False
    if typed.upper() == RELEASE_TOKEN:
        return True
    serial = (serial_number or "").strip()
    return bool(serial) and typed.lower() == serial.lower()


def missing_confirmations(
    confirmation: ReleaseConfirmation,
    serial_number: str | None,
) -> list[str]:
    """Names of the confirmations that are not yet satisfied, in form order."""
    missing: list[str] = []
    if not confirmation.counted_and_verified:
        missing.append(MISSING_COUNT_VERIFIED)
    if not confirmation.accepts_responsibility:
        missing.append(MISSING_RESPONSIBILITY)
    if not confirmation_text_matches(confirmation.confirmation_text, serial_number):
        missing.append(MISSING_CONFIRMATION_TEXT)
    return missing


def is_confirmed(confirmation: ReleaseConfirmation, serial_number: str | None) -> bool:
    return not missing_confirmations(confirmation, serial_number)


def require_confirmation(
    confirmation: ReleaseConfirmation,
    serial_number: str | None,
) -> None:
    """
    Raises:
        ConfirmationRequiredError: listing every unsatisfied confirmation.
    """
    missing = missing_confirmations(confirmation, serial_number)
    if missing:
        raise ConfirmationRequiredError(missing)


def confirmation_prompt(serial_number: str | None) -> str:
    """Label for the confirmation text field."""
    serial = (serial_number or "").strip()
    if serial:
        return f"Type {RELEASE_TOKEN} or {serial}"
    return f"Type {RELEASE_TOKEN}"
