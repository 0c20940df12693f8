"""
Value objects for the impound domain.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Models import these
    enums; nothing here imports from models, db, or services.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from impound_kernel.exceptions import InvalidQuantityError


class InspectionStatus(str, Enum):
    """Lifecycle status of an inspection.

    Contract: Derived from the remaining quantity by the quantity ledger.
    COMPLETED iff nothing remains impounded.  ACTION_REQUIRED is set only
    by external review tooling; releases never produce it.
    """

    SUBMITTED = "Submitted"
    PENDING_REVIEW = "Pending Review"
    COMPLETED = "Completed"
    ACTION_REQUIRED = "Action Required"

    @classmethod
    def from_legacy(cls, raw: str | None) -> InspectionStatus:
        """Map the free-form status strings found in legacy records."""
        s = (raw or "submitted").strip().lower()
        if "complete" in s:
            return cls.COMPLETED
        if "pending" in s:
            return cls.PENDING_REVIEW
        if "action" in s:
            return cls.ACTION_REQUIRED
        return cls.SUBMITTED


class BoxRepresentation(str, Enum):
    """How a legacy record stored its box count."""

    NUMBER = "number"
    STRING = "string"


_DIGITS_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class BoxCount:
    """A non-negative box count plus the representation it arrived in."""

    value: int
    representation: BoxRepresentation = BoxRepresentation.NUMBER

    def render(self) -> int | str:
        return render_box_count(self.value, self.representation)


def parse_box_count(raw: object) -> BoxCount:
    """
    Parse a box count stored either as a number or as a numeric string.

    Raises:
        InvalidQuantityError: bools, negatives, fractions, and anything that
            is not an integer or a string of digits.
    """
    if isinstance(raw, bool):
        raise InvalidQuantityError(raw, "must be a whole number, not a boolean")
    if isinstance(raw, int):
        if raw < 0:
            raise InvalidQuantityError(raw, "must not be negative")
        return BoxCount(raw, BoxRepresentation.NUMBER)
    if isinstance(raw, float):
        if not raw.is_integer() or raw < 0:
            raise InvalidQuantityError(raw, "must be a non-negative whole number")
        return BoxCount(int(raw), BoxRepresentation.NUMBER)
    if isinstance(raw, str):
        text = raw.strip()
        if not _DIGITS_RE.match(text):
            raise InvalidQuantityError(raw, "must be a string of digits")
        return BoxCount(int(text), BoxRepresentation.STRING)
    raise InvalidQuantityError(raw, f"unsupported type {type(raw).__name__}")


def render_box_count(value: int, representation: BoxRepresentation | str) -> int | str:
    """Render a box count in the representation a legacy record used."""
    if BoxRepresentation(representation) is BoxRepresentation.STRING:
        return str(value)
    return value
