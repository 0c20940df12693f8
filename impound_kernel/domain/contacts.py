"""
Phone destination parsing for SMS notifications.

The field forms accept one telephone for the releasing client and a
comma-separated list of drugshop contacts at intake.  Each token is an
E.164-ish digit string: optional leading ``+`` then 7 to 15 digits.
"""

from __future__ import annotations

import re

PHONE_TOKEN_RE = re.compile(r"^\+?\d{7,15}$")


def normalize_telephone(raw: str | None) -> str:
    """Strip all whitespace from a telephone number."""
    return re.sub(r"\s+", "", raw or "")


def is_valid_telephone(raw: str | None) -> bool:
    return bool(PHONE_TOKEN_RE.match(normalize_telephone(raw)))


def split_phones(raw: str | None) -> list[str]:
    """Comma-split, trim, drop empty tokens."""
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


def phone_list_error(raw: str | None) -> str | None:
    """First problem with a comma-separated phone list, or None."""
    tokens = split_phones(raw)
    if not tokens:
        return "Enter at least one phone number"
    for token in tokens:
        if not PHONE_TOKEN_RE.match(token):
            return f"Invalid phone: {token}"
    return None


def join_destinations(destinations: list[str] | tuple[str, ...]) -> str:
    """The SMS endpoint takes multiple destinations as one comma-separated value."""
    return ",".join(destinations)
