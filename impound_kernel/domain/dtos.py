"""
Data transfer objects crossing the service boundary.

All DTOs are frozen dataclasses except where noted.  Services return these,
never ORM instances, so callers cannot mutate store state by accident.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from impound_kernel.domain.contacts import (
    is_valid_telephone,
    normalize_telephone,
    phone_list_error,
    split_phones,
)
from impound_kernel.domain.values import (
    BoxCount,
    BoxRepresentation,
    InspectionStatus,
    parse_box_count,
)
from impound_kernel.exceptions import InvalidQuantityError


@dataclass(frozen=True)
class Principal:
    """Already-authenticated operator identity from the auth provider."""

    uid: str
    email: str | None = None
    display_name: str | None = None

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(uid="anonymous")


@dataclass(frozen=True)
class ReleaseMetadata:
    """Everything recorded on a release besides the quantity."""

    released_by: str
    principal: Principal
    released_on: datetime
    client_name: str = ""
    client_telephone: str = ""
    note: str = ""


@dataclass(frozen=True)
class ReleaseRequest:
    """Release form input as entered by the operator."""

    boxes_released: int | str
    client_name: str
    telephone: str
    released_by: str
    released_on: datetime
    comment: str = ""

    def field_errors(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        if not self.client_name.strip():
            errors["client_name"] = "Client name is required"
        if not self.telephone.strip():
            errors["telephone"] = "Telephone number is required"
        elif not is_valid_telephone(self.telephone):
            errors["telephone"] = "Enter a valid phone number"
        if not self.released_by.strip():
            errors["released_by"] = "Released by field is required"
        try:
            boxes = parse_box_count(self.boxes_released).value
        except InvalidQuantityError:
            boxes = 0
        if boxes <= 0:
            errors["boxes_released"] = "Valid number of boxes is required"
        return errors

    @property
    def quantity(self) -> int:
        return parse_box_count(self.boxes_released).value

    def to_metadata(self, principal: Principal) -> ReleaseMetadata:
        return ReleaseMetadata(
            released_by=self.released_by.strip(),
            principal=principal,
            released_on=self.released_on,
            client_name=self.client_name.strip(),
            client_telephone=normalize_telephone(self.telephone),
            note=self.comment.strip(),
        )


@dataclass(frozen=True)
class InspectionIntake:
    """Inspection intake form input."""

    serial_number: str
    drugshop_name: str
    boxes_impounded: int | str
    impounded_by: str
    impounded_on: datetime
    contact_phones: str = ""
    client_telephone: str = ""
    location_address: str = ""
    send_sms: bool = True

    def field_errors(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        for name in ("serial_number", "drugshop_name", "impounded_by"):
            if not str(getattr(self, name) or "").strip():
                errors[name] = "This field is required"
        try:
            boxes = parse_box_count(self.boxes_impounded).value
        except InvalidQuantityError:
            errors["boxes_impounded"] = "Enter a valid number"
            boxes = 0
        if self.client_telephone.strip() and not is_valid_telephone(self.client_telephone):
            errors["client_telephone"] = "Enter a valid phone number"
        if self.send_sms and boxes > 0:
            phone_error = phone_list_error(self.contact_phones)
            if phone_error:
                errors["contact_phones"] = phone_error
        return errors

    @property
    def box_count(self) -> BoxCount:
        return parse_box_count(self.boxes_impounded)

    @property
    def destinations(self) -> tuple[str, ...]:
        return tuple(split_phones(self.contact_phones))


@dataclass(frozen=True)
class InspectionSnapshot:
    """Read-only view of an inspection row."""

    id: UUID
    serial_number: str
    drugshop_name: str
    boxes_impounded: int
    original_boxes_impounded: int
    boxes_representation: BoxRepresentation
    status: InspectionStatus
    version: int
    contact_phones: tuple[str, ...] = ()
    impounded_by: str = ""
    impounded_on: datetime | None = None
    location_address: str = ""
    notification_attempted: bool = False
    notification_succeeded: bool = False


@dataclass(frozen=True)
class ReleaseRecordSnapshot:
    """Read-only view of one release audit entry."""

    id: UUID
    inspection_id: UUID
    quantity: int
    quantity_before: int
    quantity_after: int
    released_by: str
    released_by_uid: str
    client_name: str
    client_telephone: str
    note: str
    released_on: datetime
    created_at: datetime
    notification_attempted: bool = False
    notification_succeeded: bool = False


@dataclass(frozen=True)
class ReleaseCommit:
    """Result of a committed (or previously committed) release."""

    release_id: UUID
    inspection_id: UUID
    released: int
    remaining: int
    status: InspectionStatus
    version: int
    already_applied: bool = False
