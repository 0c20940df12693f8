"""Tests for box counts, status values, phone parsing, DTO validation and backoff."""

from datetime import datetime, timezone

import pytest

from impound_kernel.domain.contacts import (
    is_valid_telephone,
    join_destinations,
    normalize_telephone,
    phone_list_error,
    split_phones,
)
from impound_kernel.domain.dtos import InspectionIntake, Principal, ReleaseRequest
from impound_kernel.domain.retry_policy import RetryPolicy
from impound_kernel.domain.values import (
    BoxCount,
    BoxRepresentation,
    InspectionStatus,
    parse_box_count,
    render_box_count,
)
from impound_kernel.exceptions import InvalidQuantityError

WHEN = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


class TestBoxCount:
    def test_number(self):
        assert parse_box_count(12) == BoxCount(12, BoxRepresentation.NUMBER)

    def test_numeric_string(self):
        assert parse_box_count(" 12 ") == BoxCount(12, BoxRepresentation.STRING)

    def test_whole_float(self):
        assert parse_box_count(4.0) == BoxCount(4, BoxRepresentation.NUMBER)

    @pytest.mark.parametrize("raw", [-1, "-1", "1.5", 1.5, "", "abc", None, True, [3]])
    def test_rejected(self, raw):
        with pytest.raises(InvalidQuantityError):
            parse_box_count(raw)

    @pytest.mark.parametrize("raw", [7, "7"])
    def test_render_preserves_representation(self, raw):
        count = parse_box_count(raw)
        assert count.render() == raw
        assert render_box_count(3, count.representation) == type(raw)(3)


class TestInspectionStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("submitted", InspectionStatus.SUBMITTED),
            (None, InspectionStatus.SUBMITTED),
            ("Pending Review", InspectionStatus.PENDING_REVIEW),
            ("completed", InspectionStatus.COMPLETED),
            ("Action Required", InspectionStatus.ACTION_REQUIRED),
        ],
    )
    def test_from_legacy(self, raw, expected):
        assert InspectionStatus.from_legacy(raw) is expected


class TestContacts:
    def test_normalize_strips_whitespace(self):
        assert normalize_telephone(" +256 772 123 456 ") == "+256772123456"

    @pytest.mark.parametrize("raw", ["+256772123456", "0772123456", "1234567"])
    def test_valid(self, raw):
        assert is_valid_telephone(raw)

    @pytest.mark.parametrize("raw", ["", "123", "+12345678901234567", "07721-23456", None])
    def test_invalid(self, raw):
        assert not is_valid_telephone(raw)

    def test_split_and_join(self):
        phones = split_phones(" +256700000001, ,0772123456 ")
        assert phones == ["+256700000001", "0772123456"]
        assert join_destinations(phones) == "+256700000001,0772123456"

    def test_phone_list_errors(self):
        assert phone_list_error(" , ") == "Enter at least one phone number"
        assert phone_list_error("0772123456,abc") == "Invalid phone: abc"
        assert phone_list_error("0772123456") is None


class TestReleaseRequest:
    def _request(self, **overrides):
        fields = dict(
            boxes_released="3",
            client_name="John",
            telephone="0772 123 456",
            released_by="Officer",
            released_on=WHEN,
        )
        fields.update(overrides)
        return ReleaseRequest(**fields)

    def test_valid(self):
        request = self._request()
        assert request.field_errors() == {}
        assert request.quantity == 3

    def test_every_field_reported(self):
        errors = self._request(
            boxes_released="0", client_name=" ", telephone="12", released_by=""
        ).field_errors()
        assert set(errors) == {"boxes_released", "client_name", "telephone", "released_by"}

    def test_metadata_is_normalized(self):
        principal = Principal(uid="u1")
        metadata = self._request(comment="  ok ").to_metadata(principal)
        assert metadata.client_telephone == "0772123456"
        assert metadata.note == "ok"
        assert metadata.principal is principal


class TestInspectionIntake:
    def _intake(self, **overrides):
        fields = dict(
            serial_number="SN-1",
            drugshop_name="Shop",
            boxes_impounded="4",
            impounded_by="Officer",
            impounded_on=WHEN,
            contact_phones="0772123456",
        )
        fields.update(overrides)
        return InspectionIntake(**fields)

    def test_valid(self):
        assert self._intake().field_errors() == {}

    def test_phones_required_only_when_sending(self):
        assert "contact_phones" in self._intake(contact_phones="").field_errors()
        assert self._intake(contact_phones="", send_sms=False).field_errors() == {}
        assert self._intake(contact_phones="", boxes_impounded=0).field_errors() == {}

    def test_bad_box_count(self):
        assert "boxes_impounded" in self._intake(boxes_impounded="lots").field_errors()


class TestRetryPolicy:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(base_delay_seconds=0.1, max_delay_seconds=0.3, jitter=False)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [0.1, 0.2, 0.3, 0.3]

    def test_jitter_stays_within_double(self):
        policy = RetryPolicy(base_delay_seconds=0.1, max_delay_seconds=1.0)
        for attempt in range(1, 6):
            base = min(1.0, 0.1 * 2 ** (attempt - 1))
            assert base <= policy.delay(attempt) <= 2 * base

    def test_max_total_delay_bounds_every_sleep(self):
        policy = RetryPolicy(max_attempts=4, base_delay_seconds=0.5, max_delay_seconds=4.0)
        assert policy.max_total_delay() == 7.0
        assert RetryPolicy(
            max_attempts=4, base_delay_seconds=0.5, max_delay_seconds=4.0, jitter=False
        ).max_total_delay() == 3.5
        assert RetryPolicy(max_attempts=1).max_total_delay() == 0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"max_conflict_retries": 0}, {"base_delay_seconds": -1}],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)
