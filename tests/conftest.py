"""
Pytest fixtures for the impound kernel test suite.

Provides:
- A file-backed SQLite store per test (tables created, immutability
  listeners registered)
- Session factory, deterministic clock and principal
- An inspection factory
- A fake SMS transport
- Captured structured logs

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO
from typing import Sequence

import pytest

from impound_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from impound_kernel.db.immutability import register_immutability_listeners
from impound_kernel.domain.clock import DeterministicClock
from impound_kernel.domain.confirmation_gate import ReleaseConfirmation
from impound_kernel.domain.dtos import (
    InspectionIntake,
    InspectionSnapshot,
    Principal,
    ReleaseMetadata,
    ReleaseRequest,
)
from impound_kernel.domain.retry_policy import NO_WAIT
from impound_kernel.exceptions import NotificationFailedError
from impound_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from impound_kernel.services.inspection_service import InspectionService
from impound_kernel.services.notification_dispatcher import NotificationDispatcher
from impound_kernel.services.reconciliation_coordinator import ReconciliationCoordinator
from impound_kernel.services.release_workflow import ReleaseWorkflow

FIXED_NOW = datetime(2024, 3, 15, 9, 30, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture impound_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.commit_release(...)
            logs = captured_logs()
            assert any(r["message"] == "release_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("impound_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """A fresh store per test: file-backed SQLite unless DATABASE_URL is set."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'impound.db'}"
    eng = init_engine_from_url(url)
    if os.environ.get("DATABASE_URL"):
        drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session for direct reads; closed after the test."""
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def principal():
    return Principal(uid="officer-1", email="officer@example.org", display_name="Officer One")


# =============================================================================
# SMS
# =============================================================================


class FakeSmsTransport:
    """Records every message; fails while ``fail_with`` is set."""

    def __init__(self):
        self.sent: list[tuple[tuple[str, ...], str]] = []
        self.fail_with: str | None = None

    def send(self, destinations: Sequence[str], message: str) -> None:
        if self.fail_with is not None:
            raise NotificationFailedError(self.fail_with, status_code=500)
        self.sent.append((tuple(destinations), message))


@pytest.fixture
def sms():
    return FakeSmsTransport()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def coordinator(session_factory, clock):
    return ReconciliationCoordinator(session_factory, clock=clock, retry_policy=NO_WAIT)


@pytest.fixture
def dispatcher(sms, session_factory, clock):
    return NotificationDispatcher(sms, session_factory=session_factory, clock=clock)


@pytest.fixture
def inspection_service(session_factory, clock, dispatcher):
    return InspectionService(session_factory, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def workflow(session_factory, coordinator, dispatcher):
    return ReleaseWorkflow(coordinator, dispatcher=dispatcher)


@pytest.fixture
def make_inspection(session_factory, clock, principal):
    """
    Create an inspection without sending SMS.

    Usage::

        inspection = make_inspection(boxes=20)
        inspection = make_inspection(boxes="7")  # legacy string representation
    """
    service = InspectionService(session_factory, clock=clock)
    counter = {"n": 0}

    def _make(
        boxes: int | str = 10,
        serial_number: str | None = None,
        drugshop_name: str = "Kampala Pharmacy",
        contact_phones: str = "+256700000001",
    ) -> InspectionSnapshot:
        counter["n"] += 1
        intake = InspectionIntake(
            serial_number=serial_number or f"SN-{counter['n']:04d}",
            drugshop_name=drugshop_name,
            boxes_impounded=boxes,
            impounded_by="Inspector Achieng",
            impounded_on=FIXED_NOW,
            contact_phones=contact_phones,
            location_address="Plot 12, Kampala Road",
            send_sms=False,
        )
        return service.record_inspection(intake, principal).inspection

    return _make


@pytest.fixture
def metadata(principal):
    return ReleaseMetadata(
        released_by="Inspector Achieng",
        principal=principal,
        released_on=FIXED_NOW,
        client_name="John Okello",
        client_telephone="+256772123456",
        note="Released after documentation check",
    )


@pytest.fixture
def release_request():
    def _make(boxes: int | str = 5, **overrides) -> ReleaseRequest:
        fields = dict(
            boxes_released=boxes,
            client_name="John Okello",
            telephone="+256 772 123 456",
            released_by="Inspector Achieng",
            released_on=FIXED_NOW,
            comment="Owner presented licence",
        )
        fields.update(overrides)
        return ReleaseRequest(**fields)

    return _make


@pytest.fixture
def confirmed():
    return ReleaseConfirmation(
        counted_and_verified=True,
        accepts_responsibility=True,
        confirmation_text="release",
    )
