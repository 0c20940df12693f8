"""
Tests for ReleaseWorkflow: form validation, the confirmation gate, the
commit and the user-facing outcome.
"""

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from impound_kernel.domain.confirmation_gate import (
    MISSING_CONFIRMATION_TEXT,
    MISSING_COUNT_VERIFIED,
    MISSING_RESPONSIBILITY,
    ReleaseConfirmation,
)
from impound_kernel.domain.retry_policy import NO_WAIT
from impound_kernel.domain.values import InspectionStatus
from impound_kernel.exceptions import (
    ConfirmationRequiredError,
    InspectionNotFoundError,
    InvalidReleaseRequestError,
    OverReleaseError,
    StoreUnavailableError,
)
from impound_kernel.selectors.inspection_selector import InspectionSelector
from impound_kernel.services.notification_dispatcher import NotificationDispatcher, NotificationStatus
from impound_kernel.services.reconciliation_coordinator import ReconciliationCoordinator
from impound_kernel.services.release_workflow import (
    MESSAGE_FAILED,
    MESSAGE_NOT_SENT,
    MESSAGE_SENT,
    ReleaseWorkflow,
)


def _state(session_factory, inspection_id):
    with session_factory() as session:
        selector = InspectionSelector(session)
        return selector.get(inspection_id), selector.releases_for(inspection_id)


class TestSubmitRelease:
    def test_partial_release_notifies_client(
        self, workflow, make_inspection, release_request, confirmed, principal, sms, session_factory
    ):
        inspection = make_inspection(boxes=20)

        outcome = workflow.submit_release(inspection.id, release_request(5), confirmed, principal)

        assert outcome.commit.remaining == 15
        assert outcome.commit.status is InspectionStatus.PENDING_REVIEW
        assert outcome.notified
        assert outcome.message == MESSAGE_SENT
        assert outcome.status_line == "Status set to “Pending Review”."
        assert sms.sent[0][0] == ("+256772123456",)

        snapshot, releases = _state(session_factory, inspection.id)
        assert snapshot.boxes_impounded == 15
        assert releases[0].client_telephone == "+256772123456"
        assert releases[0].note == "Owner presented licence"
        assert releases[0].released_by_uid == principal.uid

    def test_full_release_completes(
        self, workflow, make_inspection, release_request, confirmed, principal
    ):
        inspection = make_inspection(boxes=3)

        outcome = workflow.submit_release(inspection.id, release_request("3"), confirmed, principal)

        assert outcome.commit.remaining == 0
        assert outcome.status_line == "Status set to “Completed”."

    def test_serial_number_confirms(
        self, workflow, make_inspection, release_request, principal
    ):
        inspection = make_inspection(boxes=3, serial_number="KLA-0042")
        confirmation = ReleaseConfirmation(True, True, " kla-0042 ")

        outcome = workflow.submit_release(inspection.id, release_request(1), confirmation, principal)

        assert outcome.commit.remaining == 2

    def test_sms_failure_keeps_the_commit(
        self, workflow, make_inspection, release_request, confirmed, principal, sms, session_factory
    ):
        inspection = make_inspection(boxes=10)
        sms.fail_with = "timeout"

        outcome = workflow.submit_release(inspection.id, release_request(4), confirmed, principal)

        assert outcome.notification.status is NotificationStatus.FAILED
        assert not outcome.notified
        assert outcome.message == MESSAGE_FAILED
        snapshot, _ = _state(session_factory, inspection.id)
        assert snapshot.boxes_impounded == 6

    def test_without_dispatcher(
        self, coordinator, make_inspection, release_request, confirmed, principal
    ):
        workflow = ReleaseWorkflow(coordinator)
        inspection = make_inspection(boxes=10)

        outcome = workflow.submit_release(inspection.id, release_request(1), confirmed, principal)

        assert outcome.notification is None
        assert outcome.message == MESSAGE_NOT_SENT

    def test_background_notification(
        self, coordinator, dispatcher, make_inspection, release_request, confirmed, principal, sms
    ):
        workflow = ReleaseWorkflow(
            coordinator, dispatcher=dispatcher, notify_in_background=True
        )
        inspection = make_inspection(boxes=10)

        outcome = workflow.submit_release(inspection.id, release_request(2), confirmed, principal)
        dispatcher.shutdown(wait=True)

        assert outcome.notification is None
        assert len(sms.sent) == 1

    def test_resubmission_is_not_notified_twice(
        self, workflow, make_inspection, release_request, confirmed, principal, sms
    ):
        inspection = make_inspection(boxes=10)
        release_id = uuid4()

        first = workflow.submit_release(
            inspection.id, release_request(2), confirmed, principal, release_id=release_id
        )
        second = workflow.submit_release(
            inspection.id, release_request(2), confirmed, principal, release_id=release_id
        )

        assert not first.commit.already_applied
        assert second.commit.already_applied
        assert second.commit.remaining == 8
        assert second.notification is None
        assert len(sms.sent) == 1


class TestNothingCommitted:
    def test_confirmation_gate_blocks(
        self, workflow, make_inspection, release_request, principal, sms, session_factory
    ):
        inspection = make_inspection(boxes=10)
        confirmation = ReleaseConfirmation(counted_and_verified=True, confirmation_text="nope")

        with pytest.raises(ConfirmationRequiredError) as exc_info:
            workflow.submit_release(inspection.id, release_request(5), confirmation, principal)

        assert exc_info.value.missing == [MISSING_RESPONSIBILITY, MISSING_CONFIRMATION_TEXT]
        snapshot, releases = _state(session_factory, inspection.id)
        assert snapshot.boxes_impounded == 10
        assert snapshot.version == 0
        assert releases == []
        assert sms.sent == []

    def test_unconfirmed_form(self, workflow, make_inspection, release_request, principal):
        inspection = make_inspection(boxes=10)

        with pytest.raises(ConfirmationRequiredError) as exc_info:
            workflow.submit_release(
                inspection.id, release_request(5), ReleaseConfirmation(), principal
            )

        assert exc_info.value.missing == [
            MISSING_COUNT_VERIFIED,
            MISSING_RESPONSIBILITY,
            MISSING_CONFIRMATION_TEXT,
        ]

    def test_invalid_form(self, workflow, make_inspection, release_request, confirmed, principal):
        inspection = make_inspection(boxes=10)

        with pytest.raises(InvalidReleaseRequestError) as exc_info:
            workflow.submit_release(
                inspection.id,
                release_request("0", telephone="abc"),
                confirmed,
                principal,
            )

        assert set(exc_info.value.field_errors) == {"boxes_released", "telephone"}

    def test_unknown_inspection(self, workflow, release_request, confirmed, principal):
        with pytest.raises(InspectionNotFoundError):
            workflow.submit_release(uuid4(), release_request(1), confirmed, principal)

    def test_over_release(
        self, workflow, make_inspection, release_request, confirmed, principal, sms
    ):
        inspection = make_inspection(boxes=4)

        with pytest.raises(OverReleaseError) as exc_info:
            workflow.submit_release(inspection.id, release_request(5), confirmed, principal)

        assert (exc_info.value.requested, exc_info.value.available) == (5, 4)
        assert sms.sent == []


class UnreachableSessions:
    """Session factory whose next ``failures`` session requests raise."""

    def __init__(self, factory, failures):
        self._factory = factory
        self.failures = failures

    def __call__(self):
        if self.failures > 0:
            self.failures -= 1
            raise OperationalError("SELECT", {}, Exception("could not connect to server"))
        return self._factory()


class TestStoreFailures:
    def _workflow(self, session_factory, clock, failures):
        sessions = UnreachableSessions(session_factory, failures)
        return ReleaseWorkflow(ReconciliationCoordinator(sessions, clock=clock, retry_policy=NO_WAIT))

    def test_inspection_read_is_retried(
        self, session_factory, clock, make_inspection, release_request, confirmed, principal
    ):
        inspection = make_inspection(boxes=10)
        workflow = self._workflow(session_factory, clock, failures=1)

        outcome = workflow.submit_release(inspection.id, release_request(5), confirmed, principal)

        assert outcome.commit.remaining == 5

    def test_unreachable_store_is_reported_as_unavailable(
        self, session_factory, clock, make_inspection, release_request, confirmed, principal
    ):
        inspection = make_inspection(boxes=10)
        workflow = self._workflow(session_factory, clock, failures=NO_WAIT.max_attempts)

        with pytest.raises(StoreUnavailableError) as exc_info:
            workflow.submit_release(inspection.id, release_request(5), confirmed, principal)

        assert exc_info.value.operation == "read_inspection"
        assert exc_info.value.attempts == NO_WAIT.max_attempts
        snapshot, releases = _state(session_factory, inspection.id)
        assert snapshot.boxes_impounded == 10
        assert releases == []


def test_transport_bug_after_commit_is_reported_not_raised(
    session_factory, clock, coordinator, make_inspection, release_request, confirmed, principal
):
    class RaisingTransport:
        def send(self, destinations, message):
            raise RuntimeError("unexpected payload")

    dispatcher = NotificationDispatcher(RaisingTransport(), session_factory=session_factory, clock=clock)
    workflow = ReleaseWorkflow(coordinator, dispatcher=dispatcher)
    inspection = make_inspection(boxes=10)

    outcome = workflow.submit_release(inspection.id, release_request(3), confirmed, principal)

    assert outcome.commit.remaining == 7
    assert outcome.notification.status is NotificationStatus.FAILED
    assert outcome.message == MESSAGE_FAILED
