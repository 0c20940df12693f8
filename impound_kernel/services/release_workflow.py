"""
ReleaseWorkflow -- release form submission end to end.

Responsibility:
    Validates the release form, enforces the operator confirmation gate,
    commits the release through the ReconciliationCoordinator and then
    notifies the client.  Returns one outcome that keeps the committed
    release and the notification result apart.

Architecture position:
    Kernel > Services -- the entry point a release screen calls.

        ReleaseRequest --> confirmation gate --> coordinator --> dispatcher

Invariants enforced:
    - The coordinator is never called unless every confirmation is
      satisfied.
    - The gate is checked against the serial number only.  The quantity
      is read by the coordinator at commit time, never here.
    - A notification failure never turns a committed release into an
      error.

Failure modes:
    - InvalidReleaseRequestError, ConfirmationRequiredError,
      InspectionNotFoundError: nothing committed.
    - StoreUnavailableError: the inspection could not be read, even with
      the coordinator's retries.  Nothing committed.
    - Every coordinator error propagates unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from impound_kernel.domain.confirmation_gate import ReleaseConfirmation, require_confirmation
from impound_kernel.domain.dtos import (
    InspectionSnapshot,
    Principal,
    ReleaseCommit,
    ReleaseRequest,
)
from impound_kernel.exceptions import InspectionNotFoundError, InvalidReleaseRequestError
from impound_kernel.logging_config import LogContext, get_logger
from impound_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationOutcome,
    NotificationStatus,
)
from impound_kernel.services.reconciliation_coordinator import ReconciliationCoordinator

logger = get_logger("services.release_workflow")

MESSAGE_SENT = "Release submitted and SMS sent to the owner."
MESSAGE_FAILED = "Release submitted. SMS delivery failed, please notify the owner manually."
MESSAGE_NOT_SENT = "Release submitted."


@dataclass(frozen=True)
class ReleaseOutcome:
    """A committed release plus what happened to its notification."""

    commit: ReleaseCommit
    notification: NotificationOutcome | None

    @property
    def notified(self) -> bool:
        return self.notification is not None and self.notification.succeeded

    @property
    def message(self) -> str:
        if self.notification is None:
            return MESSAGE_NOT_SENT
        if self.notification.status is NotificationStatus.SENT:
            return MESSAGE_SENT
        if self.notification.status is NotificationStatus.FAILED:
            return MESSAGE_FAILED
        return MESSAGE_NOT_SENT

    @property
    def status_line(self) -> str:
        return f"Status set to “{self.commit.status.value}”."


class ReleaseWorkflow:
    """
    Submit a release as an operator would from the release form.

    Contract:
        submit_release() returns only after the release is committed.
        Notification runs inline unless notify_in_background is set, in
        which case the outcome carries notification=None.  Inline, the
        call can block after the commit for up to the gateway's
        max_blocking_seconds.
    """

    def __init__(
        self,
        coordinator: ReconciliationCoordinator,
        dispatcher: NotificationDispatcher | None = None,
        notify_in_background: bool = False,
    ):
        self._coordinator = coordinator
        self._dispatcher = dispatcher
        self._notify_in_background = notify_in_background

    def submit_release(
        self,
        inspection_id: UUID | str,
        request: ReleaseRequest,
        confirmation: ReleaseConfirmation,
        principal: Principal,
        *,
        release_id: UUID | None = None,
    ) -> ReleaseOutcome:
        """
        Validate, confirm, commit and notify one release.

        Raises:
            InvalidReleaseRequestError: Form fields missing or malformed.
            InspectionNotFoundError: No such inspection.
            ConfirmationRequiredError: Acknowledgements incomplete.
            StoreUnavailableError: The inspection could not be read.
            Coordinator errors: OverReleaseError, StoreUnavailableError, ...
        """
        with LogContext.bind(inspection_id=str(inspection_id), actor_id=principal.uid):
            errors = request.field_errors()
            if errors:
                logger.info("release_request_invalid", extra={"fields": sorted(errors)})
                raise InvalidReleaseRequestError(errors)

            inspection = self._load(inspection_id)
            require_confirmation(confirmation, inspection.serial_number)

            metadata = request.to_metadata(principal)
            commit = self._coordinator.commit_release(
                inspection.id,
                request.quantity,
                metadata,
                release_id=release_id,
            )

            notification = self._notify(commit, inspection, metadata)
            outcome = ReleaseOutcome(commit=commit, notification=notification)
            logger.info(
                "release_submitted",
                extra={
                    "release_id": str(commit.release_id),
                    "status": commit.status.value,
                    "notification": notification.status.value if notification else None,
                },
            )
            return outcome

    def _load(self, inspection_id: UUID | str) -> InspectionSnapshot:
        inspection = self._coordinator.read_inspection(inspection_id)
        if inspection is None:
            raise InspectionNotFoundError(inspection_id)
        return inspection

    def _notify(self, commit, inspection, metadata) -> NotificationOutcome | None:
        if self._dispatcher is None:
            return None
        if commit.already_applied:
            # Already notified (or attempted) on the original submission.
            return None
        destinations = (metadata.client_telephone,) if metadata.client_telephone else ()
        if self._notify_in_background:
            self._dispatcher.dispatch_in_background(
                self._dispatcher.notify_release, commit, inspection, metadata, destinations
            )
            return None
        return self._dispatcher.notify_release(commit, inspection, metadata, destinations)
