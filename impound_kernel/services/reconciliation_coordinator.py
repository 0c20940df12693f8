"""
ReconciliationCoordinator -- applies quantity-ledger decisions to the store.

Responsibility:
    Makes one real-world release effective exactly once: reads the
    authoritative inspection row, asks the quantity ledger for a decision,
    then writes the quantity change and the ReleaseRecord in one
    transaction guarded by the inspection's version.

Architecture position:
    Kernel > Services -- imperative shell around the pure quantity ledger.
    Unlike the flush-only services, the coordinator owns its transactions:
    every attempt opens a fresh session from the session factory, so a
    retry never reuses a quantity read by an earlier attempt.

Invariants enforced:
    - Lost-update safety: the quantity is read with SELECT ... FOR UPDATE
      and written with UPDATE ... WHERE version = :read_version.  A zero
      rowcount means another release committed first; the attempt is
      rolled back and re-run against the new quantity.
    - Atomic audit: the UPDATE and the ReleaseRecord INSERT commit
      together, after verify_inspection_invariants() has passed.
    - Idempotency: release_id is the ReleaseRecord primary key.  An
      attempt whose release_id is already recorded returns that commit
      with already_applied=True and writes nothing.  The check is repeated
      under the row lock, so a concurrent double-submit sees the first
      commit instead of colliding on the primary key.

Failure modes:
    - InspectionNotFoundError, InvalidQuantityError, OverReleaseError:
      terminal, never retried, nothing written.
    - StoreUnavailableError: transient store errors outlasted the retry
      budget.  Nothing was applied.
    - ReleaseOutcomeUnknownError: COMMIT itself failed and the store could
      not be re-read to tell whether it landed.  Resolve later with
      resolve_release(release_id); never resubmit with a new release_id.
    - OptimisticLockError: the version kept changing underneath us.

Audit relevance:
    release_committed / release_rejected / release_conflict_retry /
    store_transient_error are logged with inspection_id and release_id
    bound in LogContext.
"""

from __future__ import annotations

import time
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from impound_kernel.domain.clock import Clock, SystemClock
from impound_kernel.domain.dtos import InspectionSnapshot, ReleaseCommit, ReleaseMetadata
from impound_kernel.domain.quantity_ledger import apply_release, derive_status
from impound_kernel.domain.retry_policy import RetryPolicy
from impound_kernel.exceptions import (
    InspectionNotFoundError,
    InvalidQuantityError,
    InvalidReleaseRequestError,
    OptimisticLockError,
    OverReleaseError,
    ReleaseOutcomeUnknownError,
    StoreUnavailableError,
)
from impound_kernel.invariants import verify_inspection_invariants
from impound_kernel.logging_config import LogContext, get_logger
from impound_kernel.models.inspection import Inspection
from impound_kernel.models.release_record import ReleaseRecord
from impound_kernel.selectors.inspection_selector import InspectionSelector, coerce_uuid

logger = get_logger("services.reconciliation")

# Errors after which the same attempt may succeed if simply run again.
TRANSIENT_STORE_ERRORS: tuple[type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
)


class _VersionConflict(Exception):
    def __init__(self, expected_version: int):
        self.expected_version = expected_version
        super().__init__(f"version {expected_version} no longer current")


class _CommitInterrupted(Exception):
    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(str(cause))


def _short(exc: BaseException) -> str:
    return str(exc).strip()[:256]


class ReconciliationCoordinator:
    """
    Conflict-checked release commits.

    Contract:
        commit_release() either returns a ReleaseCommit whose quantity
        change and ReleaseRecord are both committed, or raises with
        neither written.  The one exception is ReleaseOutcomeUnknownError,
        which the caller resolves by release_id.

    Guarantees:
        - Concurrent commits against one inspection are serializable:
          each validates against the quantity left by those before it.
        - Commits against different inspections never wait on each other.

    Non-goals:
        - Does NOT check the operator confirmation (ReleaseWorkflow does).
        - Does NOT notify anyone (NotificationDispatcher does).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep

    def commit_release(
        self,
        inspection_id: UUID | str,
        requested_quantity: int,
        metadata: ReleaseMetadata,
        *,
        release_id: UUID | None = None,
    ) -> ReleaseCommit:
        """
        Release ``requested_quantity`` boxes from an inspection.

        Preconditions:
            - The operator confirmation gate has been satisfied.

        Postconditions:
            - On return, boxes_impounded has dropped by exactly
              requested_quantity (or did so in an earlier call with the
              same release_id) and one ReleaseRecord exists for it.

        Args:
            inspection_id: Inspection to release from.
            requested_quantity: Boxes to release.
            metadata: Releasing party, client and note.
            release_id: Idempotency key of this real-world release.
                Generated when omitted.

        Returns:
            ReleaseCommit with the remaining quantity and derived status.

        Raises:
            InspectionNotFoundError, InvalidQuantityError, OverReleaseError,
            StoreUnavailableError, ReleaseOutcomeUnknownError,
            OptimisticLockError, InvalidReleaseRequestError (release_id
            already used for a different release).
        """
        key = coerce_uuid(inspection_id)
        if key is None:
            raise InspectionNotFoundError(inspection_id)
        release_id = release_id or uuid4()

        with LogContext.bind(
            inspection_id=str(key),
            release_id=str(release_id),
            actor_id=metadata.principal.uid,
        ):
            return self._commit_with_retry(key, requested_quantity, metadata, release_id)

    def resolve_release(self, release_id: UUID | str) -> ReleaseCommit | None:
        """
        Look up a release by id after an unknown commit outcome.

        Returns:
            The committed release (already_applied=True), or None if it was
            never applied.

        Raises:
            sqlalchemy errors if the store is still unreachable.
        """
        key = coerce_uuid(release_id)
        if key is None:
            return None
        with self._session_factory() as session:
            return self._existing_commit(session, key)

    def read_inspection(self, inspection_id: UUID | str) -> InspectionSnapshot | None:
        """
        Snapshot of one inspection, read with the same transient-error
        retries as commit_release().

        Raises:
            StoreUnavailableError: the store kept failing past max_attempts.
        """
        failures = 0
        while True:
            try:
                with self._session_factory() as session:
                    return InspectionSelector(session).get(inspection_id)
            except TRANSIENT_STORE_ERRORS as exc:
                failures += 1
                self._transient_failure("read_inspection", failures, exc)

    # -----------------------------------------------------------------
    # Retry loop
    # -----------------------------------------------------------------

    def _commit_with_retry(
        self,
        inspection_id: UUID,
        requested_quantity: int,
        metadata: ReleaseMetadata,
        release_id: UUID,
    ) -> ReleaseCommit:
        policy = self._retry
        failures = 0
        conflicts = 0

        while True:
            try:
                return self._attempt(inspection_id, requested_quantity, metadata, release_id)

            except _VersionConflict as conflict:
                conflicts += 1
                logger.info(
                    "release_conflict_retry",
                    extra={
                        "expected_version": conflict.expected_version,
                        "conflicts": conflicts,
                    },
                )
                if conflicts >= policy.max_conflict_retries:
                    raise OptimisticLockError(
                        inspection_id, conflict.expected_version, conflicts
                    ) from None
                self._sleep(policy.delay(conflicts))

            except _CommitInterrupted as interrupted:
                commit = self._resolve_interrupted(inspection_id, release_id, interrupted.cause)
                if commit is not None:
                    return commit
                failures += 1
                if failures >= policy.max_attempts:
                    raise StoreUnavailableError(
                        "commit_release", failures, _short(interrupted.cause)
                    ) from interrupted.cause
                self._sleep(policy.delay(failures))

            except TRANSIENT_STORE_ERRORS as exc:
                failures += 1
                self._transient_failure("commit_release", failures, exc)

    def _transient_failure(self, operation: str, failures: int, exc: Exception) -> None:
        """Log one transient failure, then back off or give up."""
        policy = self._retry
        logger.warning(
            "store_transient_error",
            extra={
                "operation": operation,
                "attempt": failures,
                "max_attempts": policy.max_attempts,
                "error": _short(exc),
            },
        )
        if failures >= policy.max_attempts:
            logger.error(
                "store_unavailable",
                extra={"operation": operation, "attempts": failures},
            )
            raise StoreUnavailableError(operation, failures, _short(exc)) from exc
        self._sleep(policy.delay(failures))

    def _resolve_interrupted(
        self,
        inspection_id: UUID,
        release_id: UUID,
        cause: Exception,
    ) -> ReleaseCommit | None:
        """
        COMMIT raised: re-read by release_id instead of re-applying.

        Returns the commit if it landed, None if it did not.
        """
        logger.warning("release_commit_interrupted", extra={"error": _short(cause)})
        last_error: Exception = cause
        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                commit = self.resolve_release(release_id)
            except TRANSIENT_STORE_ERRORS as exc:
                last_error = exc
                if attempt < self._retry.max_attempts:
                    self._sleep(self._retry.delay(attempt))
                continue
            if commit is not None:
                logger.info(
                    "release_commit_confirmed",
                    extra={"remaining": commit.remaining, "status": commit.status.value},
                )
            else:
                logger.info("release_commit_not_applied")
            return commit

        logger.error("release_outcome_unknown", extra={"error": _short(last_error)})
        raise ReleaseOutcomeUnknownError(release_id, inspection_id, _short(last_error)) from last_error

    # -----------------------------------------------------------------
    # One attempt
    # -----------------------------------------------------------------

    def _attempt(
        self,
        inspection_id: UUID,
        requested_quantity: int,
        metadata: ReleaseMetadata,
        release_id: UUID,
    ) -> ReleaseCommit:
        with self._session_factory() as session:
            existing = self._existing_commit(session, release_id)
            if existing is not None:
                self._check_same_release(existing, inspection_id, requested_quantity)
                logger.info("release_already_applied", extra={"remaining": existing.remaining})
                return existing

            # Authoritative read; FOR UPDATE holds the row until COMMIT where supported.
            inspection = session.execute(
                select(Inspection)
                .where(Inspection.id == inspection_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if inspection is None:
                logger.info("release_rejected", extra={"reason": InspectionNotFoundError.code})
                raise InspectionNotFoundError(inspection_id)

            # A same-id submission may have committed while we waited on the lock.
            existing = self._existing_commit(session, release_id)
            if existing is not None:
                self._check_same_release(existing, inspection_id, requested_quantity)
                logger.info("release_already_applied", extra={"remaining": existing.remaining})
                return existing

            read_version = inspection.version
            try:
                decision = apply_release(inspection.boxes_impounded, requested_quantity)
            except (InvalidQuantityError, OverReleaseError) as exc:
                logger.info(
                    "release_rejected",
                    extra={
                        "reason": exc.code,
                        "requested": repr(requested_quantity),
                        "available": inspection.boxes_impounded,
                    },
                )
                raise

            now = self._clock.now()
            principal = metadata.principal
            result = session.execute(
                update(Inspection)
                .where(
                    Inspection.id == inspection_id,
                    Inspection.version == read_version,
                )
                .values(
                    boxes_impounded=decision.remaining,
                    status=decision.status.value,
                    version=Inspection.version + 1,
                    last_released_at=now,
                    last_released_by_uid=principal.uid,
                    last_released_by_email=principal.email,
                    last_release_note=metadata.note,
                    last_release_count=decision.released,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                raise _VersionConflict(read_version)

            session.add(
                ReleaseRecord(
                    id=release_id,
                    inspection_id=inspection_id,
                    quantity=decision.released,
                    quantity_before=decision.previous,
                    quantity_after=decision.remaining,
                    released_by=metadata.released_by,
                    released_by_uid=principal.uid,
                    released_by_email=principal.email,
                    released_by_name=principal.display_name,
                    client_name=metadata.client_name,
                    client_telephone=metadata.client_telephone,
                    note=metadata.note,
                    released_on=metadata.released_on,
                    created_at=now,
                )
            )
            session.flush()

            verify_inspection_invariants(session, inspection_id)

            try:
                session.commit()
            except TRANSIENT_STORE_ERRORS as exc:
                raise _CommitInterrupted(exc) from exc

        logger.info(
            "release_committed",
            extra={
                "released": decision.released,
                "quantity_before": decision.previous,
                "remaining": decision.remaining,
                "status": decision.status.value,
                "version": read_version + 1,
            },
        )
        return ReleaseCommit(
            release_id=release_id,
            inspection_id=inspection_id,
            released=decision.released,
            remaining=decision.remaining,
            status=decision.status,
            version=read_version + 1,
        )

    def _existing_commit(self, session: Session, release_id: UUID) -> ReleaseCommit | None:
        record = session.get(ReleaseRecord, release_id, populate_existing=True)
        if record is None:
            return None
        version = session.execute(
            select(Inspection.version).where(Inspection.id == record.inspection_id)
        ).scalar_one()
        return ReleaseCommit(
            release_id=record.id,
            inspection_id=record.inspection_id,
            released=record.quantity,
            remaining=record.quantity_after,
            status=derive_status(record.quantity_after),
            version=version,
            already_applied=True,
        )

    @staticmethod
    def _check_same_release(
        existing: ReleaseCommit,
        inspection_id: UUID,
        requested_quantity: int,
    ) -> None:
        if existing.inspection_id != inspection_id or existing.released != requested_quantity:
            raise InvalidReleaseRequestError(
                {"release_id": "Already used for a different release"}
            )
