"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule                                        | Why
----------------|---------------------------------------------|-------------------------------
ReleaseRecord   | Append-only; notification audit fields only | One audit entry per release
Inspection      | Never deleted; descriptive fields frozen    | Quantity history must survive

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below raise ImmutabilityViolationError and the
flush (and so the transaction) is aborted.

Core ``update()`` statements bypass mapper events.  The reconciliation
coordinator writes the quantity through a version-guarded Core UPDATE that
only touches the mutable columns; every other write path goes through the ORM.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Notification audit fields (notification_attempted, notification_succeeded,
   notification_error, notified_at) may change on a ReleaseRecord.  They
   describe delivery of the record, not the record.

2. Inline imports avoid a models <-> db import cycle.

===============================================================================
USAGE
===============================================================================

    from impound_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup
"""

from sqlalchemy import event, inspect

from impound_kernel.exceptions import ImmutabilityViolationError
from impound_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

RELEASE_RECORD_MUTABLE_FIELDS = frozenset({
    "notification_attempted",
    "notification_succeeded",
    "notification_error",
    "notified_at",
})

INSPECTION_FROZEN_FIELDS = frozenset({
    "serial_number",
    "drugshop_name",
    "original_boxes_impounded",
    "created_by_uid",
})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_release_record_immutability(mapper, connection, target):
    """Only notification audit fields may change on a ReleaseRecord."""
    from impound_kernel.models.release_record import ReleaseRecord

    if not isinstance(target, ReleaseRecord):
        return

    for attr in inspect(target).attrs:
        if attr.key in RELEASE_RECORD_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "ReleaseRecord",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a release record",
                field=attr.key,
            )


def _check_release_record_delete(mapper, connection, target):
    from impound_kernel.models.release_record import ReleaseRecord

    if not isinstance(target, ReleaseRecord):
        return

    _blocked(
        "ReleaseRecord",
        str(target.id),
        "DELETE",
        "Release records are append-only and cannot be deleted",
    )


def _check_inspection_immutability(mapper, connection, target):
    """Descriptive intake fields are frozen once the inspection exists."""
    from impound_kernel.models.inspection import Inspection

    if not isinstance(target, Inspection):
        return

    state = inspect(target)
    for key in INSPECTION_FROZEN_FIELDS:
        hist = state.attrs[key].history
        # Unloaded attributes report no history; a real change has a deleted side.
        if hist.has_changes() and hist.deleted:
            _blocked(
                "Inspection",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{key}' on an inspection",
                field=key,
            )


def _check_inspection_delete(mapper, connection, target):
    from impound_kernel.models.inspection import Inspection

    if not isinstance(target, Inspection):
        return

    _blocked(
        "Inspection",
        str(target.id),
        "DELETE",
        "Inspections are never deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.
    """
    from impound_kernel.models.inspection import Inspection
    from impound_kernel.models.release_record import ReleaseRecord

    for target, name, fn in _listeners(Inspection, ReleaseRecord):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: tests only.
    """
    from impound_kernel.models.inspection import Inspection
    from impound_kernel.models.release_record import ReleaseRecord

    for target, name, fn in _listeners(Inspection, ReleaseRecord):
        _safe_remove_listener(target, name, fn)


def _listeners(inspection_cls, release_record_cls):
    return (
        (release_record_cls, "before_update", _check_release_record_immutability),
        (release_record_cls, "before_delete", _check_release_record_delete),
        (inspection_cls, "before_update", _check_inspection_immutability),
        (inspection_cls, "before_delete", _check_inspection_delete),
    )
