"""
Pure domain layer.

Value objects, DTOs and release decision logic with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from impound_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from impound_kernel.domain.confirmation_gate import (
    RELEASE_TOKEN,
    ReleaseConfirmation,
    is_confirmed,
    missing_confirmations,
    require_confirmation,
)
from impound_kernel.domain.dtos import (
    InspectionIntake,
    InspectionSnapshot,
    Principal,
    ReleaseCommit,
    ReleaseMetadata,
    ReleaseRecordSnapshot,
    ReleaseRequest,
)
from impound_kernel.domain.quantity_ledger import (
    ReleaseDecision,
    apply_release,
    derive_status,
)
from impound_kernel.domain.retry_policy import RetryPolicy
from impound_kernel.domain.values import (
    BoxCount,
    BoxRepresentation,
    InspectionStatus,
    parse_box_count,
    render_box_count,
)

__all__ = [
    "RELEASE_TOKEN",
    "BoxCount",
    "BoxRepresentation",
    "Clock",
    "DeterministicClock",
    "InspectionIntake",
    "InspectionSnapshot",
    "InspectionStatus",
    "Principal",
    "ReleaseCommit",
    "ReleaseConfirmation",
    "ReleaseDecision",
    "ReleaseMetadata",
    "ReleaseRecordSnapshot",
    "ReleaseRequest",
    "RetryPolicy",
    "SystemClock",
    "apply_release",
    "derive_status",
    "is_confirmed",
    "missing_confirmations",
    "parse_box_count",
    "render_box_count",
    "require_confirmation",
]
