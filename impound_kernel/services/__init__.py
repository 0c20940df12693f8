"""
Kernel services.

ReconciliationCoordinator owns the only write path for an inspection's
quantity.  The other services sit around it: ReleaseWorkflow in front,
NotificationDispatcher behind, InspectionService at intake.
"""

from impound_kernel.services.inspection_service import (
    InspectionService,
    IntakeOutcome,
    parse_contact_phones,
)
from impound_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationOutcome,
    NotificationStatus,
)
from impound_kernel.services.reconciliation_coordinator import ReconciliationCoordinator
from impound_kernel.services.release_workflow import ReleaseOutcome, ReleaseWorkflow
from impound_kernel.services.sms_gateway import SmsGateway, SmsTransport

__all__ = [
    "InspectionService",
    "IntakeOutcome",
    "NotificationDispatcher",
    "NotificationOutcome",
    "NotificationStatus",
    "ReconciliationCoordinator",
    "ReleaseOutcome",
    "ReleaseWorkflow",
    "SmsGateway",
    "SmsTransport",
    "parse_contact_phones",
]
