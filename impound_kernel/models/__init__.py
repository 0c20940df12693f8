"""Domain models for the impound kernel."""

from impound_kernel.models.inspection import Inspection
from impound_kernel.models.release_record import ReleaseRecord

__all__ = [
    "Inspection",
    "ReleaseRecord",
]
