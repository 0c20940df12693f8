"""Read-only query selectors."""

from impound_kernel.selectors.inspection_selector import InspectionSelector

__all__ = [
    "InspectionSelector",
]
