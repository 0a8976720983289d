"""
Error taxonomy for cohort pathway analysis.

ConfigurationError and run-level DataAvailabilityError abort a run before any
output is written. DecodingError and unit-level DataAvailabilityError only
abort the affected target cohort. PartialAvailabilityWarning never aborts.
"""

from typing import Optional


class PathwayAnalysisError(Exception):
    """Base class for all pathway analysis failures."""


class ConfigurationError(PathwayAnalysisError, ValueError):
    """Invalid or missing required parameter."""


class DataAvailabilityError(PathwayAnalysisError):
    """No instantiated cohorts on one side (target or event)."""

    def __init__(self, message: str, target_cohort_id: Optional[int] = None):
        super().__init__(message)
        self.target_cohort_id = target_cohort_id


class DecodingError(PathwayAnalysisError, ValueError):
    """Combo code cannot be decomposed under the current bit index map."""

    def __init__(self, combo_code: int, remainder: Optional[int] = None):
        if remainder is None:
            message = f"Combo code {combo_code} is not a valid positive combo"
        else:
            message = (
                f"Combo code {combo_code} cannot be decomposed: "
                f"remainder {remainder} has no matching event cohort bit"
            )
        super().__init__(message)
        self.combo_code = combo_code
        self.remainder = remainder


class PartialAvailabilityWarning(UserWarning):
    """Some, but not all, configured cohorts are instantiated."""
