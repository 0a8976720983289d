"""
Run configuration for cohort pathway analysis.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from helpers_pathways.constants import (
    DEFAULT_ALLOW_REPEATS,
    DEFAULT_COLLAPSE_WINDOW_DAYS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_CELL_COUNT,
)
from helpers_pathways.errors import ConfigurationError


def parse_id_list(value) -> List[int]:
    """Accept '1,2,3', a single int or an iterable of ints."""
    if value is None:
        return []
    if isinstance(value, str):
        items = [v.strip() for v in value.split(',') if v.strip()]
    elif isinstance(value, int):
        items = [value]
    else:
        items = list(value)
    try:
        return [int(v) for v in items]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Cohort ids must be integers, got {value!r}") from e


@dataclass
class PathwayAnalysisSettings:
    target_cohort_ids: List[int] = field(default_factory=list)
    event_cohort_ids: List[int] = field(default_factory=list)
    allow_repeats: bool = DEFAULT_ALLOW_REPEATS
    max_depth: int = DEFAULT_MAX_DEPTH
    collapse_window_days: int = DEFAULT_COLLAPSE_WINDOW_DAYS
    min_cell_count: int = DEFAULT_MIN_CELL_COUNT
    overwrite: bool = True
    max_workers: int = DEFAULT_MAX_WORKERS

    def validate(self) -> "PathwayAnalysisSettings":
        """Collect every problem and raise one ConfigurationError listing them all."""
        errors = []
        if not self.target_cohort_ids:
            errors.append("target_cohort_ids must contain at least one cohort id")
        if not self.event_cohort_ids:
            errors.append("event_cohort_ids must contain at least one cohort id")
        for name in ('allow_repeats', 'overwrite'):
            if not isinstance(getattr(self, name), bool):
                errors.append(f"{name} must be a boolean, got {getattr(self, name)!r}")
        for name in ('max_depth', 'collapse_window_days', 'min_cell_count'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                errors.append(f"{name} must be an integer >= 0, got {value!r}")
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int) or self.max_workers < 1:
            errors.append(f"max_workers must be an integer >= 1, got {self.max_workers!r}")

        if errors:
            raise ConfigurationError("; ".join(errors))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
