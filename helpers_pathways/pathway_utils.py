"""
Pathway construction utilities.

Converts per-subject event cohort timelines into ordered, time-collapsed step
sequences, reduces them to paths (repeat suppression + max depth) and
aggregates subjects sharing an identical path into path records.

Step building and path reduction are pure functions of one subject's events,
aggregation is the synchronization point of a target cohort's unit of work.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from helpers_pathways.combo_utils import BitIndexMap
from helpers_pathways.constants import (
    COUNT_COLUMN,
    EVENT_COUNT_COLUMN,
    GENERATION_ID_COLUMN,
    STATS_COLUMNS,
    path_columns,
)
from helpers_pathways.errors import ConfigurationError

DateLike = Union[date, pd.Timestamp, str]


@dataclass(frozen=True)
class EventOccurrence:
    subject_id: int
    event_cohort_id: int
    start_date: DateLike
    end_date: Optional[DateLike] = None


@dataclass(frozen=True)
class TargetMembership:
    subject_id: int
    target_cohort_id: int
    anchor_start_date: DateLike
    anchor_end_date: Optional[DateLike] = None


@dataclass(frozen=True)
class Step:
    ordinal: int
    combo_code: int
    window_start_date: pd.Timestamp
    days_from_anchor: int


@dataclass(frozen=True)
class Path:
    target_cohort_id: int
    subject_id: int
    anchor_start_date: pd.Timestamp
    step_codes: Tuple[int, ...]


@dataclass(frozen=True)
class PathRecord:
    generation_id: int
    target_cohort_id: int
    step_codes: Tuple[int, ...]
    count_value: int


def _to_day(value: DateLike) -> pd.Timestamp:
    return pd.Timestamp(value).normalize()


def _check_non_negative(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{name} must be an integer >= 0, got {value!r}")


def build_steps(
    occurrences: Iterable[EventOccurrence],
    bit_index: BitIndexMap,
    anchor_start_date: DateLike,
    collapse_window_days: int,
    anchor_end_date: Optional[DateLike] = None,
) -> List[Step]:
    """
    Build one subject's ordered steps.

    Occurrences are sorted by start date; a new step opens when an occurrence
    starts more than `collapse_window_days` after the current window start.
    The window [window_start, window_start + collapse_window_days] is closed,
    so an occurrence exactly on the boundary joins the earlier step.

    Only occurrences of event cohorts in the bit index that start on or after
    the anchor start date (and on or before the anchor end date, if given)
    qualify. Returns an empty list when nothing qualifies.
    """
    _check_non_negative("collapse_window_days", collapse_window_days)

    anchor_start = _to_day(anchor_start_date)
    anchor_end = _to_day(anchor_end_date) if anchor_end_date is not None else None

    qualifying = []
    for occurrence in occurrences:
        if occurrence.event_cohort_id not in bit_index:
            continue
        start = _to_day(occurrence.start_date)
        if start < anchor_start:
            continue
        if anchor_end is not None and start > anchor_end:
            continue
        qualifying.append((start, bit_index.cohort_index(occurrence.event_cohort_id)))

    qualifying.sort()

    steps: List[Step] = []
    window_start = None
    combo_code = 0
    for start, cohort_index in qualifying:
        if window_start is not None and (start - window_start).days > collapse_window_days:
            steps.append(Step(len(steps) + 1, combo_code, window_start, (window_start - anchor_start).days))
            window_start = None
        if window_start is None:
            window_start = start
            combo_code = 0
        combo_code |= 1 << (cohort_index - 1)

    if window_start is not None:
        steps.append(Step(len(steps) + 1, combo_code, window_start, (window_start - anchor_start).days))

    return steps


def reduce_path(
    steps: Sequence[Union[Step, int]],
    allow_repeats: bool,
    max_depth: int,
) -> Tuple[int, ...]:
    """
    Apply repeat suppression and max depth truncation to a step sequence.

    With allow_repeats False only adjacent duplicate combos collapse; the same
    combo may still reappear later in the path. Steps beyond max_depth are
    dropped, not merged.
    """
    _check_non_negative("max_depth", max_depth)

    retained: List[int] = []
    for step in steps:
        if len(retained) >= max_depth:
            break
        code = step.combo_code if isinstance(step, Step) else int(step)
        if not allow_repeats and retained and retained[-1] == code:
            continue
        retained.append(code)
    return tuple(retained)


def group_events_by_subject(events_df: pd.DataFrame) -> Dict[int, List[EventOccurrence]]:
    """Turn event rows (subject_id, event_cohort_id, cohort_start_date, cohort_end_date) into per-subject lists."""
    by_subject: Dict[int, List[EventOccurrence]] = defaultdict(list)
    for row in events_df.itertuples(index=False):
        by_subject[row.subject_id].append(
            EventOccurrence(
                subject_id=row.subject_id,
                event_cohort_id=int(row.event_cohort_id),
                start_date=row.cohort_start_date,
                end_date=getattr(row, 'cohort_end_date', None),
            )
        )
    return by_subject


def memberships_from_frame(
    memberships_df: pd.DataFrame,
    target_cohort_id: int,
    use_anchor_end_date: bool = True,
) -> List[TargetMembership]:
    """Turn target cohort rows (subject_id, cohort_start_date, cohort_end_date) into memberships."""
    memberships = []
    for row in memberships_df.itertuples(index=False):
        anchor_end = getattr(row, 'cohort_end_date', None) if use_anchor_end_date else None
        if anchor_end is not None and pd.isna(anchor_end):
            anchor_end = None
        memberships.append(
            TargetMembership(
                subject_id=row.subject_id,
                target_cohort_id=target_cohort_id,
                anchor_start_date=row.cohort_start_date,
                anchor_end_date=anchor_end,
            )
        )
    return memberships


def build_subject_paths(
    memberships_df: pd.DataFrame,
    events_df: pd.DataFrame,
    bit_index: BitIndexMap,
    target_cohort_id: int,
    collapse_window_days: int,
    allow_repeats: bool,
    max_depth: int,
    use_anchor_end_date: bool = True,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """
    Build one path per target cohort membership.

    Memberships with no qualifying events, or whose path is empty after
    reduction, are excluded.
    """
    logger = logger or logging.getLogger(__name__)
    events_by_subject = group_events_by_subject(events_df)

    paths: List[Path] = []
    excluded = 0
    for membership in memberships_from_frame(memberships_df, target_cohort_id, use_anchor_end_date):
        steps = build_steps(
            events_by_subject.get(membership.subject_id, []),
            bit_index,
            membership.anchor_start_date,
            collapse_window_days,
            anchor_end_date=membership.anchor_end_date,
        )
        step_codes = reduce_path(steps, allow_repeats, max_depth)
        if not step_codes:
            excluded += 1
            continue
        paths.append(
            Path(
                target_cohort_id=target_cohort_id,
                subject_id=membership.subject_id,
                anchor_start_date=_to_day(membership.anchor_start_date),
                step_codes=step_codes,
            )
        )

    logger.debug(
        f"Target cohort {target_cohort_id}: {len(paths):,} paths built, "
        f"{excluded:,} memberships without qualifying steps"
    )
    return paths


def aggregate_paths(paths: Iterable[Path], generation_id: int) -> List[PathRecord]:
    """
    Count paths per (target cohort, full step tuple).

    Records come back sorted by target cohort then step tuple, so output is
    identical for any permutation of the input.
    """
    counts = Counter((path.target_cohort_id, path.step_codes) for path in paths)
    return [
        PathRecord(generation_id, target_cohort_id, step_codes, count)
        for (target_cohort_id, step_codes), count in sorted(counts.items())
    ]


def path_records_to_frame(records: Sequence[PathRecord], max_depth: int) -> pd.DataFrame:
    """Lay path records out as step_1..step_N columns; absent steps are None."""
    columns = path_columns(max_depth)
    rows = []
    for record in records:
        padded = list(record.step_codes) + [None] * (max_depth - len(record.step_codes))
        rows.append([record.generation_id, record.target_cohort_id] + padded + [record.count_value])

    # object dtype keeps combo codes exact (no float coercion, no int64 overflow)
    df = pd.DataFrame(rows, columns=columns, dtype=object)
    int_columns = [GENERATION_ID_COLUMN, 'target_cohort_id', COUNT_COLUMN]
    df[int_columns] = df[int_columns].astype('int64')
    return df


def build_path_stats(paths: Sequence[Path], generation_id: int, target_cohort_id: int) -> pd.DataFrame:
    """
    Per-code aggregate for one target cohort.

    count_value is the number of paths containing the code, event_count the
    number of steps carrying it.
    """
    path_counts: Counter = Counter()
    step_counts: Counter = Counter()
    for path in paths:
        step_counts.update(path.step_codes)
        path_counts.update(set(path.step_codes))

    rows = [
        [generation_id, target_cohort_id, code, path_counts[code], step_counts[code]]
        for code in sorted(step_counts)
    ]
    df = pd.DataFrame(rows, columns=STATS_COLUMNS, dtype=object)
    int_columns = [GENERATION_ID_COLUMN, 'target_cohort_id', COUNT_COLUMN, EVENT_COUNT_COLUMN]
    df[int_columns] = df[int_columns].astype('int64')
    return df


def collect_step_codes(paths_df: pd.DataFrame) -> List[int]:
    """Distinct positive combo codes across the step columns of a paths frame."""
    codes = set()
    for column in [c for c in paths_df.columns if c.startswith('step_')]:
        for value in paths_df[column]:
            if value is None or pd.isna(value):
                continue
            code = int(value)
            if code > 0:
                codes.add(code)
    return sorted(codes)


def empty_paths_frame(max_depth: int) -> pd.DataFrame:
    return path_records_to_frame([], max_depth)
