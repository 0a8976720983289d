"""
Cohort processing utilities.

Instantiation counts, availability checks and per-target-cohort loading of
memberships and event rows from the DuckDB cohort table view.
"""

import logging
import warnings
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from helpers_pathways.constants import COHORT_DEFINITION_COLUMNS
from helpers_pathways.errors import (
    ConfigurationError,
    DataAvailabilityError,
    PartialAvailabilityWarning,
)


def _id_list(ids: Sequence[int]) -> str:
    return ", ".join(str(int(i)) for i in ids)


def get_cohort_counts(conn, cohort_ids: Sequence[int], view_name: str = "cohort") -> pd.DataFrame:
    """Entries and distinct subjects per cohort id (only cohorts with at least one row)."""
    sql = f"""
    SELECT cohort_definition_id AS cohort_id,
           COUNT(*) AS cohort_entries,
           COUNT(DISTINCT subject_id) AS cohort_subjects
    FROM {view_name}
    WHERE cohort_definition_id IN ({_id_list(cohort_ids)})
    GROUP BY cohort_definition_id
    ORDER BY cohort_definition_id
    """
    return conn.sql(sql).df()


def check_cohort_availability(
    cohort_counts: pd.DataFrame,
    target_cohort_ids: Sequence[int],
    event_cohort_ids: Sequence[int],
    logger: Optional[logging.Logger] = None,
) -> Tuple[List[int], List[int]]:
    """
    Split configured cohorts into instantiated target and event cohorts.

    Returns:
        (instantiated_target_ids, instantiated_event_ids), in configured order

    Raises:
        DataAvailabilityError: if no target or no event cohort is instantiated
    """
    logger = logger or logging.getLogger(__name__)
    present = {int(c) for c in cohort_counts['cohort_id']} if len(cohort_counts) else set()

    instantiated_targets = [int(c) for c in dict.fromkeys(target_cohort_ids) if int(c) in present]
    instantiated_events = [int(c) for c in dict.fromkeys(event_cohort_ids) if int(c) in present]

    if not instantiated_targets:
        raise DataAvailabilityError("None of the target cohorts are instantiated.")
    if not instantiated_events:
        raise DataAvailabilityError("None of the event cohorts are instantiated.")

    n_targets = len(set(target_cohort_ids))
    n_events = len(set(event_cohort_ids))
    if len(instantiated_targets) < n_targets or len(instantiated_events) < n_events:
        message = (
            f"Not all cohorts have more than 0 records. "
            f"Found {len(instantiated_targets)} of {n_targets} "
            f"({100 * len(instantiated_targets) / n_targets:1.2f}%) target cohorts instantiated; "
            f"found {len(instantiated_events)} of {n_events} "
            f"({100 * len(instantiated_events) / n_events:1.2f}%) event cohorts instantiated."
        )
        logger.warning(f"⚠️ {message}")
        warnings.warn(message, PartialAvailabilityWarning, stacklevel=2)

    return instantiated_targets, instantiated_events


def load_target_memberships(conn, target_cohort_id: int, view_name: str = "cohort") -> pd.DataFrame:
    """Target cohort rows: subject_id, cohort_start_date, cohort_end_date."""
    sql = f"""
    SELECT subject_id, cohort_start_date, cohort_end_date
    FROM {view_name}
    WHERE cohort_definition_id = {int(target_cohort_id)}
    ORDER BY subject_id, cohort_start_date
    """
    return conn.sql(sql).df()


def load_target_events(conn, target_cohort_id: int, event_cohort_ids: Sequence[int],
                       view_name: str = "cohort") -> pd.DataFrame:
    """Event cohort rows of subjects in the target cohort."""
    sql = f"""
    SELECT e.subject_id,
           e.cohort_definition_id AS event_cohort_id,
           e.cohort_start_date,
           e.cohort_end_date
    FROM {view_name} e
    WHERE e.cohort_definition_id IN ({_id_list(event_cohort_ids)})
      AND e.subject_id IN (
          SELECT DISTINCT subject_id
          FROM {view_name}
          WHERE cohort_definition_id = {int(target_cohort_id)}
      )
    ORDER BY e.subject_id, e.cohort_start_date, e.cohort_definition_id
    """
    return conn.sql(sql).df()


def load_cohort_definition_set(path: str) -> pd.DataFrame:
    """
    Read the cohort definition set (cohort_id, cohort_name) from CSV.

    camelCase headers (cohortId, cohortName) are accepted as well.
    """
    df = pd.read_csv(path)
    df = df.rename(columns={'cohortId': 'cohort_id', 'cohortName': 'cohort_name'})
    missing = [c for c in COHORT_DEFINITION_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Cohort definition set {path} is missing columns: {missing}")
    df = df[COHORT_DEFINITION_COLUMNS].dropna(subset=['cohort_id'])
    df['cohort_id'] = df['cohort_id'].astype('int64')
    df['cohort_name'] = df['cohort_name'].fillna('').astype(str)
    return df.drop_duplicates(subset=['cohort_id']).reset_index(drop=True)


def check_cohort_definition_set(cohort_definition_set: pd.DataFrame, cohort_ids: Sequence[int],
                                logger: Optional[logging.Logger] = None) -> Dict[str, List[int]]:
    """Log configured cohort ids that have no name in the definition set."""
    logger = logger or logging.getLogger(__name__)
    known = set(cohort_definition_set['cohort_id'].astype(int))
    missing = sorted({int(c) for c in cohort_ids} - known)
    if missing:
        logger.warning(f"⚠️ Cohort definition set has no entry for cohort ids {missing}")
    return {'missing': missing}
