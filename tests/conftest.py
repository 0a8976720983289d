"""
Shared pytest fixtures for cohort pathway tests.
"""
import logging
import os
import sys

import pandas as pd
import pytest

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
pipeline_dir = os.path.join(project_root, "1_cohort_pathways")
for path in (project_root, pipeline_dir):
    if path not in sys.path:
        sys.path.insert(0, path)

from helpers_pathways.combo_utils import assign_bit_index
from helpers_pathways.settings import PathwayAnalysisSettings


@pytest.fixture
def logger():
    """Plain module logger; records still reach caplog."""
    return logging.getLogger("cohort_pathways_tests")


@pytest.fixture
def bit_index():
    """Bit index over event cohorts 10 and 20: 10 -> 1, 20 -> 2."""
    return assign_bit_index([20, 10])


@pytest.fixture
def cohort_names():
    return {1: "A", 2: "B", 10: "C", 20: "D"}


@pytest.fixture
def cohort_definition_set():
    return pd.DataFrame({
        "cohort_id": [1, 2, 10, 20],
        "cohort_name": ["A", "B", "C", "D"],
    })


@pytest.fixture
def cohort_rows():
    """
    Minimal cohort table:
    - target 1: subject 1 twice (Jan and late Feb 1999)
    - target 2: subject 1 in March 1999, no event inside its window
    - events: cohort 10 on Jan 1 and Jan 20, cohort 20 on Apr 10
    """
    return pd.DataFrame({
        "cohort_definition_id": [1, 1, 2, 10, 10, 20],
        "subject_id": [1, 1, 1, 1, 1, 1],
        "cohort_start_date": [
            "1999-01-01", "1999-02-20", "1999-03-01",
            "1999-01-01", "1999-01-20", "1999-04-10",
        ],
        "cohort_end_date": [
            "1999-01-31", "1999-02-28", "1999-03-31",
            "1999-01-10", "1999-02-20", "1999-04-20",
        ],
    })


@pytest.fixture
def pathway_rows():
    """
    Richer cohort table used by the end-to-end tests:
    - target 1: subjects 1, 2, 3 entering 2020-01-01 (open ended window)
    - target 3: subject 4, who has no event cohort rows at all
    - subject 1: 10 @ day 0, 10 @ day 15, 20 @ day 100 -> [10], [20]
    - subject 2: 10 and 20 @ day 5 -> [10+20]
    - subject 3: 10 @ day 0, 20 @ day 100 -> [10], [20]
    """
    rows = [
        (1, 1, "2020-01-01", "2020-12-31"),
        (1, 2, "2020-01-01", "2020-12-31"),
        (1, 3, "2020-01-01", "2020-12-31"),
        (3, 4, "2020-01-01", "2020-12-31"),
        (10, 1, "2020-01-01", "2020-01-05"),
        (10, 1, "2020-01-16", "2020-01-20"),
        (20, 1, "2020-04-10", "2020-04-20"),
        (10, 2, "2020-01-06", "2020-01-10"),
        (20, 2, "2020-01-06", "2020-01-10"),
        (10, 3, "2020-01-01", "2020-01-02"),
        (20, 3, "2020-04-10", "2020-04-11"),
    ]
    return pd.DataFrame(
        rows, columns=["cohort_definition_id", "subject_id", "cohort_start_date", "cohort_end_date"]
    )


@pytest.fixture
def cohort_table_csv(tmp_path, cohort_rows):
    path = tmp_path / "cohort.csv"
    cohort_rows.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def pathway_table_csv(tmp_path, pathway_rows):
    path = tmp_path / "pathway_cohort.csv"
    pathway_rows.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def settings():
    return PathwayAnalysisSettings(
        target_cohort_ids=[1, 2],
        event_cohort_ids=[10, 20],
        allow_repeats=False,
        max_depth=5,
        collapse_window_days=30,
        min_cell_count=0,
    )
