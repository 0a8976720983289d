"""
Cohort table access through DuckDB and availability checks.
"""
import pandas as pd
import pytest

from helpers_pathways.cohort_utils import (
    check_cohort_availability,
    check_cohort_definition_set,
    get_cohort_counts,
    load_cohort_definition_set,
    load_target_events,
    load_target_memberships,
)
from helpers_pathways.duckdb_utils import (
    close_duckdb_connection,
    create_duckdb_connection,
    extract_column_names,
    register_cohort_table,
    source_expression,
)
from helpers_pathways.errors import (
    ConfigurationError,
    DataAvailabilityError,
    PartialAvailabilityWarning,
)


@pytest.fixture
def conn(cohort_table_csv):
    conn = create_duckdb_connection()
    register_cohort_table(conn, cohort_table_csv)
    yield conn
    close_duckdb_connection(conn)


class TestSourceExpression:

    def test_csv_and_parquet(self):
        assert source_expression("a/b.csv").startswith("read_csv_auto(")
        assert source_expression("a/b.csv.gz").startswith("read_csv_auto(")
        assert source_expression("s3://bucket/cohort.parquet").startswith("read_parquet(")
        assert source_expression("s3://bucket/cohort/*").startswith("read_parquet(")

    def test_unsupported(self):
        with pytest.raises(ValueError):
            source_expression("cohort.xlsx")


class TestRegisterCohortTable:
    """View creation over parquet and CSV cohort tables"""

    def test_parquet(self, tmp_path, cohort_rows):
        path = tmp_path / "cohort.parquet"
        rows = cohort_rows.assign(
            cohort_start_date=pd.to_datetime(cohort_rows["cohort_start_date"]),
            cohort_end_date=pd.to_datetime(cohort_rows["cohort_end_date"]),
        )
        rows.to_parquet(path, index=False)

        conn = create_duckdb_connection()
        try:
            assert extract_column_names(conn, str(path)) == list(cohort_rows.columns)
            register_cohort_table(conn, str(path))
            counts = get_cohort_counts(conn, [1, 10])
        finally:
            close_duckdb_connection(conn)
        assert counts["cohort_entries"].tolist() == [2, 2]

    def test_missing_column(self, tmp_path, cohort_rows):
        path = tmp_path / "cohort.csv"
        cohort_rows.drop(columns=["cohort_end_date"]).to_csv(path, index=False)
        conn = create_duckdb_connection()
        try:
            with pytest.raises(ConfigurationError, match="cohort_end_date"):
                register_cohort_table(conn, str(path))
        finally:
            close_duckdb_connection(conn)


class TestCohortQueries:
    """Counts and per-target loading from the cohort view"""

    def test_counts(self, conn):
        counts = get_cohort_counts(conn, [1, 2, 10, 20, 30])
        assert counts["cohort_id"].tolist() == [1, 2, 10, 20]
        assert counts["cohort_entries"].tolist() == [2, 1, 2, 1]
        assert counts["cohort_subjects"].tolist() == [1, 1, 1, 1]

    def test_target_memberships(self, conn):
        df = load_target_memberships(conn, 1)
        assert list(df.columns) == ["subject_id", "cohort_start_date", "cohort_end_date"]
        assert len(df) == 2
        assert pd.Timestamp(df["cohort_start_date"].iloc[0]) == pd.Timestamp("1999-01-01")

    def test_target_events(self, conn):
        df = load_target_events(conn, 1, [10, 20])
        assert list(df.columns) == ["subject_id", "event_cohort_id", "cohort_start_date", "cohort_end_date"]
        assert df["event_cohort_id"].tolist() == [10, 10, 20]

    def test_target_events_restricted_to_target_subjects(self, tmp_path, cohort_rows):
        extra = pd.DataFrame({
            "cohort_definition_id": [10],
            "subject_id": [99],
            "cohort_start_date": ["1999-01-05"],
            "cohort_end_date": ["1999-01-06"],
        })
        path = tmp_path / "cohort_extra.csv"
        pd.concat([cohort_rows, extra]).to_csv(path, index=False)

        conn = create_duckdb_connection()
        try:
            register_cohort_table(conn, str(path))
            df = load_target_events(conn, 1, [10, 20])
        finally:
            close_duckdb_connection(conn)
        assert 99 not in set(df["subject_id"])


class TestCheckCohortAvailability:
    """Run-level availability of target and event cohorts"""

    def counts(self, ids):
        return pd.DataFrame({"cohort_id": ids, "cohort_entries": [1] * len(ids), "cohort_subjects": [1] * len(ids)})

    def test_all_instantiated(self, logger):
        targets, events = check_cohort_availability(self.counts([1, 2, 10, 20]), [1, 2], [10, 20], logger)
        assert targets == [1, 2]
        assert events == [10, 20]

    def test_partial_availability_warns(self, logger):
        with pytest.warns(PartialAvailabilityWarning, match="50.00%"):
            targets, events = check_cohort_availability(self.counts([1, 10, 20]), [1, 2], [10, 20], logger)
        assert targets == [1]
        assert events == [10, 20]

    def test_no_targets(self, logger):
        with pytest.raises(DataAvailabilityError, match="target"):
            check_cohort_availability(self.counts([10]), [1, 2], [10], logger)

    def test_no_events(self, logger):
        with pytest.raises(DataAvailabilityError, match="event"):
            check_cohort_availability(self.counts([1]), [1], [10, 20], logger)

    def test_empty_counts(self, logger):
        with pytest.raises(DataAvailabilityError):
            check_cohort_availability(self.counts([]), [1], [10], logger)


class TestCohortDefinitionSet:

    def test_load_camel_case(self, tmp_path):
        path = tmp_path / "defs.csv"
        pd.DataFrame({"cohortId": [1, 10], "cohortName": ["A", "C"]}).to_csv(path, index=False)
        df = load_cohort_definition_set(str(path))
        assert df["cohort_id"].tolist() == [1, 10]
        assert df["cohort_name"].tolist() == ["A", "C"]

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "defs.csv"
        pd.DataFrame({"id": [1]}).to_csv(path, index=False)
        with pytest.raises(ConfigurationError):
            load_cohort_definition_set(str(path))

    def test_reports_unnamed_cohorts(self, cohort_definition_set, logger):
        assert check_cohort_definition_set(cohort_definition_set, [1, 10, 30], logger) == {"missing": [30]}
