"""
End-to-end pathway runs over a DuckDB-read cohort table.
"""
import json
import os
import sys
from datetime import datetime
from unittest import mock

import pandas as pd
import pytest

import run_cohort_pathways as runner
from helpers_pathways.constants import OUTPUT_FILES, PATHS_FILE
from helpers_pathways.errors import (
    ConfigurationError,
    DataAvailabilityError,
    DecodingError,
    PartialAvailabilityWarning,
)
from helpers_pathways.pipeline_state import GenerationIdFactory
from helpers_pathways.settings import PathwayAnalysisSettings
from phases import TargetCohortResult, merge_unit_results, run_target_cohort_unit
from phases import phase2_pathway_generation
from run_cohort_pathways import run_cohort_pathways


def status_by_target(context):
    return {r.target_cohort_id: r.status for r in context["unit_results"]}


class TestSingleSubjectRun:
    """Two target cohorts, event cohorts 10 and 20, one subject"""

    def test_exports_all_files(self, tmp_path, cohort_table_csv, cohort_definition_set, settings, logger):
        export_folder = str(tmp_path / "export")
        context = run_cohort_pathways(
            cohort_table_csv, export_folder, settings,
            cohort_definition_set=cohort_definition_set, logger=logger,
            generation_ids={1: 101, 2: 102},
        )

        for file_name in OUTPUT_FILES:
            assert os.path.exists(os.path.join(export_folder, file_name))
        codes = pd.read_csv(os.path.join(export_folder, "pathwayAnalysisCodes.csv"))
        codes_long = pd.read_csv(os.path.join(export_folder, "pathwayAnalysisCodesLong.csv"))
        assert len(codes) > 0
        assert len(codes_long) > 0

        paths = context["results"]["paths"]
        # only the January membership of target 1 sees events (10 twice, collapsed)
        assert paths["target_cohort_id"].tolist() == [1]
        assert paths["step_1"].tolist() == [1]
        assert paths["step_2"].tolist() == [None]
        assert paths["pathway_analysis_generation_id"].tolist() == [101]
        assert codes["name"].tolist() == ["C"]

        assert status_by_target(context) == {1: "completed", 2: "completed"}

    def test_min_cell_count_applied_to_files(self, tmp_path, cohort_table_csv, settings, logger):
        settings.min_cell_count = 5
        export_folder = str(tmp_path / "export")
        context = run_cohort_pathways(cohort_table_csv, export_folder, settings, logger=logger)

        paths = pd.read_csv(os.path.join(export_folder, PATHS_FILE))
        assert paths["count_value"].tolist() == [-5]
        assert context["results"]["paths"]["count_value"].tolist() == [1]

    def test_cohort_definition_set_from_csv(self, tmp_path, cohort_table_csv, settings, logger):
        definitions = tmp_path / "defs.csv"
        pd.DataFrame({"cohortId": [1, 2, 10, 20], "cohortName": ["A", "B", "Drug X", "Drug Y"]}).to_csv(
            definitions, index=False
        )
        context = run_cohort_pathways(
            cohort_table_csv, str(tmp_path / "export"), settings,
            cohort_definition_set=str(definitions), logger=logger,
        )
        assert context["results"]["codes"]["name"].tolist() == ["Drug X"]


class TestPathwayRun:
    """Several subjects, combinations and a target cohort without events"""

    @pytest.fixture
    def pathway_settings(self):
        return PathwayAnalysisSettings(
            target_cohort_ids=[1, 3], event_cohort_ids=[10, 20], min_cell_count=0,
        )

    def run(self, tmp_path, pathway_table_csv, pathway_settings, cohort_names, logger, **kwargs):
        definitions = pd.DataFrame({"cohort_id": list(cohort_names), "cohort_name": list(cohort_names.values())})
        return run_cohort_pathways(
            pathway_table_csv, str(tmp_path / "export"), pathway_settings,
            cohort_definition_set=definitions, logger=logger,
            generation_ids={1: 11, 3: 33}, **kwargs,
        )

    def test_paths_stats_and_codes(self, tmp_path, pathway_table_csv, pathway_settings, cohort_names, logger):
        context = self.run(tmp_path, pathway_table_csv, pathway_settings, cohort_names, logger)
        results = context["results"]

        paths = results["paths"]
        assert [tuple(r) for r in paths[["step_1", "step_2", "count_value"]].itertuples(index=False)] == [
            (1, 2, 2),
            (3, None, 1),
        ]

        stats = results["stats"]
        assert stats["code"].tolist() == [1, 2, 3]
        assert stats["count_value"].tolist() == [2, 2, 1]
        assert stats["event_count"].tolist() == [2, 2, 1]

        codes = results["codes"]
        assert codes["name"].tolist() == ["C", "D", "C + D"]
        assert codes["is_combo"].tolist() == [0, 0, 1]
        assert len(results["codes_long"]) == 4

    def test_target_without_events_is_skipped(self, tmp_path, pathway_table_csv, pathway_settings,
                                              cohort_names, logger):
        context = self.run(tmp_path, pathway_table_csv, pathway_settings, cohort_names, logger)

        assert status_by_target(context) == {1: "completed", 3: "skipped"}
        assert set(context["results"]["paths"]["target_cohort_id"]) == {1}
        assert 33 not in set(context["results"]["codes"]["pathway_analysis_generation_id"])

        state = json.loads((tmp_path / "export" / "pipeline_state.json").read_text())
        assert state["status"] == "completed"
        assert "target_3" in [s["step_name"] for s in state["failed_steps"]]
        assert "target_1" in [s["step_name"] for s in state["completed_steps"]]

    def test_decoding_error_only_aborts_its_target(self, tmp_path, pathway_rows, cohort_names, logger):
        # target 2 shares target 1's subjects
        rows = pd.concat([
            pathway_rows,
            pd.DataFrame({
                "cohort_definition_id": [2], "subject_id": [2],
                "cohort_start_date": ["2020-01-01"], "cohort_end_date": ["2020-12-31"],
            }),
        ])
        table = tmp_path / "cohort.csv"
        rows.to_csv(table, index=False)
        real_build = phase2_pathway_generation.build_code_tables

        def failing_for_target_2(codes, bit_index, names, generation_id, target_cohort_id, log=None):
            if target_cohort_id == 2:
                raise DecodingError(99, 1)
            return real_build(codes, bit_index, names, generation_id, target_cohort_id, log)

        settings = PathwayAnalysisSettings([1, 2], [10, 20], min_cell_count=0)
        with mock.patch.object(phase2_pathway_generation, "build_code_tables", side_effect=failing_for_target_2):
            context = run_cohort_pathways(str(table), str(tmp_path / "export"), settings, logger=logger)

        assert status_by_target(context) == {1: "completed", 2: "failed"}
        assert set(context["results"]["paths"]["target_cohort_id"]) == {1}

    def test_parallel_matches_sequential(self, tmp_path, pathway_table_csv, pathway_settings, cohort_names, logger):
        sequential = self.run(tmp_path / "seq", pathway_table_csv, pathway_settings, cohort_names, logger)
        pathway_settings.max_workers = 4
        parallel = self.run(tmp_path / "par", pathway_table_csv, pathway_settings, cohort_names, logger)
        for key in ("paths", "stats", "codes", "codes_long"):
            assert sequential["results"][key].equals(parallel["results"][key])

    def test_generated_ids_are_unique(self, tmp_path, pathway_table_csv, pathway_settings, logger):
        context = run_cohort_pathways(pathway_table_csv, str(tmp_path / "export"), pathway_settings, logger=logger)
        generation_ids = context["generation_ids"]
        assert set(generation_ids) == {1, 3}
        assert len(set(generation_ids.values())) == 2


class TestRunPreconditions:
    """Failures raised before any result file is written"""

    def test_invalid_settings(self, tmp_path, cohort_table_csv, logger):
        settings = PathwayAnalysisSettings([1], [10], max_depth=-1)
        with pytest.raises(ConfigurationError):
            run_cohort_pathways(cohort_table_csv, str(tmp_path / "export"), settings, logger=logger)
        assert not (tmp_path / "export").exists()

    def test_existing_results_without_overwrite(self, tmp_path, cohort_table_csv, settings, logger):
        export_folder = tmp_path / "export"
        export_folder.mkdir()
        (export_folder / PATHS_FILE).write_text("old")
        settings.overwrite = False
        with pytest.raises(FileExistsError):
            run_cohort_pathways(cohort_table_csv, str(export_folder), settings, logger=logger)
        assert (export_folder / PATHS_FILE).read_text() == "old"

    def test_existing_results_replaced(self, tmp_path, cohort_table_csv, settings, logger):
        export_folder = tmp_path / "export"
        export_folder.mkdir()
        (export_folder / PATHS_FILE).write_text("old")
        run_cohort_pathways(cohort_table_csv, str(export_folder), settings, logger=logger)
        assert (export_folder / PATHS_FILE).read_text() != "old"

    def test_no_event_cohorts_instantiated(self, tmp_path, cohort_table_csv, logger):
        settings = PathwayAnalysisSettings([1, 2], [30, 40])
        export_folder = tmp_path / "export"
        with pytest.raises(DataAvailabilityError, match="event"):
            run_cohort_pathways(cohort_table_csv, str(export_folder), settings, logger=logger)
        for file_name in OUTPUT_FILES:
            assert not (export_folder / file_name).exists()
        state = json.loads((export_folder / "pipeline_state.json").read_text())
        assert state["status"] == "failed"

    def test_partial_availability_continues(self, tmp_path, cohort_table_csv, logger):
        settings = PathwayAnalysisSettings([1, 2, 5], [10, 20, 30], min_cell_count=0)
        with pytest.warns(PartialAvailabilityWarning):
            context = run_cohort_pathways(cohort_table_csv, str(tmp_path / "export"), settings, logger=logger)
        assert context["instantiated_target_cohort_ids"] == [1, 2]
        assert context["instantiated_event_cohort_ids"] == [10, 20]


class TestTargetCohortUnit:
    """A unit of work only sees its own frames"""

    def test_no_events_raises(self, bit_index, cohort_names, settings):
        memberships = pd.DataFrame({
            "subject_id": [1], "cohort_start_date": ["2020-01-01"], "cohort_end_date": ["2020-12-31"],
        })
        events = pd.DataFrame(columns=["subject_id", "event_cohort_id", "cohort_start_date", "cohort_end_date"])
        with pytest.raises(DataAvailabilityError) as exc_info:
            run_target_cohort_unit(7, 70, memberships, events, bit_index, cohort_names, settings)
        assert exc_info.value.target_cohort_id == 7

    def test_unit_result(self, bit_index, cohort_names, settings):
        memberships = pd.DataFrame({
            "subject_id": [1, 2], "cohort_start_date": ["2020-01-01"] * 2, "cohort_end_date": [None, None],
        })
        events = pd.DataFrame({
            "subject_id": [1, 1, 2],
            "event_cohort_id": [10, 20, 20],
            "cohort_start_date": ["2020-01-02", "2020-03-01", "2020-01-05"],
            "cohort_end_date": [None, None, None],
        })
        result = run_target_cohort_unit(7, 70, memberships, events, bit_index, cohort_names, settings)
        assert result.completed
        assert result.membership_count == 2
        assert result.path_count == 2
        assert result.paths["step_1"].tolist() == [1, 2]
        assert result.summary()["distinct_paths"] == 2


class TestMergeUnitResults:

    def test_only_completed_units_merged(self, bit_index, cohort_names, settings):
        memberships = pd.DataFrame({
            "subject_id": [1], "cohort_start_date": ["2020-01-01"], "cohort_end_date": [None],
        })
        events = pd.DataFrame({
            "subject_id": [1], "event_cohort_id": [10],
            "cohort_start_date": ["2020-01-02"], "cohort_end_date": [None],
        })
        second = run_target_cohort_unit(2, 20, memberships, events, bit_index, cohort_names, settings)
        first = run_target_cohort_unit(1, 10, memberships, events, bit_index, cohort_names, settings)
        failed = TargetCohortResult(3, 30, "failed", error="boom")

        merged = merge_unit_results([second, failed, first], settings.max_depth)
        assert merged["paths"]["target_cohort_id"].tolist() == [1, 2]
        assert merged["codes"]["pathway_analysis_generation_id"].tolist() == [10, 20]

    def test_nothing_completed(self, settings):
        merged = merge_unit_results([TargetCohortResult(1, 10, "skipped")], settings.max_depth)
        assert set(merged) == {"paths", "stats", "codes", "codes_long"}
        assert all(df.empty for df in merged.values())
        assert "step_5" in merged["paths"].columns


class TestCommandLine:

    def test_main_writes_results(self, tmp_path, cohort_table_csv, monkeypatch):
        export_folder = tmp_path / "export"
        monkeypatch.setattr(sys, "argv", [
            "run_cohort_pathways.py",
            "--cohort-table", cohort_table_csv,
            "--export-folder", str(export_folder),
            "--target-cohort-ids", "1,2",
            "--event-cohort-ids", "10,20",
            "--min-cell-count", "0",
        ])
        real_setup = runner.setup_logging
        monkeypatch.setattr(
            runner, "setup_logging",
            lambda name: real_setup(name, log_dir=str(tmp_path / "logs")),
        )
        runner.main()

        for file_name in OUTPUT_FILES:
            assert (export_folder / file_name).exists()
        assert len(os.listdir(export_folder / "logs")) == 1

    def test_main_exits_on_failure(self, tmp_path, cohort_table_csv, monkeypatch):
        monkeypatch.setattr(sys, "argv", [
            "run_cohort_pathways.py",
            "--cohort-table", cohort_table_csv,
            "--export-folder", str(tmp_path / "export"),
            "--target-cohort-ids", "1",
            "--event-cohort-ids", "10",
            "--max-depth", "-2",
        ])
        real_setup = runner.setup_logging
        monkeypatch.setattr(
            runner, "setup_logging",
            lambda name: real_setup(name, log_dir=str(tmp_path / "logs")),
        )
        with pytest.raises(SystemExit) as exc_info:
            runner.main()
        assert exc_info.value.code == 1


class TestAllocateGenerationIds:

    def test_supplied_and_generated(self):
        factory = GenerationIdFactory(datetime(2024, 1, 2, 3, 4, 5))
        ids = phase2_pathway_generation.allocate_generation_ids([1, 2, 3], supplied={2: 7}, factory=factory)
        assert ids == {1: 2024010203040500001, 2: 7, 3: 2024010203040500002}

    def test_duplicates_rejected(self):
        with pytest.raises(ConfigurationError):
            phase2_pathway_generation.allocate_generation_ids([1, 2], supplied={1: 5, 2: 5})
