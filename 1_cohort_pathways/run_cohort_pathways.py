"""
Cohort pathways pipeline.

Reads an OHDSI-style cohort table with DuckDB, builds per-subject event
cohort pathways for every instantiated target cohort and exports the
paths, stats and code tables to a local folder or an S3 prefix.

Phases:
- Phase 1: cohort availability + bit index assignment
- Phase 2: pathway generation, one unit of work per target cohort
- Phase 3: merge completed units and export with min cell count censoring

Usage:
    python 1_cohort_pathways/run_cohort_pathways.py \
        --cohort-table data/cohort.parquet \
        --cohort-definition-set data/cohort_definition_set.csv \
        --target-cohort-ids 1,2 --event-cohort-ids 10,20,30 \
        --export-folder s3://my-bucket/pathways/
"""

import argparse
import logging
import os
import sys
import time
import traceback
from datetime import datetime
from typing import Dict, Optional, Union

import pandas as pd

# Set root of project
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if project_root not in sys.path:
    sys.path.append(project_root)

from helpers_pathways.constants import (
    DEFAULT_ALLOW_REPEATS,
    DEFAULT_COLLAPSE_WINDOW_DAYS,
    DEFAULT_EXPORT_DIR,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_CELL_COUNT,
    S3_STAGING_DIR,
    SYMBOLS,
)
from helpers_pathways.cohort_utils import load_cohort_definition_set
from helpers_pathways.duckdb_utils import (
    close_duckdb_connection,
    get_duckdb_connection,
    register_cohort_table,
)
from helpers_pathways.export_utils import check_existing_outputs
from helpers_pathways.logging_utils import close_logging, save_run_logs, setup_logging
from helpers_pathways.pipeline_state import GenerationIdFactory, PipelineState
from helpers_pathways.s3_utils import is_s3_path
from helpers_pathways.settings import PathwayAnalysisSettings, parse_id_list

from phases import (
    run_phase1_cohort_availability,
    run_phase2_pathway_generation,
    run_phase3_export,
)

PIPELINE_NAME = "cohort_pathways"


def execute_pipeline(context):
    """Execute the complete pipeline by running all phases in order."""
    logger = context["logger"]

    logger.info("→ [PIPELINE] Starting 3-phase pathway analysis...")

    try:
        logger.info("→ [PIPELINE] Executing Phase 1: Cohort Availability")
        run_phase1_cohort_availability(context)

        logger.info("→ [PIPELINE] Executing Phase 2: Pathway Generation")
        run_phase2_pathway_generation(context)

        logger.info("→ [PIPELINE] Executing Phase 3: Export")
        run_phase3_export(context)

        logger.info("→ [PIPELINE] Pathway analysis completed successfully!")

    except Exception as e:
        logger.error(f"→ [PIPELINE] Pipeline execution failed: {str(e)}")
        logger.error(f"→ [PIPELINE] Traceback: {traceback.format_exc()}")
        raise


def _state_dir(export_folder: str) -> str:
    if is_s3_path(export_folder):
        return os.path.join(S3_STAGING_DIR, "state")
    return export_folder


def run_cohort_pathways(
    cohort_table_path: str,
    export_folder: str,
    settings: PathwayAnalysisSettings,
    cohort_definition_set: Optional[Union[str, pd.DataFrame]] = None,
    logger: Optional[logging.Logger] = None,
    generation_ids: Optional[Dict[int, int]] = None,
    run_started_at: Optional[datetime] = None,
) -> Dict:
    """
    Run a full pathway analysis and export the results.

    Args:
        cohort_table_path: Parquet/CSV cohort table (local path, glob or s3:// URI)
        export_folder: Local folder or s3:// prefix receiving the result files
        settings: Analysis settings, validated before anything is read
        cohort_definition_set: CSV path or frame with cohort_id, cohort_name
        logger: Logger instance
        generation_ids: Optional explicit target_cohort_id -> generation id
        run_started_at: Timestamp the generated ids are derived from

    Returns:
        The pipeline context (unit_results, results, written_files, ...)

    Raises:
        ConfigurationError: invalid settings
        FileExistsError: results exist in export_folder and settings.overwrite is False
        DataAvailabilityError: no target or no event cohort is instantiated
    """
    logger = logger or logging.getLogger(__name__)
    start_time = time.time()

    settings.validate()
    check_existing_outputs(export_folder, settings.overwrite, logger)
    if not is_s3_path(export_folder):
        os.makedirs(export_folder, exist_ok=True)

    if isinstance(cohort_definition_set, str):
        cohort_definition_set = load_cohort_definition_set(cohort_definition_set)

    entity_id = "targets_" + "-".join(str(t) for t in settings.target_cohort_ids)
    pipeline_state = PipelineState(PIPELINE_NAME, entity_id, _state_dir(export_folder), logger)

    conn = get_duckdb_connection(cohort_table_path, logger=logger)
    try:
        view_name = register_cohort_table(conn, cohort_table_path, logger=logger)
        context = {
            "logger": logger,
            "conn": conn,
            "cohort_view": view_name,
            "settings": settings,
            "export_folder": export_folder,
            "cohort_definition_set": cohort_definition_set,
            "pipeline_state": pipeline_state,
            "generation_ids": generation_ids,
            "generation_id_factory": GenerationIdFactory(run_started_at),
        }
        execute_pipeline(context)

        pipeline_state.mark_pipeline_completed({
            'settings': settings.to_dict(),
            'generation_ids': {str(k): v for k, v in context["generation_ids"].items()},
            'files': context["written_files"],
        })
    except Exception as e:
        pipeline_state.mark_pipeline_failed(str(e))
        raise
    finally:
        close_duckdb_connection(conn, logger)

    elapsed = time.time() - start_time
    logger.info(f"{SYMBOLS['info']} Analysis took {elapsed:.2f} secs.")
    return context


def build_settings(args) -> PathwayAnalysisSettings:
    return PathwayAnalysisSettings(
        target_cohort_ids=parse_id_list(args.target_cohort_ids),
        event_cohort_ids=parse_id_list(args.event_cohort_ids),
        allow_repeats=args.allow_repeats,
        max_depth=args.max_depth,
        collapse_window_days=args.collapse_window_days,
        min_cell_count=args.min_cell_count,
        overwrite=not args.no_overwrite,
        max_workers=args.max_workers,
    )


def main():
    """Main entry point for the cohort pathways pipeline."""
    parser = argparse.ArgumentParser(description="Cohort Pathways Analysis")
    parser.add_argument("--cohort-table", required=True, help="Cohort table (parquet/CSV path, glob or s3:// URI)")
    parser.add_argument("--cohort-definition-set", default=None, help="CSV with cohort_id, cohort_name")
    parser.add_argument("--export-folder", default=DEFAULT_EXPORT_DIR, help="Output folder or s3:// prefix")
    parser.add_argument("--target-cohort-ids", required=True, help="Comma-separated target cohort ids")
    parser.add_argument("--event-cohort-ids", required=True, help="Comma-separated event cohort ids")
    parser.add_argument("--allow-repeats", action="store_true", default=DEFAULT_ALLOW_REPEATS,
                        help="Keep adjacent steps with the same combo")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum steps per path")
    parser.add_argument("--collapse-window-days", type=int, default=DEFAULT_COLLAPSE_WINDOW_DAYS,
                        help="Days within which events collapse into one step")
    parser.add_argument("--min-cell-count", type=int, default=DEFAULT_MIN_CELL_COUNT,
                        help="Counts below this are censored at export")
    parser.add_argument("--no-overwrite", action="store_true", help="Fail if results already exist")
    parser.add_argument("--max-workers", type=int, default=DEFAULT_MAX_WORKERS,
                        help="Target cohorts processed concurrently")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    logger, log_buffer = setup_logging(PIPELINE_NAME)
    logger.setLevel(getattr(logging, args.log_level.upper(), logging.INFO))

    logger.info("=" * 80)
    logger.info(f"{SYMBOLS['rocket']} COHORT PATHWAYS ANALYSIS")
    logger.info("=" * 80)
    logger.info(f"{SYMBOLS['info']} Cohort Table: {args.cohort_table}")
    logger.info(f"{SYMBOLS['info']} Export Folder: {args.export_folder}")
    logger.info(f"{SYMBOLS['info']} Target Cohorts: {args.target_cohort_ids}")
    logger.info(f"{SYMBOLS['info']} Event Cohorts: {args.event_cohort_ids}")
    logger.info("=" * 80)

    exit_code = 0
    try:
        settings = build_settings(args)
        logger.info(f"{SYMBOLS['config']} Settings: {settings.to_dict()}")
        run_cohort_pathways(
            args.cohort_table,
            args.export_folder,
            settings,
            cohort_definition_set=args.cohort_definition_set,
            logger=logger,
        )
        logger.info("=" * 80)
        logger.info(f"{SYMBOLS['trophy']} COHORT PATHWAYS ANALYSIS COMPLETED SUCCESSFULLY!")
        logger.info("=" * 80)
        save_run_logs(log_buffer, args.export_folder, PIPELINE_NAME, logger=logger)

    except Exception as e:
        logger.error(f"{SYMBOLS['fail']} Pipeline failed: {str(e)}")
        logger.error(f"{SYMBOLS['fail']} Traceback: {traceback.format_exc()}")
        save_run_logs(log_buffer, args.export_folder, PIPELINE_NAME, logger=logger, reason="failed")
        exit_code = 1

    finally:
        close_logging(logger)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
