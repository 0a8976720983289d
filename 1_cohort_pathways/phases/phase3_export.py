"""
Phase 3: Merge and export.

Concatenates the frames of every completed target cohort unit (skipped and
failed units contribute nothing) and writes the four result files with min
cell count censoring applied.
"""

from typing import Dict, List

import pandas as pd

from .common import datetime, SYMBOLS, phase_context

from helpers_pathways.constants import (
    CODES_COLUMNS,
    CODES_LONG_COLUMNS,
    GENERATION_ID_COLUMN,
    STATS_COLUMNS,
)
from helpers_pathways.export_utils import write_results
from helpers_pathways.pathway_utils import empty_paths_frame


def _empty_frame(columns) -> pd.DataFrame:
    return pd.DataFrame(columns=columns, dtype=object)


def merge_unit_results(results: List, max_depth: int) -> Dict[str, pd.DataFrame]:
    """
    Merge completed unit results into the four output tables.

    Units are merged in ascending target cohort order, so the merged tables
    do not depend on the order units finished in.
    """
    completed = sorted((r for r in results if r.completed), key=lambda r: r.target_cohort_id)
    if not completed:
        return {
            'paths': empty_paths_frame(max_depth),
            'stats': _empty_frame(STATS_COLUMNS),
            'codes': _empty_frame(CODES_COLUMNS),
            'codes_long': _empty_frame(CODES_LONG_COLUMNS),
        }

    merged = {}
    for key in ('paths', 'stats', 'codes', 'codes_long'):
        frames = [getattr(r, key) for r in completed]
        merged[key] = pd.concat(frames, ignore_index=True)
    return merged


def run_phase3_export(context):
    """Phase 3: merge completed units and write the result files."""
    logger, settings, export_folder, unit_results = phase_context(
        context, "logger", "settings", "export_folder", "unit_results"
    )
    pipeline_state = context.get("pipeline_state")

    step_name = "phase3_export"
    logger.info(f"{SYMBOLS['arrow']} [PHASE 3] Exporting results to {export_folder}...")

    try:
        results = merge_unit_results(unit_results, settings.max_depth)
        generations = sorted(results['paths'][GENERATION_ID_COLUMN].unique().tolist())
        logger.info(
            f"→ [PHASE 3] {len(results['paths']):,} path rows, {len(results['stats']):,} stats rows, "
            f"{len(results['codes']):,} codes across {len(generations)} generations"
        )

        written = write_results(results, export_folder, settings.min_cell_count, logger)
        context["results"] = results
        context["written_files"] = written

        if pipeline_state:
            pipeline_state.mark_step_completed(step_name, {
                'files': written,
                'generation_ids': generations,
                'timestamp': datetime.now().isoformat()
            })

        logger.info(f"{SYMBOLS['success']} [PHASE 3] Export completed")

    except Exception as e:
        logger.error(f"{SYMBOLS['fail']} [PHASE 3] Export failed: {str(e)}")
        if pipeline_state:
            pipeline_state.mark_step_failed(step_name, str(e))
        raise
