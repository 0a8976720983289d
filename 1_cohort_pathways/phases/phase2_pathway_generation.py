"""
Phase 2: Pathway generation.

One independent unit of work per instantiated target cohort:
step building -> path reduction -> aggregation -> stats -> code tables.
Units only see their own memberships/events and return their own frames;
nothing is shared until phase 3 merges the completed units.
"""

import concurrent.futures
import logging
import traceback
from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from .common import datetime, SYMBOLS, phase_context

from helpers_pathways.code_table_utils import build_code_tables
from helpers_pathways.cohort_utils import load_target_events, load_target_memberships
from helpers_pathways.combo_utils import BitIndexMap
from helpers_pathways.errors import ConfigurationError, DataAvailabilityError, PathwayAnalysisError
from helpers_pathways.pathway_utils import (
    aggregate_paths,
    build_path_stats,
    build_subject_paths,
    collect_step_codes,
    path_records_to_frame,
)
from helpers_pathways.pipeline_state import GenerationIdFactory
from helpers_pathways.settings import PathwayAnalysisSettings


@dataclass
class TargetCohortResult:
    target_cohort_id: int
    generation_id: int
    status: str  # completed | skipped | failed
    paths: Optional[pd.DataFrame] = None
    stats: Optional[pd.DataFrame] = None
    codes: Optional[pd.DataFrame] = None
    codes_long: Optional[pd.DataFrame] = None
    membership_count: int = 0
    path_count: int = 0
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def summary(self) -> Dict:
        return {
            'target_cohort_id': self.target_cohort_id,
            'generation_id': self.generation_id,
            'status': self.status,
            'membership_count': self.membership_count,
            'path_count': self.path_count,
            'distinct_paths': 0 if self.paths is None else len(self.paths),
            'codes': 0 if self.codes is None else len(self.codes),
            'error': self.error,
        }


def run_target_cohort_unit(
    target_cohort_id: int,
    generation_id: int,
    memberships_df: pd.DataFrame,
    events_df: pd.DataFrame,
    bit_index: BitIndexMap,
    cohort_names: Dict[int, str],
    settings: PathwayAnalysisSettings,
    logger: Optional[logging.Logger] = None,
) -> TargetCohortResult:
    """
    Run the full pathway pipeline for one target cohort.

    Raises:
        DataAvailabilityError: if no subject of the target cohort has an event cohort record
        DecodingError: if an observed combo code is not decodable with the bit index
    """
    logger = logger or logging.getLogger(__name__)
    prefix = f"[TARGET {target_cohort_id} | GEN {generation_id}]"

    events_df = events_df[events_df['event_cohort_id'].isin(bit_index.event_cohort_ids)]
    if events_df.empty:
        raise DataAvailabilityError(
            f"No instantiated event cohort records for subjects of target cohort {target_cohort_id}",
            target_cohort_id=target_cohort_id,
        )
    logger.info(
        f"→ {prefix} {len(memberships_df):,} memberships, {len(events_df):,} event records "
        f"across {events_df['event_cohort_id'].nunique()} event cohorts"
    )

    paths = build_subject_paths(
        memberships_df,
        events_df,
        bit_index,
        target_cohort_id,
        collapse_window_days=settings.collapse_window_days,
        allow_repeats=settings.allow_repeats,
        max_depth=settings.max_depth,
        logger=logger,
    )
    if not paths:
        logger.warning(f"⚠️ {prefix} No membership has a qualifying event step; no paths produced")

    records = aggregate_paths(paths, generation_id)
    paths_df = path_records_to_frame(records, settings.max_depth)
    stats_df = build_path_stats(paths, generation_id, target_cohort_id)
    codes_df, codes_long_df = build_code_tables(
        collect_step_codes(paths_df), bit_index, cohort_names, generation_id, target_cohort_id, logger
    )

    logger.info(
        f"→ {prefix} {len(paths):,} paths, {len(paths_df):,} distinct, {len(codes_df):,} codes"
    )
    return TargetCohortResult(
        target_cohort_id=target_cohort_id,
        generation_id=generation_id,
        status="completed",
        paths=paths_df,
        stats=stats_df,
        codes=codes_df,
        codes_long=codes_long_df,
        membership_count=len(memberships_df),
        path_count=len(paths),
    )


def allocate_generation_ids(target_cohort_ids, supplied: Optional[Dict[int, int]] = None,
                            factory: Optional[GenerationIdFactory] = None) -> Dict[int, int]:
    """Assign every target cohort its generation id before any unit starts."""
    supplied = supplied or {}
    factory = factory or GenerationIdFactory()
    generation_ids = {}
    for target_cohort_id in target_cohort_ids:
        if target_cohort_id in supplied:
            generation_ids[target_cohort_id] = int(supplied[target_cohort_id])
        else:
            generation_ids[target_cohort_id] = factory.next_id()
    if len(set(generation_ids.values())) != len(generation_ids):
        raise ConfigurationError(f"Generation ids must be unique per target cohort, got {generation_ids}")
    return generation_ids


def run_phase2_pathway_generation(context):
    """Phase 2: run one unit of work per instantiated target cohort."""
    logger, conn, settings, target_ids, bit_index = phase_context(
        context, "logger", "conn", "settings", "instantiated_target_cohort_ids", "bit_index"
    )
    cohort_names = context.get("cohort_names", {})
    pipeline_state = context.get("pipeline_state")
    view_name = context.get("cohort_view", "cohort")

    step_name = "phase2_pathway_generation"
    logger.info(f"{SYMBOLS['arrow']} [PHASE 2] Generating pathways for {len(target_ids)} target cohorts...")
    logger.info(
        f"→ [PHASE 2] allow_repeats={settings.allow_repeats}, max_depth={settings.max_depth}, "
        f"collapse_window_days={settings.collapse_window_days}, max_workers={settings.max_workers}"
    )

    try:
        generation_ids = allocate_generation_ids(
            target_ids,
            supplied=context.get("generation_ids"),
            factory=context.get("generation_id_factory"),
        )

        unit_inputs = {}
        for target_cohort_id in target_ids:
            unit_inputs[target_cohort_id] = (
                load_target_memberships(conn, target_cohort_id, view_name),
                load_target_events(conn, target_cohort_id, bit_index.event_cohort_ids, view_name),
            )

        results: Dict[int, TargetCohortResult] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=settings.max_workers) as executor:
            future_to_target = {
                executor.submit(
                    run_target_cohort_unit,
                    target_cohort_id,
                    generation_ids[target_cohort_id],
                    memberships_df,
                    events_df,
                    bit_index,
                    cohort_names,
                    settings,
                    logger,
                ): target_cohort_id
                for target_cohort_id, (memberships_df, events_df) in unit_inputs.items()
            }
            completed = 0
            for future in concurrent.futures.as_completed(future_to_target):
                target_cohort_id = future_to_target[future]
                generation_id = generation_ids[target_cohort_id]
                unit_name = f"target_{target_cohort_id}"
                completed += 1
                try:
                    result = future.result()
                except DataAvailabilityError as e:
                    logger.warning(f"{SYMBOLS['skip']} [PHASE 2] Target cohort {target_cohort_id} skipped: {e}")
                    result = TargetCohortResult(target_cohort_id, generation_id, "skipped", error=str(e))
                except PathwayAnalysisError as e:
                    logger.error(f"{SYMBOLS['fail']} [PHASE 2] Target cohort {target_cohort_id} failed: {e}")
                    logger.debug(traceback.format_exc())
                    result = TargetCohortResult(target_cohort_id, generation_id, "failed", error=str(e))

                results[target_cohort_id] = result
                if pipeline_state:
                    if result.completed:
                        pipeline_state.mark_step_completed(unit_name, result.summary())
                    else:
                        pipeline_state.mark_step_failed(unit_name, f"{result.status}: {result.error}")
                logger.info(f"→ [PHASE 2] Progress: {completed}/{len(future_to_target)} target cohorts")

        unit_results = [results[t] for t in target_ids]
        context["generation_ids"] = generation_ids
        context["unit_results"] = unit_results

        n_completed = sum(1 for r in unit_results if r.completed)
        if pipeline_state:
            pipeline_state.mark_step_completed(step_name, {
                'completed_units': n_completed,
                'total_units': len(unit_results),
                'timestamp': datetime.now().isoformat()
            })
        logger.info(
            f"{SYMBOLS['success']} [PHASE 2] Pathway generation completed: "
            f"{n_completed}/{len(unit_results)} target cohorts"
        )

    except Exception as e:
        logger.error(f"{SYMBOLS['fail']} [PHASE 2] Pathway generation failed: {str(e)}")
        if pipeline_state:
            pipeline_state.mark_step_failed(step_name, str(e))
        raise
