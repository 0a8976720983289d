"""
Phase 1: Cohort availability.

Counts instantiated cohorts, checks that both sides (target and event) are
present and assigns the run's event cohort bit index.
"""

from .common import datetime, SYMBOLS, phase_context

from helpers_pathways.code_table_utils import cohort_name_lookup
from helpers_pathways.cohort_utils import (
    check_cohort_availability,
    check_cohort_definition_set,
    get_cohort_counts,
)
from helpers_pathways.combo_utils import assign_bit_index


def run_phase1_cohort_availability(context):
    """Phase 1: instantiated cohorts and bit index assignment."""
    logger, conn, settings = phase_context(context, "logger", "conn", "settings")
    cohort_definition_set = context.get("cohort_definition_set")
    pipeline_state = context.get("pipeline_state")
    view_name = context.get("cohort_view", "cohort")

    step_name = "phase1_cohort_availability"
    logger.info(f"{SYMBOLS['arrow']} [PHASE 1] Checking instantiated cohorts...")

    try:
        all_ids = list(dict.fromkeys(settings.target_cohort_ids + settings.event_cohort_ids))
        cohort_counts = get_cohort_counts(conn, all_ids, view_name)
        logger.info(f"→ [PHASE 1] Instantiated cohorts: {len(cohort_counts)} of {len(all_ids)}")
        for row in cohort_counts.itertuples(index=False):
            logger.info(
                f"→ [PHASE 1]   cohort {row.cohort_id}: {row.cohort_entries:,} entries, "
                f"{row.cohort_subjects:,} subjects"
            )

        target_ids, event_ids = check_cohort_availability(
            cohort_counts, settings.target_cohort_ids, settings.event_cohort_ids, logger
        )
        bit_index = assign_bit_index(event_ids, logger)
        logger.info(f"→ [PHASE 1] Bit index over {len(bit_index)} event cohorts: {bit_index.event_cohort_ids}")

        cohort_names = {}
        if cohort_definition_set is not None:
            check_cohort_definition_set(cohort_definition_set, all_ids, logger)
            cohort_names = cohort_name_lookup(cohort_definition_set)

        context.update({
            "cohort_counts": cohort_counts,
            "instantiated_target_cohort_ids": target_ids,
            "instantiated_event_cohort_ids": event_ids,
            "bit_index": bit_index,
            "cohort_names": cohort_names,
        })

        if pipeline_state:
            pipeline_state.mark_step_completed(step_name, {
                'instantiated_target_cohort_ids': target_ids,
                'instantiated_event_cohort_ids': event_ids,
                'timestamp': datetime.now().isoformat()
            })

        logger.info(f"{SYMBOLS['success']} [PHASE 1] Cohort availability check completed")

    except Exception as e:
        logger.error(f"{SYMBOLS['fail']} [PHASE 1] Cohort availability check failed: {str(e)}")
        if pipeline_state:
            pipeline_state.mark_step_failed(step_name, str(e))
        raise
