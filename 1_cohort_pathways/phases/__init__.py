"""
Modular pipeline phases for cohort pathway analysis.

Each phase is in its own file for better maintainability.
"""

from .phase1_cohort_availability import run_phase1_cohort_availability
from .phase2_pathway_generation import (
    TargetCohortResult,
    run_phase2_pathway_generation,
    run_target_cohort_unit,
)
from .phase3_export import merge_unit_results, run_phase3_export

__all__ = [
    'run_phase1_cohort_availability',
    'run_phase2_pathway_generation',
    'run_target_cohort_unit',
    'TargetCohortResult',
    'merge_unit_results',
    'run_phase3_export',
]
