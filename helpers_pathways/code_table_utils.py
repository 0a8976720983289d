"""
Code table utilities.

Decodes every combo code observed in a generation's paths into its event
cohorts and builds the flat codes table (one row per code) and the long
codes table (one row per code x constituent event cohort).
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

import pandas as pd

from helpers_pathways.combo_utils import BitIndexMap, decode_combo
from helpers_pathways.constants import (
    CODES_COLUMNS,
    CODES_LONG_COLUMNS,
    COMBO_NAME_SEPARATOR,
    GENERATION_ID_COLUMN,
)


def cohort_name_lookup(cohort_definition_set: pd.DataFrame) -> Dict[int, str]:
    """Map cohort_id -> cohort_name from a cohort definition set frame."""
    return {
        int(row.cohort_id): str(row.cohort_name)
        for row in cohort_definition_set.itertuples(index=False)
    }


def build_code_tables(
    combo_codes: Iterable[int],
    bit_index: BitIndexMap,
    cohort_names: Dict[int, str],
    generation_id: int,
    target_cohort_id: int,
    logger: Optional[logging.Logger] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Build (codes, codes_long) for one generation.

    Args:
        combo_codes: Distinct combo codes observed in the generation's paths
        bit_index: Bit index map the codes were encoded with
        cohort_names: event_cohort_id -> display name
        generation_id: Generation the codes belong to
        target_cohort_id: Target cohort of the generation

    Returns:
        Tuple of (codes_df, codes_long_df), both sorted by code; long rows are
        in ascending cohort index order within a code.

    Raises:
        DecodingError: if a code is not producible by the bit index map
    """
    logger = logger or logging.getLogger(__name__)

    codes_rows = []
    long_rows = []
    missing_names = set()
    for code in sorted({int(c) for c in combo_codes}):
        event_cohort_ids = [bit_index.event_cohort_id(i) for i in decode_combo(code, bit_index)]
        number_of_events = len(event_cohort_ids)
        is_combo = 1 if number_of_events > 1 else 0

        names = []
        for event_cohort_id in event_cohort_ids:
            name = cohort_names.get(event_cohort_id)
            if name is None:
                missing_names.add(event_cohort_id)
                name = str(event_cohort_id)
            names.append(name)
            long_rows.append([
                generation_id,
                code,
                target_cohort_id,
                event_cohort_id,
                name,
                is_combo,
                number_of_events,
            ])

        codes_rows.append([generation_id, code, COMBO_NAME_SEPARATOR.join(names), is_combo])

    if missing_names:
        logger.warning(f"No cohort name for event cohorts {sorted(missing_names)}; using ids as names")

    codes_df = pd.DataFrame(codes_rows, columns=CODES_COLUMNS, dtype=object)
    codes_df[[GENERATION_ID_COLUMN, 'is_combo']] = codes_df[[GENERATION_ID_COLUMN, 'is_combo']].astype('int64')
    codes_df['name'] = codes_df['name'].astype(str)

    codes_long_df = pd.DataFrame(long_rows, columns=CODES_LONG_COLUMNS, dtype=object)
    long_int_columns = [GENERATION_ID_COLUMN, 'target_cohort_id', 'event_cohort_id', 'is_combo', 'number_of_events']
    codes_long_df[long_int_columns] = codes_long_df[long_int_columns].astype('int64')
    codes_long_df['event_cohort_name'] = codes_long_df['event_cohort_name'].astype(str)

    return codes_df, codes_long_df
