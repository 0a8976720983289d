"""
Export utilities: overwrite checks, min cell count censoring and CSV writing
to a local folder or an S3 prefix.
"""

import logging
import os
import uuid
from typing import Dict, Optional

import numpy as np
import pandas as pd

from helpers_pathways.constants import (
    CENSORED_COLUMNS,
    CODES_FILE,
    CODES_LONG_FILE,
    OUTPUT_FILES,
    PATHS_FILE,
    S3_STAGING_DIR,
    STATS_FILE,
)
from helpers_pathways.s3_utils import is_s3_path, s3_exists, upload_file_to_s3

# result key -> export file name
RESULT_FILES = {
    'paths': PATHS_FILE,
    'stats': STATS_FILE,
    'codes': CODES_FILE,
    'codes_long': CODES_LONG_FILE,
}


def output_location(export_folder: str, file_name: str) -> str:
    if is_s3_path(export_folder):
        return f"{export_folder.rstrip('/')}/{file_name}"
    return os.path.join(export_folder, file_name)


def check_existing_outputs(export_folder: str, overwrite: bool, logger: Optional[logging.Logger] = None) -> list:
    """
    Look for previous result files in the export folder.

    Raises:
        FileExistsError: if a previous result exists and overwrite is False
    """
    logger = logger or logging.getLogger(__name__)
    existing = []
    for file_name in OUTPUT_FILES:
        location = output_location(export_folder, file_name)
        exists = s3_exists(location) if is_s3_path(export_folder) else os.path.exists(location)
        if not exists:
            continue
        if not overwrite:
            raise FileExistsError(f"Previous {file_name} exists in export folder {export_folder}")
        logger.info(f"   Previous {file_name} exists in export folder and will be replaced.")
        existing.append(location)
    return existing


def apply_min_cell_count(df: pd.DataFrame, min_cell_count: int) -> pd.DataFrame:
    """
    Censor small counts: values in (0, min_cell_count) become -min_cell_count.

    Returns a copy; the input frame is not modified.
    """
    censored = df.copy()
    if min_cell_count <= 0:
        return censored
    for column in CENSORED_COLUMNS:
        if column not in censored.columns:
            continue
        values = censored[column]
        mask = (values > 0) & (values < min_cell_count)
        censored[column] = np.where(mask, -min_cell_count, values)
    return censored


def _write_csv(df: pd.DataFrame, path: str) -> None:
    df.to_csv(path, index=False, na_rep="")


def write_results(results: Dict[str, pd.DataFrame], export_folder: str, min_cell_count: int,
                  logger: Optional[logging.Logger] = None) -> Dict[str, str]:
    """
    Write paths / stats / codes / codes_long to the export folder.

    Returns:
        Mapping of result key to the written location
    """
    logger = logger or logging.getLogger(__name__)
    to_s3 = is_s3_path(export_folder)
    local_folder = os.path.join(S3_STAGING_DIR, uuid.uuid4().hex[:8]) if to_s3 else export_folder
    os.makedirs(local_folder, exist_ok=True)

    written = {}
    for key, file_name in RESULT_FILES.items():
        df = apply_min_cell_count(results[key], min_cell_count)
        local_path = os.path.join(local_folder, file_name)
        _write_csv(df, local_path)
        if to_s3:
            location = output_location(export_folder, file_name)
            upload_file_to_s3(local_path, location, logger=logger)
            os.remove(local_path)
        else:
            location = local_path
        logger.info(f"→ Wrote {len(df):,} rows to {location}")
        written[key] = location
    return written
