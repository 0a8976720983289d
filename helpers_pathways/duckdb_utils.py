#!/usr/bin/env python3
"""
DuckDB utilities for reading cohort tables.
"""

import logging
import os
from typing import Optional

import duckdb
import pyarrow.parquet as pq

from helpers_pathways.constants import AWS_REGION, COHORT_TABLE_COLUMNS
from helpers_pathways.errors import ConfigurationError
from helpers_pathways.s3_utils import is_s3_path


def create_duckdb_connection(logger: Optional[logging.Logger] = None, threads: int = 1,
                             tmp_dir: Optional[str] = None, enable_s3: bool = False,
                             s3_region: str = AWS_REGION):
    """Create an in-memory DuckDB connection."""
    logger = logger or logging.getLogger(__name__)
    try:
        conn = duckdb.connect(database=':memory:')

        if enable_s3:
            conn.sql("INSTALL httpfs; LOAD httpfs;")
            conn.sql("INSTALL aws; LOAD aws;")
            conn.sql("CALL load_aws_credentials();")
            conn.sql(f"SET s3_region='{s3_region}'")
            conn.sql("SET s3_url_style='path'")

        if tmp_dir:
            os.makedirs(tmp_dir, exist_ok=True)
            conn.sql(f"SET temp_directory = '{tmp_dir}'")

        conn.sql(f"SET threads = {int(threads)}")
        logger.info(f"✅ DuckDB connection created - {threads} thread(s)")
        return conn

    except Exception as e:
        logger.error(f"❌ Failed to create DuckDB connection: {e}")
        raise


def get_duckdb_connection(cohort_table_path: Optional[str] = None, logger=None, **kwargs):
    """Get a DuckDB connection, loading S3 support only when the input lives on S3."""
    return create_duckdb_connection(logger=logger, enable_s3=is_s3_path(cohort_table_path), **kwargs)


def source_expression(path: str) -> str:
    """Return the DuckDB table function reading a parquet or CSV file/glob."""
    lowered = path.lower()
    escaped = path.replace("'", "''")
    if lowered.endswith(".csv") or lowered.endswith(".csv.gz"):
        return f"read_csv_auto('{escaped}', header=true)"
    if lowered.endswith(".parquet") or lowered.endswith("*"):
        return f"read_parquet('{escaped}')"
    raise ValueError(f"Unsupported cohort table format (expected .parquet or .csv): {path}")


def extract_column_names(conn, cohort_table_path: str) -> list:
    """Column names of the cohort table; single local parquet files are read from the footer only."""
    lowered = cohort_table_path.lower()
    if lowered.endswith(".parquet") and not is_s3_path(cohort_table_path) and os.path.isfile(cohort_table_path):
        return pq.read_schema(cohort_table_path).names
    described = conn.sql(f"DESCRIBE SELECT * FROM {source_expression(cohort_table_path)}").fetchall()
    return [row[0] for row in described]


def register_cohort_table(conn, cohort_table_path: str, view_name: str = "cohort",
                          logger: Optional[logging.Logger] = None) -> str:
    """
    Create a view over the cohort table with normalized column types.

    The view exposes cohort_definition_id, subject_id (BIGINT) and
    cohort_start_date, cohort_end_date (DATE).

    Raises:
        ConfigurationError: if a cohort table column is missing
    """
    logger = logger or logging.getLogger(__name__)
    columns = extract_column_names(conn, cohort_table_path)
    missing = [c for c in COHORT_TABLE_COLUMNS if c not in columns]
    if missing:
        raise ConfigurationError(f"Cohort table {cohort_table_path} is missing columns: {missing}")

    sql = f"""
    CREATE OR REPLACE VIEW {view_name} AS
    SELECT
        CAST(cohort_definition_id AS BIGINT) AS cohort_definition_id,
        CAST(subject_id AS BIGINT) AS subject_id,
        CAST(cohort_start_date AS DATE) AS cohort_start_date,
        CAST(cohort_end_date AS DATE) AS cohort_end_date
    FROM {source_expression(cohort_table_path)}
    WHERE cohort_definition_id IS NOT NULL
      AND subject_id IS NOT NULL
      AND cohort_start_date IS NOT NULL;
    """
    conn.sql(sql)
    logger.info(f"→ Registered cohort table view '{view_name}' over {cohort_table_path}")
    return view_name


def close_duckdb_connection(conn, logger: Optional[logging.Logger] = None):
    """Close DuckDB connection safely"""
    logger = logger or logging.getLogger(__name__)
    try:
        conn.close()
        logger.debug("DuckDB connection closed")
    except Exception as e:
        logger.warning(f"Could not close DuckDB connection: {e}")
