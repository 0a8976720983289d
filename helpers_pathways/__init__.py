"""
Helper utilities for cohort pathway analysis.

This package contains shared code for:
- event cohort bit encoding / combo decoding
- per-subject step building, path reduction and aggregation
- code tables (flat and long)
- DuckDB input loading, CSV / S3 export and logging utilities
"""
