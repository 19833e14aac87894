"""Pipeline components.

This package contains the DuckDB connection owner, file registration, the
lookup / domain-reference bootstrap, enriched stream views, summaries and
Parquet export used by the report layer.
"""
