"""Contracts shared by the pipeline modules.

The contracts package defines:
- the lookup column contract and the join-key normalization rule
- source file formats and their registration priority
- stream definitions (cognitive vs behavioral)
- identifier validation / quoting for generated SQL
"""

from contracts import lookup, source_formats, sql_identifiers, streams

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "InvalidIdentifierError",
    "LookupContractError",
    "SourceFormat",
    "StreamSpec",
    "default_streams",
    "normalize_join_key",
    "prepare_lookup_table",
]

InvalidIdentifierError = sql_identifiers.InvalidIdentifierError
LookupContractError = lookup.LookupContractError
SourceFormat = source_formats.SourceFormat
StreamSpec = streams.StreamSpec
default_streams = streams.default_streams
normalize_join_key = lookup.normalize_join_key
prepare_lookup_table = lookup.prepare_lookup_table
