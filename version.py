"""Project version constants.

These constants are used in logs and in the engine banner so that derived
artifacts (enriched views, exports, unmapped-key logs) can be traced back to a
specific library and lookup-contract version.
"""

ENGINE_NAME: str = "neurodata"
ENGINE_VERSION: str = "0.1.0"

LOOKUP_CONTRACT_VERSION: int = 1
