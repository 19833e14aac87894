"""Stream definitions.

A stream is an independently sourced category of test results. Each stream has
a source relation (usually registered from ``data/<stream>.<ext>``) and an
enriched view. Only the cognitive stream may carry pass/verbal/timed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from contracts.sql_identifiers import validate_identifier


@dataclass(frozen=True)
class StreamSpec:
    name: str
    cognitive: bool = False
    source_relation: str = ""
    enriched_view: str = ""

    def __post_init__(self) -> None:
        validate_identifier(self.name, kind="stream name")
        if not self.source_relation:
            object.__setattr__(self, "source_relation", self.name)
        if not self.enriched_view:
            object.__setattr__(self, "enriched_view", f"{self.name}_enriched")
        validate_identifier(self.source_relation, kind="relation name")
        validate_identifier(self.enriched_view, kind="view name")


def default_streams(
    cognitive_stream: str = "neurocog",
    behavioral_stream: str = "neurobehav",
) -> tuple[StreamSpec, ...]:
    return (
        StreamSpec(name=cognitive_stream, cognitive=True),
        StreamSpec(name=behavioral_stream, cognitive=False),
    )


def cognitive_stream_name(streams: Sequence[StreamSpec]) -> str | None:
    for spec in streams:
        if spec.cognitive:
            return spec.name
    return None
