"""Domain reference table (``domains_ref``).

Distinct taxonomy entries of the lookup: one row per
(domain, subdomain, narrow, stream, pass, verbal, timed), with the cognitive
attributes forced to NULL outside the cognitive stream. The summary engine
left-joins from it so empty categories still appear.
"""

from __future__ import annotations

import logging
from typing import Sequence

from contracts.sql_identifiers import quote_identifier, quote_literal
from contracts.streams import StreamSpec, cognitive_stream_name, default_streams
from pipeline.lookup_bootstrap import LOOKUP_VIEW, LookupBootstrapper
from pipeline.query_duckdb import QueryRunner

logger = logging.getLogger(__name__)

DOMAINS_REF_TABLE = "domains_ref"


class DomainReferenceBuilder:
    def __init__(self, bootstrapper: LookupBootstrapper, *, streams: Sequence[StreamSpec] | None = None) -> None:
        self._bootstrapper = bootstrapper
        self._runner = QueryRunner(bootstrapper.manager)
        self._cognitive_stream = cognitive_stream_name(streams if streams is not None else default_streams())

    def exists(self) -> bool:
        return self._runner.relation_exists(DOMAINS_REF_TABLE)

    def ensure_domains_ref(self, force: bool = False) -> bool:
        """Build ``domains_ref`` unless present. Returns True when (re)built."""
        self._bootstrapper.ensure_lookup_registered()

        if not force and self.exists():
            logger.debug("%s already exists", DOMAINS_REF_TABLE)
            return False

        # Without a cognitive stream every cognitive attribute is NULL.
        cog = f"stream = {quote_literal(self._cognitive_stream)}" if self._cognitive_stream else "false"
        cognitive_cols = ",\n".join(
            f"CASE WHEN {cog} THEN {quote_identifier(c)} ELSE NULL END AS {quote_identifier(c)}"
            for c in ("pass", "verbal", "timed")
        )
        table = quote_identifier(DOMAINS_REF_TABLE)
        self._runner.execute(f"DROP TABLE IF EXISTS {table}")
        self._runner.execute(
            f"""
            CREATE TABLE {table} AS
            SELECT DISTINCT
                domain,
                subdomain,
                narrow,
                stream,
                {cognitive_cols}
            FROM {quote_identifier(LOOKUP_VIEW)}
            WHERE domain IS NOT NULL
            """
        )

        n = self._runner.scalar(f"SELECT COUNT(*) FROM {table}")
        logger.info("Created %s with %d taxonomy row(s)", DOMAINS_REF_TABLE, int(n or 0))
        return True
