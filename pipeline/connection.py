"""DuckDB connection ownership and capability detection.

:class:`ConnectionManager` is the single owner of the engine handle. Other
components borrow ``manager.con`` and never open or close a connection
themselves. Capabilities are recorded as flags instead of failing the
connection:

- ``parquet`` (required): missing -> WARNING, registrar falls back to row text
- ``fts``, ``json`` (optional): missing -> INFO only
- ``arrow``: pyarrow <-> DuckDB round trip works, Arrow/Feather files usable
"""

from __future__ import annotations

import logging
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Sequence

import duckdb
import pyarrow as pa

from contracts.sql_identifiers import validate_identifier
from version import ENGINE_NAME, ENGINE_VERSION

logger = logging.getLogger(__name__)

ARROW_CAPABILITY = "arrow"
_ARROW_PROBE_NAME = "arrow_probe"


class NotConnectedError(RuntimeError):
    """Raised when the engine handle is used while disconnected."""


@dataclass(frozen=True)
class ExtensionSpec:
    name: str
    required: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        validate_identifier(self.name, kind="extension name")


DEFAULT_EXTENSIONS: tuple[ExtensionSpec, ...] = (
    ExtensionSpec("parquet", required=True, description="Parquet file format support"),
    ExtensionSpec("fts", required=False, description="Full-text search capabilities"),
    ExtensionSpec("json", required=False, description="JSON processing functions"),
)


@dataclass(frozen=True)
class EngineVersion:
    version: str
    platform: str
    full: str


class ConnectionManager:
    """
    Owns one DuckDB connection (file-backed or in-memory).

    Use as a context manager so the handle (and the file lock of a file-backed
    database) is released on every exit path:

        with ConnectionManager("data/neuro.duckdb") as manager:
            manager.con.execute("SELECT 1")
    """

    def __init__(
        self,
        database: str | Path = ":memory:",
        *,
        threads: int | None = None,
        extensions: Sequence[ExtensionSpec] = DEFAULT_EXTENSIONS,
        install_extensions: bool = True,
    ) -> None:
        self.database = str(database)
        self._threads = threads
        self._extensions = tuple(extensions)
        self._install_extensions = install_extensions
        self._con: duckdb.DuckDBPyConnection | None = None
        self._capabilities: list[str] = []

    # -------------------------
    # Lifecycle
    # -------------------------

    def connect(self) -> "ConnectionManager":
        """Open (or re-open) the connection and detect capabilities."""
        if self._con is not None:
            self.disconnect()

        if self.database != ":memory:":
            Path(self.database).parent.mkdir(parents=True, exist_ok=True)

        self._con = duckdb.connect(database=self.database, read_only=False)
        self._capabilities = []
        if self._threads:
            self._con.execute(f"PRAGMA threads={int(self._threads)};")

        info = self.version_info()
        logger.info(
            "%s %s using DuckDB %s on %s (database=%s)",
            ENGINE_NAME,
            ENGINE_VERSION,
            info.version,
            info.platform,
            self.database,
        )

        for ext in self._extensions:
            if self._load_extension(ext):
                self._capabilities.append(ext.name)

        if self._probe_arrow():
            self._capabilities.append(ARROW_CAPABILITY)

        if self._capabilities:
            logger.info("Available capabilities: %s", ", ".join(self._capabilities))
        else:
            logger.warning("No extensions loaded - row-text registration only")
        return self

    def disconnect(self) -> None:
        """Close the handle if open. Safe to call repeatedly."""
        con = self._con
        self._con = None
        self._capabilities = []
        if con is None:
            return
        con.close()
        logger.debug("Closed DuckDB connection (database=%s)", self.database)

    close = disconnect

    def __enter__(self) -> "ConnectionManager":
        if self._con is None:
            self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.disconnect()

    # -------------------------
    # Accessors
    # -------------------------

    @property
    def is_connected(self) -> bool:
        return self._con is not None

    @property
    def con(self) -> duckdb.DuckDBPyConnection:
        if self._con is None:
            raise NotConnectedError("No database connection. Call connect() first.")
        return self._con

    @property
    def capabilities(self) -> tuple[str, ...]:
        return tuple(self._capabilities)

    def has_capability(self, name: str) -> bool:
        return name in self._capabilities

    def version_info(self) -> EngineVersion:
        machine = f"{platform.system()}_{platform.machine()}".lower().replace(" ", "_")
        try:
            row = self.con.execute("SELECT version()").fetchone()
        except duckdb.Error:
            return EngineVersion(version="unknown", platform=machine, full="unknown")
        full = str(row[0]) if row else "unknown"
        match = re.search(r"v?\d+(\.\d+)+", full)
        return EngineVersion(version=match.group(0) if match else "unknown", platform=machine, full=full)

    # -------------------------
    # Capability detection
    # -------------------------

    def _load_extension(self, ext: ExtensionSpec) -> bool:
        con = self.con
        try:
            try:
                con.execute(f"LOAD {ext.name};")
            except duckdb.Error:
                if not self._install_extensions:
                    raise
                con.execute(f"INSTALL {ext.name};")
                con.execute(f"LOAD {ext.name};")
        except duckdb.Error as exc:
            if ext.required:
                logger.warning(
                    "Required extension %s failed to load (%s); continuing in degraded mode: %s",
                    ext.name,
                    ext.description,
                    exc,
                )
            else:
                logger.info("Optional extension %s not available: %s", ext.name, exc)
            return False

        logger.debug("Extension %s loaded (%s)", ext.name, ext.description)
        return True

    def _probe_arrow(self) -> bool:
        """Register a tiny Arrow table, read it back, and drop it."""
        con = self.con
        probe = pa.table({"probe": pa.array([1, 2, 3], type=pa.int64())})
        try:
            con.register(_ARROW_PROBE_NAME, probe)
            try:
                row: Any = con.execute(f"SELECT COUNT(*) FROM {_ARROW_PROBE_NAME}").fetchone()
            finally:
                con.unregister(_ARROW_PROBE_NAME)
        except (duckdb.Error, pa.ArrowException) as exc:
            logger.info("Arrow integration test failed: %s", exc)
            return False

        if not row or int(row[0]) != 3:
            logger.info("Arrow integration test returned unexpected row count: %r", row)
            return False
        return True
