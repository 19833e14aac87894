"""Path conventions for the scoring-pipeline exports.

All code that needs to know where datasets live (stream exports, the lookup
file, Parquet exports) or how a path is spelled inside DuckDB SQL should go
through :class:`infra.pipeline_paths.DataPaths` and :func:`sql_path`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _p(path: str | Path) -> Path:
    return path if isinstance(path, Path) else Path(str(path))


def sql_path(path: str | Path) -> str:
    """Return a path as DuckDB expects it inside a SQL string literal body."""
    # DuckDB + globbing are happier with forward slashes even on Windows.
    return _p(path).as_posix()


@dataclass(frozen=True)
class DataPaths:
    """
    Central path conventions for the data directory.

    Rules:
      - Callers may override *base directories* (settings or constructor args)
      - Directory names and default layout live here, not scattered in code
    """

    base_data_dir: Path = Path("data")
    exports_dirname: str = "exports"

    lookup_override: Optional[Path] = None
    export_override: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in ("base_data_dir", "lookup_override", "export_override"):
            val = getattr(self, name)
            if val is None:
                continue
            if not isinstance(val, Path):
                raise TypeError(f"{name} must be a pathlib.Path (got {type(val)})")

        v = self.exports_dirname
        if not isinstance(v, str) or not v.strip():
            raise ValueError("exports_dirname must be a non-empty string")
        if "/" in v or "\\" in v:
            raise ValueError(f"exports_dirname must be a simple directory name, not a path: {v!r}")

    def data_dir(self) -> Path:
        return self.base_data_dir

    def export_dir(self) -> Path:
        return self.export_override or (self.base_data_dir / self.exports_dirname)

    def lookup_path(self) -> Optional[Path]:
        return self.lookup_override

    def stream_file(self, stream: str, suffix: str = ".parquet") -> Path:
        """Canonical location of a stream export, e.g. ``data/neurocog.parquet``."""
        if not suffix.startswith("."):
            suffix = f".{suffix}"
        return self.base_data_dir / f"{stream}{suffix}"

    def parquet_export_path(self, relation: str) -> Path:
        return self.export_dir() / f"{relation}.parquet"

    @classmethod
    def with_overrides(
        cls,
        *,
        data_dir: str | Path | None = None,
        lookup_path: str | Path | None = None,
        export_dir: str | Path | None = None,
    ) -> "DataPaths":
        """
        Preferred way for callers to override locations without changing conventions.
        """
        return cls(
            base_data_dir=_p(data_dir) if data_dir else Path("data"),
            lookup_override=_p(lookup_path) if lookup_path else None,
            export_override=_p(export_dir) if export_dir else None,
        )
