"""Supported source file formats and their registration priority."""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class SourceFormat(str, Enum):
    """File formats a relation can be backed by, highest priority first."""

    PARQUET = "parquet"
    ARROW = "arrow"
    ROW_TEXT = "row_text"

    @property
    def extensions(self) -> tuple[str, ...]:
        return _EXTENSIONS[self]

    @property
    def priority(self) -> int:
        # Lower number wins.
        return _PRIORITY[self]

    @property
    def capability(self) -> str | None:
        """Engine capability the format needs, or None when always readable."""
        return _CAPABILITY[self]

    @classmethod
    def parse(cls, value: "SourceFormat | str") -> "SourceFormat":
        if isinstance(value, SourceFormat):
            return value
        text = str(value).strip().lower()
        for fmt in cls:
            if text == fmt.value or f".{text}" in fmt.extensions:
                return fmt
        if text in {"csv", "tsv", "txt", "text"}:
            return cls.ROW_TEXT
        if text == "feather":
            return cls.ARROW
        raise ValueError(f"Unknown source format: {value!r}")


_EXTENSIONS: dict[SourceFormat, tuple[str, ...]] = {
    SourceFormat.PARQUET: (".parquet",),
    SourceFormat.ARROW: (".arrow", ".feather"),
    SourceFormat.ROW_TEXT: (".csv", ".tsv", ".txt"),
}

_PRIORITY: dict[SourceFormat, int] = {
    SourceFormat.PARQUET: 0,
    SourceFormat.ARROW: 1,
    SourceFormat.ROW_TEXT: 2,
}

_CAPABILITY: dict[SourceFormat, str | None] = {
    SourceFormat.PARQUET: "parquet",
    SourceFormat.ARROW: "arrow",
    SourceFormat.ROW_TEXT: None,
}

DEFAULT_SCAN_ORDER: tuple[SourceFormat, ...] = (
    SourceFormat.PARQUET,
    SourceFormat.ARROW,
    SourceFormat.ROW_TEXT,
)


def by_priority(formats: "list[SourceFormat | str] | tuple[SourceFormat | str, ...]") -> list[SourceFormat]:
    """Deduplicate and sort formats by descending priority (parquet first)."""
    parsed = {SourceFormat.parse(f) for f in formats}
    return sorted(parsed, key=lambda f: f.priority)


def format_for_path(path: str | Path) -> SourceFormat | None:
    suffix = Path(path).suffix.lower()
    for fmt in SourceFormat:
        if suffix in fmt.extensions:
            return fmt
    return None


def row_text_sibling(path: str | Path) -> Path | None:
    """Return the first existing row-text file sharing ``path``'s stem, if any."""
    p = Path(path)
    for ext in SourceFormat.ROW_TEXT.extensions:
        candidate = p.with_suffix(ext)
        if candidate != p and candidate.exists():
            return candidate
    return None
