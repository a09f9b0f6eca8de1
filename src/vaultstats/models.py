"""Core vaultstats data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

METRIC_FIELDS = ("files", "notes", "attachments", "size", "links", "words")


@dataclass(slots=True)
class DocumentMetrics:
    """Counts contributed by a single document, or a sum of them."""

    files: int = 0
    notes: int = 0
    attachments: int = 0
    size: int = 0
    links: int = 0
    words: int = 0

    @classmethod
    def note(cls, *, size: int, links: int = 0, words: int = 0) -> "DocumentMetrics":
        return cls(files=1, notes=1, attachments=0, size=size, links=links, words=words)

    @classmethod
    def attachment(cls, *, size: int) -> "DocumentMetrics":
        return cls(files=1, notes=0, attachments=1, size=size, links=0, words=0)

    def __add__(self, other: "DocumentMetrics") -> "DocumentMetrics":
        if not isinstance(other, DocumentMetrics):
            return NotImplemented
        return DocumentMetrics(
            *(getattr(self, name) + getattr(other, name) for name in METRIC_FIELDS)
        )

    def __sub__(self, other: "DocumentMetrics") -> "DocumentMetrics":
        if not isinstance(other, DocumentMetrics):
            return NotImplemented
        return DocumentMetrics(
            *(getattr(self, name) - getattr(other, name) for name in METRIC_FIELDS)
        )

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class Section:
    """Typed byte range ``[start, end)`` within a note's raw content."""

    type: str
    start: int
    end: int


@dataclass(slots=True)
class StructuralMetadata:
    """Parsed structure of a document."""

    sections: List[Section] = field(default_factory=list)
    links: int = 0
    frontmatter: Optional[Tuple[int, int]] = None


@dataclass(slots=True)
class VaultFile:
    """Minimal stat information describing a document in the vault."""

    path: str
    extension: str
    size: int
    mtime: float


def sum_metrics(values) -> DocumentMetrics:
    """Component-wise sum of an iterable of metrics."""
    total = DocumentMetrics()
    for value in values:
        total = total + value
    return total
