"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator


def _is_hidden(path: Path, root: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(root).parts)


def iter_document_paths(root: Path, *, include_hidden: bool = False) -> Iterator[Path]:
    """Yield every regular file below ``root`` in sorted order.

    Entries whose name (or any parent directory name) starts with a dot are
    skipped unless ``include_hidden`` is set.
    """
    for item in sorted(root.rglob("*")):
        if not item.is_file():
            continue
        if not include_hidden and _is_hidden(item, root):
            continue
        yield item


def to_identity(path: Path, root: Path) -> str:
    """Vault-relative POSIX path used as a document identity."""
    return path.relative_to(root).as_posix()


def file_extension(identity: str) -> str:
    """Lowercase extension without the dot, empty when there is none."""
    name = identity.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return ""
    return name.rsplit(".", 1)[-1].lower()


def is_note(extension: str, note_extensions: Iterable[str] = ("md",)) -> bool:
    """Return True when a file with ``extension`` is a markdown note."""
    return extension.lower() in {ext.lower().lstrip(".") for ext in note_extensions}
