"""Per-document metrics extraction."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from vaultstats.errors import ContentReadFailure
from vaultstats.models import DocumentMetrics, Section, StructuralMetadata, VaultFile
from vaultstats.utils.files import is_note
from vaultstats.utils.text import UNIT_TOKENIZER, WORD_TOKENIZER, Tokenizer

LOGGER = logging.getLogger(__name__)

TOKENIZERS: Dict[str, Tokenizer] = {
    "paragraph": WORD_TOKENIZER,
    "heading": WORD_TOKENIZER,
    "list": WORD_TOKENIZER,
    "table": UNIT_TOKENIZER,
    "yaml": UNIT_TOKENIZER,
    "code": UNIT_TOKENIZER,
    "blockquote": WORD_TOKENIZER,
    "math": UNIT_TOKENIZER,
    "thematicBreak": UNIT_TOKENIZER,
    "html": UNIT_TOKENIZER,
    "text": UNIT_TOKENIZER,
    "element": UNIT_TOKENIZER,
    "footnoteDefinition": UNIT_TOKENIZER,
    "definition": UNIT_TOKENIZER,
    "callout": WORD_TOKENIZER,
}

Reader = Callable[[str], Awaitable[bytes]]


def classify(section_type: str, *, source: Optional[str] = None) -> Tokenizer:
    """Tokenizer for a section type; unknown types count no words."""
    tokenizer = TOKENIZERS.get(section_type)
    if tokenizer is None:
        LOGGER.warning("%s: no tokenizer, section.type=%s", source or "<unknown>", section_type)
        return UNIT_TOKENIZER
    return tokenizer


def _carve(section: Section, frontmatter: Optional[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Byte ranges of ``section`` that lie outside the front-matter block."""
    if frontmatter is None:
        return [(section.start, section.end)]
    fm_start, fm_end = frontmatter
    ranges = []
    if section.start < fm_start:
        ranges.append((section.start, min(section.end, fm_start)))
    if section.end > fm_end:
        ranges.append((max(section.start, fm_end), section.end))
    return [(start, end) for start, end in ranges if end > start]


def count_words(
    content: bytes,
    sections: Iterable[Section],
    *,
    frontmatter: Optional[Tuple[int, int]] = None,
    source: Optional[str] = None,
) -> int:
    """Sum of the section-wise token counts of a note."""
    total = 0
    for section in sections:
        tokenizer = classify(section.type, source=source)
        for start, end in _carve(section, frontmatter):
            text = content[start:end].decode("utf-8", errors="replace")
            total += len(tokenizer.tokenize(text))
    return total


class MetricsExtractor:
    """Computes the metrics of a single document."""

    def __init__(self, read: Reader, *, note_extensions: Iterable[str] = ("md",)) -> None:
        self.read = read
        self.note_extensions = tuple(note_extensions)

    def is_note(self, file: VaultFile) -> bool:
        return is_note(file.extension, self.note_extensions)

    async def extract(
        self,
        file: VaultFile,
        metadata: Optional[StructuralMetadata],
        *,
        content: Optional[bytes] = None,
    ) -> Optional[DocumentMetrics]:
        """Metrics of ``file``; ``content`` saves a second read when already loaded."""
        if metadata is None:
            return None
        if not self.is_note(file):
            return DocumentMetrics.attachment(size=file.size)
        return DocumentMetrics.note(
            size=file.size,
            links=metadata.links,
            words=await self._words(file, metadata, content),
        )

    async def _words(
        self, file: VaultFile, metadata: StructuralMetadata, content: Optional[bytes]
    ) -> int:
        if content is None:
            try:
                content = await self.read(file.path)
            except (ContentReadFailure, OSError) as exc:
                LOGGER.warning("%s: cannot read content, counting 0 words: %s", file.path, exc)
                return 0
        return await asyncio.to_thread(
            count_words,
            content,
            metadata.sections,
            frontmatter=metadata.frontmatter,
            source=file.path,
        )
