"""Markdown structure extraction.

A line-based block classifier splits a note into typed sections with byte
ranges into the raw content, records the front-matter range and counts
outbound links. It understands the block constructs that matter for word
counting (front-matter, fenced and indented code, math, headings, thematic
breaks, tables, quotes and callouts, lists, HTML, footnote and link
definitions); everything else is a paragraph.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from vaultstats.errors import ContentReadFailure, MetadataUnavailable
from vaultstats.ingestion.vault import FileSystemVault
from vaultstats.models import Section, StructuralMetadata, VaultFile
from vaultstats.utils.events import Events
from vaultstats.utils.files import is_note

LOGGER = logging.getLogger(__name__)

FRONTMATTER_OPEN = re.compile(r"---[ \t]*")
FRONTMATTER_CLOSE = re.compile(r"(?:---|\.\.\.)[ \t]*")
CODE_FENCE = re.compile(r" {0,3}(`{3,}|~{3,})(.*)")
MATH_FENCE = re.compile(r" {0,3}\$\$(.*)")
HEADING = re.compile(r" {0,3}#{1,6}(?:[ \t].*)?")
SETEXT_UNDERLINE = re.compile(r" {0,3}(?:=+|-+)[ \t]*")
THEMATIC_BREAK = re.compile(r" {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*")
TABLE_DELIMITER = re.compile(r" {0,3}\|?[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|?[ \t]*")
BLOCKQUOTE = re.compile(r" {0,3}>")
CALLOUT = re.compile(r" {0,3}>[ \t]*\[![^\]]+\]")
LIST_ITEM = re.compile(r"[ \t]*(?:[-*+]|\d{1,9}[.)])(?:[ \t]|$)")
BULLET_ITEM = re.compile(r" {0,3}[-*+][ \t]")
HTML_BLOCK = re.compile(r" {0,3}<(?:/?[A-Za-z][A-Za-z0-9-]*(?:[\s/>]|$)|!--)")
FOOTNOTE_DEFINITION = re.compile(r" {0,3}\[\^[^\]]+\]:")
LINK_DEFINITION = re.compile(r" {0,3}\[[^\]^][^\]]*\]:[ \t]*\S")
INDENTED = re.compile(r"(?: {4}|\t)")

INLINE_CODE = re.compile(r"`[^`\n]*`")
WIKI_LINK = re.compile(r"(?<!!)\[\[([^\[\]|#]*)(?:#[^\[\]|]*)?(?:\|[^\[\]]*)?\]\]")
MARKDOWN_LINK = re.compile(r"(?<!!)\[[^\[\]]*\]\(<?([^()<>\s]+)>?(?:[ \t]+\"[^\"]*\")?\)")
URL_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.-]*:")

# Sections whose content never holds links.
NON_LINK_SECTIONS = frozenset({"yaml", "code", "math", "html"})


@dataclass(slots=True)
class _Line:
    start: int
    end: int
    text: str

    @property
    def blank(self) -> bool:
        return not self.text.strip()


def _split_lines(content: bytes) -> List[_Line]:
    lines: List[_Line] = []
    offset = 0
    for raw in content.splitlines(keepends=True):
        body = raw.rstrip(b"\r\n")
        lines.append(_Line(offset, offset + len(body), body.decode("utf-8", errors="replace")))
        offset += len(raw)
    return lines


def _find_frontmatter(lines: List[_Line]) -> Optional[int]:
    """Index of the closing front-matter fence, if the note starts with one."""
    if not lines or not FRONTMATTER_OPEN.fullmatch(lines[0].text):
        return None
    for index in range(1, len(lines)):
        if FRONTMATTER_CLOSE.fullmatch(lines[index].text):
            return index
    return None


def _interrupts_paragraph(text: str) -> bool:
    return bool(
        HEADING.fullmatch(text)
        or CODE_FENCE.match(text)
        or MATH_FENCE.match(text)
        or THEMATIC_BREAK.fullmatch(text)
        or BLOCKQUOTE.match(text)
        or BULLET_ITEM.match(text)
    )


class _BlockParser:
    def __init__(self, lines: List[_Line]) -> None:
        self.lines = lines

    def parse(self, index: int) -> List[Section]:
        sections: List[Section] = []
        while index < len(self.lines):
            if self.lines[index].blank:
                index += 1
                continue
            kind, stop = self._block(index)
            last = stop - 1
            while last > index and self.lines[last].blank:
                last -= 1
            sections.append(Section(kind, self.lines[index].start, self.lines[last].end))
            index = stop
        return sections

    def _block(self, index: int) -> Tuple[str, int]:
        text = self.lines[index].text
        fence = CODE_FENCE.match(text)
        if fence:
            return "code", self._fenced(index, fence.group(1))
        math = MATH_FENCE.match(text)
        if math:
            if "$$" in math.group(1):
                return "math", index + 1
            return "math", self._until(index + 1, lambda line: "$$" in line, inclusive=True)
        if HEADING.fullmatch(text):
            return "heading", index + 1
        if THEMATIC_BREAK.fullmatch(text):
            return "thematicBreak", index + 1
        if BLOCKQUOTE.match(text):
            kind = "callout" if CALLOUT.match(text) else "blockquote"
            return kind, self._until(index + 1, lambda line: not BLOCKQUOTE.match(line))
        if self._is_table(index):
            return "table", self._until(index + 2, lambda line: "|" not in line)
        if FOOTNOTE_DEFINITION.match(text):
            return "footnoteDefinition", self._until(index + 1, lambda line: not line.strip())
        if LINK_DEFINITION.match(text):
            return "definition", index + 1
        if LIST_ITEM.match(text):
            return "list", self._list(index)
        if HTML_BLOCK.match(text):
            return "html", self._until(index + 1, lambda line: not line.strip())
        if INDENTED.match(text):
            return "code", self._indented(index)
        return self._paragraph(index)

    def _until(self, index: int, stop: Callable[[str], bool], *, inclusive: bool = False) -> int:
        while index < len(self.lines):
            if stop(self.lines[index].text):
                return index + 1 if inclusive else index
            index += 1
        return index

    def _fenced(self, index: int, marker: str) -> int:
        closing = re.compile(r" {0,3}" + re.escape(marker[0]) + "{" + str(len(marker)) + r",}[ \t]*")
        return self._until(index + 1, closing.fullmatch, inclusive=True)

    def _is_table(self, index: int) -> bool:
        if index + 1 >= len(self.lines) or "|" not in self.lines[index].text:
            return False
        delimiter = self.lines[index + 1].text
        return "|" in delimiter and "-" in delimiter and bool(TABLE_DELIMITER.fullmatch(delimiter))

    def _list(self, index: int) -> int:
        index += 1
        while index < len(self.lines):
            line = self.lines[index]
            if line.blank:
                following = index + 1
                while following < len(self.lines) and self.lines[following].blank:
                    following += 1
                if following < len(self.lines) and (
                    LIST_ITEM.match(self.lines[following].text)
                    or self.lines[following].text.startswith((" ", "\t"))
                ):
                    index = following
                    continue
                return index
            if not line.text.startswith((" ", "\t")) and not LIST_ITEM.match(line.text):
                if _interrupts_paragraph(line.text):
                    return index
            index += 1
        return index

    def _indented(self, index: int) -> int:
        index += 1
        while index < len(self.lines):
            line = self.lines[index]
            if not line.blank and not INDENTED.match(line.text):
                return index
            index += 1
        return index

    def _paragraph(self, index: int) -> Tuple[str, int]:
        index += 1
        while index < len(self.lines):
            line = self.lines[index]
            if line.blank:
                return "paragraph", index
            if SETEXT_UNDERLINE.fullmatch(line.text):
                return "heading", index + 1
            if _interrupts_paragraph(line.text):
                return "paragraph", index
            index += 1
        return "paragraph", index


def count_links(text: str) -> int:
    """Count wiki links and internal markdown links, ignoring embeds and URLs."""
    text = INLINE_CODE.sub("", text)
    wiki = len(WIKI_LINK.findall(text))
    markdown = sum(
        1 for match in MARKDOWN_LINK.finditer(text) if not URL_SCHEME.match(match.group(1))
    )
    return wiki + markdown


def parse_markdown(content: bytes) -> StructuralMetadata:
    """Split raw note content into typed sections and count its links."""
    lines = _split_lines(content)
    sections: List[Section] = []
    frontmatter: Optional[Tuple[int, int]] = None
    index = 0

    closing = _find_frontmatter(lines)
    if closing is not None:
        frontmatter = (lines[0].start, lines[closing].end)
        sections.append(Section("yaml", *frontmatter))
        index = closing + 1

    sections.extend(_BlockParser(lines).parse(index))

    links = sum(
        count_links(content[section.start : section.end].decode("utf-8", errors="replace"))
        for section in sections
        if section.type not in NON_LINK_SECTIONS
    )
    return StructuralMetadata(sections=sections, links=links, frontmatter=frontmatter)


class MetadataCache:
    """Structural metadata for the files of a vault, cached by size and mtime.

    The cache follows the vault's lifecycle events: created and modified notes
    are re-parsed and a ``changed`` event is emitted when their structure
    differs from the cached one; deleted and renamed-away entries are dropped.
    When an event loop is running, re-parsing happens in a worker thread and
    ``changed`` is emitted back on the loop; :meth:`settle` waits for it.
    """

    def __init__(self, vault: FileSystemVault, *, note_extensions: Iterable[str] = ("md",)) -> None:
        self.vault = vault
        self.note_extensions = tuple(note_extensions)
        self._entries: Dict[str, Tuple[Tuple[int, float], StructuralMetadata]] = {}
        self._events = Events()
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe = [
            vault.on("create", self._on_changed),
            vault.on("modify", self._on_changed),
            vault.on("delete", lambda file: self.forget(file.path)),
            vault.on("rename", self._on_renamed),
        ]

    def close(self) -> None:
        for off in self._unsubscribe:
            off()
        self._unsubscribe = []
        for task in self._pending:
            task.cancel()
        self._pending.clear()

    def on(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        if event != "changed":
            raise ValueError(f"Unknown metadata event: {event}")
        return self._events.on(event, callback)

    def get_file_cache(self, identity: str, content: Optional[bytes] = None) -> StructuralMetadata:
        """Return the structure of ``identity``.

        ``content`` is the note's raw bytes when the caller already read them;
        otherwise they are read from the vault on a cache miss.

        Raises:
            MetadataUnavailable: the file does not exist or cannot be read or parsed.
        """
        file = self.vault.get_file(identity)
        if file is None:
            self.forget(identity)
            raise MetadataUnavailable(f"{identity} does not exist")
        if not is_note(file.extension, self.note_extensions):
            return StructuralMetadata()

        key = (file.size, file.mtime)
        cached = self._entries.get(identity)
        if cached is not None and cached[0] == key:
            return cached[1]

        try:
            if content is None:
                content = self.vault.read_bytes(identity)
            metadata = parse_markdown(content)
        except ContentReadFailure as exc:
            self.forget(identity)
            raise MetadataUnavailable(str(exc)) from exc
        except Exception as exc:
            self.forget(identity)
            raise MetadataUnavailable(f"Failed to parse {identity}: {exc}") from exc

        self._entries[identity] = (key, metadata)
        return metadata

    def refresh(self, identity: str) -> bool:
        """Re-parse ``identity``; emit ``changed`` and return True if it differs."""
        previous = self._entries.get(identity)
        try:
            metadata = self.get_file_cache(identity)
        except MetadataUnavailable as exc:
            LOGGER.debug("No metadata for %s: %s", identity, exc)
            return False
        return self._notify(identity, previous, metadata)

    async def refresh_async(self, identity: str) -> bool:
        """:meth:`refresh` with reading and parsing moved off the event loop."""
        previous = self._entries.get(identity)
        try:
            metadata = await asyncio.to_thread(self.get_file_cache, identity)
        except MetadataUnavailable as exc:
            LOGGER.debug("No metadata for %s: %s", identity, exc)
            return False
        return self._notify(identity, previous, metadata)

    async def settle(self) -> None:
        """Wait until every scheduled re-parse has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def forget(self, identity: str) -> None:
        self._entries.pop(identity, None)

    def _notify(
        self,
        identity: str,
        previous: Optional[Tuple[Tuple[int, float], StructuralMetadata]],
        metadata: StructuralMetadata,
    ) -> bool:
        if previous is not None and previous[1] == metadata:
            return False
        file = self.vault.get_file(identity)
        if file is None:
            return False
        self._events.trigger("changed", file)
        return True

    def _schedule(self, identity: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.refresh(identity)
            return
        task = loop.create_task(self.refresh_async(identity))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_changed(self, file: VaultFile) -> None:
        self._schedule(file.path)

    def _on_renamed(self, file: VaultFile, old_path: str) -> None:
        self.forget(old_path)
        self._schedule(file.path)
