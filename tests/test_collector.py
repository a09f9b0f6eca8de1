"""Tests for incremental metrics collection."""

from __future__ import annotations

import asyncio
import logging
import tempfile
import threading
from pathlib import Path
from typing import List

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from vaultstats.errors import ContentReadFailure
from vaultstats.index.collector import MetricsCollector
from vaultstats.ingestion.markdown_parser import MetadataCache
from vaultstats.ingestion.vault import FileSystemVault
from vaultstats.models import DocumentMetrics, sum_metrics

WORDS = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel"]


def _make_collector(root: Path) -> MetricsCollector:
    vault = FileSystemVault(root)
    vault.poll()
    return MetricsCollector(vault, MetadataCache(vault), interval=3600)


async def _rescan(collector: MetricsCollector) -> None:
    await collector.vault.scan()
    await collector.metadata_cache.settle()


async def _recount(root: Path) -> DocumentMetrics:
    collector = _make_collector(root)
    collector.start()
    await collector.process_backlog()
    await collector.stop()
    return collector.metrics.snapshot()


def _assert_consistent(collector: MetricsCollector) -> None:
    assert collector.backlog == ()
    assert collector.metrics.snapshot() == sum_metrics(collector.documents().values())


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    (tmp_path / "a.md").write_text("one two three", encoding="utf-8")
    (tmp_path / "b.md").write_text("[[a]] four", encoding="utf-8")
    (tmp_path / "img.png").write_bytes(b"\x89PNG\r\n")
    return tmp_path


class TestInitialCollection:
    """Full scan on start."""

    @pytest.mark.asyncio
    async def test_totals(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        assert collector.running
        assert collector.backlog == ("a.md", "b.md", "img.png")

        processed = await collector.process_backlog()
        await collector.stop()

        assert processed == 3
        assert collector.metrics.snapshot() == DocumentMetrics(
            files=3, notes=2, attachments=1, size=13 + 10 + 6, links=1, words=5
        )
        assert collector.cached("img.png") == DocumentMetrics.attachment(size=6)
        _assert_consistent(collector)

    @pytest.mark.asyncio
    async def test_start_resets_state(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        await collector.process_backlog()
        before = collector.metrics.snapshot()

        collector.start()
        assert collector.metrics.snapshot() == DocumentMetrics()
        assert collector.documents() == {}

        await collector.process_backlog()
        await collector.stop()

        assert collector.metrics.snapshot() == before
        assert not collector.running

    @pytest.mark.asyncio
    async def test_empty_vault(self, tmp_path: Path) -> None:
        assert await _recount(tmp_path) == DocumentMetrics()


class TestBacklog:
    """Deduplication and failure handling."""

    @pytest.mark.asyncio
    async def test_duplicate_pushes_process_once(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        await collector.process_backlog()

        calls: List[str] = []
        original = collector.extractor.extract

        async def counting(file, metadata, **kwargs):
            calls.append(file.path)
            return await original(file, metadata, **kwargs)

        monkeypatch.setattr(collector.extractor, "extract", counting)
        for _ in range(3):
            collector.push("a.md")
        assert collector.backlog == ("a.md",)

        assert await collector.process_backlog() == 1
        await collector.stop()

        assert calls == ["a.md"]
        _assert_consistent(collector)

    @pytest.mark.asyncio
    async def test_backlog_is_fifo(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)

        collector.push("b.md")
        collector.push("a.md")
        collector.push("b.md")

        assert collector.backlog == ("b.md", "a.md")

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_drain(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        collector = _make_collector(vault_dir)
        original = collector.extractor.extract

        async def flaky(file, metadata, **kwargs):
            if file.path == "a.md":
                raise RuntimeError("boom")
            return await original(file, metadata, **kwargs)

        monkeypatch.setattr(collector.extractor, "extract", flaky)
        collector.start()
        with caplog.at_level(logging.ERROR, logger="vaultstats.index.collector"):
            assert await collector.process_backlog() == 3
        await collector.stop()

        assert "Failed to collect metrics for a.md" in caplog.text
        assert collector.cached("a.md") is None
        assert collector.metrics.files == 2
        _assert_consistent(collector)

    @pytest.mark.asyncio
    async def test_unavailable_metadata_excludes_document(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        collector = _make_collector(vault_dir)

        def unreadable(identity: str) -> bytes:
            raise ContentReadFailure(identity)

        monkeypatch.setattr(collector.vault, "read_bytes", unreadable)

        assert await collector.collect("a.md") is None
        assert await collector.collect("img.png") == DocumentMetrics.attachment(size=6)

    @pytest.mark.asyncio
    async def test_collect_missing_file(self, vault_dir: Path) -> None:
        assert await _make_collector(vault_dir).collect("nope.md") is None


class TestUpdate:
    """Delta application."""

    def test_update_replaces_contribution(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        first = DocumentMetrics.note(size=10, links=1, words=4)
        second = DocumentMetrics.note(size=20, links=0, words=9)

        collector.update("x.md", first)
        collector.update("x.md", second)

        assert collector.metrics.snapshot() == second
        assert collector.cached("x.md") == second

    def test_update_none_removes(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.update("x.md", DocumentMetrics.attachment(size=10))

        collector.update("x.md", None)

        assert collector.metrics.snapshot() == DocumentMetrics()
        assert collector.cached("x.md") is None

    def test_update_unknown_path_with_none(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)

        collector.update("ghost.md", None)

        assert collector.metrics.snapshot() == DocumentMetrics()


class TestLifecycle:
    """Vault changes flow through to the aggregate."""

    @pytest.mark.asyncio
    async def test_create_modify_delete(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        await collector.process_backlog()

        (vault_dir / "c.md").write_text("five six", encoding="utf-8")
        await _rescan(collector)
        assert collector.backlog == ("c.md",)
        await collector.process_backlog()
        assert collector.metrics.words == 7
        assert collector.metrics.notes == 3

        (vault_dir / "a.md").write_text("one", encoding="utf-8")
        await _rescan(collector)
        await collector.process_backlog()
        assert collector.metrics.words == 5

        (vault_dir / "b.md").unlink()
        await _rescan(collector)
        await collector.process_backlog()
        await collector.stop()

        assert collector.metrics.links == 0
        assert collector.cached("b.md") is None
        assert collector.metrics.snapshot() == await _recount(vault_dir)
        _assert_consistent(collector)

    @pytest.mark.asyncio
    async def test_rename_conserves_totals(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        await collector.process_backlog()
        before = collector.metrics.snapshot()

        (vault_dir / "a.md").rename(vault_dir / "renamed.md")
        await _rescan(collector)
        assert set(collector.backlog) == {"renamed.md", "a.md"}
        await collector.process_backlog()
        await collector.stop()

        assert collector.metrics.snapshot() == before
        assert collector.cached("a.md") is None
        assert collector.cached("renamed.md") == DocumentMetrics.note(size=13, words=3)

    @pytest.mark.asyncio
    async def test_stop_detaches_listeners(self, vault_dir: Path) -> None:
        collector = _make_collector(vault_dir)
        collector.start()
        await collector.process_backlog()
        await collector.stop()

        (vault_dir / "late.md").write_text("ignored", encoding="utf-8")
        await _rescan(collector)

        assert collector.backlog == ()


class TestThreading:
    """File access during collection stays off the event loop."""

    @pytest.mark.asyncio
    async def test_note_is_read_once_off_the_loop(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        collector = _make_collector(vault_dir)
        original = collector.vault.read_bytes
        on_main_thread: List[bool] = []

        def recording(identity: str) -> bytes:
            on_main_thread.append(threading.current_thread() is threading.main_thread())
            return original(identity)

        monkeypatch.setattr(collector.vault, "read_bytes", recording)

        metrics = await collector.collect("a.md")

        assert on_main_thread == [False]
        assert metrics == DocumentMetrics.note(size=13, words=3)

    @pytest.mark.asyncio
    async def test_attachment_is_not_read(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        collector = _make_collector(vault_dir)
        calls: List[str] = []
        monkeypatch.setattr(collector.vault, "read_bytes", lambda identity: calls.append(identity))

        assert await collector.collect("img.png") == DocumentMetrics.attachment(size=6)
        assert calls == []

    @pytest.mark.asyncio
    async def test_read_failure_with_cached_metadata_counts_zero_words(
        self, vault_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        collector = _make_collector(vault_dir)
        collector.metadata_cache.get_file_cache("b.md")

        def unreadable(identity: str) -> bytes:
            raise ContentReadFailure(identity)

        monkeypatch.setattr(collector.vault, "read_bytes", unreadable)

        assert await collector.collect("b.md") == DocumentMetrics.note(size=10, links=1, words=0)


NOTE_TEXT = st.one_of(
    st.lists(
        st.sampled_from(WORDS + ["[[link]]", "[doc](doc.md)", "# Heading", "```", "- item", "\n\n", "42", "中文"]),
        max_size=20,
    ).map(" ".join),
    st.text(max_size=40),
)

OPERATIONS = st.lists(
    st.tuples(
        st.sampled_from(["create", "modify", "delete", "rename"]),
        st.integers(min_value=0, max_value=50),
        NOTE_TEXT,
    ),
    max_size=10,
)

RECORDS = st.builds(
    DocumentMetrics,
    files=st.integers(0, 3),
    notes=st.integers(0, 3),
    attachments=st.integers(0, 3),
    size=st.integers(0, 10_000),
    links=st.integers(0, 50),
    words=st.integers(0, 5_000),
)


def _seed(root: Path, texts: List[str]) -> None:
    for index, text in enumerate(texts):
        (root / f"seed{index}.md").write_bytes(text.encode("utf-8"))


def _apply(root: Path, action: str, index: int, text: str, counter: int) -> None:
    notes = sorted(root.glob("*.md"))
    if action == "create" or not notes:
        (root / f"new{counter}.md").write_bytes(text.encode("utf-8"))
        return
    target = notes[index % len(notes)]
    if action == "modify":
        # Appending always changes the size, so polling sees the edit.
        target.write_bytes(target.read_bytes() + b" [[extra]] " + text.encode("utf-8"))
    elif action == "delete":
        target.unlink()
    else:
        target.rename(root / f"moved{counter}.md")


async def _replay(root: Path, operations) -> None:
    collector = _make_collector(root)
    collector.start()
    await collector.process_backlog()
    try:
        for counter, (action, index, text) in enumerate(operations):
            _apply(root, action, index, text, counter)
            await _rescan(collector)
            await collector.process_backlog()

            _assert_consistent(collector)
            assert collector.metrics.snapshot() == await _recount(root)
    finally:
        await collector.stop()
        collector.metadata_cache.close()


async def _rename_all(root: Path) -> None:
    collector = _make_collector(root)
    collector.start()
    await collector.process_backlog()
    before = collector.metrics.snapshot()
    try:
        for path in sorted(root.glob("*.md")):
            path.rename(root / f"renamed-{path.name}")
            await _rescan(collector)
            await collector.process_backlog()

            assert collector.metrics.snapshot() == before
            assert collector.cached(path.name) is None
    finally:
        await collector.stop()
        collector.metadata_cache.close()


class TestProperties:
    """Aggregate invariants over generated vaults and change sequences."""

    @settings(max_examples=25, deadline=None)
    @given(initial=st.lists(NOTE_TEXT, max_size=4), operations=OPERATIONS)
    def test_aggregate_matches_recount_after_every_change(self, initial, operations) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _seed(root, initial)
            asyncio.run(_replay(root, operations))

    @settings(max_examples=15, deadline=None)
    @given(texts=st.lists(NOTE_TEXT, min_size=1, max_size=4))
    def test_renames_conserve_totals(self, texts) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            _seed(root, texts)
            asyncio.run(_rename_all(root))

    @given(updates=st.lists(st.tuples(st.sampled_from(["a.md", "b.md", "c.md"]), st.none() | RECORDS)))
    def test_update_applies_exact_delta(self, updates) -> None:
        vault = FileSystemVault(Path("unused"))
        collector = MetricsCollector(vault, MetadataCache(vault))

        for path, record in updates:
            before = collector.metrics.snapshot()
            previous = collector.cached(path) or DocumentMetrics()

            collector.update(path, record)

            assert collector.metrics.snapshot() == before - previous + (record or DocumentMetrics())
            assert collector.metrics.snapshot() == sum_metrics(collector.documents().values())
