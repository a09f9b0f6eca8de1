"""Running vault totals with change notification."""

from __future__ import annotations

from typing import Callable, Optional

from vaultstats.models import METRIC_FIELDS, DocumentMetrics
from vaultstats.utils.events import Events

UPDATED = "updated"


class VaultMetrics:
    """Aggregate of all per-document metrics.

    The totals only ever move by adding or subtracting per-document records;
    subscribers registered with :meth:`on_updated` are called after every
    change, including no-op changes with an absent record.
    """

    def __init__(self) -> None:
        self.files = 0
        self.notes = 0
        self.attachments = 0
        self.size = 0
        self.links = 0
        self.words = 0
        self._events = Events()

    def reset(self) -> None:
        for name in METRIC_FIELDS:
            setattr(self, name, 0)
        self._events.trigger(UPDATED, self)

    def inc(self, metrics: Optional[DocumentMetrics]) -> None:
        self._apply(metrics, 1)

    def dec(self, metrics: Optional[DocumentMetrics]) -> None:
        self._apply(metrics, -1)

    def snapshot(self) -> DocumentMetrics:
        return DocumentMetrics(*(getattr(self, name) for name in METRIC_FIELDS))

    def on_updated(self, listener: Callable[["VaultMetrics"], None]) -> Callable[[], None]:
        """Register ``listener``; the returned callable unregisters it."""
        return self._events.on(UPDATED, listener)

    def _apply(self, metrics: Optional[DocumentMetrics], sign: int) -> None:
        if metrics is not None:
            for name in METRIC_FIELDS:
                setattr(self, name, getattr(self, name) + sign * getattr(metrics, name))
        self._events.trigger(UPDATED, self)

    def __repr__(self) -> str:
        values = ", ".join(f"{name}={getattr(self, name)}" for name in METRIC_FIELDS)
        return f"VaultMetrics({values})"
