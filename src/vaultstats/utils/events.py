"""Minimal named-event listener registry."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

LOGGER = logging.getLogger(__name__)


class Events:
    """Registry of callbacks keyed by event name.

    A callback that raises is logged and does not prevent the remaining
    callbacks from running.
    """

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, name: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register ``callback`` for ``name``; returns a function that unregisters it."""
        self._listeners[name].append(callback)

        def off() -> None:
            listeners = self._listeners[name]
            if callback in listeners:
                listeners.remove(callback)

        return off

    def trigger(self, name: str, *args: Any) -> None:
        for callback in list(self._listeners[name]):
            try:
                callback(*args)
            except Exception:
                LOGGER.exception("Listener for %r failed", name)
