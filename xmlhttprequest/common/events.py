"""Event registry and dispatch for request objects.

Every event has two notification channels: a single assignable handler
(``onload``, ``onreadystatechange``, ...) and an ordered list of listeners
added with ``add_event_listener``. The handler fires first, then the
listeners in insertion order. Duplicate listeners are permitted.

Subclasses decide whether a dispatch is deferred. Deferred callbacks are
posted to the event loop with ``call_soon`` so they run after the current
call stack unwinds.

Example::

    xhr.add_event_listener("loadend", lambda event: print(event.type))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

EVENT_NAMES: tuple[str, ...] = (
    "readystatechange",
    "loadstart",
    "progress",
    "load",
    "error",
    "abort",
    "loadend",
)


@dataclass(frozen=True)
class ProgressEvent:
    """Event passed to handlers and listeners.

    Attributes:
        type: Event name.
        target: The object the event was dispatched on.
        loaded: Body bytes received so far.
        total: Expected body size from Content-Length, 0 when unknown.
    """

    type: str
    target: Any
    loaded: int = 0
    total: int = 0

    @property
    def length_computable(self) -> bool:
        return self.total > 0


Listener = Callable[[ProgressEvent], Any]


class EventTarget:
    """Handler slots plus an ordered listener registry."""

    onreadystatechange: Listener | None = None
    onloadstart: Listener | None = None
    onprogress: Listener | None = None
    onload: Listener | None = None
    onerror: Listener | None = None
    onabort: Listener | None = None
    onloadend: Listener | None = None

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def add_event_listener(self, event: str, callback: Listener) -> None:
        """Append a listener for ``event``."""
        self._listeners.setdefault(event, []).append(callback)

    def remove_event_listener(self, event: str, callback: Listener) -> None:
        """Remove every registration of ``callback`` for ``event``.

        Only the identical callable is removed, not an equal copy.
        """
        if event in self._listeners:
            self._listeners[event] = [
                listener
                for listener in self._listeners[event]
                if listener is not callback
            ]

    def dispatch_event(
        self, event: str, loaded: int = 0, total: int = 0
    ) -> None:
        """Notify the handler and listeners registered for ``event``."""
        payload = ProgressEvent(
            type=event, target=self, loaded=loaded, total=total
        )
        callbacks: list[Listener] = []
        handler = getattr(self, f"on{event}", None)
        if callable(handler):
            callbacks.append(handler)
        callbacks.extend(self._listeners.get(event, ()))

        defer = self._should_defer()
        for callback in callbacks:
            if defer:
                self._post(callback, payload)
            else:
                self._invoke(callback, payload)

    def _should_defer(self) -> bool:
        return False

    def _post(self, callback: Listener, payload: ProgressEvent) -> None:
        """Run ``callback`` on the next loop iteration.

        Without a usable loop the callback runs inline.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        if loop is None:
            self._invoke(callback, payload)
            return
        loop.call_soon(self._invoke, callback, payload)

    def _invoke(self, callback: Listener, payload: ProgressEvent) -> None:
        try:
            callback(payload)
        except Exception:
            logger.exception(
                f"Listener {callback!r} for '{payload.type}' raised"
            )
