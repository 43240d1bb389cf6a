"""Test utilities for the request object tests."""

import asyncio

from xmlhttprequest.common.events import EVENT_NAMES, ProgressEvent
from xmlhttprequest.xhr import XMLHttpRequest

TERMINAL_EVENTS = ("abort", "error", "load")


class EventRecorder:
    """Record every event fired by a request.

    Each entry is ``(event type, ready state when the listener ran)``.

    Example:
        recorder = EventRecorder(xhr)
        xhr.open("GET", url)
        xhr.send()
        await recorder.wait_for_loadend()
        assert recorder.names[-1] == "loadend"
    """

    def __init__(self, xhr: XMLHttpRequest) -> None:
        self.xhr = xhr
        self.events: list[tuple[str, int]] = []
        self.progress: list[ProgressEvent] = []
        for name in EVENT_NAMES:
            xhr.add_event_listener(name, self._record)

    def _record(self, event: ProgressEvent) -> None:
        self.events.append((event.type, int(self.xhr.ready_state)))
        if event.type == "progress":
            self.progress.append(event)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    @property
    def terminal(self) -> list[str]:
        """Terminal events in firing order."""
        return [name for name in self.names if name in TERMINAL_EVENTS]

    @property
    def states(self) -> list[int]:
        """Ready states seen by readystatechange listeners."""
        return [
            state for name, state in self.events if name == "readystatechange"
        ]

    def count(self, name: str) -> int:
        return self.names.count(name)

    async def wait_for_loadend(
        self, count: int = 1, timeout: float = 5.0
    ) -> None:
        """Wait until ``loadend`` has fired ``count`` times."""

        async def poll() -> None:
            while self.count("loadend") < count:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout)


async def fetch(
    url: str,
    method: str = "GET",
    response_type: str = "",
    data: object = None,
    headers: dict[str, str] | None = None,
    xhr: XMLHttpRequest | None = None,
) -> tuple[XMLHttpRequest, EventRecorder]:
    """Send an asynchronous request and wait for ``loadend``."""
    xhr = xhr or XMLHttpRequest()
    recorder = EventRecorder(xhr)
    xhr.open(method, url)
    xhr.response_type = response_type
    for name, value in (headers or {}).items():
        xhr.set_request_header(name, value)
    xhr.send(data)
    await recorder.wait_for_loadend()
    return xhr, recorder


def fetch_sync(
    url: str,
    method: str = "GET",
    response_type: str = "",
    data: object = None,
    headers: dict[str, str] | None = None,
    xhr: XMLHttpRequest | None = None,
) -> tuple[XMLHttpRequest, EventRecorder]:
    """Send a synchronous request outside any event loop."""
    xhr = xhr or XMLHttpRequest()
    recorder = EventRecorder(xhr)
    xhr.open(method, url, False)
    xhr.response_type = response_type
    for name, value in (headers or {}).items():
        xhr.set_request_header(name, value)
    xhr.send(data)
    return xhr, recorder
