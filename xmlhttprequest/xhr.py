"""The XMLHttpRequest object.

This module provides a browser-style request object for Python code. It
owns the readiness state machine and orchestrates the other components:

- the header/method policy checks ``open()`` and ``set_request_header()``
- ``send()`` dispatches to the local file transport or the network
- asynchronous network transfers stream on the running event loop
- synchronous network transfers block through a sync bridge
- the materializer builds the typed response at DONE

Events fire inline while the request is in flight. Events for the DONE
transition are posted to the event loop, so code following ``send()`` in
the same turn always runs before terminal listeners.

Example::

    xhr = XMLHttpRequest()
    xhr.open("GET", "https://example.com/data.json")
    xhr.response_type = "json"
    xhr.onload = lambda event: print(xhr.response)
    xhr.send()
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Any

from xmlhttprequest.common.events import EventTarget
from xmlhttprequest.common.exceptions import (
    AbortError,
    InvalidStateError,
    ProtocolError,
    SecurityError,
    TransportError,
    XHRException,
)
from xmlhttprequest.common.materializer import (
    MaterializedResponse,
    materialize_buffer,
    materialize_stream,
)
from xmlhttprequest.common.policy import (
    is_allowed_header,
    is_allowed_method,
    normalize_method,
)
from xmlhttprequest.data_types import (
    DEFAULT_HEADERS,
    ConnectionParams,
    RawResponse,
    ReadyState,
    RequestSettings,
    ResponseType,
    TransportOptions,
)
from xmlhttprequest.sync_bridge import create_bridge
from xmlhttprequest.transport.connection import (
    build_connection_params,
    parse_target,
)
from xmlhttprequest.transport.file_transport import (
    read_file,
    read_file_async,
)
from xmlhttprequest.transport.request_manager import AsyncRequestManager

logger = logging.getLogger(__name__)

EXCLUDED_RESPONSE_HEADERS = frozenset({"set-cookie", "set-cookie2"})


class _Transfer:
    """Body accumulated by one asynchronous network transfer."""

    def __init__(self, response_type: ResponseType) -> None:
        self.response_type = response_type
        self.chunks: list[bytes] = []
        self.loaded = 0
        self.total = 0
        self._decoder = (
            codecs.getincrementaldecoder("utf-8")(errors="replace")
            if response_type.is_text
            else None
        )

    def feed(self, chunk: bytes) -> str:
        """Record ``chunk`` and return the text it decodes to."""
        self.loaded += len(chunk)
        if self._decoder is None:
            self.chunks.append(chunk)
            return ""
        return self._decoder.decode(chunk)

    def flush(self) -> str:
        if self._decoder is None:
            return ""
        return self._decoder.decode(b"", final=True)


class XMLHttpRequest(EventTarget):
    """Browser-style HTTP(S) and file request.

    Attributes:
        status: HTTP status, 0 until known or after a transport error.
        status_text: Reason phrase, or the error detail after a failure.
        response: Typed response value, finalized at DONE.
        response_text: Decoded text for text-like response types.
        response_xml: Parsed document for the ``document`` response type.
        response_url: Final URL after redirects.
        error: Exception recorded by the last error or abort.
    """

    UNSENT = ReadyState.UNSENT
    OPENED = ReadyState.OPENED
    HEADERS_RECEIVED = ReadyState.HEADERS_RECEIVED
    LOADING = ReadyState.LOADING
    DONE = ReadyState.DONE

    def __init__(self, options: TransportOptions | None = None) -> None:
        """Initialize the request.

        Args:
            options: Transport options: connection reuse, TLS materials,
                header-check override and synchronous bridge selection.
        """
        super().__init__()
        self.options = options or TransportOptions()

        self._ready_state = ReadyState.UNSENT
        self._settings: RequestSettings | None = None
        self._headers: dict[str, str] = dict(DEFAULT_HEADERS)
        self._response_type = ResponseType.DEFAULT
        self._response_headers: dict[str, str] = {}
        self._task: asyncio.Task[None] | None = None

        self._send_flag = False
        self._error_flag = False
        self._aborted_flag = False

        self.status = 0
        self.status_text = ""
        self.response: Any = b""
        self.response_text = ""
        self.response_xml: Any = None
        self.response_url = ""
        self.error: XHRException | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def response_type(self) -> str:
        return self._response_type.value

    @response_type.setter
    def response_type(self, value: str | ResponseType) -> None:
        if self._ready_state in (ReadyState.LOADING, ReadyState.DONE):
            raise InvalidStateError(
                "responseType cannot be changed while loading or done"
            )
        try:
            self._response_type = ResponseType(value)
        except ValueError:
            logger.warning(f"Ignoring unknown responseType {value!r}")

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def open(
        self,
        method: str,
        url: str,
        is_async: bool = True,
        user: str | None = None,
        password: str | None = None,
    ) -> None:
        """Open the request, aborting any transfer in flight.

        Args:
            method: Request method (GET, POST, ...).
            url: http, https or file URL. A URL without a scheme targets
                localhost over http.
            is_async: Whether ``send()`` returns before the transfer ends.
            user: Optional basic-auth user name.
            password: Optional basic-auth password.

        Raises:
            SecurityError: If the method is forbidden. The request is left
                UNSENT.
        """
        self.abort()
        self._error_flag = False
        self._aborted_flag = False
        self.error = None
        self.status = 0
        self.status_text = ""
        self._response_headers = {}

        if not is_allowed_method(method):
            raise SecurityError(method)

        self._settings = RequestSettings(
            method=normalize_method(method),
            url=str(url),
            is_async=is_async if isinstance(is_async, bool) else True,
            user=user or None,
            password=password or None,
        )
        self.response_url = self._settings.url
        self._set_state(ReadyState.OPENED)

    def set_disable_header_check(self, state: bool) -> None:
        """Allow or refuse forbidden request headers."""
        self.options.disable_header_check = state

    def set_request_header(self, header: str, value: str) -> bool:
        """Set a request header.

        Returns:
            True if the header was set, False if it is forbidden.

        Raises:
            InvalidStateError: If the request is not OPENED or has been
                sent.
        """
        if self._ready_state != ReadyState.OPENED:
            raise InvalidStateError(
                "setRequestHeader can only be called when state is OPEN"
            )
        if not is_allowed_header(header, self.options.disable_header_check):
            logger.warning(f'Refused to set unsafe header "{header}"')
            return False
        if self._send_flag:
            raise InvalidStateError("send flag is true")

        for existing in list(self._headers):
            if existing.lower() == header.lower():
                del self._headers[existing]
        self._headers[header] = str(value)
        return True

    def get_request_header(self, name: str) -> str:
        """Return a request header value, or "" when it is not set."""
        if isinstance(name, str):
            for existing, value in self._headers.items():
                if existing.lower() == name.lower():
                    return value
        return ""

    def get_response_header(self, header: str) -> str | None:
        """Return a response header value.

        Returns:
            The value, or None before headers arrive, after an error, or
            when the header is absent.
        """
        if (
            isinstance(header, str)
            and self._ready_state > ReadyState.OPENED
            and not self._error_flag
        ):
            return self._response_headers.get(header.lower())
        return None

    def get_all_response_headers(self) -> str:
        """Return all response headers as CRLF-separated lines.

        Cookie-setting headers are excluded.
        """
        if self._ready_state < ReadyState.HEADERS_RECEIVED or self._error_flag:
            return ""
        return "\r\n".join(
            f"{name}: {value}"
            for name, value in self._response_headers.items()
            if name not in EXCLUDED_RESPONSE_HEADERS
        )

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send(self, data: object = None) -> None:
        """Send the request.

        Asynchronous requests return immediately and require a running
        event loop. Synchronous requests return once the request is DONE.

        Args:
            data: Optional body. Ignored for GET and HEAD.

        Raises:
            InvalidStateError: If the request is not OPENED, was already
                sent, or is asynchronous with no running event loop.
            ProtocolError: If the URL scheme is unsupported, or a file URL
                is used with a method other than GET.
        """
        if self._ready_state != ReadyState.OPENED or self._settings is None:
            raise InvalidStateError(
                "connection must be opened before send() is called"
            )
        if self._send_flag:
            raise InvalidStateError("send has already been called")

        settings = self._settings
        target = parse_target(settings.url)
        if not settings.is_async:
            self._loop = None

        if target.is_local:
            if settings.method != "GET":
                raise ProtocolError(
                    "XMLHttpRequest: Only GET method is supported",
                    url=settings.url,
                )
            if settings.is_async:
                self._start_task(self._read_local(target.path))
            else:
                self._read_local_sync(target.path)
            return

        params = build_connection_params(
            settings, target, self._headers, data
        )
        self._error_flag = False
        if settings.is_async:
            self._send_async(params)
        else:
            self._send_sync(params)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            raise InvalidStateError(
                "asynchronous send() requires a running event loop"
            ) from None

    def _start_task(self, coroutine: Any) -> None:
        try:
            loop = self._require_loop()
        except InvalidStateError:
            coroutine.close()
            raise
        self._loop = loop
        self._send_flag = True
        self._task = loop.create_task(coroutine)
        self.dispatch_event("loadstart")

    def _send_async(self, params: ConnectionParams) -> None:
        self._loop = self._require_loop()
        self._send_flag = True
        # Fired here for historical reasons, while still OPENED.
        self.dispatch_event("readystatechange")
        self._start_task(self._transfer(params))

    async def _transfer(self, params: ConnectionParams) -> None:
        transfer = _Transfer(self._response_type)
        manager = AsyncRequestManager(self.options)
        logger.debug(f"Starting {params.method} {params.url}")

        def on_response(head: RawResponse) -> None:
            self._response_headers = head.headers
            self.response_url = head.url
            transfer.total = int(head.headers.get("content-length", 0) or 0)
            self.status = head.status_code
            self.status_text = head.reason
            self._set_state(ReadyState.HEADERS_RECEIVED)

        def on_chunk(chunk: bytes) -> None:
            self.response_text += transfer.feed(chunk)
            if self._send_flag:
                self._set_state(ReadyState.LOADING)
                self.dispatch_event(
                    "progress", loaded=transfer.loaded, total=transfer.total
                )

        try:
            await manager.stream(params, on_response, on_chunk)
        except TransportError as e:
            self._handle_error(e)
            return
        except Exception as e:
            self._handle_error(self._unexpected(e, params.url))
            return

        self.response_text += transfer.flush()
        if self._send_flag:
            self._send_flag = False
            self._apply(
                materialize_stream(
                    self._response_type,
                    self.response_text,
                    transfer.chunks,
                    self._response_headers.get("content-type", ""),
                )
            )
            self._set_state(ReadyState.DONE)

    def _send_sync(self, params: ConnectionParams) -> None:
        bridge = create_bridge(self.options)
        self._send_flag = True
        try:
            raw = bridge.execute(params)
        except TransportError as e:
            self._handle_error(e)
            return
        except Exception as e:
            self._handle_error(self._unexpected(e, params.url))
            return
        self._send_flag = False

        self._response_headers = raw.headers
        self.response_url = raw.url
        self.status = raw.status_code
        self.status_text = raw.reason
        self._set_state(ReadyState.HEADERS_RECEIVED)
        self._set_state(ReadyState.LOADING)
        self._apply(
            materialize_buffer(
                self._response_type,
                raw.body,
                raw.headers.get("content-type", ""),
            )
        )
        self._set_state(ReadyState.DONE)

    async def _read_local(self, path: str) -> None:
        try:
            data = await read_file_async(path)
        except TransportError as e:
            self._handle_error(e)
            return
        if self._send_flag:
            self._send_flag = False
            self._finish_local(data)

    def _read_local_sync(self, path: str) -> None:
        try:
            data = read_file(path)
        except TransportError as e:
            self._handle_error(e)
            return
        self._finish_local(data)

    def _finish_local(self, data: bytes) -> None:
        self.status = 200
        self.status_text = "OK"
        self._apply(materialize_buffer(self._response_type, data))
        self._set_state(ReadyState.DONE)

    def _apply(self, result: MaterializedResponse) -> None:
        self.response = result.response
        self.response_text = result.response_text
        self.response_xml = result.response_xml

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def _unexpected(self, error: Exception, url: str) -> TransportError:
        """Wrap a failure no transport anticipated."""
        logger.exception(f"Unexpected failure while fetching {url}")
        return TransportError(
            str(error) or type(error).__name__,
            url=url,
            context={"error": type(error).__name__},
        )

    def _handle_error(self, error: TransportError) -> None:
        """Record a transport failure and move to DONE."""
        logger.debug(f"Request failed: {error.message}")
        self.status = error.status
        self.status_text = error.message
        self.error = error
        self.response_text = error.message
        self.response_xml = None
        self.response = b""
        self._error_flag = True
        self._send_flag = False
        self._set_state(ReadyState.DONE)

    def abort(self) -> None:
        """Abort the request.

        A transfer in flight is cancelled and the request reaches DONE with
        ``abort`` and ``loadend``. The request then returns to UNSENT.
        """
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

        self._headers = dict(DEFAULT_HEADERS)
        self.response_text = ""
        self.response_xml = None
        self.response = b""

        self._error_flag = True
        self._aborted_flag = True
        if (
            self._ready_state != ReadyState.UNSENT
            and (self._ready_state != ReadyState.OPENED or self._send_flag)
            and self._ready_state != ReadyState.DONE
        ):
            self._send_flag = False
            self.error = AbortError(
                self._settings.url if self._settings else None
            )
            self._set_state(ReadyState.DONE)
        self._ready_state = ReadyState.UNSENT

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _should_defer(self) -> bool:
        return self._ready_state == ReadyState.DONE

    def _set_state(self, state: ReadyState) -> None:
        """Change the ready state and fire the matching events."""
        if self._ready_state == state or (
            self._ready_state == ReadyState.UNSENT and self._aborted_flag
        ):
            return

        self._ready_state = state
        is_async = self._settings is None or self._settings.is_async

        if (
            is_async
            or state < ReadyState.OPENED
            or state == ReadyState.DONE
        ):
            self.dispatch_event("readystatechange")

        if state == ReadyState.DONE:
            if self._aborted_flag:
                fire = "abort"
            elif self._error_flag:
                fire = "error"
            else:
                fire = "load"
            self.dispatch_event(fire)
            self.dispatch_event("loadend")
