"""Request managers for network transfers.

This module provides SyncRequestManager and AsyncRequestManager classes that
encapsulate the httpx client, redirect following and connection-reset
retries.

The request manager is responsible for:

- Choosing the httpx client (the shared ``agent`` or a dedicated one)
- Applying the redirect policy hop by hop
- Retrying once when a reused pooled connection was reset
- Converting httpx failures into TransportError

httpx's own redirect handling is disabled so that only the policy in
``xmlhttprequest.transport.connection`` applies.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from xmlhttprequest.common.exceptions import (
    ProtocolError,
    RedirectLoopError,
    TransportError,
)
from xmlhttprequest.data_types import (
    ConnectionParams,
    RawResponse,
    TransportOptions,
)
from xmlhttprequest.transport.connection import (
    build_ssl_context,
    next_redirect,
)

logger = logging.getLogger(__name__)

# ValueError covers header values that cannot be encoded and unreadable TLS
# bundles.
TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError)


def client_kwargs(
    options: TransportOptions, params: ConnectionParams
) -> dict[str, Any]:
    """Keyword arguments for a dedicated httpx client."""
    kwargs: dict[str, Any] = {"follow_redirects": False, "timeout": None}
    if params.is_tls:
        kwargs["verify"] = build_ssl_context(options)
    if options.auto_unref:
        kwargs["limits"] = httpx.Limits(max_keepalive_connections=0)
    return kwargs


def header_value(value: str) -> str | bytes:
    """Encode a header value the way browsers send it.

    ASCII values pass through. Anything else is sent as latin-1 bytes;
    values outside latin-1 raise UnicodeEncodeError.
    """
    if value.isascii():
        return value
    return value.encode("latin-1")


def request_headers(
    options: TransportOptions, params: ConnectionParams
) -> dict[str, str | bytes]:
    headers: dict[str, str | bytes] = {
        name: header_value(value) for name, value in params.headers.items()
    }
    if options.auto_unref:
        headers["Connection"] = "close"
    return headers


def is_connection_reset(error: BaseException) -> bool:
    """Whether ``error`` means the peer dropped an idle pooled connection."""
    if isinstance(error, httpx.RemoteProtocolError):
        return True
    cause = error.__cause__ or error.__context__
    while cause is not None:
        if isinstance(cause, ConnectionResetError):
            return True
        cause = cause.__cause__ or cause.__context__
    return False


def transport_error(
    error: BaseException, params: ConnectionParams
) -> TransportError:
    return TransportError(
        str(error) or type(error).__name__,
        url=params.url,
        context={"error": type(error).__name__, "method": params.method},
    )


def response_head(
    response: httpx.Response, params: ConnectionParams
) -> RawResponse:
    """Status line and headers of ``response``; the body is left empty."""
    return RawResponse(
        status_code=response.status_code,
        reason=response.reason_phrase,
        headers={
            name.lower(): value for name, value in response.headers.items()
        },
        body=b"",
        url=params.url,
    )


class _RedirectTracker:
    """Counts hops and resolves the next request of a transfer."""

    def __init__(self, max_redirects: int) -> None:
        self.max_redirects = max_redirects
        self.hops = 0

    def follow(
        self, params: ConnectionParams, response: httpx.Response
    ) -> ConnectionParams | None:
        try:
            redirect = next_redirect(
                params, response.status_code, response.headers.get("location")
            )
        except ProtocolError as e:
            raise TransportError(e.message, url=params.url) from e
        if redirect is None:
            return None
        self.hops += 1
        if self.hops > self.max_redirects:
            raise RedirectLoopError(params.url, self.max_redirects)
        return redirect


class SyncRequestManager:
    """Performs blocking network transfers.

    Example::

        manager = SyncRequestManager(TransportOptions(ca="ca.pem"))
        raw = manager.fetch(params)
    """

    def __init__(self, options: TransportOptions | None = None) -> None:
        """Initialize the request manager.

        Args:
            options: Transport options. A synchronous ``httpx.Client``
                agent is used for connection reuse; any other agent is
                ignored.
        """
        self.options = options or TransportOptions()

    def _client(self, params: ConnectionParams) -> tuple[httpx.Client, bool]:
        """Return the client for ``params`` and whether we own it."""
        agent = self.options.agent
        if isinstance(agent, httpx.Client):
            return agent, False
        return httpx.Client(**client_kwargs(self.options, params)), True

    def fetch(self, params: ConnectionParams) -> RawResponse:
        """Fetch ``params`` to completion, following redirects.

        Returns:
            RawResponse with the complete body.

        Raises:
            TransportError: If the transfer fails.
            RedirectLoopError: If the redirect limit is exceeded.
        """
        redirects = _RedirectTracker(self.options.max_redirects)
        retried = False
        while True:
            try:
                client, owned = self._client(params)
            except TRANSPORT_ERRORS as e:
                raise transport_error(e, params) from e
            try:
                try:
                    request = client.build_request(
                        params.method,
                        params.url,
                        headers=request_headers(self.options, params),
                        content=params.body,
                    )
                    response = client.send(request)
                except TRANSPORT_ERRORS as e:
                    if not owned and not retried and is_connection_reset(e):
                        retried = True
                        logger.info(
                            f"Connection reset on reused connection to "
                            f"{params.netloc}, retrying once"
                        )
                        continue
                    raise transport_error(e, params) from e

                redirect = redirects.follow(params, response)
                if redirect is not None:
                    params = redirect
                    continue

                raw = response_head(response, params)
                raw.body = response.content
                return raw
            finally:
                if owned:
                    client.close()


class AsyncRequestManager:
    """Performs streaming network transfers on the running event loop.

    The body is delivered chunk by chunk through ``on_chunk`` so the caller
    can advance its state while the transfer is in flight.

    Example::

        manager = AsyncRequestManager(options)
        await manager.stream(params, on_response, on_chunk)
    """

    def __init__(self, options: TransportOptions | None = None) -> None:
        """Initialize the request manager.

        Args:
            options: Transport options. An ``httpx.AsyncClient`` agent is
                used for connection reuse; any other agent is ignored.
        """
        self.options = options or TransportOptions()

    def _client(
        self, params: ConnectionParams
    ) -> tuple[httpx.AsyncClient, bool]:
        agent = self.options.agent
        if isinstance(agent, httpx.AsyncClient):
            return agent, False
        return httpx.AsyncClient(**client_kwargs(self.options, params)), True

    async def stream(
        self,
        params: ConnectionParams,
        on_response: Callable[[RawResponse], None],
        on_chunk: Callable[[bytes], None],
    ) -> None:
        """Stream ``params`` to completion, following redirects.

        Args:
            params: The request to issue.
            on_response: Called once with the final response's status and
                headers (empty body) before any chunk.
            on_chunk: Called with each non-empty decoded body chunk.

        Raises:
            TransportError: If the transfer fails.
            RedirectLoopError: If the redirect limit is exceeded.
        """
        redirects = _RedirectTracker(self.options.max_redirects)
        retried = False
        while True:
            try:
                client, owned = self._client(params)
            except TRANSPORT_ERRORS as e:
                raise transport_error(e, params) from e
            try:
                try:
                    request = client.build_request(
                        params.method,
                        params.url,
                        headers=request_headers(self.options, params),
                        content=params.body,
                    )
                    response = await client.send(request, stream=True)
                except TRANSPORT_ERRORS as e:
                    if not owned and not retried and is_connection_reset(e):
                        retried = True
                        logger.info(
                            f"Connection reset on reused connection to "
                            f"{params.netloc}, retrying once"
                        )
                        continue
                    raise transport_error(e, params) from e

                try:
                    redirect = redirects.follow(params, response)
                    if redirect is not None:
                        params = redirect
                        continue

                    on_response(response_head(response, params))
                    async for chunk in response.aiter_bytes():
                        if chunk:
                            on_chunk(chunk)
                    return
                except TRANSPORT_ERRORS as e:
                    raise transport_error(e, params) from e
                finally:
                    await response.aclose()
            finally:
                if owned:
                    await client.aclose()
