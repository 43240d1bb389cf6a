"""Data types shared by the request object and its transports.

This module defines the enums and dataclasses that flow between the
lifecycle state machine, the transport dispatcher, the response
materializer and the synchronous bridge:

1. ReadyState and ResponseType - the enumerations browsers expose
2. RequestSettings - what ``open()`` captured, immutable once sent
3. TransportOptions - connection reuse, TLS materials and bridge selection
4. ConnectionParams and RawResponse - one network round trip
5. Blob - the host's binary large object abstraction
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlunsplit

if TYPE_CHECKING:
    import httpx

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "python-xmlhttprequest",
    "Accept": "*/*",
}

DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}

DEFAULT_MAX_REDIRECTS = 20


class ReadyState(IntEnum):
    """Lifecycle stage of a request."""

    UNSENT = 0
    OPENED = 1
    HEADERS_RECEIVED = 2
    LOADING = 3
    DONE = 4


class ResponseType(Enum):
    """Caller-declared shape of the response value.

    Values:
        DEFAULT: Same as TEXT.
        TEXT: UTF-8 decoded text.
        JSON: Text parsed as JSON.
        DOCUMENT: Text parsed into an lxml document.
        ARRAYBUFFER: Exactly-sized bytes.
        BLOB: Bytes wrapped in a Blob.
    """

    DEFAULT = ""
    TEXT = "text"
    JSON = "json"
    DOCUMENT = "document"
    ARRAYBUFFER = "arraybuffer"
    BLOB = "blob"

    @property
    def is_text(self) -> bool:
        """Whether the body is accumulated as decoded text."""
        return self in (
            ResponseType.DEFAULT,
            ResponseType.TEXT,
            ResponseType.JSON,
            ResponseType.DOCUMENT,
        )


class SyncBridgeKind(Enum):
    """How a synchronous send blocks the caller."""

    DIRECT = "direct"
    PROCESS = "process"


@dataclass(frozen=True)
class RequestSettings:
    """Settings captured by ``open()``.

    Attributes:
        method: Request method, standard methods upper-cased.
        url: The URL exactly as given to ``open()``.
        is_async: Whether ``send()`` returns before the transfer completes.
        user: Optional basic-auth user name.
        password: Optional basic-auth password.
    """

    method: str
    url: str
    is_async: bool = True
    user: str | None = None
    password: str | None = None


@dataclass
class TransportOptions:
    """Options controlling how requests reach the network.

    Attributes:
        agent: Shared httpx client used as the connection-reuse handle.
            ``None`` creates a dedicated client for every transfer.
        pfx: Path to a PKCS#12 bundle holding the client key and
            certificate chain (HTTPS only).
        cert: Path to a PEM client certificate (HTTPS only).
        key: Path to the private key for ``cert``.
        passphrase: Password for ``key`` or ``pfx``.
        ca: Path to a PEM bundle of trusted certificate authorities.
        ciphers: OpenSSL cipher list string.
        reject_unauthorized: Verify the peer certificate. Default: True.
        auto_unref: Detach the connection from keep-alive once the
            transfer completes.
        disable_header_check: Allow forbidden request headers.
        sync_bridge: Blocking strategy for synchronous sends.
        bridge_workdir: Directory for the process bridge's files. None uses
            the system temp directory.
        max_redirects: Redirect hops followed before failing.
    """

    agent: httpx.Client | httpx.AsyncClient | None = None
    pfx: str | None = None
    cert: str | None = None
    key: str | None = None
    passphrase: str | None = None
    ca: str | None = None
    ciphers: str | None = None
    reject_unauthorized: bool = True
    auto_unref: bool = False
    disable_header_check: bool = False
    sync_bridge: SyncBridgeKind = SyncBridgeKind.DIRECT
    bridge_workdir: Path | None = None
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    def tls_payload(self) -> dict[str, Any]:
        """Return the TLS materials as a JSON-serializable dict."""
        return {
            "pfx": self.pfx,
            "cert": self.cert,
            "key": self.key,
            "passphrase": self.passphrase,
            "ca": self.ca,
            "ciphers": self.ciphers,
            "reject_unauthorized": self.reject_unauthorized,
            "auto_unref": self.auto_unref,
            "max_redirects": self.max_redirects,
        }


@dataclass(frozen=True)
class ConnectionParams:
    """One network request, ready to be issued.

    Attributes:
        scheme: ``http`` or ``https``.
        host: Host name without port.
        port: TCP port.
        path: Path plus query string.
        method: Request method.
        headers: Request headers, case preserved.
        body: Request body, None for no body.
    """

    scheme: str
    host: str
    port: int
    path: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    @property
    def is_tls(self) -> bool:
        return self.scheme == "https"

    @property
    def netloc(self) -> str:
        if self.port == DEFAULT_PORTS.get(self.scheme):
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        path, _, query = self.path.partition("?")
        return urlunsplit((self.scheme, self.netloc, path or "/", query, ""))

    def redirected(
        self,
        scheme: str,
        host: str,
        port: int,
        path: str,
        method: str,
    ) -> ConnectionParams:
        """Return the parameters for the next redirect hop.

        The headers are carried over; only ``Host`` follows the new
        location. Switching to GET drops the body and its length.
        """
        headers = {
            name: value
            for name, value in self.headers.items()
            if name.lower() != "host"
        }
        body = self.body
        if method != self.method and method == "GET":
            body = None
            headers = {
                name: value
                for name, value in headers.items()
                if name.lower() != "content-length"
            }
        next_params = replace(
            self,
            scheme=scheme,
            host=host,
            port=port,
            path=path,
            method=method,
            headers=headers,
            body=body,
        )
        return replace(
            next_params, headers={"Host": next_params.netloc, **headers}
        )


@dataclass
class RawResponse:
    """A completed network response.

    Attributes:
        status_code: HTTP status code.
        reason: Reason phrase.
        headers: Response headers with lower-cased names.
        body: Raw body bytes.
        url: Final URL after any redirects.
    """

    status_code: int
    reason: str
    headers: dict[str, str]
    body: bytes
    url: str


@dataclass(frozen=True)
class Blob:
    """Immutable binary payload with a media type."""

    data: bytes
    type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def bytes(self) -> bytes:
        return self.data

    def text(self, encoding: str = "utf-8") -> str:
        return self.data.decode(encoding, errors="replace")
