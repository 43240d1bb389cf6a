"""URL dispatch and connection parameters.

This module turns the settings captured by ``open()`` into something a
transport can execute:

- ``parse_target`` picks the transport for a URL (network or local file)
- ``build_connection_params`` assembles host, port, path, headers and body
- ``build_ssl_context`` turns TLS materials (PEM files or a PKCS#12
  bundle) into an ``ssl.SSLContext``
- ``next_redirect`` applies the redirect policy to a response
"""

from __future__ import annotations

import base64
import logging
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from urllib.parse import urljoin, urlsplit
from urllib.request import url2pathname

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from xmlhttprequest.common.exceptions import ProtocolError
from xmlhttprequest.data_types import (
    DEFAULT_PORTS,
    Blob,
    ConnectionParams,
    RequestSettings,
    TransportOptions,
)

logger = logging.getLogger(__name__)

REDIRECT_STATUSES: frozenset[int] = frozenset({302, 303, 307})

DEFAULT_CONTENT_TYPE = "text/plain;charset=UTF-8"

BODYLESS_METHODS: frozenset[str] = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class Target:
    """A URL resolved to a transport.

    Attributes:
        scheme: ``http``, ``https`` or ``file``.
        host: Host name, empty for files.
        port: TCP port, 0 for files.
        path: Path plus query for network URLs, a filesystem path for files.
    """

    scheme: str
    host: str
    port: int
    path: str

    @property
    def is_local(self) -> bool:
        return self.scheme == "file"


def parse_target(url: str) -> Target:
    """Resolve a URL to a transport target.

    A URL without a scheme is served by ``http`` on ``localhost``.

    Raises:
        ProtocolError: If the scheme is not http, https, file or empty, or
            the port is not a number in 0-65535.
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ProtocolError("Invalid URL", url=url) from e
    scheme = parts.scheme.lower()

    if scheme == "file":
        return Target(
            scheme="file", host="", port=0, path=url2pathname(parts.path)
        )

    if scheme in ("http", "https"):
        host = parts.hostname or ""
    elif scheme == "":
        scheme = "http"
        host = "localhost"
    else:
        raise ProtocolError("Protocol not supported.", url=url)

    try:
        port = parts.port or DEFAULT_PORTS[scheme]
    except ValueError as e:
        raise ProtocolError("Invalid port", url=url) from e
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return Target(scheme=scheme, host=host, port=port, path=path)


def encode_body(data: object) -> bytes | None:
    """Encode a request body to bytes.

    ``str`` is encoded as UTF-8; bytes-like objects and ``Blob`` are
    copied. Any other object is sent as its string form.
    """
    if data is None:
        return None
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, Blob):
        return data.data
    return str(data).encode("utf-8")


def basic_auth_header(user: str, password: str | None) -> str:
    credentials = f"{user}:{password or ''}".encode()
    return "Basic " + base64.b64encode(credentials).decode("ascii")


def build_connection_params(
    settings: RequestSettings,
    target: Target,
    headers: dict[str, str],
    data: object = None,
) -> ConnectionParams:
    """Assemble the parameters of a network request.

    Args:
        settings: What ``open()`` captured.
        target: The resolved network target.
        headers: The request's header table. It is not modified.
        data: The body passed to ``send()``.

    Returns:
        ConnectionParams with Host, Authorization, Content-Length and
        Content-Type filled in as needed.
    """
    request_headers = dict(headers)

    host = target.host
    if target.port != DEFAULT_PORTS[target.scheme]:
        host = f"{host}:{target.port}"
    request_headers["Host"] = host

    if settings.user:
        request_headers["Authorization"] = basic_auth_header(
            settings.user, settings.password
        )

    body: bytes | None = None
    if settings.method not in BODYLESS_METHODS:
        body = encode_body(data)
        if body:
            request_headers["Content-Length"] = str(len(body))
            if not any(
                name.lower() == "content-type" for name in request_headers
            ):
                request_headers["Content-Type"] = DEFAULT_CONTENT_TYPE
        else:
            body = None
            if settings.method == "POST":
                # Some servers reject a bodiless POST without a length.
                request_headers["Content-Length"] = "0"

    return ConnectionParams(
        scheme=target.scheme,
        host=target.host,
        port=target.port,
        path=target.path,
        method=settings.method,
        headers=request_headers,
        body=body,
    )


def load_pkcs12_chain(
    context: ssl.SSLContext, path: str, passphrase: str | None = None
) -> None:
    """Load the key and certificates of a PKCS#12 bundle into ``context``.

    ``ssl`` only reads PEM files, so the chain is written to a private
    temporary directory for the duration of the load.

    Raises:
        ValueError: If the bundle cannot be decrypted or holds no key and
            certificate.
    """
    password = passphrase.encode("utf-8") if passphrase else None
    key, cert, extra = pkcs12.load_key_and_certificates(
        Path(path).read_bytes(), password
    )
    if key is None or cert is None:
        raise ValueError(f"{path} holds no private key and certificate")

    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    for certificate in (cert, *extra):
        pem += certificate.public_bytes(serialization.Encoding.PEM)

    with TemporaryDirectory() as directory:
        chain = Path(directory) / "chain.pem"
        fd = os.open(chain, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)
        context.load_cert_chain(chain)


def build_ssl_context(options: TransportOptions) -> ssl.SSLContext:
    """Build an SSL context from the TLS materials in ``options``."""
    context = ssl.create_default_context(cafile=options.ca)
    if not options.reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if options.pfx:
        load_pkcs12_chain(context, options.pfx, options.passphrase)
    if options.cert:
        context.load_cert_chain(
            options.cert, keyfile=options.key, password=options.passphrase
        )
    if options.ciphers:
        context.set_ciphers(options.ciphers)
    return context


def next_redirect(
    params: ConnectionParams, status_code: int, location: str | None
) -> ConnectionParams | None:
    """Apply the redirect policy to a response.

    302, 303 and 307 re-issue the request to ``Location``. 303 switches to
    GET; the others keep the method.

    Returns:
        Parameters for the next hop, or None when the response is final.
    """
    if status_code not in REDIRECT_STATUSES or not location:
        return None

    target = parse_target(urljoin(params.url, location))
    if target.is_local:
        raise ProtocolError(
            "Redirect to a file URL is not allowed", url=location
        )

    method = "GET" if status_code == 303 else params.method
    logger.info(
        f"Following {status_code} redirect: {params.method} {params.url} "
        f"-> {method} {location}"
    )
    return params.redirected(
        scheme=target.scheme,
        host=target.host,
        port=target.port,
        path=target.path,
        method=method,
    )
