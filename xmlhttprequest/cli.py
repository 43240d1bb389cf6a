"""xmlhttprequest CLI: fetch a URL through the request object.

Usage:
    xmlhttprequest fetch https://example.com/        # Print the body
    xmlhttprequest fetch URL --include               # With status, headers
    xmlhttprequest fetch file:///tmp/data.bin --response-type arraybuffer --hex
    xmlhttprequest fetch URL --sync --bridge process # Blocking, via worker
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import click
from lxml import etree

from xmlhttprequest.common.exceptions import XHRException
from xmlhttprequest.data_types import (
    Blob,
    ResponseType,
    SyncBridgeKind,
    TransportOptions,
)
from xmlhttprequest.xhr import XMLHttpRequest


def hex_dump(data: bytes) -> str:
    """Format bytes as space-separated groups of two bytes.

    Example::

        >>> hex_dump(bytes([0, 0, 0x80, 0x3F]))
        '0000 803f'
    """
    return " ".join(
        data[offset : offset + 2].hex() for offset in range(0, len(data), 2)
    )


def parse_header(raw: str) -> tuple[str, str]:
    """Split a ``"Name: value"`` option into its parts."""
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(
            f"Invalid header '{raw}'. Expected format: 'Name: value'"
        )
    return name.strip(), value.strip()


def render_body(xhr: XMLHttpRequest, as_hex: bool) -> str:
    """Render the response of a finished request for the terminal."""
    response: Any = xhr.response
    if isinstance(response, Blob):
        response = response.bytes()
    if isinstance(response, bytes):
        if as_hex:
            return hex_dump(response)
        if xhr.response_type == ResponseType.DOCUMENT.value:
            if xhr.response_xml is None:
                return ""
            return etree.tostring(xhr.response_xml, encoding="unicode")
        return response.decode("utf-8", errors="replace")
    if xhr.response_type == ResponseType.JSON.value:
        return json.dumps(response, indent=2)
    if as_hex:
        return hex_dump(str(response).encode("utf-8"))
    return str(response)


async def _send_async(xhr: XMLHttpRequest, data: str | None) -> None:
    finished = asyncio.Event()
    xhr.add_event_listener("loadend", lambda event: finished.set())
    xhr.send(data)
    await finished.wait()


@click.group()
@click.version_option(package_name="xmlhttprequest")
def cli() -> None:
    """xmlhttprequest: browser-style requests from the command line."""


@cli.command()
@click.argument("url")
@click.option(
    "-X",
    "--method",
    default="GET",
    show_default=True,
    help="Request method.",
)
@click.option(
    "-H",
    "--header",
    "headers",
    multiple=True,
    help="Request header as 'Name: value'. Repeatable.",
)
@click.option("-d", "--data", default=None, help="Request body.")
@click.option(
    "--response-type",
    type=click.Choice([t.value for t in ResponseType if t.value]),
    default="text",
    show_default=True,
    help="Declared response type.",
)
@click.option("--sync", is_flag=True, help="Use a synchronous send.")
@click.option(
    "--bridge",
    type=click.Choice([kind.value for kind in SyncBridgeKind]),
    default=SyncBridgeKind.DIRECT.value,
    show_default=True,
    help="How a synchronous send blocks.",
)
@click.option("-u", "--user", default=None, help="Basic-auth user.")
@click.option("-p", "--password", default=None, help="Basic-auth password.")
@click.option(
    "--cacert",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="PEM bundle of trusted CAs.",
)
@click.option(
    "--cert",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="PEM client certificate.",
)
@click.option(
    "--key",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Private key for --cert.",
)
@click.option(
    "--pfx",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="PKCS#12 bundle with the client key and certificates.",
)
@click.option(
    "--passphrase", default=None, help="Password for --key or --pfx."
)
@click.option(
    "-k", "--insecure", is_flag=True, help="Skip TLS peer verification."
)
@click.option(
    "--disable-header-check",
    is_flag=True,
    help="Allow forbidden request headers.",
)
@click.option(
    "-i", "--include", is_flag=True, help="Print status and headers."
)
@click.option("--hex", "as_hex", is_flag=True, help="Hex dump the body.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def fetch(
    url: str,
    method: str,
    headers: tuple[str, ...],
    data: str | None,
    response_type: str,
    sync: bool,
    bridge: str,
    user: str | None,
    password: str | None,
    cacert: str | None,
    cert: str | None,
    key: str | None,
    pfx: str | None,
    passphrase: str | None,
    insecure: bool,
    disable_header_check: bool,
    include: bool,
    as_hex: bool,
    verbose: bool,
) -> None:
    """Fetch URL and print the response.

    URL may be http, https or file. Exits with status 1 when the request
    fails or the HTTP status is 400 or above.

    \b
    Examples:
        xmlhttprequest fetch https://example.com/api --response-type json
        xmlhttprequest fetch URL -X POST -d '{"a": 1}' \\
            -H 'Content-Type: application/json'
        xmlhttprequest fetch file:///tmp/floats.bin \\
            --response-type arraybuffer --hex
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    options = TransportOptions(
        ca=cacert,
        cert=cert,
        key=key,
        pfx=pfx,
        passphrase=passphrase,
        reject_unauthorized=not insecure,
        disable_header_check=disable_header_check,
        sync_bridge=SyncBridgeKind(bridge),
    )
    xhr = XMLHttpRequest(options)

    try:
        xhr.open(method, url, not sync, user, password)
        xhr.response_type = response_type
        for raw in headers:
            name, value = parse_header(raw)
            if not xhr.set_request_header(name, value):
                click.echo(f"Refused to set header '{name}'", err=True)
        if sync:
            xhr.send(data)
        else:
            asyncio.run(_send_async(xhr, data))
    except XHRException as e:
        raise click.ClickException(str(e)) from e

    if include:
        click.echo(f"{xhr.status} {xhr.status_text}")
        all_headers = xhr.get_all_response_headers()
        if all_headers:
            click.echo(all_headers)
        click.echo()

    if xhr.error is not None:
        click.echo(f"Error: {xhr.error.message}", err=True)
        raise SystemExit(1)

    click.echo(render_body(xhr, as_hex))
    if xhr.status >= 400:
        raise SystemExit(1)
