"""Mock server for the request object tests.

The server publishes a few Bug Civil Court cases in several formats (text,
JSON, XML, HTML), a binary fixture, and endpoints that exercise the
transport: echo, redirects, streamed and slow responses, cookies and
arbitrary status codes.
"""

import asyncio
import struct
from dataclasses import asdict, dataclass

from aiohttp import web

# Four little-endian float32 values: 1.0, 5.0, 6.0, 7.0.
FLOAT_FIXTURE: bytes = struct.pack("<4f", 1.0, 5.0, 6.0, 7.0)
FLOAT_FIXTURE_HEX = "0000 803f 0000 a040 0000 c040 0000 e040"

STREAM_CHUNKS: list[bytes] = [b"first chunk;", b"second chunk;", b"third"]

SLOW_DELAY = 2.0


@dataclass
class MockCase:
    """A case in the Bug Civil Court."""

    docket: str
    case_name: str
    judge: str
    status: str


CASES: list[MockCase] = [
    MockCase(
        docket="BCC-2024-001",
        case_name="Beetle v. Ant Colony",
        judge="Hon. Mantis Green",
        status="Pending",
    ),
    MockCase(
        docket="BCC-2024-002",
        case_name="Butterfly v. Caterpillar",
        judge="Hon. Dragonfly Swift",
        status="Closed",
    ),
    MockCase(
        docket="BCC-2024-003",
        case_name="Spider v. Fly",
        judge="Hon. Mantis Green",
        status="Pending",
    ),
]


def get_case_by_docket(docket: str) -> MockCase | None:
    for case in CASES:
        if case.docket == docket:
            return case
    return None


def generate_cases_xml() -> str:
    items = "".join(
        f'<case docket="{case.docket}"><name>{case.case_name}</name></case>'
        for case in CASES
    )
    return f'<?xml version="1.0"?><cases>{items}</cases>'


def generate_cases_html() -> str:
    """HTML that is not well-formed XML (unclosed tags)."""
    rows = "".join(
        f"<tr><td class=docket>{case.docket}<td>{case.case_name}"
        for case in CASES
    )
    return f"<html><body><h1>Bug Civil Court</h1><table>{rows}</table>"


async def handle_text(request: web.Request) -> web.Response:
    return web.Response(text="Hello from the Bug Civil Court")


async def handle_utf8(request: web.Request) -> web.StreamResponse:
    """Stream multi-byte UTF-8 one byte at a time."""
    body = "Café des Abeilles 🐝".encode()
    response = web.StreamResponse(
        headers={"Content-Type": "text/plain; charset=utf-8"}
    )
    response.content_length = len(body)
    await response.prepare(request)
    for index in range(len(body)):
        await response.write(body[index : index + 1])
    await response.write_eof()
    return response


async def handle_case_api(request: web.Request) -> web.Response:
    case = get_case_by_docket(request.match_info["docket"])
    if case is None:
        return web.json_response({"error": "Case not found"}, status=404)
    return web.json_response(asdict(case))


async def handle_cases_xml(request: web.Request) -> web.Response:
    return web.Response(
        text=generate_cases_xml(), content_type="application/xml"
    )


async def handle_cases_html(request: web.Request) -> web.Response:
    return web.Response(text=generate_cases_html(), content_type="text/html")


async def handle_floats(request: web.Request) -> web.Response:
    return web.Response(
        body=FLOAT_FIXTURE, content_type="application/octet-stream"
    )


async def handle_echo(request: web.Request) -> web.Response:
    """Return the request as JSON: method, headers, body, query."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "headers": {
                name.lower(): value for name, value in request.headers.items()
            },
            "body": body.decode("utf-8", errors="replace"),
            "query": request.query_string,
        }
    )


async def handle_redirect(request: web.Request) -> web.Response:
    status = int(request.match_info["status"])
    return web.Response(
        status=status, headers={"Location": f"/echo?from={status}"}
    )


async def handle_redirect_loop(request: web.Request) -> web.Response:
    return web.Response(status=302, headers={"Location": "/redirect-loop"})


async def handle_stream(request: web.Request) -> web.StreamResponse:
    response = web.StreamResponse(headers={"Content-Type": "text/plain"})
    response.content_length = sum(len(chunk) for chunk in STREAM_CHUNKS)
    await response.prepare(request)
    for chunk in STREAM_CHUNKS:
        await response.write(chunk)
        await asyncio.sleep(0.02)
    await response.write_eof()
    return response


async def handle_slow(request: web.Request) -> web.Response:
    await asyncio.sleep(SLOW_DELAY)
    return web.Response(text="finally")


async def handle_cookies(request: web.Request) -> web.Response:
    response = web.Response(text="cookies", headers={"X-Bug": "beetle"})
    response.set_cookie("session", "bug-session-token-abc123")
    return response


async def handle_status(request: web.Request) -> web.Response:
    status = int(request.match_info["code"])
    return web.Response(status=status, text=f"status {status}")


def create_app() -> web.Application:
    """Create the aiohttp application with all routes.

    Returns:
        Configured aiohttp Application.
    """
    app = web.Application()
    app.router.add_get("/text", handle_text)
    app.router.add_get("/utf8", handle_utf8)
    app.router.add_get("/api/cases/{docket}", handle_case_api)
    app.router.add_get("/cases.xml", handle_cases_xml)
    app.router.add_get("/cases.html", handle_cases_html)
    app.router.add_get("/floats.bin", handle_floats)
    app.router.add_route("*", "/echo", handle_echo)
    app.router.add_route("*", "/redirect/{status}", handle_redirect)
    app.router.add_get("/redirect-loop", handle_redirect_loop)
    app.router.add_get("/stream", handle_stream)
    app.router.add_get("/slow", handle_slow)
    app.router.add_get("/cookies", handle_cookies)
    app.router.add_get("/status/{code}", handle_status)
    return app
