"""Request method and header policy.

Some headers are owned by the transport and some methods are never sent
by a browser. ``user-agent`` is banned by browsers but allowed here.
"""

FORBIDDEN_REQUEST_HEADERS: frozenset[str] = frozenset(
    {
        "accept-charset",
        "accept-encoding",
        "access-control-request-headers",
        "access-control-request-method",
        "connection",
        "content-length",
        "content-transfer-encoding",
        "cookie",
        "cookie2",
        "date",
        "expect",
        "host",
        "keep-alive",
        "origin",
        "referer",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "via",
    }
)

FORBIDDEN_REQUEST_METHODS: frozenset[str] = frozenset(
    {"TRACE", "TRACK", "CONNECT"}
)

# Matched case-insensitively and sent upper-cased.
NORMALIZED_METHODS: frozenset[str] = frozenset(
    {"DELETE", "GET", "HEAD", "OPTIONS", "POST", "PUT"}
)


def is_allowed_header(name: str | None, disable_check: bool = False) -> bool:
    """Check whether a request header may be set by the caller.

    Args:
        name: Header name, any case.
        disable_check: Skip the forbidden-header list.

    Returns:
        False for empty names and forbidden headers, otherwise True.
    """
    if disable_check:
        return True
    return bool(name) and name.lower() not in FORBIDDEN_REQUEST_HEADERS


def is_allowed_method(method: str | None) -> bool:
    """Check whether a request method may be used with ``open()``."""
    return bool(method) and method.upper() not in FORBIDDEN_REQUEST_METHODS


def normalize_method(method: str) -> str:
    if method.upper() in NORMALIZED_METHODS:
        return method.upper()
    return method
