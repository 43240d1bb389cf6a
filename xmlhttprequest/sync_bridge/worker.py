"""Worker process for ProcessSyncBridge.

Usage::

    python -m xmlhttprequest.sync_bridge.worker REQUEST CONTENT SENTINEL

Reads the request file, performs the transfer, writes the content file and
finally removes the sentinel. The content file is written under a staging
name and moved into place so the bridge never sees a partial result.
"""

from __future__ import annotations

import sys
from pathlib import Path

from pydantic import ValidationError

from xmlhttprequest.common.exceptions import XHRException
from xmlhttprequest.sync_bridge.payload import (
    ERROR_MARKER,
    BridgeFailure,
    BridgeRequest,
    BridgeResponse,
    BridgeResult,
)
from xmlhttprequest.transport.request_manager import SyncRequestManager


def failure(kind: str, message: str, url: str | None = None) -> str:
    return ERROR_MARKER + BridgeFailure(
        kind=kind, message=message, url=url
    ).model_dump_json()


def perform(request_path: Path) -> str:
    """Perform the request described in ``request_path``.

    Returns:
        The content file text: a result envelope or an error marker.
    """
    try:
        request = BridgeRequest.model_validate_json(
            request_path.read_text("utf-8")
        )
    except (OSError, ValidationError) as e:
        return failure(type(e).__name__, str(e))

    params = request.to_params()
    try:
        raw = SyncRequestManager(request.to_options()).fetch(params)
    except XHRException as e:
        return failure(type(e).__name__, e.message, e.url or params.url)
    return BridgeResult(data=BridgeResponse.from_raw(raw)).model_dump_json(
        by_alias=True
    )


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 3:
        return 2
    request_path, content_path, sentinel_path = (Path(arg) for arg in args)

    content = perform(request_path)

    staging = content_path.with_name(content_path.name + ".tmp")
    staging.write_text(content, "utf-8")
    staging.replace(content_path)
    sentinel_path.unlink(missing_ok=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
