"""Local file transport for ``file://`` URLs.

Files are read whole. The asynchronous variant reads on a worker thread so
the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from xmlhttprequest.common.exceptions import TransportError

logger = logging.getLogger(__name__)


def read_file(path: str) -> bytes:
    """Read a local file.

    Raises:
        TransportError: If the file cannot be read. Status is 0.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise TransportError(
            e.strerror or str(e),
            url=f"file://{path}",
            context={"errno": e.errno},
        ) from e
    logger.debug(f"Read {len(data)} bytes from {path}")
    return data


async def read_file_async(path: str) -> bytes:
    """Read a local file without blocking the event loop."""
    return await asyncio.to_thread(read_file, path)
