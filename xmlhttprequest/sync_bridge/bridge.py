"""Blocking execution of a network request.

A synchronous send must not return until the whole response is available.
Two strategies are provided:

1. DirectSyncBridge performs a blocking httpx call on the caller's thread.
2. ProcessSyncBridge hands the request to an isolated worker process and
   rendezvouses with it through the filesystem:

   - the bridge writes the request file and creates the sentinel file
   - the worker performs the transfer, writes the content file, then
     removes the sentinel
   - the bridge spin-waits for the sentinel to disappear, then reads and
     deletes the content file

   The files are named with the host PID and live in a fresh directory
   only the owner can enter. The request file holds credentials, so it is
   created with mode 0600. The directory and every file in it are removed
   before ``execute`` returns, whether the transfer succeeded or not.

Neither strategy can be interrupted: ``abort()`` during a blocking send
takes effect only after it returns.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from tempfile import gettempdir, mkdtemp

from pydantic import ValidationError

from xmlhttprequest.common.exceptions import SyncBridgeError
from xmlhttprequest.data_types import (
    ConnectionParams,
    RawResponse,
    SyncBridgeKind,
    TransportOptions,
)
from xmlhttprequest.sync_bridge.payload import (
    ERROR_MARKER,
    BridgeFailure,
    BridgeRequest,
    BridgeResult,
)
from xmlhttprequest.transport.request_manager import SyncRequestManager

logger = logging.getLogger(__name__)

WORKER_MODULE = "xmlhttprequest.sync_bridge.worker"

FILE_PREFIX = ".xmlhttprequest"


class SyncBridge(ABC):
    """Executes a request while blocking the calling thread."""

    def __init__(self, options: TransportOptions | None = None) -> None:
        self.options = options or TransportOptions()

    @abstractmethod
    def execute(self, params: ConnectionParams) -> RawResponse:
        """Perform ``params`` and return the complete response.

        Raises:
            TransportError: If the transfer fails.
        """


class DirectSyncBridge(SyncBridge):
    """Blocking httpx call on the caller's thread."""

    def execute(self, params: ConnectionParams) -> RawResponse:
        return SyncRequestManager(self.options).fetch(params)


@dataclass(frozen=True)
class BridgeFiles:
    """The PID-scoped files of one process-bridge transfer."""

    request: Path
    sentinel: Path
    content: Path

    @classmethod
    def for_process(cls, workdir: Path, pid: int) -> BridgeFiles:
        return cls(
            request=workdir / f"{FILE_PREFIX}-request-{pid}.json",
            sentinel=workdir / f"{FILE_PREFIX}-sync-{pid}",
            content=workdir / f"{FILE_PREFIX}-content-{pid}",
        )

    @property
    def staging(self) -> Path:
        """Where the worker writes before moving into ``content``."""
        return self.content.with_name(self.content.name + ".tmp")

    def remove_all(self) -> None:
        for path in (self.request, self.sentinel, self.content, self.staging):
            path.unlink(missing_ok=True)


def write_private(path: Path, text: str) -> None:
    """Create ``path`` readable by the owner only.

    Fails if anything, including a symlink, already exists at ``path``.
    """
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)


def decode_result(raw: str) -> RawResponse:
    """Decode the content file written by the worker.

    Raises:
        SyncBridgeError: For an error marker or a malformed artifact.
    """
    if raw.startswith(ERROR_MARKER):
        try:
            failure = BridgeFailure.model_validate_json(
                raw[len(ERROR_MARKER) :]
            )
        except ValidationError as e:
            raise SyncBridgeError(
                "Sync worker reported an unreadable error"
            ) from e
        raise SyncBridgeError(
            failure.message,
            url=failure.url,
            context={"error": failure.kind},
        )

    try:
        result = BridgeResult.model_validate_json(raw)
    except ValidationError as e:
        raise SyncBridgeError(
            "Sync worker produced a malformed result",
            context={"errors": e.error_count()},
        ) from e
    return result.data.to_raw()


class ProcessSyncBridge(SyncBridge):
    """Worker process plus filesystem handshake.

    Example::

        bridge = ProcessSyncBridge(options, workdir=Path("/tmp"))
        raw = bridge.execute(params)
    """

    def __init__(
        self,
        options: TransportOptions | None = None,
        workdir: Path | None = None,
        poll_interval: float = 0.0,
    ) -> None:
        """Initialize the bridge.

        Args:
            options: Transport options. TLS materials are forwarded to the
                worker; the ``agent`` cannot cross the process boundary.
            workdir: Parent of the private directory holding the handshake
                files. Defaults to ``options.bridge_workdir`` or the
                system temp directory.
            poll_interval: Seconds slept between sentinel checks. 0 only
                yields the CPU.
        """
        super().__init__(options)
        self.workdir = Path(
            workdir or self.options.bridge_workdir or gettempdir()
        )
        self.poll_interval = poll_interval

    def execute(self, params: ConnectionParams) -> RawResponse:
        request = BridgeRequest.from_params(params, self.options)
        try:
            private = Path(
                mkdtemp(prefix=f"{FILE_PREFIX}-", dir=self.workdir)
            )
        except OSError as e:
            raise SyncBridgeError(
                f"Sync bridge I/O failed: {e}", url=params.url
            ) from e
        files = BridgeFiles.for_process(private, os.getpid())
        try:
            write_private(files.request, request.model_dump_json())
            write_private(files.sentinel, "")
            worker = self._spawn(files)
            self._wait(worker, files)
            content = self._read_content(files)
        except OSError as e:
            raise SyncBridgeError(
                f"Sync bridge I/O failed: {e}", url=params.url
            ) from e
        finally:
            files.remove_all()
            shutil.rmtree(private, ignore_errors=True)
        return decode_result(content)

    def _spawn(self, files: BridgeFiles) -> subprocess.Popen[bytes]:
        logger.debug(f"Starting sync worker in {self.workdir}")
        return subprocess.Popen(
            [
                sys.executable,
                "-m",
                WORKER_MODULE,
                str(files.request),
                str(files.content),
                str(files.sentinel),
            ],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
        )

    def _wait(
        self, worker: subprocess.Popen[bytes], files: BridgeFiles
    ) -> None:
        """Spin until the worker removes the sentinel."""
        while files.sentinel.exists():
            if worker.poll() is not None and files.sentinel.exists():
                raise SyncBridgeError(
                    f"Sync worker exited with status {worker.returncode} "
                    "before finishing"
                )
            time.sleep(self.poll_interval)
        worker.wait()

    def _read_content(self, files: BridgeFiles) -> str:
        if not files.content.exists():
            raise SyncBridgeError("Sync worker produced no result")
        content = files.content.read_text("utf-8")
        files.content.unlink()
        return content


def create_bridge(options: TransportOptions) -> SyncBridge:
    """Return the bridge selected by ``options.sync_bridge``."""
    if options.sync_bridge is SyncBridgeKind.PROCESS:
        return ProcessSyncBridge(options)
    return DirectSyncBridge(options)
