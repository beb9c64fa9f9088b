"""
Print file upload over the SDCP upload command.

The printer pulls the file from our HTTP file host after CMD 256 tells it
the URL, size and MD5. Progress comes from two sides: the file host reports
every chunk it has written, and status telemetry carries the printer's
FileTransferInfo with the final verdict.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from saturn_link.const import (
    CONF_CHUNK_TIMEOUT,
    CONF_VERIFY_TIMEOUT,
    DEFAULT_CHUNK_TIMEOUT,
    DEFAULT_VERIFY_TIMEOUT,
    SUPPORTED_EXTENSIONS,
)
from saturn_link.sdcp.checksum import async_file_md5
from saturn_link.sdcp.const import CMD_UPLOAD_FILE
from saturn_link.sdcp.exceptions import (
    CancelledByUser,
    IntegrityMismatch,
    ProtocolError,
    SaturnLinkError,
    TransportError,
    UnsupportedFileTypeError,
)
from saturn_link.sdcp.models.enums import FileTransferStatus, UploadState
from saturn_link.sdcp.models.upload import UploadJob, UploadProgressEvent

from .const import LOGGER

if TYPE_CHECKING:
    from saturn_link.sdcp.models.status import FileTransferInfo

    from .client import PrinterConnection
    from .file_server import HostedFile, SaturnFileHost

_CHUNK = "chunk"
_TRANSFER = "transfer"
_CANCEL = "cancel"


class UploadManager:
    """
    Runs one upload at a time over a PrinterConnection.

    Each upload is an async generator of UploadProgressEvent: one event per
    state change and one per acknowledged chunk. A failed upload ends the
    generator with the error after marking the job FAILED.
    """

    def __init__(
        self,
        connection: PrinterConnection,
        config: MappingProxyType[str, Any] = MappingProxyType({}),
        logger: Any = LOGGER,
    ) -> None:
        self.connection = connection
        self.config = config
        self.logger = logger
        self.job: UploadJob | None = None
        self._events: asyncio.Queue[tuple[str, Any]] | None = None
        self._cancelled = False

    @property
    def in_progress(self) -> bool:
        """Return True while a job is running."""
        return self.job is not None and not self.job.state.is_terminal

    def cancel(self) -> None:
        """Stop the running upload at its next wait."""
        if not self.in_progress:
            return
        self._cancelled = True
        if self._events is not None:
            self._events.put_nowait((_CANCEL, None))

    async def upload(
        self, path: str, *, auto_start: bool = False
    ) -> AsyncIterator[UploadProgressEvent]:
        """
        Upload path to the printer.

        Arguments:
            path: Local path of a .goo or .ctb file.
            auto_start: Start printing the file once the printer verified it.

        Raises:
            UnsupportedFileTypeError: If the file is not a print file.
            FileNotFoundError: If path does not exist.
            TransportError: On timeouts or if the transfer fails.
            IntegrityMismatch: If the printer rejects the checksum.
            CancelledByUser: If cancel() was called.

        """
        if self.in_progress:
            msg = "An upload is already in progress"
            raise SaturnLinkError(msg)

        job = UploadJob(path=path, total_bytes=0)
        self.job = job
        self._cancelled = False
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._events = queue
        host: SaturnFileHost | None = None
        hosted: HostedFile | None = None
        unsubscribe = None
        try:
            self._validate(job)
            yield job.progress()

            job.state = UploadState.CHECKSUM_PENDING
            yield job.progress()
            job.set_checksum(await async_file_md5(path))
            self.logger.debug("MD5 of %s is %s", job.filename, job.checksum)

            host = await self.connection.ensure_file_host()
            hosted = await host.register_file(
                path,
                md5=job.checksum or "",
                listener=lambda _length, sent: queue.put_nowait((_CHUNK, sent)),
            )
            unsubscribe = self.connection.subscribe_file_transfer(
                lambda info: queue.put_nowait((_TRANSFER, info))
            )
            if self._cancelled:
                msg = f"Upload of {job.filename} cancelled"
                raise CancelledByUser(msg)

            job.state = UploadState.TRANSFERRING
            await self.connection.send_command(
                CMD_UPLOAD_FILE,
                {
                    "Check": 0,
                    "CleanCache": 1,
                    "Compress": 0,
                    "FileSize": job.total_bytes,
                    "Filename": job.filename,
                    "MD5": job.checksum,
                    "URL": host.url_for(hosted),
                },
            )
            self.logger.info("Printer is downloading %s", job.filename)
            yield job.progress()

            async for event in self._follow_transfer(job, queue):
                yield event

            job.state = UploadState.COMPLETED
            self.logger.info("Upload of %s verified by the printer", job.filename)
            yield job.progress()
        except (asyncio.CancelledError, GeneratorExit):
            job.fail(CancelledByUser(f"Upload of {job.filename} cancelled"))
            raise
        except Exception as e:
            job.fail(e)
            self.logger.warning("Upload of %s failed: %s", job.filename, e)
            raise
        finally:
            self._events = None
            if unsubscribe is not None:
                unsubscribe()
            if host is not None and hosted is not None:
                await host.unregister_file(hosted.name)

        if auto_start:
            self.logger.info("Starting print of %s", job.filename)
            await self.connection.start_print(job.filename)

    def _validate(self, job: UploadJob) -> None:
        ext = os.path.splitext(job.path)[1].lower()  # noqa: PTH122
        if ext not in SUPPORTED_EXTENSIONS:
            msg = f"Unsupported file type {ext or job.filename!r}, expected .goo or .ctb"
            raise UnsupportedFileTypeError(msg)
        if not os.path.isfile(job.path):  # noqa: PTH113
            msg = f"File does not exist: {job.path}"
            raise FileNotFoundError(msg)
        job.total_bytes = os.path.getsize(job.path)  # noqa: PTH202
        if job.total_bytes == 0:
            msg = f"{job.filename} is empty"
            raise UnsupportedFileTypeError(msg)

    async def _follow_transfer(
        self, job: UploadJob, queue: asyncio.Queue[tuple[str, Any]]
    ) -> AsyncIterator[UploadProgressEvent]:
        """Yield chunk progress until the printer reports its verdict."""
        chunk_timeout = self.config.get(CONF_CHUNK_TIMEOUT, DEFAULT_CHUNK_TIMEOUT)
        verify_timeout = self.config.get(CONF_VERIFY_TIMEOUT, DEFAULT_VERIFY_TIMEOUT)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + chunk_timeout
        # Printer-side activity for this transfer; verdicts before it are stale
        active = False
        verified = False

        while True:
            try:
                kind, value = await asyncio.wait_for(
                    queue.get(), timeout=max(0.0, deadline - loop.time())
                )
            except TimeoutError as e:
                phase = (
                    "the next chunk"
                    if job.state is UploadState.TRANSFERRING
                    else "the printer to verify"
                )
                msg = f"Timed out waiting for {phase} of {job.filename}"
                raise TransportError(msg) from e

            if kind == _CANCEL:
                await self._abort(job)

            elif kind == _CHUNK:
                active = True
                job.advance(value)
                yield job.progress()
                if job.bytes_sent < job.total_bytes:
                    deadline = loop.time() + chunk_timeout
                    continue
                job.state = UploadState.VERIFYING
                yield job.progress()
                if verified:
                    return
                deadline = loop.time() + verify_timeout

            elif kind == _TRANSFER:
                info: FileTransferInfo = value
                status = info.transfer_status
                if status is FileTransferStatus.DOWNLOADING:
                    active = True
                    continue
                if status is None or not status.is_terminal:
                    continue
                if not active:
                    self.logger.debug("Ignoring stale transfer status %s", info)
                    continue
                if info.filename and os.path.basename(info.filename) != job.filename:  # noqa: PTH119
                    self.logger.debug("Ignoring transfer status for %s", info.filename)
                    continue
                if status is FileTransferStatus.DONE:
                    if job.state is UploadState.VERIFYING:
                        return
                    # Remaining chunk reports are still queued
                    verified = True
                    continue
                self._raise_failure(job, info)

    @staticmethod
    def _raise_failure(job: UploadJob, info: FileTransferInfo) -> None:
        delivered = job.bytes_sent >= job.total_bytes or (
            info.download_offset >= job.total_bytes > 0
        )
        if delivered:
            msg = f"Printer rejected the checksum of {job.filename}"
            raise IntegrityMismatch(msg)
        msg = (
            f"Printer aborted the transfer of {job.filename} at "
            f"{info.download_offset}/{job.total_bytes} bytes"
        )
        raise TransportError(msg)

    async def _abort(self, job: UploadJob) -> None:
        self.logger.info("Cancelling upload of %s", job.filename)
        try:
            await self.connection.terminate_transfer(job.filename)
        except (TransportError, ProtocolError) as e:
            self.logger.warning("Printer did not stop the transfer (%s), disconnecting", e)
            await self.connection.disconnect()
        msg = f"Upload of {job.filename} cancelled"
        raise CancelledByUser(msg)
