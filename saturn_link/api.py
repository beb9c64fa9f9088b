"""API client for Saturn printers."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Union

from .const import (
    DEFAULT_BROADCAST_ADDRESS,
    DISCOVERY_PORT,
    DISCOVERY_TIMEOUT,
    LOGGER,
)
from .discovery import discover_printers
from .mqtt.client import PrinterConnection
from .mqtt.upload import UploadManager
from .sdcp.exceptions import CancelledByUser, NotConnectedError, SaturnLinkError
from .sdcp.models.enums import FileTransferStatus, MachineStatus, SemanticState, UploadState
from .sdcp.models.events import (
    ConnectionStateChanged,
    FileReadyToPrint,
    ModelDetected,
    SessionStateChanged,
    TerminalError,
)
from .sdcp.models.printer import PrinterIdentity
from .sdcp.models.session import PrintSession
from .sdcp.models.upload import UploadProgressEvent
from .sdcp.translator import translate

if TYPE_CHECKING:
    from logging import Logger

    from .sdcp.models.enums import ConnectionState
    from .sdcp.models.session import PrintSessionSnapshot
    from .sdcp.models.status import PrinterStatus
    from .sdcp.models.upload import UploadJob
    from .sdcp.translator import StatusTranslation

Event = Union[
    ConnectionStateChanged,
    UploadProgressEvent,
    SessionStateChanged,
    FileReadyToPrint,
    ModelDetected,
    TerminalError,
]
Listener = Callable[[Event], None]


class SaturnApiClient:
    """
    Commands and events for one Saturn printer.

    The presentation layer calls the coroutine methods and receives events
    through the callbacks registered with add_listener. Failed operations
    raise to the caller and are also reported as TerminalError events.
    """

    def __init__(
        self,
        config: MappingProxyType[str, Any] = MappingProxyType({}),
        logger: Logger = LOGGER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SaturnApiClient.

        Arguments:
            config: Ports and timeouts, keyed by the CONF_* constants.
            logger: The logger to use.
            clock: Monotonic clock used for session timing.

        """
        self.config = config
        self._logger = logger
        self._clock = clock
        self.connection: PrinterConnection | None = None
        self.uploads: UploadManager | None = None
        self.session: PrintSession | None = None
        self._listeners: list[Listener] = []
        self._connection_hooks: list[Callable[[], None]] = []
        self._last_translation: StatusTranslation | None = None
        self._last_filename: str | None = None
        self._ready_filename: str | None = None

    @property
    def is_connected(self) -> bool:
        """Return True if a printer is connected."""
        return self.connection is not None and self.connection.is_connected

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register callback for all events. Returns a callable that removes it."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    async def scan_printers(
        self,
        timeout: float = DISCOVERY_TIMEOUT,
        broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
        port: int = DISCOVERY_PORT,
    ) -> list[PrinterIdentity]:
        """Discover printers on the local network."""
        try:
            return await discover_printers(
                timeout, broadcast_address, port, logger=self._logger
            )
        except SaturnLinkError as e:
            self._emit(TerminalError("scan", e))
            raise

    async def connect(self, printer: str | PrinterIdentity) -> PrinterConnection:
        """
        Connect to a discovered printer or a manually entered address.

        Any existing connection is closed first.
        """
        identity = (
            PrinterIdentity.from_address(printer)
            if isinstance(printer, str)
            else printer
        )
        if self.connection is not None:
            await self.disconnect()

        connection = PrinterConnection(identity, self.config, self._logger)

        def on_state(state: ConnectionState) -> None:
            self._emit(ConnectionStateChanged(state, identity.address))

        self._connection_hooks = [
            connection.add_state_listener(on_state),
            connection.add_status_listener(self._on_status),
            connection.add_model_listener(lambda model: self._emit(ModelDetected(model))),
        ]
        self.connection = connection
        self.uploads = UploadManager(connection, self.config, self._logger)
        try:
            await connection.connect()
        except SaturnLinkError as e:
            self._detach()
            await connection.disconnect()
            self._emit(TerminalError("connect", e))
            raise
        return connection

    async def disconnect(self) -> None:
        """Close the connection and end the print session."""
        if self.uploads is not None:
            self.uploads.cancel()
        if self.connection is not None:
            await self.connection.disconnect()
        self._detach()

    async def upload_file(self, path: str, *, auto_start: bool = False) -> UploadJob:
        """
        Upload a print file, emitting an UploadProgressEvent per step.

        Returns the finished job. Failures raise after the job was marked
        FAILED; cancellation raises CancelledByUser.
        """
        self._require_connection()
        if self.uploads is None:
            msg = "Printer not connected"
            raise NotConnectedError(msg)
        uploads = self.uploads
        try:
            async for event in uploads.upload(path, auto_start=auto_start):
                self._emit(event)
        except CancelledByUser:
            if uploads.job is not None:
                self._emit(uploads.job.progress())
            raise
        except (SaturnLinkError, OSError) as e:
            job = uploads.job
            operation = "upload"
            if job is not None:
                if job.state is UploadState.COMPLETED:
                    operation = "start_print"
                else:
                    self._emit(job.progress())
            self._emit(TerminalError(operation, e))
            raise
        job = uploads.job
        assert job is not None  # noqa: S101
        self._last_filename = job.filename
        return job

    def cancel_upload(self) -> None:
        """Stop the running upload, if any."""
        if self.uploads is not None:
            self.uploads.cancel()

    async def start_print(self, filename: str | None = None) -> None:
        """
        Start printing a file on the printer.

        Arguments:
            filename: File to print, defaults to the last uploaded or
                received file.

        """
        filename = filename or self._last_filename
        if not filename:
            msg = "No file to print"
            raise ValueError(msg)
        await self._command("start_print", lambda c: c.start_print(filename))

    async def pause_print(self) -> None:
        """Pause the current print."""
        await self._command("pause_print", lambda c: c.print_pause())

    async def resume_print(self) -> None:
        """Resume the paused print."""
        await self._command("resume_print", lambda c: c.print_resume())

    async def stop_print(self) -> None:
        """Stop the current print."""
        await self._command("stop_print", lambda c: c.print_stop())

    def get_session_state(self) -> PrintSessionSnapshot | None:
        """Return a snapshot of the current print session, or None."""
        if self.session is None:
            return None
        return self.session.snapshot()

    def acknowledge_session(self) -> None:
        """Dismiss a finished or failed session."""
        if self.session is None:
            return
        self._logger.debug("Session acknowledged in state %s", self.session.semantic_state)
        self.session = None
        if self._last_translation is not None:
            self._emit(SessionStateChanged(self._last_translation, None))

    async def _command(
        self, operation: str, call: Callable[[PrinterConnection], Awaitable[None]]
    ) -> None:
        connection = self._require_connection()
        try:
            await call(connection)
        except SaturnLinkError as e:
            self._emit(TerminalError(operation, e))
            raise

    def _require_connection(self) -> PrinterConnection:
        if self.connection is None or not self.connection.is_connected:
            msg = "Printer not connected"
            raise NotConnectedError(msg)
        return self.connection

    def _detach(self) -> None:
        for remove in self._connection_hooks:
            remove()
        self._connection_hooks = []
        self.connection = None
        self.uploads = None
        self.session = None
        self._last_translation = None
        self._ready_filename = None

    def _emit(self, event: Event) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                self._logger.exception("Exception in event listener for %s", event)

    def _on_status(self, status: PrinterStatus) -> None:
        translation = translate(status)
        self._last_translation = translation
        session = self._update_session(translation, status)
        self._emit(
            SessionStateChanged(translation, session.snapshot() if session else None)
        )
        self._check_file_ready(status)

    def _update_session(
        self, translation: StatusTranslation, status: PrinterStatus
    ) -> PrintSession | None:
        state = translation.state
        session = self.session
        if (
            session is not None
            and session.semantic_state is SemanticState.COMPLETE
            and state.is_layer_cycle
        ):
            self._logger.info("New print started, replacing the completed session")
            session = None
        if session is None:
            if not state.is_print_state:
                return None
            session = PrintSession(clock=self._clock, logger=self._logger)
            self.session = session
        session.update(translation, status)
        return session

    def _check_file_ready(self, status: PrinterStatus) -> None:
        if not status.has_file_transfer_info:
            return
        info = status.file_transfer_info
        transfer_status = info.transfer_status
        if transfer_status is FileTransferStatus.DOWNLOADING:
            self._ready_filename = None
            return
        if (
            transfer_status is FileTransferStatus.DONE
            and status.machine_status is MachineStatus.READY
            and info.filename
            and info.filename != self._ready_filename
        ):
            self._ready_filename = info.filename
            self._last_filename = info.filename
            self._emit(FileReadyToPrint(info.filename))
