"""Status telemetry models for Saturn printers."""

from __future__ import annotations

import json
import math
from typing import Any

from .enums import FileTransferStatus, MachineStatus, PrintError


def _as_int(value: Any) -> int | None:
    """Return value as an int, or None if it is not a finite number."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, float):
        # json.loads accepts NaN and Infinity
        return int(value) if math.isfinite(value) else None
    return None


class PrintInfo:
    """
    Represents information about a print job.

    Attributes:
        status (int | None): Raw printing sub-status.
        current_layer (int): Current printing layer.
        total_layers (int): Total number of layers, 0 when unknown.
        current_ticks (int | None): Elapsed print time (ms).
        total_ticks (int | None): Estimated total print time (ms).
        filename (str): Print file name.
        error_number (int): Raw error number.
        error (PrintError | None): Decoded error number.
        task_id (str | None): Current task id.

    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        """Initialize a new PrintInfo object."""
        if not isinstance(data, dict):
            data = {}
        self.status: int | None = _as_int(data.get("Status"))
        self.current_layer: int = max(0, _as_int(data.get("CurrentLayer")) or 0)
        self.total_layers: int = max(0, _as_int(data.get("TotalLayer")) or 0)
        self.current_ticks: int | None = _as_int(data.get("CurrentTicks"))
        self.total_ticks: int | None = _as_int(data.get("TotalTicks"))
        self.filename: str = data.get("Filename") or ""
        self.error_number: int = _as_int(data.get("ErrorNumber")) or 0
        self.error: PrintError | None = PrintError.from_int(self.error_number)
        self.task_id: str | None = data.get("TaskId")


class FileTransferInfo:
    """
    Represents the printer side of a file download.

    Attributes:
        status (int | None): Raw transfer status.
        download_offset (int): Bytes the printer has received.
        file_total_size (int): Expected size in bytes.
        filename (str): Name of the file being transferred.

    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        """Initialize a new FileTransferInfo object."""
        if not isinstance(data, dict):
            data = {}
        self.status: int | None = _as_int(data.get("Status"))
        self.download_offset: int = _as_int(data.get("DownloadOffset")) or 0
        self.file_total_size: int = _as_int(data.get("FileTotalSize")) or 0
        self.filename: str = data.get("Filename") or ""

    @property
    def transfer_status(self) -> FileTransferStatus | None:
        """Decoded transfer status."""
        return FileTransferStatus.from_int(self.status)

    @property
    def percent(self) -> int | None:
        """Download progress in percent, or None when the size is unknown."""
        if self.file_total_size <= 0:
            return None
        return int(self.download_offset / self.file_total_size * 100)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return (
            f"FileTransferInfo(status={self.status}, "
            f"offset={self.download_offset}/{self.file_total_size}, "
            f"filename={self.filename!r})"
        )


class PrinterStatus:
    """
    Represents one status telemetry tick.

    Attributes:
        current_status (int | None): Raw ``CurrentStatus`` value.
        machine_status (MachineStatus | None): Decoded ``CurrentStatus``.
        previous_status (int): The previous status of the machine.
        print_info (PrintInfo): Information about the current print job.
        file_transfer_info (FileTransferInfo): Printer side of an upload.
        has_file_transfer_info (bool): True if the tick carried transfer data.

    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        """
        Initialize a new PrinterStatus object from a dictionary.

        Accepts the MQTT envelope (``{"Data": {"Status": ...}}``), the
        ``{"Status": ...}`` form or the bare status fields.
        """
        if not isinstance(data, dict):
            data = {}
        if isinstance(data.get("Data"), dict) and "Status" in data["Data"]:
            data = data["Data"]
        status = data.get("Status", data)
        if not isinstance(status, dict):
            status = {}

        current = status.get("CurrentStatus")
        if isinstance(current, list):
            current = current[0] if len(current) == 1 else None
        self.current_status: int | None = _as_int(current)
        self.machine_status: MachineStatus | None = MachineStatus.from_int(
            self.current_status
        )
        self.previous_status: int = _as_int(status.get("PreviousStatus")) or 0

        self.print_info = PrintInfo(status.get("PrintInfo"))
        self.has_file_transfer_info: bool = isinstance(
            status.get("FileTransferInfo"), dict
        )
        self.file_transfer_info = FileTransferInfo(status.get("FileTransferInfo"))

    @classmethod
    def from_json(cls, json_string: str) -> PrinterStatus:
        """
        Create a PrinterStatus object from a JSON string.

        Invalid JSON gives an empty status rather than an error.
        """
        try:
            data = json.loads(json_string)
        except json.JSONDecodeError:
            data = {}
        return cls(data)
