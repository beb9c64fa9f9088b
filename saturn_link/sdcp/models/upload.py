"""Upload job models."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .enums import UploadState


@dataclass(frozen=True)
class UploadProgressEvent:
    """Progress of an upload after a state change or an acknowledged chunk."""

    bytes_sent: int
    total_bytes: int
    state: UploadState
    filename: str = ""

    @property
    def percent(self) -> int:
        """Progress in whole percent."""
        if self.total_bytes <= 0:
            return 100 if self.state is UploadState.COMPLETED else 0
        return int(self.bytes_sent / self.total_bytes * 100)


@dataclass
class UploadJob:
    """
    One transfer of a print file to the printer.

    Attributes:
        path (str): Local path of the file.
        total_bytes (int): File size.
        bytes_sent (int): Bytes acknowledged so far.
        state (UploadState): Current job state.
        error (Exception | None): Why the job failed.

    """

    path: str
    total_bytes: int
    bytes_sent: int = 0
    state: UploadState = UploadState.PREPARING
    error: Exception | None = None
    _checksum: str | None = field(default=None, repr=False)

    @property
    def filename(self) -> str:
        """Name the file gets on the printer."""
        return os.path.basename(self.path)  # noqa: PTH119

    @property
    def checksum(self) -> str | None:
        """Hex MD5 of the file, None until computed."""
        return self._checksum

    def set_checksum(self, checksum: str) -> None:
        """Record the checksum. It can only be set once per job."""
        if self._checksum is not None:
            msg = "Checksum already set for this upload"
            raise ValueError(msg)
        self._checksum = checksum

    def advance(self, bytes_sent: int) -> None:
        """Record acknowledged bytes, never past total_bytes or backwards."""
        self.bytes_sent = max(self.bytes_sent, min(bytes_sent, self.total_bytes))

    def fail(self, error: Exception) -> None:
        """Mark the job failed with error."""
        self.state = UploadState.FAILED
        self.error = error

    def progress(self) -> UploadProgressEvent:
        """Return an event describing the current job state."""
        return UploadProgressEvent(
            bytes_sent=self.bytes_sent,
            total_bytes=self.total_bytes,
            state=self.state,
            filename=self.filename,
        )
