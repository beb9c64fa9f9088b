"""Saturn printer enums."""

from enum import Enum


class MachineStatus(Enum):
    """
    Represents the top-level state reported in ``CurrentStatus``.

    Attributes:
        READY: The printer is idle and accepts new commands.
        BUSY: The printer is printing or receiving a file.

    Example:
        >>> MachineStatus.from_int(1)
        <MachineStatus.BUSY: 1>

    """

    READY = 0
    BUSY = 1

    @classmethod
    def from_int(cls, status_int: int | None) -> "MachineStatus | None":
        """
        Convert an integer to a MachineStatus enum member.

        Returns:
            The matching member, or None if the value is not a known status.

        """
        try:
            return cls(status_int)
        except ValueError:
            return None


class FileTransferStatus(Enum):
    """
    Represents the printer side of a file transfer (``FileTransferInfo.Status``).

    Attributes:
        NONE: No transfer is running.
        DOWNLOADING: The printer is downloading the file.
        DONE: The file was downloaded and its MD5 verified.
        FAILED: The download or the verification failed.

    """

    NONE = 0
    DOWNLOADING = 1
    DONE = 2
    FAILED = 3

    @classmethod
    def from_int(cls, status_int: int | None) -> "FileTransferStatus | None":
        """Convert an integer to a FileTransferStatus, or None if unknown."""
        try:
            return cls(status_int)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        """Return True for statuses that end a transfer."""
        return self in (FileTransferStatus.DONE, FileTransferStatus.FAILED)


class PrintError(Enum):
    """
    Represents the error number carried in ``PrintInfo.ErrorNumber``.

    Attributes:
        NONE: No error has occurred.
        CHECK: File MD5 checksum check failed.
        FILEIO: An error occurred while reading the print file.
        INVALID_RESOLUTION: The file resolution does not match the printer.
        UNKNOWN_FORMAT: The printer does not recognize the file format.
        UNKNOWN_MODEL: The file was sliced for a different machine model.

    """

    NONE = 0
    CHECK = 1
    FILEIO = 2
    INVALID_RESOLUTION = 3
    UNKNOWN_FORMAT = 4
    UNKNOWN_MODEL = 5

    @classmethod
    def from_int(cls, error_int: int | None) -> "PrintError | None":
        """Convert an integer to a PrintError, or None if unknown."""
        try:
            return cls(error_int)
        except ValueError:
            return None


class SemanticState(Enum):
    """
    Stable lifecycle state derived from raw printer status codes.

    Attributes:
        IDLE: Ready, no job.
        RECEIVING_FILE: The printer is downloading an upload.
        PROCESSING_FILE: The printer finished downloading and is processing it.
        EXPOSING_LAYER: UV exposure of the current layer.
        RETRACTING: The build plate is lifting off the film.
        LOWERING: The build plate is lowering for the next layer.
        PRINTING: Busy printing with a sub-status outside the layer triad.
        PAUSED: The print is paused.
        COMPLETE: The print finished.
        ERROR: The printer reported a print error.
        UNKNOWN: The status could not be interpreted.

    """

    IDLE = "idle"
    RECEIVING_FILE = "receiving_file"
    PROCESSING_FILE = "processing_file"
    EXPOSING_LAYER = "exposing_layer"
    RETRACTING = "retracting"
    LOWERING = "lowering"
    PRINTING = "printing"
    PAUSED = "paused"
    COMPLETE = "complete"
    ERROR = "error"
    UNKNOWN = "unknown"

    @property
    def is_layer_cycle(self) -> bool:
        """Return True for the exposing/retracting/lowering triad."""
        return self in (
            SemanticState.EXPOSING_LAYER,
            SemanticState.RETRACTING,
            SemanticState.LOWERING,
        )

    @property
    def is_print_state(self) -> bool:
        """Return True for states that belong to a print job."""
        return self.is_layer_cycle or self in (
            SemanticState.PRINTING,
            SemanticState.PAUSED,
            SemanticState.COMPLETE,
            SemanticState.ERROR,
        )


class ConnectionState(Enum):
    """Lifecycle of the link to one printer."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class UploadState(Enum):
    """Lifecycle of one upload job."""

    PREPARING = "preparing"
    CHECKSUM_PENDING = "checksum_pending"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True once the job can no longer change."""
        return self in (UploadState.COMPLETED, UploadState.FAILED)
