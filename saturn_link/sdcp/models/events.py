"""Events delivered to the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from saturn_link.sdcp.translator import StatusTranslation

    from .enums import ConnectionState
    from .session import PrintSessionSnapshot


@dataclass(frozen=True)
class ConnectionStateChanged:
    """The link to the printer changed state."""

    state: ConnectionState
    address: str | None = None


@dataclass(frozen=True)
class SessionStateChanged:
    """A telemetry tick was translated; session is None outside a print."""

    translation: StatusTranslation
    session: PrintSessionSnapshot | None = None


@dataclass(frozen=True)
class FileReadyToPrint:
    """The printer finished receiving a file and is idle."""

    filename: str


@dataclass(frozen=True)
class ModelDetected:
    """The printer reported its machine model."""

    model: str


@dataclass(frozen=True)
class TerminalError:
    """An operation ended with an error."""

    operation: str
    error: Exception

    @property
    def message(self) -> str:
        """Error text for display."""
        return str(self.error) or type(self.error).__name__
