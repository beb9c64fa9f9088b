"""SDCP models, translation and checksums for Saturn printers."""

from .const import DEBUG, LOGGER
from .exceptions import (
    CancelledByUser,
    CommandTimeoutError,
    IntegrityMismatch,
    NotConnectedError,
    ProtocolError,
    SaturnLinkError,
    TransportError,
    UnsupportedFileTypeError,
)

__all__ = [
    "DEBUG",
    "LOGGER",
    "CancelledByUser",
    "CommandTimeoutError",
    "IntegrityMismatch",
    "NotConnectedError",
    "ProtocolError",
    "SaturnLinkError",
    "TransportError",
    "UnsupportedFileTypeError",
]
