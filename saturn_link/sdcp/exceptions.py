"""Custom exceptions for the Saturn link client."""


class SaturnLinkError(Exception):
    """Base class for other exceptions"""


class TransportError(SaturnLinkError):
    """Connection refused, lost or timed out."""


class NotConnectedError(TransportError):
    """Exception to indicate that the printer is not connected."""


class CommandTimeoutError(TransportError):
    """The printer did not answer a command in time."""


class ProtocolError(SaturnLinkError):
    """Malformed or unexpected printer message."""


class IntegrityMismatch(SaturnLinkError):
    """The printer rejected the uploaded file's checksum."""


class CancelledByUser(SaturnLinkError):
    """The operation was stopped on request. Not a failure."""


class UnsupportedFileTypeError(SaturnLinkError):
    """Only sliced .goo and .ctb files can be uploaded."""
