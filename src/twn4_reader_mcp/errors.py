"""Exception hierarchy.

Transport failures, protocol status failures and short responses are kept
apart so callers can tell a busy port from a rejected command. Device fault
codes (``ReaderError``) are values returned by ``get_last_error`` and are
never raised.
"""

from __future__ import annotations


class TWN4Error(Exception):
    """Base class for every error raised by this package."""


class TransportError(TWN4Error):
    """The serial line failed: open, write, read or disconnect."""


class PortOpenError(TransportError):
    """The serial port could not be opened."""

    def __init__(self, port: str, message: str) -> None:
        super().__init__(f"Could not open {port}: {message}")
        self.port = port


class PortBusyError(PortOpenError):
    """Access to the port stayed denied after all open retries."""

    def __init__(self, port: str, attempts: int) -> None:
        super().__init__(port, f"access denied after {attempts} attempts")
        self.attempts = attempts


class ResponseTimeoutError(TransportError):
    """No response line arrived before the read timeout."""


class FrameDecodeError(TWN4Error):
    """A response line is not an even-length hex string."""


class ShortResponseError(TWN4Error):
    """The response ended before the requested field."""

    def __init__(self, wanted: int, remaining: int) -> None:
        super().__init__(
            f"Response too short: wanted {wanted} byte(s), {remaining} left"
        )
        self.wanted = wanted
        self.remaining = remaining


class FieldDecodeError(TWN4Error):
    """A response field does not hold the text it is read as."""


class ProtocolError(TWN4Error):
    """The reader answered with a non-zero Simple Protocol status byte."""

    def __init__(self, code) -> None:
        name = getattr(code, "name", None) or f"0x{int(code):02X}"
        super().__init__(f"Reader rejected command: {name}")
        self.code = code
