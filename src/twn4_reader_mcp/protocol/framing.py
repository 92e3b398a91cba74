"""Simple Protocol line codec.

Every command and response travels as one ASCII line::

    +--------------------------------------+----+
    | two uppercase hex digits per byte    | CR |
    +--------------------------------------+----+

There is no prefix, length field or checksum. The first decoded byte of a
response is the protocol status.
"""

from __future__ import annotations

import binascii

from ..errors import FrameDecodeError

LINE_TERMINATOR = "\r"


def encode(data: bytes) -> str:
    """Encode raw bytes as an uppercase hex line body (no terminator)."""
    return bytes(data).hex().upper()


def to_wire(data: bytes) -> bytes:
    """Encode a command into the bytes written to the serial port."""
    return (encode(data) + LINE_TERMINATOR).encode("ascii")


def decode(line: str | bytes) -> bytes:
    """Decode a response line back into raw bytes.

    Hex digits are accepted in either case. Surrounding whitespace and the
    line terminator are ignored.

    Raises:
        FrameDecodeError: If the line has an odd number of digits or
            contains non-hex characters.
    """
    if isinstance(line, (bytes, bytearray)):
        try:
            line = bytes(line).decode("ascii")
        except UnicodeDecodeError as e:
            raise FrameDecodeError(f"Non-ASCII response line: {line!r}") from e

    body = line.strip()
    if len(body) % 2:
        raise FrameDecodeError(f"Odd-length response line: {body!r}")
    try:
        return binascii.unhexlify(body)
    except (binascii.Error, ValueError) as e:
        raise FrameDecodeError(f"Invalid hex in response line: {body!r}") from e
