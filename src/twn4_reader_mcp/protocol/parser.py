"""Forward-only cursor over a decoded response.

Responses are positional: the caller knows the field order of each function
and reads the fields one after another. Every read checks the remaining
length first and raises ``ShortResponseError`` without moving the cursor,
so a truncated response never yields padded or partial values.
"""

from __future__ import annotations

from ..errors import FieldDecodeError, ShortResponseError


class ResponseParser:
    """Typed, bounds-checked reader over response bytes.

    Usage::

        parser = ResponseParser(response)
        status = parser.byte()
        found = parser.bool()
        uid = parser.var_bytes()
    """

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = bytes(data)
        self._pos = offset

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, count: int) -> bytes:
        if count < 0:
            raise ValueError(f"Byte count must be >= 0, got {count}")
        if count > self.remaining:
            raise ShortResponseError(count, self.remaining)
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def byte(self) -> int:
        return self._take(1)[0]

    def uint16(self) -> int:
        """Read a little-endian 16-bit word."""
        return int.from_bytes(self._take(2), "little")

    def uint32(self) -> int:
        """Read a little-endian 32-bit word."""
        return int.from_bytes(self._take(4), "little")

    def bool(self) -> bool:
        return self._take(1)[0] != 0

    def fixed_bytes(self, count: int) -> bytes:
        """Read exactly ``count`` bytes."""
        return self._take(count)

    def var_bytes(self) -> bytes:
        """Read a length byte followed by that many bytes.

        The length byte is only consumed when the whole field is present.
        """
        if self.remaining < 1:
            raise ShortResponseError(1, self.remaining)
        length = self._data[self._pos]
        if 1 + length > self.remaining:
            raise ShortResponseError(1 + length, self.remaining)
        self._pos += 1
        return self._take(length)

    def ascii_string(self) -> str:
        start = self._pos
        raw = self.var_bytes()
        try:
            return raw.decode("ascii")
        except UnicodeDecodeError as e:
            self._pos = start
            raise FieldDecodeError(f"Non-ASCII string field: {raw.hex(' ')}") from e

    def rest(self) -> bytes:
        """Consume and return everything after the cursor."""
        return self._take(self.remaining)

    def __repr__(self) -> str:
        return (
            f"ResponseParser(pos={self._pos}, "
            f"data={self._data.hex(' ') if self._data else '(empty)'})"
        )
