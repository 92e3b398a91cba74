"""Status codes reported by the reader.

Two separate channels exist. ``ResponseError`` is byte 0 of every response
and says whether the Simple Protocol layer accepted the call. ``ReaderError``
is the firmware's last-error register, fetched with its own call.
"""

from __future__ import annotations

from enum import IntEnum


class ResponseError(IntEnum):
    """Simple Protocol status byte."""

    NONE = 0
    UNKNOWN_FUNCTION = 1
    MISSING_PARAMETER = 2
    UNUSED_PARAMETERS = 3
    INVALID_FUNCTION = 4
    PARSER_ERROR = 5


class ReaderError(IntEnum):
    """Firmware fault codes, partitioned by range."""

    NONE = 0

    # General
    OUT_OF_MEMORY = 1
    IS_ALREADY_INIT = 2
    NOT_INIT = 3
    IS_ALREADY_OPEN = 4
    NOT_OPEN = 5
    RANGE = 6
    PARAMETER = 7
    GENERAL = 8
    NOT_SUPPORTED = 9
    STATE = 10
    COMPATIBILITY = 11
    DATA = 12

    # Storage
    UNKNOWN_STORAGE_ID = 100
    WRONG_INDEX = 101
    FLASH_ERASE = 102
    FLASH_WRITE = 103
    SECTOR_NOT_FOUND = 104
    STORAGE_FULL = 105
    STORAGE_INVALID = 106
    TRANSACTION_LIMIT = 107

    # File system
    UNKNOWN_FS = 200
    FILE_NOT_FOUND = 201
    FILE_ALREADY_EXISTS = 202
    END_OF_FILE = 203
    STORAGE_NOT_FOUND = 204
    STORAGE_ALREADY_MOUNTED = 205
    ACCESS_DENIED = 206
    FILE_CORRUPT = 207
    INVALID_FILE_ENV = 208
    INVALID_FILE_ID = 209
    RESOURCE_LIMIT = 210

    # I2C
    TIMEOUT = 300
    PEC = 301
    OVERRUN = 302
    ACK_FAILURE = 303
    ARBITRATION_LOST = 304
    BUS_ERROR = 305

    @property
    def category(self) -> str:
        return error_category(self.value)


_CATEGORIES = (
    (range(0, 1), "none"),
    (range(1, 100), "general"),
    (range(100, 200), "storage"),
    (range(200, 300), "filesystem"),
    (range(300, 400), "i2c"),
)


def error_category(code: int) -> str:
    """Name the range a reader error code belongs to."""
    for codes, name in _CATEGORIES:
        if code in codes:
            return name
    return "unknown"


def reader_error_from_code(code: int) -> ReaderError | int:
    """Map a raw last-error value to ``ReaderError``; unknown codes stay ints."""
    try:
        return ReaderError(code)
    except ValueError:
        return code
