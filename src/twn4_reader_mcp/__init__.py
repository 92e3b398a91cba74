"""Client library and MCP server for Elatec TWN4 readers (Simple Protocol)."""

from .errors import (
    FieldDecodeError,
    FrameDecodeError,
    PortBusyError,
    PortOpenError,
    ProtocolError,
    ResponseTimeoutError,
    ShortResponseError,
    TransportError,
    TWN4Error,
)
from .reader import TWN4Reader
from .identification import classify, identify
