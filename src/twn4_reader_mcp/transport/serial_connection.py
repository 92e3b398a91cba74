"""Serial transport to a TWN4 reader running the Simple Protocol.

The reader is a half-duplex request/response device on one serial line
(9600-8-N-1, CR-terminated hex lines). By default every call opens the port,
exchanges one line pair and closes it again, so a stuck handle never outlives
a single call. ``with session:`` keeps the port open across several calls.

Opening retries only when access is denied (another process holds the port);
any other failure is raised immediately.
"""

from __future__ import annotations

import errno
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import serial

from ..errors import PortBusyError, PortOpenError, ResponseTimeoutError, TransportError
from ..protocol.framing import LINE_TERMINATOR, decode, encode, to_wire

logger = logging.getLogger(__name__)

BAUDRATE = 9600
TIMEOUT_MS = 2000
OPEN_RETRIES = 3
RETRY_DELAY_MS = 1000

_TERMINATOR = LINE_TERMINATOR.encode("ascii")
_ACCESS_DENIED_ERRNOS = {errno.EACCES, errno.EBUSY, errno.EAGAIN}


@dataclass
class SerialSettings:
    """Line and retry settings for one reader."""

    baudrate: int = BAUDRATE
    timeout_ms: int = TIMEOUT_MS
    open_retries: int = OPEN_RETRIES
    retry_delay_ms: int = RETRY_DELAY_MS


class SerialPort(Protocol):
    """What the session needs from a serial port.

    ``open`` raises ``PermissionError`` when access is denied and another
    ``OSError`` for every other failure.
    """

    def open(self) -> None: ...

    def close(self) -> None: ...

    def reset_input_buffer(self) -> None: ...

    def write_line(self, line: bytes) -> None: ...

    def read_line(self) -> bytes: ...


def _is_access_denied(exc: OSError) -> bool:
    if isinstance(exc, PermissionError) or exc.errno in _ACCESS_DENIED_ERRNOS:
        return True
    # pyserial on Windows only keeps the message text
    text = str(exc)
    return "Access is denied" in text or "PermissionError" in text


class PySerialPort:
    """``SerialPort`` backed by pyserial, 8 data bits, no parity, 1 stop bit."""

    def __init__(self, port: str, settings: SerialSettings) -> None:
        self._port = port
        self._settings = settings
        self._serial: serial.Serial | None = None

    def open(self) -> None:
        timeout = self._settings.timeout_ms / 1000
        try:
            self._serial = serial.Serial(
                port=self._port,
                baudrate=self._settings.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout,
                write_timeout=timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
                exclusive=True,
            )
        except serial.SerialException as e:
            if _is_access_denied(e):
                raise PermissionError(e.errno, str(e)) from e
            raise

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            finally:
                self._serial = None

    def reset_input_buffer(self) -> None:
        self._require_open().reset_input_buffer()

    def write_line(self, line: bytes) -> None:
        self._require_open().write(line)

    def read_line(self) -> bytes:
        return self._require_open().read_until(_TERMINATOR)

    def _require_open(self) -> serial.Serial:
        if self._serial is None:
            raise serial.SerialException(f"Port {self._port} is not open")
        return self._serial


PortFactory = Callable[[str, SerialSettings], SerialPort]


class SerialSession:
    """Owns the serial port of one reader for the duration of each call.

    Usage::

        session = SerialSession("/dev/ttyACM0")
        response = session.call(bytes([0x05, 0x00, 0xFF]))

        with session:  # keep the port open for a burst of calls
            session.call(...)
            session.call(...)

    A session must not be used from several threads at once; use one session
    per physical reader.
    """

    def __init__(
        self,
        port: str,
        settings: SerialSettings | None = None,
        port_factory: PortFactory = PySerialPort,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._port_name = port
        self._settings = settings or SerialSettings()
        self._port_factory = port_factory
        self._sleep = sleep
        self._held: SerialPort | None = None

    @property
    def port(self) -> str:
        return self._port_name

    @property
    def settings(self) -> SerialSettings:
        return self._settings

    @property
    def is_open(self) -> bool:
        """True while a persistent (``with``) session holds the port."""
        return self._held is not None

    def open(self) -> SerialPort:
        """Acquire the port, retrying while access is denied.

        Raises:
            PortBusyError: Access stayed denied through every retry.
            PortOpenError: The port failed to open for any other reason.
        """
        attempts = 1 + self._settings.open_retries
        for attempt in range(1, attempts + 1):
            port = self._port_factory(self._port_name, self._settings)
            try:
                port.open()
            except PermissionError as e:
                if attempt == attempts:
                    logger.debug("Access to %s denied: %s", self._port_name, e)
                    break
                logger.warning(
                    "Access to %s denied, retry %d/%d in %d ms",
                    self._port_name,
                    attempt,
                    self._settings.open_retries,
                    self._settings.retry_delay_ms,
                )
                self._sleep(self._settings.retry_delay_ms / 1000)
            except OSError as e:
                raise PortOpenError(self._port_name, str(e)) from e
            else:
                logger.debug("Opened %s", self._port_name)
                return port
        raise PortBusyError(self._port_name, attempts)

    def call(self, command: bytes) -> bytes:
        """Send one command and return the decoded response bytes.

        Raises:
            TransportError: Open, write or read failed, or no response line
                arrived before the timeout.
            FrameDecodeError: The response line is not valid hex.
        """
        if self._held is not None:
            return self._exchange(self._held, command)

        port = self.open()
        try:
            return self._exchange(port, command)
        finally:
            self._release(port)

    def _exchange(self, port: SerialPort, command: bytes) -> bytes:
        logger.debug("TX %s", encode(command))
        try:
            port.reset_input_buffer()
            port.write_line(to_wire(command))
            line = port.read_line()
        except OSError as e:
            raise TransportError(f"I/O error on {self._port_name}: {e}") from e

        if not line.endswith(_TERMINATOR):
            raise ResponseTimeoutError(
                f"No response from {self._port_name} within "
                f"{self._settings.timeout_ms} ms"
                + (f" (partial line {line!r})" if line else "")
            )
        response = decode(line)
        logger.debug("RX %s", encode(response))
        return response

    def _release(self, port: SerialPort) -> None:
        try:
            port.close()
        except OSError as e:
            logger.warning("Error closing %s: %s", self._port_name, e)
        else:
            logger.debug("Closed %s", self._port_name)

    def close(self) -> None:
        """Release a port held by a persistent session."""
        if self._held is not None:
            port, self._held = self._held, None
            self._release(port)

    def __enter__(self) -> SerialSession:
        if self._held is None:
            self._held = self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
