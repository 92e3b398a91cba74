"""Tests for the serial session: open retries, per-call lifetime, timeouts."""

import errno

import pytest
import serial

from conftest import FakePort, SleepRecorder, make_session
from twn4_reader_mcp.errors import (
    FrameDecodeError,
    PortBusyError,
    PortOpenError,
    ResponseTimeoutError,
    TransportError,
)
from twn4_reader_mcp.transport.serial_connection import (
    PySerialPort,
    SerialSession,
    SerialSettings,
    _is_access_denied,
)


def _denied():
    return PermissionError(errno.EACCES, "Permission denied")


def test_call_round_trip():
    """A call writes one CR-terminated hex line and decodes the reply."""
    port = FakePort(["0001"])
    session = make_session(port)
    assert session.call(bytes([0x05, 0x00, 0xFF])) == b"\x00\x01"
    assert port.written == [b"0500FF\r"]


def test_call_discards_stale_input_first():
    """Input is flushed before the command is written."""
    port = FakePort(["00"])
    make_session(port).call(b"\x05\x01")
    assert port.resets == 1


def test_port_open_and_closed_per_call():
    """Without a persistent session every call opens and closes the port."""
    port = FakePort(["00", "00"])
    session = make_session(port)
    session.call(b"\x05\x01")
    session.call(b"\x05\x01")
    assert port.opened == 2
    assert port.closed == 2
    assert not port.is_open


def test_three_denied_opens_then_success():
    """Three access-denied attempts are retried with a fixed 1 s delay."""
    port = FakePort(["00"], open_errors=[_denied(), _denied(), _denied(), None])
    sleep = SleepRecorder()
    session = make_session(port, sleep)
    assert session.call(b"\x05\x01") == b"\x00"
    assert port.opened == 4
    assert sleep.calls == [1.0, 1.0, 1.0]


def test_fourth_denied_open_is_terminal():
    """Access denied on every attempt raises PortBusyError."""
    port = FakePort(open_errors=[_denied()] * 4)
    sleep = SleepRecorder()
    session = make_session(port, sleep)
    with pytest.raises(PortBusyError) as exc:
        session.call(b"\x05\x01")
    assert exc.value.attempts == 4
    assert exc.value.port == "/dev/ttyFAKE0"
    assert port.opened == 4
    assert len(sleep.calls) == 3
    assert port.written == []


def test_other_open_failure_not_retried():
    """Only access denied is retried."""
    port = FakePort(open_errors=[FileNotFoundError(errno.ENOENT, "No such file")])
    sleep = SleepRecorder()
    with pytest.raises(PortOpenError) as exc:
        make_session(port, sleep).call(b"\x05\x01")
    assert not isinstance(exc.value, PortBusyError)
    assert port.opened == 1
    assert sleep.calls == []


def test_busy_is_a_transport_error():
    """A busy port and a silent reader are both transport errors."""
    assert issubclass(PortBusyError, TransportError)
    assert issubclass(ResponseTimeoutError, TransportError)


def test_retry_settings_override():
    """Retry count and delay come from the settings."""
    port = FakePort(open_errors=[_denied()] * 2)
    sleep = SleepRecorder()
    session = SerialSession(
        "COM3",
        SerialSettings(open_retries=1, retry_delay_ms=250),
        port_factory=lambda name, settings: port,
        sleep=sleep,
    )
    with pytest.raises(PortBusyError):
        session.call(b"\x00\x0A")
    assert sleep.calls == [0.25]


def test_no_response_is_timeout():
    """An empty read means the device stayed silent until the timeout."""
    port = FakePort([b""])
    with pytest.raises(ResponseTimeoutError):
        make_session(port).call(b"\x05\x00\xff")
    assert port.closed == 1


def test_partial_line_is_timeout():
    """A line without CR is a timeout."""
    port = FakePort([b"0001"])
    with pytest.raises(ResponseTimeoutError):
        make_session(port).call(b"\x05\x00\xff")


def test_garbled_line_raises_decode_error_and_closes():
    """A bad line still closes the port."""
    port = FakePort(["00Z"])
    with pytest.raises(FrameDecodeError):
        make_session(port).call(b"\x05\x00\xff")
    assert port.closed == 1


def test_io_error_becomes_transport_error():
    """OS errors during the exchange become TransportError."""
    class BrokenPort(FakePort):
        def write_line(self, data):
            raise serial.SerialTimeoutException("Write timeout")

    port = BrokenPort()
    with pytest.raises(TransportError):
        make_session(port).call(b"\x05\x00\xff")
    assert port.closed == 1


def test_close_failure_does_not_mask_response():
    """A failing close is logged, the response is kept."""
    class StickyPort(FakePort):
        def close(self):
            super().close()
            raise OSError(errno.EIO, "I/O error")

    port = StickyPort(["00"])
    assert make_session(port).call(b"\x05\x01") == b"\x00"


def test_persistent_session_keeps_port_open():
    """Inside ``with`` the port is opened once and closed on exit."""
    port = FakePort(["00", "0001"])
    session = make_session(port)
    with session:
        assert session.is_open
        session.call(b"\x05\x01")
        session.call(b"\x05\x00\xff")
        assert port.closed == 0
    assert port.opened == 1
    assert port.closed == 1
    assert not session.is_open


@pytest.mark.parametrize(
    "exc",
    [
        serial.SerialException(errno.EACCES, "could not open port /dev/ttyACM0"),
        serial.SerialException(errno.EBUSY, "Device or resource busy"),
        serial.SerialException(errno.EAGAIN, "Could not exclusively lock port"),
        serial.SerialException(
            "could not open port 'COM3': PermissionError(13, 'Access is denied.', None, 5)"
        ),
    ],
)
def test_access_denied_detection(exc):
    """Access denied is recognised by type, errno or text."""
    assert _is_access_denied(exc)


def test_missing_device_is_not_access_denied():
    """A missing device is not a busy port."""
    exc = serial.SerialException(errno.ENOENT, "could not open port /dev/ttyX")
    assert not _is_access_denied(exc)


def test_pyserial_port_translates_access_denied(monkeypatch):
    """pyserial access errors surface as PermissionError."""
    def refuse(**kwargs):
        raise serial.SerialException(errno.EBUSY, "Device or resource busy")

    monkeypatch.setattr(serial, "Serial", refuse)
    port = PySerialPort("/dev/ttyACM0", SerialSettings())
    with pytest.raises(PermissionError):
        port.open()


def test_pyserial_port_line_settings(monkeypatch):
    """The port is opened exclusively at 9600-8-N-1 with a 2 s timeout."""
    captured = {}

    class FakeSerial:
        def __init__(self, **kwargs):
            captured.update(kwargs)

        def close(self):
            pass

    monkeypatch.setattr(serial, "Serial", FakeSerial)
    port = PySerialPort("/dev/ttyACM0", SerialSettings())
    port.open()
    port.close()
    assert captured["baudrate"] == 9600
    assert captured["bytesize"] == serial.EIGHTBITS
    assert captured["parity"] == serial.PARITY_NONE
    assert captured["stopbits"] == serial.STOPBITS_ONE
    assert captured["timeout"] == 2.0
    assert captured["write_timeout"] == 2.0
    assert captured["exclusive"] is True
