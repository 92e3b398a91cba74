"""Serial port doubles shared by the test modules."""

from __future__ import annotations

import pytest

from twn4_reader_mcp.reader import TWN4Reader
from twn4_reader_mcp.transport.serial_connection import SerialSession


def line(hex_body: str) -> bytes:
    """A response line as the reader sends it."""
    return hex_body.encode("ascii") + b"\r"


class FakePort:
    """Scripted SerialPort: replays response lines and records what was sent.

    ``open_errors`` are raised by successive ``open()`` calls (None means
    the attempt succeeds).
    """

    def __init__(self, responses=(), open_errors=()):
        self.responses = [line(r) if isinstance(r, str) else r for r in responses]
        self.open_errors = list(open_errors)
        self.written: list[bytes] = []
        self.opened = 0
        self.closed = 0
        self.resets = 0
        self.is_open = False

    def open(self):
        self.opened += 1
        if self.open_errors:
            err = self.open_errors.pop(0)
            if err is not None:
                raise err
        self.is_open = True

    def close(self):
        self.closed += 1
        self.is_open = False

    def reset_input_buffer(self):
        self.resets += 1

    def write_line(self, data: bytes):
        assert self.is_open, "write on closed port"
        self.written.append(data)

    def read_line(self) -> bytes:
        assert self.is_open, "read on closed port"
        if not self.responses:
            return b""
        return self.responses.pop(0)


class DevicePort(FakePort):
    """A fake reader answering by command.

    ``answers`` maps the command hex to the response hex. A missing command
    is answered with UNKNOWN_FUNCTION; an exception value is raised from
    ``read_line``.
    """

    def __init__(self, answers: dict):
        super().__init__()
        self.answers = answers
        self.commands: list[str] = []

    def write_line(self, data: bytes):
        super().write_line(data)
        command = data.decode("ascii").strip()
        self.commands.append(command)
        answer = self.answers.get(command, "01")
        self.responses.append(answer if isinstance(answer, Exception) else line(answer))

    def read_line(self) -> bytes:
        answer = super().read_line()
        if isinstance(answer, Exception):
            raise answer
        return answer


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


def make_session(port: FakePort, sleep=None) -> SerialSession:
    return SerialSession(
        "/dev/ttyFAKE0",
        port_factory=lambda name, settings: port,
        sleep=sleep or SleepRecorder(),
    )


def make_reader(port: FakePort) -> TWN4Reader:
    return TWN4Reader(make_session(port))


@pytest.fixture
def sleep():
    return SleepRecorder()
