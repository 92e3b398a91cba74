"""Command dispatcher for a TWN4 reader.

``TWN4Reader.call_function`` is the single entry point for every Simple
Protocol function: it sends the command through the session, reads the
status byte first and raises ``ProtocolError`` when the reader rejected the
call. The typed helpers below cover the functions used for chip detection
and diagnostics; other functions can be built with
``protocol.commands.build_command`` and sent through ``call_function``.
"""

from __future__ import annotations

import logging

from .errors import ProtocolError
from .models.chip import HFTagTypes, LFTagTypes, SearchTagResult, TagTypes
from .models.status import ReaderError, ResponseError, reader_error_from_code
from .protocol import commands
from .protocol.parser import ResponseParser
from .transport.serial_connection import SerialSession, SerialSettings

logger = logging.getLogger(__name__)

DEVICE_UID_LENGTH = 12


def _status_from_code(code: int) -> ResponseError | int:
    try:
        return ResponseError(code)
    except ValueError:
        return code


class TWN4Reader:
    """One physical reader, reached through an injected session.

    Usage::

        reader = TWN4Reader.open_port("/dev/ttyACM0")
        tag = reader.search_tag()
        if tag.found:
            print(tag.chip_type, tag.uid_hex)
    """

    def __init__(self, session: SerialSession) -> None:
        self._session = session

    @classmethod
    def open_port(cls, port: str, settings: SerialSettings | None = None) -> TWN4Reader:
        """Create a reader on a serial port with per-call open/close."""
        return cls(SerialSession(port, settings))

    @property
    def session(self) -> SerialSession:
        return self._session

    def __enter__(self) -> TWN4Reader:
        self._session.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        self._session.__exit__(*exc_info)

    # --- dispatch ------------------------------------------------------------

    def call_raw(self, command: bytes) -> bytes:
        """Exchange one command and return the undecoded response bytes."""
        return self._session.call(bytes(command))

    def call_unchecked(self, command: bytes) -> tuple[ResponseError | int, ResponseParser]:
        """Exchange one command; return its status and a parser past byte 0.

        The status is not enforced, so callers can inspect a failed call
        before deciding what to do (for example fetch the last reader error).
        """
        parser = ResponseParser(self.call_raw(command))
        status = _status_from_code(parser.byte())
        return status, parser

    def call_function(self, command: bytes) -> ResponseParser:
        """Exchange one command and require a successful status byte.

        Returns:
            A parser positioned on the first payload byte.

        Raises:
            ProtocolError: The status byte is not ``ResponseError.NONE``.
            ShortResponseError: The response is empty.
            TransportError: The serial exchange failed.
        """
        status, parser = self.call_unchecked(command)
        if status != ResponseError.NONE:
            logger.debug("Command %s rejected: %r", bytes(command[:2]).hex(), status)
            raise ProtocolError(status)
        return parser

    # --- API_SYS -------------------------------------------------------------

    def get_version_string(self) -> str:
        return self.call_function(commands.build_get_version_string()).ascii_string()

    def get_device_uid(self) -> bytes:
        return self.call_function(commands.build_get_device_uid()).fixed_bytes(
            DEVICE_UID_LENGTH
        )

    def get_last_error(self) -> ReaderError | int:
        """Fetch the firmware's last-error register (diagnostics only)."""
        code = self.call_function(commands.build_get_last_error()).uint32()
        return reader_error_from_code(code)

    # --- API_RF --------------------------------------------------------------

    def search_tag(self, max_id_bytes: int = commands.MAX_ID_BYTES) -> SearchTagResult:
        parser = self.call_function(commands.build_search_tag(max_id_bytes))
        if not parser.bool():
            return SearchTagResult(found=False)
        chip_type = parser.byte()
        id_bit_count = parser.byte()
        uid = parser.var_bytes()
        return SearchTagResult.from_codes(chip_type, id_bit_count, uid)

    def set_rf_off(self) -> None:
        self.call_function(commands.build_set_rf_off())

    def set_tag_types(self, lf: LFTagTypes, hf: HFTagTypes) -> None:
        self.call_function(commands.build_set_tag_types(lf, hf))

    def get_tag_types(self) -> TagTypes:
        return self._read_tag_types(commands.build_get_tag_types())

    def get_supported_tag_types(self) -> TagTypes:
        return self._read_tag_types(commands.build_get_supported_tag_types())

    def _read_tag_types(self, command: bytes) -> TagTypes:
        parser = self.call_function(command)
        lf = parser.uint32()
        hf = parser.uint32()
        return TagTypes(lf=LFTagTypes(lf), hf=HFTagTypes(hf))

    # --- API_ISO14443 --------------------------------------------------------

    def search_multi_tag(self, max_id_bytes: int = commands.MAX_ID_BYTES) -> list[bytes]:
        """List the UIDs of every ISO14443A transponder in the field."""
        parser = self.call_function(commands.build_search_multi_tag(max_id_bytes))
        if not parser.bool():
            return []
        count = parser.byte()
        return [parser.var_bytes() for _ in range(count)]

    def get_sak(self) -> int | None:
        """Return the SAK of the selected ISO14443A tag, or None if unavailable."""
        parser = self.call_function(commands.build_get_sak())
        if not parser.bool():
            return None
        return parser.byte()

    def get_ats(self, max_length: int = commands.MAX_ATS_BYTES) -> bytes:
        parser = self.call_function(commands.build_get_ats(max_length))
        if not parser.bool():
            return b""
        return parser.var_bytes()

    def iso14443_3_transceive(self, data: bytes, **kwargs) -> tuple[bool, bytes]:
        return self._transceive(commands.build_iso14443_3_tdx(data, **kwargs))

    def iso14443_4_transceive(self, apdu: bytes, **kwargs) -> tuple[bool, bytes]:
        return self._transceive(commands.build_iso14443_4_tdx(apdu, **kwargs))

    def _transceive(self, command: bytes) -> tuple[bool, bytes]:
        parser = self.call_function(command)
        ok = parser.bool()
        return ok, parser.var_bytes() if ok else b""

    def request_ats(self) -> bytes:
        """Activate layer 4 with RATS and return the ATS.

        Some firmware answers RATS without echoing the ATS; the ATS is then
        read back with GetATS.
        """
        ok, ats = self._transceive(commands.build_rats())
        if ok and len(ats) > 1:
            return ats
        logger.debug("RATS returned no ATS, asking for it with GetATS")
        return self.get_ats()

    def get_desfire_version(self) -> bytes:
        """Send DESFire GetVersion over ISO14443-4.

        Returns the complete response (status, ok flag, length, reply), the
        layout the identification rules index into.
        """
        response = self.call_raw(commands.build_desfire_get_version())
        status = _status_from_code(ResponseParser(response).byte())
        if status != ResponseError.NONE:
            raise ProtocolError(status)
        return response
