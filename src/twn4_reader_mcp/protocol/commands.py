"""API group constants and command builders.

A command is ``[api_group, function, *params]``. Multi-byte integers are
little-endian; variable-length fields carry a one-byte length prefix. The
builders return plain ``bytes``; framing happens in the transport.
"""

from __future__ import annotations

from enum import IntEnum

# ISO14443-3 RATS (FSDI=5, CID=0) with its CRC_A appended.
RATS = bytes([0xE0, 0x50, 0xBC, 0xA5])

# DESFire native GetVersion.
DESFIRE_GET_VERSION = bytes([0x60])

MAX_ID_BYTES = 0xFF
MAX_ATS_BYTES = 0x20
MAX_VERSION_BYTES = 0x20
MAX_RX_BYTES = 0xFF
DEFAULT_TDX_TIMEOUT_MS = 0xFF


class ApiGroup(IntEnum):
    """Simple Protocol API groups (byte 0 of every command)."""

    SYS = 0x00
    PERIPH = 0x04
    RF = 0x05
    MIFARE_CLASSIC = 0x0B
    DESFIRE = 0x0F
    ISO14443 = 0x12


class SysFunction(IntEnum):
    GET_VERSION_STRING = 4
    GET_DEVICE_UID = 8
    GET_LAST_ERROR = 10


class RFFunction(IntEnum):
    SEARCH_TAG = 0
    SET_RF_OFF = 1
    SET_TAG_TYPES = 2
    GET_TAG_TYPES = 3
    GET_SUPPORTED_TAG_TYPES = 4


class ISO14443Function(IntEnum):
    GET_ATS = 0
    ISO14443_4_TDX = 3
    GET_SAK = 5
    ISO14443_3_TDX = 7
    SEARCH_MULTI_TAG = 8


def _u8(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be 0-255, got {value}")
    return value


def _var(name: str, data: bytes) -> bytes:
    if len(data) > 0xFF:
        raise ValueError(f"{name} must be at most 255 bytes, got {len(data)}")
    return bytes([len(data)]) + bytes(data)


def build_command(group: ApiGroup, function: int, payload: bytes = b"") -> bytes:
    """Build a raw command from its API group, function index and parameters."""
    return bytes([int(group), _u8("function", int(function))]) + bytes(payload)


# --- API_SYS ---------------------------------------------------------------

def build_get_version_string(max_length: int = 0xFF) -> bytes:
    """GetVersionString: firmware identification, e.g. ``TWN4/B1.64/...``."""
    return build_command(
        ApiGroup.SYS, SysFunction.GET_VERSION_STRING, bytes([_u8("max_length", max_length)])
    )


def build_get_device_uid() -> bytes:
    return build_command(ApiGroup.SYS, SysFunction.GET_DEVICE_UID)


def build_get_last_error() -> bytes:
    return build_command(ApiGroup.SYS, SysFunction.GET_LAST_ERROR)


# --- API_RF ----------------------------------------------------------------

def build_search_tag(max_id_bytes: int = MAX_ID_BYTES) -> bytes:
    """SearchTag: look for any transponder enabled via SetTagTypes."""
    return build_command(
        ApiGroup.RF, RFFunction.SEARCH_TAG, bytes([_u8("max_id_bytes", max_id_bytes)])
    )


def build_set_rf_off() -> bytes:
    return build_command(ApiGroup.RF, RFFunction.SET_RF_OFF)


def build_set_tag_types(lf_mask: int, hf_mask: int) -> bytes:
    """SetTagTypes: two 32-bit little-endian search masks (LF, then HF)."""
    for name, mask in (("lf_mask", lf_mask), ("hf_mask", hf_mask)):
        if not 0 <= int(mask) <= 0xFFFFFFFF:
            raise ValueError(f"{name} must fit in 32 bits, got {mask}")
    payload = int(lf_mask).to_bytes(4, "little") + int(hf_mask).to_bytes(4, "little")
    return build_command(ApiGroup.RF, RFFunction.SET_TAG_TYPES, payload)


def build_get_tag_types() -> bytes:
    return build_command(ApiGroup.RF, RFFunction.GET_TAG_TYPES)


def build_get_supported_tag_types() -> bytes:
    return build_command(ApiGroup.RF, RFFunction.GET_SUPPORTED_TAG_TYPES)


# --- API_ISO14443 ----------------------------------------------------------

def build_get_ats(max_length: int = MAX_ATS_BYTES) -> bytes:
    return build_command(
        ApiGroup.ISO14443, ISO14443Function.GET_ATS, bytes([_u8("max_length", max_length)])
    )


def build_get_sak() -> bytes:
    return build_command(ApiGroup.ISO14443, ISO14443Function.GET_SAK)


def build_iso14443_3_tdx(
    data: bytes,
    max_rx: int = MAX_RX_BYTES,
    timeout_ms: int = DEFAULT_TDX_TIMEOUT_MS,
) -> bytes:
    """Raw ISO14443-3 exchange: ``len, data, max_rx, timeout (u16)``."""
    if not 0 <= timeout_ms <= 0xFFFF:
        raise ValueError(f"timeout_ms must be 0-65535, got {timeout_ms}")
    payload = (
        _var("data", data)
        + bytes([_u8("max_rx", max_rx)])
        + timeout_ms.to_bytes(2, "little")
    )
    return build_command(ApiGroup.ISO14443, ISO14443Function.ISO14443_3_TDX, payload)


def build_iso14443_4_tdx(apdu: bytes, max_rx: int = MAX_VERSION_BYTES) -> bytes:
    """Raw ISO14443-4 exchange: ``len, apdu, max_rx``."""
    payload = _var("apdu", apdu) + bytes([_u8("max_rx", max_rx)])
    return build_command(ApiGroup.ISO14443, ISO14443Function.ISO14443_4_TDX, payload)


def build_rats() -> bytes:
    return build_iso14443_3_tdx(RATS)


def build_desfire_get_version() -> bytes:
    return build_iso14443_4_tdx(DESFIRE_GET_VERSION, MAX_VERSION_BYTES)


def build_search_multi_tag(max_id_bytes: int = MAX_ID_BYTES) -> bytes:
    return build_command(
        ApiGroup.ISO14443,
        ISO14443Function.SEARCH_MULTI_TAG,
        bytes([_u8("max_id_bytes", max_id_bytes)]),
    )
