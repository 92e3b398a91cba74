"""MCP server entry point for Elatec TWN4 readers.

Exposes tag search, chip identification and reader diagnostics as tools,
plus the chip and error catalogs as resources, using the official Python
MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .errors import FrameDecodeError, TWN4Error
from .identification import identify
from .models.chip import ChipSubType, ChipType
from .models.status import ReaderError, ResponseError, error_category
from .protocol.framing import decode, encode
from .reader import TWN4Reader
from .transport.serial_connection import SerialSettings

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "twn4-reader",
    instructions="MCP server for Elatec TWN4 contactless readers (Simple Protocol)",
)

# Global connection state
_reader: TWN4Reader | None = None


def _get_reader() -> TWN4Reader:
    """Get the configured reader, raising if not connected."""
    if _reader is None:
        raise RuntimeError(
            "Not connected to a reader. Use the 'connect' tool first."
        )
    return _reader


def _error(e: Exception) -> dict[str, Any]:
    return {"error": str(e), "kind": type(e).__name__}


def _enum_name(value: Any) -> Any:
    return getattr(value, "name", value)


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(port: str, timeout_ms: int = 2000) -> dict[str, Any]:
    """Attach to a TWN4 reader on a serial port.

    The port is opened for every command and closed again afterwards,
    so other programs can share the reader between calls.

    Args:
        port: Serial device, e.g. '/dev/ttyACM0' or 'COM3'.
        timeout_ms: Read/write timeout per command in milliseconds.
    """
    global _reader
    reader = TWN4Reader.open_port(port, SerialSettings(timeout_ms=timeout_ms))
    try:
        version = reader.get_version_string()
    except TWN4Error as e:
        return _error(e)

    _reader = reader
    logger.info("Connected to %s: %s", port, version)
    return {"connected": True, "port": port, "firmware": version}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Forget the configured reader."""
    global _reader
    if _reader is not None:
        _reader.session.close()
        _reader = None
    return {"disconnected": True}


@mcp.tool()
def get_device_info() -> dict[str, Any]:
    """Read the firmware version string and the device UID."""
    reader = _get_reader()
    try:
        return {
            "port": reader.session.port,
            "firmware": reader.get_version_string(),
            "device_uid": reader.get_device_uid().hex().upper(),
        }
    except TWN4Error as e:
        return _error(e)


# ─── TAG TOOLS ────────────────────────────────────────────────────────

@mcp.tool()
def search_tag() -> dict[str, Any]:
    """Search the RF field for a transponder of any enabled type."""
    reader = _get_reader()
    try:
        tag = reader.search_tag()
    except TWN4Error as e:
        return _error(e)
    if not tag.found:
        return {"found": False}
    return {
        "found": True,
        "chip_type": _enum_name(tag.chip_type),
        "uid": tag.uid_hex,
        "id_bit_count": tag.id_bit_count,
    }


@mcp.tool()
def identify_chip() -> dict[str, Any]:
    """Search for a chip and identify its exact type.

    ISO14443A chips are refined from SAK, ATS and DESFire GetVersion into
    e.g. Mifare Classic 1K/4K, Mifare Plus SL1-SL3 or DESFire EV1-EV3 with
    capacity. Other technologies are reported with their coarse type.
    """
    chip = identify(_get_reader())
    result = chip.to_dict()
    result["found"] = chip.chip_type != ChipType.NOTAG
    return result


@mcp.tool()
def set_rf_off() -> dict[str, Any]:
    """Switch the RF field off to save power until the next search."""
    try:
        _get_reader().set_rf_off()
    except TWN4Error as e:
        return _error(e)
    return {"rf_off": True}


@mcp.tool()
def get_tag_types() -> dict[str, Any]:
    """Show which LF/HF tag types are searched for and which are supported."""
    reader = _get_reader()
    try:
        return {
            "enabled": reader.get_tag_types().to_dict(),
            "supported": reader.get_supported_tag_types().to_dict(),
        }
    except TWN4Error as e:
        return _error(e)


# ─── DIAGNOSTIC TOOLS ────────────────────────────────────────────────

@mcp.tool()
def get_last_error() -> dict[str, Any]:
    """Read the reader's last firmware error code."""
    try:
        code = _get_reader().get_last_error()
    except TWN4Error as e:
        return _error(e)
    return {
        "code": int(code),
        "name": _enum_name(code) if isinstance(code, ReaderError) else None,
        "category": error_category(int(code)),
    }


@mcp.tool()
def call_function(command_hex: str) -> dict[str, Any]:
    """Send a raw Simple Protocol command and return the response payload.

    Args:
        command_hex: Command bytes as hex, API group and function first,
                     e.g. '0500FF' for SearchTag.
    """
    try:
        command = decode(command_hex)
    except FrameDecodeError as e:
        return _error(e)
    if len(command) < 2:
        return {"error": "Command needs at least an API group and a function byte"}

    try:
        status, parser = _get_reader().call_unchecked(command)
    except TWN4Error as e:
        return _error(e)
    return {
        "status": _enum_name(status),
        "ok": status == ResponseError.NONE,
        "payload": encode(parser.rest()),
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("twn4://catalog/chip-types")
def resource_chip_types() -> str:
    """Coarse chip types and identified subtypes with their codes."""
    return json.dumps({
        "chip_types": {t.name: t.value for t in ChipType},
        "subtypes": {t.name: t.value for t in ChipSubType},
    })


@mcp.resource("twn4://catalog/reader-errors")
def resource_reader_errors() -> str:
    """Firmware error codes grouped by category."""
    groups: dict[str, dict[str, int]] = {}
    for err in ReaderError:
        groups.setdefault(err.category, {})[err.name] = err.value
    return json.dumps({"reader_errors": groups})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_reader(symptom: str) -> str:
    """Guide the AI through narrowing down a reader or card problem.

    Args:
        symptom: What goes wrong, e.g. "card not detected".
    """
    return f"""A TWN4 reader shows this problem: {symptom}.
Work through it step by step:
- Use get_device_info to confirm the reader answers at all
- Use get_tag_types to check the wanted technology is enabled
- Use search_tag and identify_chip with the card on the reader
- After any failed command, use get_last_error and explain the category

Report which layer failed: serial transport, protocol status, or device error."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
