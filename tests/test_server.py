"""Tests for the MCP tool layer, run against a scripted reader."""

from __future__ import annotations

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from conftest import DevicePort, make_reader
from twn4_reader_mcp.errors import ResponseTimeoutError

VERSION_RESPONSE = "00" "04" "54574E34"  # "TWN4"
DEVICE_UID = "0102030405060708090A0B0C"


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            sys.modules.pop("twn4_reader_mcp.server", None)
            import twn4_reader_mcp.server as server_mod

    return server_mod


def test_tools_require_connection():
    """Tools fail until connect has succeeded."""
    server = _get_server_module()
    with pytest.raises(RuntimeError, match="connect"):
        server.search_tag()


def test_connect_reads_firmware_version():
    """connect checks the reader answers and keeps it."""
    server = _get_server_module()
    reader = make_reader(DevicePort({"0004FF": VERSION_RESPONSE}))

    with patch.object(server.TWN4Reader, "open_port", return_value=reader) as open_port:
        result = server.connect("/dev/ttyACM0", timeout_ms=500)

    assert result == {"connected": True, "port": "/dev/ttyACM0", "firmware": "TWN4"}
    assert open_port.call_args.args[1].timeout_ms == 500
    assert server._get_reader() is reader


def test_connect_failure_leaves_server_disconnected():
    """A silent reader is not kept."""
    server = _get_server_module()
    reader = make_reader(DevicePort({"0004FF": ResponseTimeoutError("silent")}))

    with patch.object(server.TWN4Reader, "open_port", return_value=reader):
        result = server.connect("/dev/ttyACM0")

    assert result["kind"] == "ResponseTimeoutError"
    assert server._reader is None


def test_disconnect():
    """disconnect forgets the reader."""
    server = _get_server_module()
    server._reader = make_reader(DevicePort({}))
    assert server.disconnect() == {"disconnected": True}
    assert server._reader is None


def test_get_device_info():
    """Port, firmware and device UID."""
    server = _get_server_module()
    port = DevicePort({"0004FF": VERSION_RESPONSE, "0008": "00" + DEVICE_UID})

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.get_device_info()

    assert result == {
        "port": "/dev/ttyFAKE0",
        "firmware": "TWN4",
        "device_uid": DEVICE_UID,
    }


def test_search_tag_found():
    """A found tag with its UID."""
    server = _get_server_module()
    port = DevicePort({"0500FF": "00" "01" "80" "20" "04" "04112233"})

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.search_tag()

    assert result == {
        "found": True,
        "chip_type": "MIFARE",
        "uid": "04112233",
        "id_bit_count": 32,
    }


def test_search_tag_empty_field():
    """No tag in the field."""
    server = _get_server_module()
    with patch.object(server, "_get_reader", return_value=make_reader(DevicePort({"0500FF": "0000"}))):
        assert server.search_tag() == {"found": False}


def test_search_tag_reports_rejection():
    """A rejected call is reported, not raised."""
    server = _get_server_module()
    with patch.object(server, "_get_reader", return_value=make_reader(DevicePort({"0500FF": "02"}))):
        result = server.search_tag()
    assert result["kind"] == "ProtocolError"
    assert "MISSING_PARAMETER" in result["error"]


def test_identify_chip():
    """identify_chip reports the refined type."""
    server = _get_server_module()
    port = DevicePort({"0500FF": "00" "01" "80" "20" "04" "04112233", "1205": "000119"})

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.identify_chip()

    assert result["found"] is True
    assert result["card_type"] == "MIFARE_2K"
    assert result["sak"] == "19"


def test_identify_chip_nothing_found():
    """identify_chip with an empty field."""
    server = _get_server_module()
    port = DevicePort({"0500FF": "0000", "1208FF": "0000"})

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.identify_chip()

    assert result["found"] is False
    assert result["card_type"] == "NOTAG"


def test_get_tag_types():
    """Enabled and supported masks."""
    server = _get_server_module()
    port = DevicePort({
        "0503": "00" "0F000000" "01000000",
        "0504": "00" "FFFFFFFF" "FFFFFFFF",
    })

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.get_tag_types()

    assert result == {
        "enabled": {"lf": "0x0000000F", "hf": "0x00000001"},
        "supported": {"lf": "0xFFFFFFFF", "hf": "0xFFFFFFFF"},
    }


def test_get_last_error_known_code():
    """A known error with name and category."""
    server = _get_server_module()
    port = DevicePort({"000A": "00" "2D010000"})  # 301

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.get_last_error()

    assert result == {"code": 301, "name": "PEC", "category": "i2c"}


def test_get_last_error_unknown_code():
    """An unknown error has no name."""
    server = _get_server_module()
    port = DevicePort({"000A": "00" "E8030000"})  # 1000

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.get_last_error()

    assert result == {"code": 1000, "name": None, "category": "unknown"}


def test_call_function_returns_status_and_payload():
    """Raw calls return status and payload hex."""
    server = _get_server_module()
    port = DevicePort({"0500FF": "00" "01" "80" "20" "04" "04112233"})

    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.call_function("0500ff")

    assert result == {"status": "NONE", "ok": True, "payload": "01802004" "04112233"}


def test_call_function_does_not_raise_on_rejection():
    """A rejected raw call reports its status."""
    server = _get_server_module()
    with patch.object(server, "_get_reader", return_value=make_reader(DevicePort({}))):
        result = server.call_function("7F01")
    assert result == {"status": "UNKNOWN_FUNCTION", "ok": False, "payload": ""}


@pytest.mark.parametrize("command", ["05", "0G00", "050"])
def test_call_function_rejects_bad_input(command):
    """Bad hex or a missing function byte is never sent."""
    server = _get_server_module()
    port = DevicePort({})
    with patch.object(server, "_get_reader", return_value=make_reader(port)):
        result = server.call_function(command)
    assert "error" in result
    assert port.commands == []


def test_chip_type_catalog():
    """The chip catalog lists types and subtypes."""
    server = _get_server_module()
    catalog = json.loads(server.resource_chip_types())
    assert catalog["chip_types"]["MIFARE"] == 0x80
    assert catalog["subtypes"]["DESFIRE_EV2_4K"] > 0


def test_reader_error_catalog_grouped():
    """The error catalog is grouped by category."""
    server = _get_server_module()
    catalog = json.loads(server.resource_reader_errors())["reader_errors"]
    assert catalog["storage"]["FLASH_WRITE"] == 103
    assert catalog["i2c"]["BUS_ERROR"] == 305
    assert "OUT_OF_MEMORY" in catalog["general"]


def test_diagnose_prompt_mentions_symptom():
    """The prompt carries the symptom."""
    server = _get_server_module()
    text = server.diagnose_reader("card not detected")
    assert "card not detected" in text
    assert "get_last_error" in text
