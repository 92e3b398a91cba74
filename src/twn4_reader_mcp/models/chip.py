"""Chip technology types, identification evidence and search results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag


class ChipType(IntEnum):
    """Coarse transponder technology as reported by a tag search."""

    NOTAG = 0x00

    # LF
    EM4102 = 0x40
    HITAG1S = 0x41
    HITAG2 = 0x42
    EM4150 = 0x43
    AT5555 = 0x44
    ISOFDX = 0x45
    EM4026 = 0x46
    HITAGU = 0x47
    EM4305 = 0x48
    HIDPROX = 0x49
    TIRIS = 0x4A
    COTAG = 0x4B
    IOPROX = 0x4C
    INDITAG = 0x4D
    HONEYTAG = 0x4E
    AWID = 0x4F
    GPROX = 0x50
    PYRAMID = 0x51
    KERI = 0x52
    DEISTER = 0x53
    CARDAX = 0x54
    NEDAP = 0x55
    PAC = 0x56
    IDTECK = 0x57
    ULTRAPROX = 0x58
    ICT = 0x59
    ISONAS = 0x5A

    # HF
    MIFARE = 0x80  # ISO14443A
    ISO14443B = 0x81
    ISO15693 = 0x82
    LEGIC = 0x83
    HIDICLASS = 0x84
    FELICA = 0x85
    SRX = 0x86
    NFCP2P = 0x87
    BLE = 0x88
    TOPAZ = 0x89
    CTS = 0x8A
    BLELC = 0x8B


class ChipSubType(IntEnum):
    """Refined ISO14443A chip type, produced only by identification."""

    UNSPECIFIED = 0xB0
    NTAG = 0xB1
    MIFARE_MINI = 0xB2
    MIFARE_1K = 0xB3
    MIFARE_2K = 0xB4
    MIFARE_4K = 0xB5
    SAM_AV1 = 0xB6
    SAM_AV2 = 0xB7
    MIFARE_PLUS_SL0_1K = 0xB9
    MIFARE_PLUS_SL0_2K = 0xBA
    MIFARE_PLUS_SL0_4K = 0xBB
    MIFARE_PLUS_SL1_1K = 0xBC
    MIFARE_PLUS_SL1_2K = 0xBD
    MIFARE_PLUS_SL1_4K = 0xBE
    MIFARE_PLUS_SL2_1K = 0xBF
    MIFARE_PLUS_SL2_2K = 0xC0
    MIFARE_PLUS_SL2_4K = 0xC1
    MIFARE_PLUS_SL3_1K = 0xC2
    MIFARE_PLUS_SL3_2K = 0xC3
    MIFARE_PLUS_SL3_4K = 0xC4
    DESFIRE = 0xC5
    DESFIRE_EV1 = 0xC6
    DESFIRE_EV2 = 0xC7
    DESFIRE_EV3 = 0xC8
    SMARTMX_DESFIRE_GENERIC = 0xC9
    SMARTMX_DESFIRE_2K = 0xCA
    SMARTMX_DESFIRE_4K = 0xCB
    SMARTMX_DESFIRE_8K = 0xCC
    SMARTMX_DESFIRE_16K = 0xCD
    SMARTMX_DESFIRE_32K = 0xCE
    DESFIRE_256 = 0xD0
    DESFIRE_2K = 0xD1
    DESFIRE_4K = 0xD2
    DESFIRE_EV1_256 = 0xD3
    DESFIRE_EV1_2K = 0xD4
    DESFIRE_EV1_4K = 0xD5
    DESFIRE_EV1_8K = 0xD6
    DESFIRE_EV2_2K = 0xD7
    DESFIRE_EV2_4K = 0xD8
    DESFIRE_EV2_8K = 0xD9
    DESFIRE_EV2_16K = 0xDA
    DESFIRE_EV2_32K = 0xDB
    DESFIRE_EV3_2K = 0xDC
    DESFIRE_EV3_4K = 0xDD
    DESFIRE_EV3_8K = 0xDE
    DESFIRE_EV3_16K = 0xDF
    DESFIRE_EV3_32K = 0xE0
    DESFIRE_LIGHT = 0xE1
    SMARTMX_MIFARE_1K = 0xF9
    SMARTMX_MIFARE_4K = 0xFA
    MIFARE_ULTRALIGHT = 0xFB
    MIFARE_ULTRALIGHT_C = 0xFC
    GENERIC_T_CL_A = 0xFF


class LFTagTypes(IntFlag):
    """Low-frequency search mask for SetTagTypes."""

    NOTAG = 0
    EM4102 = 1 << 0
    HITAG1S = 1 << 1
    HITAG2 = 1 << 2
    EM4150 = 1 << 3
    AT5555 = 1 << 4
    ISOFDX = 1 << 5
    EM4026 = 1 << 6
    HITAGU = 1 << 7
    EM4305 = 1 << 8
    HIDPROX = 1 << 9
    TIRIS = 1 << 10
    COTAG = 1 << 11
    IOPROX = 1 << 12
    INDITAG = 1 << 13
    HONEYTAG = 1 << 14
    AWID = 1 << 15
    GPROX = 1 << 16
    PYRAMID = 1 << 17
    KERI = 1 << 18
    DEISTER = 1 << 19
    CARDAX = 1 << 20
    NEDAP = 1 << 21
    PAC = 1 << 22
    IDTECK = 1 << 23
    ULTRAPROX = 1 << 24
    ICT = 1 << 25
    ISONAS = 1 << 26
    ALL = 0xFFFFFFFF


class HFTagTypes(IntFlag):
    """High-frequency search mask for SetTagTypes."""

    NOTAG = 0
    MIFARE = 1 << 0
    ISO14443B = 1 << 1
    ISO15693 = 1 << 2
    LEGIC = 1 << 3
    HIDICLASS = 1 << 4
    FELICA = 1 << 5
    SRX = 1 << 6
    NFCP2P = 1 << 7
    BLE = 1 << 8
    TOPAZ = 1 << 9
    CTS = 1 << 10
    BLELC = 1 << 11
    ALL = 0xFFFFFFFF


@dataclass(frozen=True)
class TagTypes:
    """LF and HF search masks as returned by GetTagTypes."""

    lf: LFTagTypes
    hf: HFTagTypes

    def to_dict(self) -> dict:
        return {"lf": f"0x{int(self.lf):08X}", "hf": f"0x{int(self.hf):08X}"}


def _chip_type_from_code(code: int) -> ChipType | int:
    try:
        return ChipType(code)
    except ValueError:
        return code


@dataclass(frozen=True)
class SearchTagResult:
    """Outcome of a SearchTag call. ``found`` is False when the field is empty."""

    found: bool
    chip_type: ChipType | int = ChipType.NOTAG
    id_bit_count: int = 0
    uid: bytes = b""

    @classmethod
    def from_codes(cls, chip_type: int, id_bit_count: int, uid: bytes) -> SearchTagResult:
        return cls(
            found=True,
            chip_type=_chip_type_from_code(chip_type),
            id_bit_count=id_bit_count,
            uid=uid,
        )

    @property
    def uid_hex(self) -> str:
        return self.uid.hex().upper()


@dataclass(frozen=True)
class IdentificationEvidence:
    """Everything the identification rules look at.

    ``sak`` is None when no SAK could be read. ``version`` holds the raw
    response of the ISO14443-4 GetVersion call, status byte included.
    """

    sak: int | None = None
    ats: bytes = b""
    version: bytes = b""


@dataclass
class Chip:
    """A detected transponder with its coarse and refined type."""

    uid: bytes = b""
    chip_type: ChipType | int = ChipType.NOTAG
    subtype: ChipSubType | None = None
    evidence: IdentificationEvidence = field(default_factory=IdentificationEvidence)

    @property
    def card_type(self) -> ChipType | ChipSubType | int:
        """The most specific type known for this chip."""
        return self.subtype if self.subtype is not None else self.chip_type

    def to_dict(self) -> dict:
        card_type = self.card_type
        return {
            "uid": self.uid.hex().upper(),
            "chip_type": getattr(self.chip_type, "name", self.chip_type),
            "subtype": self.subtype.name if self.subtype is not None else None,
            "card_type": getattr(card_type, "name", card_type),
            "sak": (
                f"{self.evidence.sak:02X}" if self.evidence.sak is not None else None
            ),
            "ats": self.evidence.ats.hex(" ").upper(),
            "version": self.evidence.version.hex(" ").upper(),
        }
