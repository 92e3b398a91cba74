"""ISO14443A chip identification.

A tag search only reports the coarse technology (``ChipType.MIFARE`` for any
ISO14443A chip). The precise chip is worked out in stages, each one asking
the reader for a little more evidence:

1. **SAK** - one byte from anticollision. An ordered rule table over its bits
   either names the chip outright or picks the next stage.
2. **ATS** - historical bytes after RATS. Mifare Plus chips in security
   level 1 carry a recognisable signature there.
3. **Layer 4** - DESFire GetVersion over ISO14443-4. Vendor type,
   generation and storage size map onto the DESFire / SmartMX tables. When
   GetVersion fails, the ATS decides between Plus SL3 and SmartMX.

``classify`` is a pure function of ``IdentificationEvidence``. ``identify``
collects only the evidence a stage needs and hands it to ``classify``. A
device error while collecting evidence aborts refinement: the chip keeps its
coarse type and no subtype is guessed from partial evidence.

GetVersion evidence is the raw response of the ISO14443-4 exchange::

    +--------+----+-----+------+--------+------+---------+-------+-------+---------+
    | status | ok | len | 0xAF | vendor | type | subtype | major | minor | storage |
    |   [0]  | [1]| [2] |  [3] |   [4]  |  [5] |   [6]   |  [7]  |  [8]  |   [9]   |
    +--------+----+-----+------+--------+------+---------+-------+-------+---------+
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .errors import ProtocolError, TWN4Error
from .models.chip import Chip, ChipSubType, ChipType, IdentificationEvidence

if TYPE_CHECKING:
    from .reader import TWN4Reader

logger = logging.getLogger(__name__)

# SAK bits
SAK_BIT1 = 0x01
SAK_RFU = 0x02
SAK_BIT4 = 0x08
SAK_BIT5 = 0x10
SAK_BIT6 = 0x20

# Historical-byte signatures
PLUS_S_SIGNATURE = bytes([0xC1, 0x05, 0x2F, 0x2F, 0x00, 0x35, 0xC7])
PLUS_X_SIGNATURE = bytes([0xC1, 0x05, 0x2F, 0x2F, 0x01, 0xBC, 0xD6])
PLUS_SE_SIGNATURE = bytes([0xC1, 0x05, 0x21, 0x30, 0x00, 0xF6, 0xD1])

# Counted without the length byte. A shorter ATS carries no historical
# bytes worth matching.
MIN_ATS_LENGTH = 4

# GetVersion response offsets
VERSION_MARKER_OFFSET = 3
VERSION_TYPE_OFFSET = 5
VERSION_MAJOR_OFFSET = 7
VERSION_STORAGE_OFFSET = 9
VERSION_ADDITIONAL_FRAME = 0xAF
VENDOR_TYPE_NATIVE = 0x01
VENDOR_TYPE_EMULATED = 0x81


class Stage(Enum):
    """What the SAK rules hand over to when they cannot decide alone."""

    CLASSIC_4K_ATS = "classic-4k-ats"
    CLASSIC_1K_ATS = "classic-1k-ats"
    LAYER4 = "layer4"
    TAG_N_PLAY = "tag-n-play"


@dataclass(frozen=True)
class SakRule:
    """Matches when ``sak & mask == value``."""

    name: str
    mask: int
    value: int
    outcome: ChipSubType | Stage

    def matches(self, sak: int) -> bool:
        return sak & self.mask == self.value


# Bits 0x04, 0x40 and 0x80 never take part. Each SAK matches exactly one rule.
SAK_RULES: tuple[SakRule, ...] = (
    SakRule("rfu", SAK_RFU, SAK_RFU, ChipSubType.UNSPECIFIED),
    SakRule("classic-2k", 0x1B, 0x19, ChipSubType.MIFARE_2K),
    SakRule("smartmx-4k", 0x3B, 0x38, ChipSubType.SMARTMX_MIFARE_4K),
    SakRule("classic-4k", 0x3B, 0x18, Stage.CLASSIC_4K_ATS),
    SakRule("classic-mini", 0x1B, 0x09, ChipSubType.MIFARE_MINI),
    SakRule("smartmx-1k", 0x3B, 0x28, ChipSubType.SMARTMX_MIFARE_1K),
    SakRule("classic-1k", 0x3B, 0x08, Stage.CLASSIC_1K_ATS),
    SakRule("plus-sl2-4k", 0x1B, 0x11, ChipSubType.MIFARE_PLUS_SL2_4K),
    SakRule("plus-sl2-2k", 0x1B, 0x10, ChipSubType.MIFARE_PLUS_SL2_2K),
    SakRule("tag-n-play", 0x1B, 0x01, Stage.TAG_N_PLAY),
    SakRule("layer4", 0x3B, 0x20, Stage.LAYER4),
    SakRule("ultralight", 0x3B, 0x00, ChipSubType.MIFARE_ULTRALIGHT),
)


@dataclass(frozen=True)
class AtsRule:
    name: str
    signature: bytes
    subtype: ChipSubType


@dataclass(frozen=True)
class AtsTable:
    """ATS outcome for one stage.

    ``short`` applies when there is no usable ATS, ``unmatched`` when the ATS
    is present but no signature is found. None keeps the coarse type.
    """

    rules: tuple[AtsRule, ...]
    short: ChipSubType
    unmatched: ChipSubType | None


ATS_TABLES: dict[Stage, AtsTable] = {
    Stage.CLASSIC_4K_ATS: AtsTable(
        rules=(
            AtsRule("plus-s", PLUS_S_SIGNATURE, ChipSubType.MIFARE_PLUS_SL1_4K),
            AtsRule("plus-x", PLUS_X_SIGNATURE, ChipSubType.MIFARE_PLUS_SL1_4K),
        ),
        short=ChipSubType.MIFARE_4K,
        unmatched=None,
    ),
    Stage.CLASSIC_1K_ATS: AtsTable(
        rules=(
            AtsRule("plus-s", PLUS_S_SIGNATURE, ChipSubType.MIFARE_PLUS_SL1_2K),
            AtsRule("plus-x", PLUS_X_SIGNATURE, ChipSubType.MIFARE_PLUS_SL1_2K),
            AtsRule("plus-se", PLUS_SE_SIGNATURE, ChipSubType.MIFARE_PLUS_SL0_1K),
        ),
        short=ChipSubType.MIFARE_1K,
        unmatched=ChipSubType.MIFARE_PLUS_SL1_1K,
    ),
    # Used when GetVersion gives nothing usable.
    Stage.LAYER4: AtsTable(
        rules=(
            AtsRule("plus-s", PLUS_S_SIGNATURE, ChipSubType.MIFARE_PLUS_SL3_4K),
            AtsRule("plus-x", PLUS_X_SIGNATURE, ChipSubType.MIFARE_PLUS_SL3_4K),
        ),
        short=ChipSubType.SMARTMX_MIFARE_4K,
        unmatched=ChipSubType.UNSPECIFIED,
    ),
}

# (generation, storage size code) -> subtype
DESFIRE_NATIVE: dict[tuple[int, int], ChipSubType] = {
    (0, 0x10): ChipSubType.DESFIRE_256,
    (0, 0x16): ChipSubType.DESFIRE_2K,
    (0, 0x18): ChipSubType.DESFIRE_4K,
    (1, 0x10): ChipSubType.DESFIRE_EV1_256,
    (1, 0x16): ChipSubType.DESFIRE_EV1_2K,
    (1, 0x18): ChipSubType.DESFIRE_EV1_4K,
    (1, 0x1A): ChipSubType.DESFIRE_EV1_8K,
    (2, 0x16): ChipSubType.DESFIRE_EV2_2K,
    (2, 0x18): ChipSubType.DESFIRE_EV2_4K,
    (2, 0x1A): ChipSubType.DESFIRE_EV2_8K,
    (2, 0x1C): ChipSubType.DESFIRE_EV2_16K,
    (2, 0x1E): ChipSubType.DESFIRE_EV2_32K,
    (3, 0x16): ChipSubType.DESFIRE_EV3_2K,
    (3, 0x18): ChipSubType.DESFIRE_EV3_4K,
    (3, 0x1A): ChipSubType.DESFIRE_EV3_8K,
    (3, 0x1C): ChipSubType.DESFIRE_EV3_16K,
    (3, 0x1E): ChipSubType.DESFIRE_EV3_32K,
}

DESFIRE_EMULATED: dict[tuple[int, int], ChipSubType] = {
    (0, 0x10): ChipSubType.SMARTMX_DESFIRE_GENERIC,
    (0, 0x16): ChipSubType.SMARTMX_DESFIRE_2K,
    (0, 0x18): ChipSubType.SMARTMX_DESFIRE_4K,
    (1, 0x10): ChipSubType.SMARTMX_DESFIRE_GENERIC,
    (1, 0x16): ChipSubType.SMARTMX_DESFIRE_2K,
    (1, 0x18): ChipSubType.SMARTMX_DESFIRE_4K,
    (1, 0x1A): ChipSubType.SMARTMX_DESFIRE_8K,
    (2, 0x16): ChipSubType.SMARTMX_DESFIRE_2K,
    (2, 0x18): ChipSubType.SMARTMX_DESFIRE_4K,
    (2, 0x1A): ChipSubType.SMARTMX_DESFIRE_8K,
    (2, 0x1C): ChipSubType.SMARTMX_DESFIRE_16K,
    (2, 0x1E): ChipSubType.SMARTMX_DESFIRE_32K,
    (3, 0x16): ChipSubType.SMARTMX_DESFIRE_2K,
    (3, 0x18): ChipSubType.SMARTMX_DESFIRE_4K,
    (3, 0x1A): ChipSubType.SMARTMX_DESFIRE_8K,
    (3, 0x1C): ChipSubType.SMARTMX_DESFIRE_16K,
    (3, 0x1E): ChipSubType.SMARTMX_DESFIRE_32K,
}

# Subtype when the storage size code is not in the table.
DESFIRE_NATIVE_GENERIC = {
    0: ChipSubType.DESFIRE,
    1: ChipSubType.DESFIRE_EV1,
    2: ChipSubType.DESFIRE_EV2,
    3: ChipSubType.DESFIRE_EV3,
}

_VENDOR_TABLES = {
    VENDOR_TYPE_NATIVE: (DESFIRE_NATIVE, DESFIRE_NATIVE_GENERIC),
    VENDOR_TYPE_EMULATED: (
        DESFIRE_EMULATED,
        dict.fromkeys(range(4), ChipSubType.SMARTMX_DESFIRE_GENERIC),
    ),
}


def match_sak(sak: int) -> SakRule:
    """Return the first SAK rule matching ``sak``."""
    for rule in SAK_RULES:
        if rule.matches(sak):
            return rule
    raise ValueError(f"No SAK rule for 0x{sak:02X}")  # unreachable: rules cover every SAK


def classify_ats(stage: Stage, ats: bytes) -> ChipSubType | None:
    """Look for Mifare Plus signatures in the ATS for ``stage``."""
    table = ATS_TABLES[stage]
    if len(ats) < MIN_ATS_LENGTH:
        return table.short
    for rule in table.rules:
        if rule.signature in ats:
            return rule.subtype
    return table.unmatched


def has_desfire_version(version: bytes) -> bool:
    """True if ``version`` is a GetVersion response carrying every field used."""
    return (
        len(version) > VERSION_STORAGE_OFFSET
        and version[VERSION_MARKER_OFFSET] == VERSION_ADDITIONAL_FRAME
    )


def classify_version(version: bytes) -> ChipSubType | None:
    """Map a valid GetVersion response onto the DESFire tables.

    Returns None for vendor chip types other than native or emulated
    DESFire, which keeps the coarse type.
    """
    tables = _VENDOR_TABLES.get(version[VERSION_TYPE_OFFSET])
    if tables is None:
        return None
    sized, generic = tables
    generation = version[VERSION_MAJOR_OFFSET] & 0x0F
    if generation not in generic:
        return ChipSubType.UNSPECIFIED
    storage = version[VERSION_STORAGE_OFFSET]
    return sized.get((generation, storage), generic[generation])


def classify_layer4(ats: bytes, version: bytes) -> ChipSubType | None:
    if has_desfire_version(version):
        return classify_version(version)
    return classify_ats(Stage.LAYER4, ats)


def classify(evidence: IdentificationEvidence) -> ChipSubType | None:
    """Work out the chip subtype from collected evidence.

    Returns None when the evidence leaves the coarse type as the best
    answer (no SAK, Tag'n'Play, unknown vendor type, unmatched 4K ATS).
    """
    if evidence.sak is None:
        return None
    outcome = match_sak(evidence.sak).outcome
    if isinstance(outcome, ChipSubType):
        return outcome
    if outcome is Stage.TAG_N_PLAY:
        return None
    if outcome is Stage.LAYER4:
        return classify_layer4(evidence.ats, evidence.version)
    return classify_ats(outcome, evidence.ats)


def collect_evidence(reader: TWN4Reader) -> IdentificationEvidence:
    """Ask the reader for the evidence the SAK rules call for.

    Raises:
        TWN4Error: A transport, framing or parser failure, or a rejected
            SAK/ATS call.
    """
    sak = reader.get_sak()
    if sak is None:
        return IdentificationEvidence()

    rule = match_sak(sak)
    logger.debug("SAK 0x%02X matched rule %s", sak, rule.name)
    if not isinstance(rule.outcome, Stage) or rule.outcome is Stage.TAG_N_PLAY:
        return IdentificationEvidence(sak=sak)

    ats = reader.request_ats()
    if rule.outcome is not Stage.LAYER4:
        return IdentificationEvidence(sak=sak, ats=ats)

    # RATS left the tag in layer 4; select it again before GetVersion.
    reader.search_tag()
    try:
        version = reader.get_desfire_version()
    except ProtocolError as e:
        logger.debug("GetVersion rejected (%s), falling back to ATS", e)
        version = b""
    return IdentificationEvidence(sak=sak, ats=ats, version=version)


def identify(reader: TWN4Reader) -> Chip:
    """Search for a chip and identify it as precisely as the evidence allows.

    Never raises for device errors: a failed search reports ``NOTAG`` and a
    failure while collecting evidence leaves the coarse type in place.
    """
    try:
        tag = reader.search_tag()
        if tag.found:
            chip = Chip(uid=tag.uid, chip_type=tag.chip_type)
        else:
            # SmartMX chips can be missed by SearchTag but still answer the
            # ISO14443A multi-tag search.
            uids = reader.search_multi_tag()
            if not uids:
                return Chip()
            chip = Chip(uid=uids[0], chip_type=ChipType.MIFARE)
    except TWN4Error as e:
        logger.warning("Tag search failed: %s", e)
        return Chip()

    if chip.chip_type != ChipType.MIFARE:
        return chip

    try:
        evidence = collect_evidence(reader)
    except TWN4Error as e:
        logger.warning(
            "Identification of %s aborted, keeping %s: %s",
            chip.uid.hex().upper(),
            ChipType.MIFARE.name,
            e,
        )
        return chip

    chip.evidence = evidence
    chip.subtype = classify(evidence)
    logger.debug(
        "Chip %s identified as %s",
        chip.uid.hex().upper(),
        getattr(chip.card_type, "name", chip.card_type),
    )
    return chip
