"""Data models for chips, tag searches and reader status codes."""

from .chip import (
    Chip,
    ChipSubType,
    ChipType,
    HFTagTypes,
    IdentificationEvidence,
    LFTagTypes,
    SearchTagResult,
    TagTypes,
)
from .status import ReaderError, ResponseError, reader_error_from_code
