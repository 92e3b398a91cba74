"""Protocol layer: line framing, command builders and response parsing."""

from .framing import decode, encode, to_wire
from .parser import ResponseParser
from .commands import ApiGroup, build_command
