"""One-byte field tags of the DDSketch wire format.

A flag packs the field type in its two low bits and a type-specific
sub-flag (mapping layout, bin encoding mode or sketch feature id) in the
remaining six: ``marker = (sub_flag << 2) | type``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .serde import Input, Output


class FlagType(IntEnum):
    SKETCH_FEATURES = 0b00
    POSITIVE_STORE = 0b01
    INDEX_MAPPING = 0b10
    NEGATIVE_STORE = 0b11


@dataclass(frozen=True)
class Flag:
    marker: int

    @classmethod
    def with_type(cls, flag_type: FlagType, sub_flag: int) -> "Flag":
        return cls(((sub_flag << 2) | int(flag_type)) & 0xFF)

    @property
    def type(self) -> FlagType:
        return FlagType(self.marker & 0b11)

    @property
    def sub_flag(self) -> int:
        return self.marker >> 2

    def encode(self, output: Output) -> None:
        output.write_byte(self.marker)

    @classmethod
    def decode(cls, input: Input) -> "Flag":
        return cls(input.read_byte())


# Sketch features. Markers: ZERO_COUNT 0x04, COUNT 0xA0, SUM 0x84, MIN 0x88, MAX 0x8C.
ZERO_COUNT = Flag.with_type(FlagType.SKETCH_FEATURES, 0x01)
COUNT = Flag.with_type(FlagType.SKETCH_FEATURES, 0x28)
SUM = Flag.with_type(FlagType.SKETCH_FEATURES, 0x21)
MIN = Flag.with_type(FlagType.SKETCH_FEATURES, 0x22)
MAX = Flag.with_type(FlagType.SKETCH_FEATURES, 0x23)
