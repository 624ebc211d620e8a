# Byte cursors and variable-length codecs shared by every encoded field.
#
# The layouts below are byte-exact with the other DDSketch implementations:
#   - unsigned varint: 7 bits per byte, low group first, high bit = "more";
#     at most 9 bytes, the 9th carrying a full 8 bits
#   - signed varint:   zig-zag mapped, then unsigned
#   - var double:      (raw(v + 1) - raw(1)) rotated left by 6, emitted 7 bits
#     at a time from the most significant end; small integral counts take
#     one or two bytes

from __future__ import annotations

import struct

from .errors import InvalidArgumentError, SketchIOError

I32_MIN: int = -(1 << 31)
I32_MAX: int = (1 << 31) - 1

_U64_MASK: int = 0xFFFF_FFFF_FFFF_FFFF
_MAX_VAR_LEN_64: int = 9
_VAR_DOUBLE_ROTATE_DISTANCE: int = 6

_DOUBLE_LE = struct.Struct("<d")
_U64_LE = struct.Struct("<Q")


def _double_to_raw_bits(value: float) -> int:
    return _U64_LE.unpack(_DOUBLE_LE.pack(value))[0]


def _raw_bits_to_double(bits: int) -> float:
    return _DOUBLE_LE.unpack(_U64_LE.pack(bits & _U64_MASK))[0]


_ONE_BITS: int = _double_to_raw_bits(1.0)


class Output:
    """Append-only little-endian byte sink."""

    __slots__ = ("_buffer",)

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def write_byte(self, value: int) -> None:
        self._buffer.append(value & 0xFF)

    def write_double_le(self, value: float) -> None:
        self._buffer += _DOUBLE_LE.pack(value)

    def to_bytes(self) -> bytes:
        return bytes(self._buffer)


class Input:
    """Sequential reader over an immutable byte buffer."""

    __slots__ = ("_view", "_position")

    def __init__(self, data: bytes) -> None:
        self._view = memoryview(bytes(data))
        self._position = 0

    @property
    def position(self) -> int:
        return self._position

    def has_remaining(self) -> bool:
        return self._position < len(self._view)

    def remaining(self) -> int:
        return len(self._view) - self._position

    def read_byte(self) -> int:
        if self._position >= len(self._view):
            raise SketchIOError("UnexpectedEof", f"no byte left at offset {self._position}")
        value = self._view[self._position]
        self._position += 1
        return value

    def read_double_le(self) -> float:
        end = self._position + _DOUBLE_LE.size
        if end > len(self._view):
            raise SketchIOError(
                "UnexpectedEof", f"need 8 bytes at offset {self._position}, have {self.remaining()}"
            )
        value = _DOUBLE_LE.unpack_from(self._view, self._position)[0]
        self._position = end
        return value


# ------------------------------- Varints -----------------------------------
def encode_unsigned_var_long(output: Output, value: int) -> None:
    value &= _U64_MASK
    length = (value.bit_length() - 1) // 7
    for _ in range(min(length, _MAX_VAR_LEN_64 - 1)):
        output.write_byte((value & 0x7F) | 0x80)
        value >>= 7
    output.write_byte(value)


def decode_unsigned_var_long(input: Input) -> int:
    value = 0
    shift = 0
    while True:
        next_byte = input.read_byte()
        if next_byte < 0x80 or shift == 7 * (_MAX_VAR_LEN_64 - 1):
            return (value | (next_byte << shift)) & _U64_MASK
        value |= (next_byte & 0x7F) << shift
        shift += 7


def unsigned_var_long_encoded_length(value: int) -> int:
    return min(_MAX_VAR_LEN_64, max(1, ((value & _U64_MASK).bit_length() + 6) // 7))


def _zig_zag(value: int) -> int:
    return ((value >> 63) ^ (value << 1)) & _U64_MASK


def encode_signed_var_long(output: Output, value: int) -> None:
    encode_unsigned_var_long(output, _zig_zag(value))


def decode_signed_var_long(input: Input) -> int:
    value = decode_unsigned_var_long(input)
    return (value >> 1) ^ -(value & 1)


def signed_var_long_encoded_length(value: int) -> int:
    return unsigned_var_long_encoded_length(_zig_zag(value))


# ----------------------------- Var doubles ---------------------------------
def _double_to_var_bits(value: float) -> int:
    bits = (_double_to_raw_bits(value + 1.0) - _ONE_BITS) & _U64_MASK
    d = _VAR_DOUBLE_ROTATE_DISTANCE
    return ((bits << d) | (bits >> (64 - d))) & _U64_MASK


def _var_bits_to_double(bits: int) -> float:
    d = _VAR_DOUBLE_ROTATE_DISTANCE
    rotated = ((bits >> d) | (bits << (64 - d))) & _U64_MASK
    return _raw_bits_to_double(rotated + _ONE_BITS) - 1.0


def encode_var_double(output: Output, value: float) -> None:
    bits = _double_to_var_bits(value)
    for _ in range(_MAX_VAR_LEN_64 - 1):
        next_byte = bits >> 57
        bits = (bits << 7) & _U64_MASK
        if bits == 0:
            output.write_byte(next_byte)
            return
        output.write_byte(next_byte | 0x80)
    output.write_byte(bits >> 56)


def decode_var_double(input: Input) -> float:
    bits = 0
    shift = 64 - 7
    while True:
        next_byte = input.read_byte()
        if shift == 1:
            bits |= next_byte
            break
        if next_byte < 0x80:
            bits |= next_byte << shift
            break
        bits |= (next_byte & 0x7F) << shift
        shift -= 7
    return _var_bits_to_double(bits)


def var_double_encoded_length(value: float) -> int:
    bits = _double_to_var_bits(value)
    trailing_zeros = 64 if bits == 0 else (bits & -bits).bit_length() - 1
    return min(_MAX_VAR_LEN_64, max(1, (64 - trailing_zeros + 6) // 7))


def i64_to_i32_exact(value: int) -> int:
    """Narrow a widened index back to the i32 domain, refusing to truncate."""
    if value < I32_MIN or value > I32_MAX:
        raise InvalidArgumentError("The index does not fit in 32 bits.")
    return value
