# Logarithmic index mapping: value <-> bucket index with a relative-accuracy
# guarantee.
#
#   index(v)       = ln(v) * multiplier + index_offset, rounded down
#   lower_bound(i) = exp((i - index_offset) / multiplier)
#   value(i)       = lower_bound(i) * (1 + relative_accuracy)
#
# Only gamma and index_offset go on the wire; multiplier and relative_accuracy
# are re-derived on decode and must be computed exactly as below to stay
# interoperable with other implementations of the format.

from __future__ import annotations

import math
import sys
from dataclasses import dataclass, field
from enum import IntEnum

from .errors import InvalidArgumentError
from .flag import Flag, FlagType
from .serde import I32_MAX, I32_MIN, Input, Output


_CORRECTING_FACTOR: float = 1.0
_LOG_BASE: float = math.e


class IndexMappingLayout(IntEnum):
    LOG = 0

    @classmethod
    def of_flag(cls, flag: Flag) -> "IndexMappingLayout":
        try:
            return cls(flag.sub_flag)
        except ValueError:
            raise InvalidArgumentError("Unknown index mapping layout.") from None

    def to_flag(self) -> Flag:
        return Flag.with_type(FlagType.INDEX_MAPPING, int(self))


def _calculate_gamma(relative_accuracy: float, correcting_factor: float) -> float:
    exact_log_gamma = (1.0 + relative_accuracy) / (1.0 - relative_accuracy)
    return exact_log_gamma ** (1.0 / correcting_factor)


def _calculate_relative_accuracy(gamma: float, correcting_factor: float) -> float:
    exact_log_gamma = gamma ** correcting_factor
    return (exact_log_gamma - 1.0) / (exact_log_gamma + 1.0)


def _pow2(exponent: float) -> float:
    # float ** raises on overflow instead of returning inf
    if exponent >= sys.float_info.max_exp:
        return math.inf
    return 2.0 ** exponent


@dataclass(frozen=True)
class IndexMapping:
    """Immutable logarithmic value/index converter.

    Build it with :meth:`with_relative_accuracy` or :meth:`with_gamma_offset`.
    Two mappings are equal when their layout, ``gamma`` and ``index_offset``
    match; the derived fields are excluded because the two construction paths
    may disagree on them in the last ulp.
    """

    gamma: float
    index_offset: float
    multiplier: float = field(compare=False)
    relative_accuracy: float = field(compare=False)
    layout: IndexMappingLayout = IndexMappingLayout.LOG

    # ------------------------------ Construction -------------------------------
    @classmethod
    def with_relative_accuracy(
        cls, layout: IndexMappingLayout, relative_accuracy: float
    ) -> "IndexMapping":
        if not (0.0 < relative_accuracy < 1.0):
            raise InvalidArgumentError("The relative accuracy must be between 0 and 1.")
        layout = IndexMappingLayout(layout)
        gamma = _calculate_gamma(relative_accuracy, _CORRECTING_FACTOR)
        multiplier = math.log(_LOG_BASE) / math.log1p(gamma - 1.0)
        # The achievable accuracy is derived from gamma, not echoed from the input.
        return cls(
            gamma=gamma,
            index_offset=0.0,
            multiplier=multiplier,
            relative_accuracy=_calculate_relative_accuracy(gamma, 1.0),
            layout=layout,
        )

    @classmethod
    def with_gamma_offset(
        cls, layout: IndexMappingLayout, gamma: float, index_offset: float
    ) -> "IndexMapping":
        if not (gamma > 1.0 and math.isfinite(gamma)):
            raise InvalidArgumentError("The gamma must be a finite number greater than 1.")
        if not math.isfinite(index_offset):
            raise InvalidArgumentError("The index offset must be finite.")
        layout = IndexMappingLayout(layout)
        return cls(
            gamma=gamma,
            index_offset=index_offset,
            multiplier=math.log(_LOG_BASE) / math.log(gamma),
            relative_accuracy=_calculate_relative_accuracy(gamma, _CORRECTING_FACTOR),
            layout=layout,
        )

    # ------------------------------- Conversions -------------------------------
    def index(self, value: float) -> int:
        index = math.log(value) * self.multiplier + self.index_offset
        if index >= 0.0:
            truncated = int(index)
        else:
            truncated = int(index - 1.0)
        return max(I32_MIN, min(I32_MAX, truncated))

    def value(self, index: int) -> float:
        return self.lower_bound(index) * (1.0 + self.relative_accuracy)

    def lower_bound(self, index: int) -> float:
        try:
            return math.exp((index - self.index_offset) / self.multiplier)
        except OverflowError:
            return math.inf

    def upper_bound(self, index: int) -> float:
        return self.lower_bound(index + 1)

    @property
    def min_indexable_value(self) -> float:
        return max(
            _pow2((I32_MIN - self.index_offset) / self.multiplier + 1.0),
            sys.float_info.min * (1.0 + self.relative_accuracy) / (1.0 - self.relative_accuracy),
        )

    @property
    def max_indexable_value(self) -> float:
        return max(
            _pow2((I32_MAX - self.index_offset) / self.multiplier - 1.0),
            sys.float_info.max / (1.0 + self.relative_accuracy),
        )

    # --------------------------------- Codec -----------------------------------
    def encode(self, output: Output) -> None:
        self.layout.to_flag().encode(output)
        output.write_double_le(self.gamma)
        output.write_double_le(self.index_offset)

    @classmethod
    def decode(cls, input: Input, layout: IndexMappingLayout) -> "IndexMapping":
        gamma = input.read_double_le()
        index_offset = input.read_double_le()
        return cls.with_gamma_offset(layout, gamma, index_offset)
