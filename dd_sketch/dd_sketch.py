# DDSketch: relative-error quantile sketch (Python)
# - Logarithmic index mapping with a guaranteed relative accuracy
# - Positive / negative bucket stores plus an exact zero bucket
# - Exact count, sum, min and max tracked next to the stores
# - Merge + native flag-tagged codec + ClickHouse quantile-state codec
# Python 3.9+

from __future__ import annotations

import logging
import math
from typing import Iterable, Iterator, List, Optional

from . import flag as features
from .errors import InvalidArgumentError
from .flag import Flag, FlagType
from .mapping import IndexMapping, IndexMappingLayout
from .serde import Input, Output, decode_var_double, encode_var_double
from .store import (
    Bin,
    BinEncodingMode,
    CollapsingHighestDenseStore,
    CollapsingLowestDenseStore,
    DenseStore,
    Store,
)

logger = logging.getLogger(__name__)


class DDSketch:
    """
    Quantile sketch with relative-error guarantees (mergeable, serializable).

    Paper:
      - Masson, Rim, and Lee. "DDSketch: A fast and fully-mergeable quantile
        sketch with relative-error guarantees." VLDB 2019.

    Strategy (high level):
      - A value v > 0 is counted in bucket ``mapping.index(v)`` of the positive
        store; v < 0 goes to the negative store under ``index(-v)``; values too
        close to zero to be indexed go to a plain zero counter.
      - The quantile at q is the representative value of the bucket holding
        rank ``q * (count - 1)``, which is within ``relative_accuracy`` of the
        true value as long as that bucket was not collapsed.
      - count/sum/min/max are tracked exactly; they cannot be rebuilt from the
        stores without loss.

    Wire formats:
      - :meth:`encode` emits a sequence of (flag byte, payload) fields that
        other DDSketch implementations read.
      - :meth:`encode_clickhouse` emits the fixed-layout state used by
        ClickHouse's ``quantileDD`` family (no min/max/sum fields).
      - Both decoders merge into ``self`` and require an identical mapping.
        A payload is applied only once it has been decoded completely.

    Public API:
      accept(v, count=1), accept_all(vs), get_value_at_quantile(q),
      get_values_at_quantiles(qs), merge_with(other), encode(),
      decode_and_merge_with(b), encode_clickhouse(),
      decode_clickhouse_and_merge_with(b)
    """

    # ---------------------------- Tunable constants ----------------------------
    DEFAULT_RELATIVE_ACCURACY: float = 0.01
    DEFAULT_MAX_NUM_BINS: int = 2048

    __slots__ = (
        "_mapping",
        "_positive_store",
        "_negative_store",
        "_zero_count",
        "_count",
        "_sum",
        "_min",
        "_max",
        "_min_indexable_value",
        "_max_indexable_value",
    )

    def __init__(self, mapping: IndexMapping, positive_store: Store, negative_store: Store):
        self._mapping = mapping
        self._positive_store = positive_store
        self._negative_store = negative_store
        self._min_indexable_value = mapping.min_indexable_value
        self._max_indexable_value = mapping.max_indexable_value
        self._zero_count = 0.0
        self._count = 0.0
        self._sum = 0.0
        self._min = math.inf
        self._max = -math.inf

    @classmethod
    def logarithmic_collapsing_lowest_dense(
        cls,
        relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY,
        max_num_bins: int = DEFAULT_MAX_NUM_BINS,
    ) -> "DDSketch":
        mapping = IndexMapping.with_relative_accuracy(IndexMappingLayout.LOG, relative_accuracy)
        return cls(
            mapping,
            CollapsingLowestDenseStore(max_num_bins),
            CollapsingLowestDenseStore(max_num_bins),
        )

    @classmethod
    def logarithmic_collapsing_highest_dense(
        cls,
        relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY,
        max_num_bins: int = DEFAULT_MAX_NUM_BINS,
    ) -> "DDSketch":
        mapping = IndexMapping.with_relative_accuracy(IndexMappingLayout.LOG, relative_accuracy)
        return cls(
            mapping,
            CollapsingHighestDenseStore(max_num_bins),
            CollapsingHighestDenseStore(max_num_bins),
        )

    @classmethod
    def logarithmic_unbounded_dense(
        cls, relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY
    ) -> "DDSketch":
        mapping = IndexMapping.with_relative_accuracy(IndexMappingLayout.LOG, relative_accuracy)
        return cls(mapping, DenseStore(), DenseStore())

    def __repr__(self) -> str:
        return (
            f"DDSketch(relative_accuracy={self.get_relative_accuracy()}, count={self._count}, "
            f"zero_count={self._zero_count}, sum={self._sum}, min={self._min}, max={self._max})"
        )

    # ------------------------------- Public API --------------------------------
    def accept(self, value: float, count: float = 1.0) -> None:
        """Record ``value`` with weight ``count`` (a non-negative real)."""
        value = float(value)
        count = float(count)
        if not math.isfinite(value) or abs(value) > self._max_indexable_value:
            raise InvalidArgumentError("The input value is outside the range tracked by the sketch.")
        if not count >= 0.0:
            raise InvalidArgumentError("The count must be a non-negative number.")
        if count == 0.0:
            return

        if value > self._min_indexable_value:
            self._positive_store.add(self._mapping.index(value), count)
        elif value < -self._min_indexable_value:
            self._negative_store.add(self._mapping.index(-value), count)
        else:
            self._zero_count += count

        self._count += count
        self._sum += value * count
        if value < self._min:
            self._min = value
        if value > self._max:
            self._max = value

    def accept_all(self, values: Iterable[float]) -> None:
        for value in values:
            self.accept(value)

    def get_value_at_quantile(self, quantile: float) -> float:
        if not (0.0 <= quantile <= 1.0):
            raise InvalidArgumentError("The quantile must be between 0 and 1.")
        if self.is_empty():
            raise InvalidArgumentError("The sketch is empty.")

        rank = quantile * (self._count - 1.0)
        n = 0.0
        last: Optional[float] = None
        for index, count in self._negative_store.get_descending_iter():
            n += count
            last = -self._mapping.value(index)
            if n > rank:
                return last
        if self._zero_count > 0.0:
            n += self._zero_count
            last = 0.0
            if n > rank:
                return last
        for index, count in self._positive_store.get_ascending_iter():
            n += count
            last = self._mapping.value(index)
            if n > rank:
                return last
        # Rounding can leave the rank just past the accumulated mass.
        if last is None:
            raise InvalidArgumentError("The sketch is empty.")
        return last

    def get_values_at_quantiles(self, quantiles: Iterable[float]) -> List[float]:
        return [self.get_value_at_quantile(q) for q in quantiles]

    def merge_with(self, other: "DDSketch") -> None:
        if not isinstance(other, DDSketch):
            raise TypeError("merge_with expects a DDSketch")
        if self._mapping != other._mapping:
            raise InvalidArgumentError("The sketches do not share the same index mapping.")
        if other.is_empty():
            return

        # Snapshot the bins: other may be self.
        self._positive_store.merge_with(list(other._positive_store.get_ascending_iter()))
        self._negative_store.merge_with(list(other._negative_store.get_ascending_iter()))
        self._zero_count += other._zero_count

        self._count += other._count
        self._sum += other._sum
        if other._min < self._min:
            self._min = other._min
        if other._max > self._max:
            self._max = other._max

    def clear(self) -> None:
        self._positive_store.clear()
        self._negative_store.clear()
        self._zero_count = 0.0
        self._count = 0.0
        self._sum = 0.0
        self._min = math.inf
        self._max = -math.inf

    def is_empty(self) -> bool:
        return self._count == 0.0

    def get_count(self) -> float:
        return self._count

    def get_zero_count(self) -> float:
        return self._zero_count

    def get_sum(self) -> float:
        return self._sum

    def get_min(self) -> float:
        if self.is_empty():
            raise InvalidArgumentError("The sketch is empty.")
        return self._min

    def get_max(self) -> float:
        if self.is_empty():
            raise InvalidArgumentError("The sketch is empty.")
        return self._max

    def get_average(self) -> float:
        if self.is_empty():
            raise InvalidArgumentError("The sketch is empty.")
        return self._sum / self._count

    def get_index_mapping(self) -> IndexMapping:
        return self._mapping

    def get_relative_accuracy(self) -> float:
        return self._mapping.relative_accuracy

    def get_positive_store(self) -> Store:
        return self._positive_store

    def get_negative_store(self) -> Store:
        return self._negative_store

    # ----------------------------- Native codec --------------------------------
    def encode(self) -> bytes:
        """
        Serialize into the flag-tagged DDSketch format.

        Field order: index mapping, positive bins, negative bins, then the
        sketch features ZERO_COUNT, COUNT (var doubles) and SUM, MIN, MAX
        (little-endian doubles). Empty stores and zero counts are omitted;
        SUM, MIN and MAX go out whenever the sketch is non-empty. Decoders
        dispatch on each flag byte, so order is not significant to them.
        """
        output = Output()
        self._mapping.encode(output)
        self._positive_store.encode(output, FlagType.POSITIVE_STORE)
        self._negative_store.encode(output, FlagType.NEGATIVE_STORE)
        if self._zero_count != 0.0:
            features.ZERO_COUNT.encode(output)
            encode_var_double(output, self._zero_count)
        if self._count != 0.0:
            features.COUNT.encode(output)
            encode_var_double(output, self._count)
        if not self.is_empty():
            features.SUM.encode(output)
            output.write_double_le(self._sum)
            features.MIN.encode(output)
            output.write_double_le(self._min)
            features.MAX.encode(output)
            output.write_double_le(self._max)
        return output.to_bytes()

    def decode_and_merge_with(self, data: bytes) -> None:
        """Decode a native payload and merge it into this sketch."""
        input = Input(data)
        decoded = self._new_empty()
        has_sum = has_min = has_max = False
        while input.has_remaining():
            flag = Flag.decode(input)
            flag_type = flag.type
            if flag_type is FlagType.POSITIVE_STORE:
                decoded._positive_store.decode_and_merge_with(input, BinEncodingMode.of_flag(flag))
            elif flag_type is FlagType.NEGATIVE_STORE:
                decoded._negative_store.decode_and_merge_with(input, BinEncodingMode.of_flag(flag))
            elif flag_type is FlagType.INDEX_MAPPING:
                layout = IndexMappingLayout.of_flag(flag)
                self._check_mapping(IndexMapping.decode(input, layout))
            elif flag == features.ZERO_COUNT:
                decoded._zero_count += decode_var_double(input)
            elif flag == features.COUNT:
                # The bins carry the count already.
                decode_var_double(input)
            elif flag == features.SUM:
                decoded._sum = input.read_double_le()
                has_sum = True
            elif flag == features.MIN:
                decoded._min = input.read_double_le()
                has_min = True
            elif flag == features.MAX:
                decoded._max = input.read_double_le()
                has_max = True
            else:
                raise InvalidArgumentError("Unknown encoding flag.")

        decoded._finish_decoding(has_sum=has_sum, has_min=has_min, has_max=has_max)
        logger.debug("Decoded %d bytes into %s", input.position, decoded)
        self.merge_with(decoded)

    # --------------------------- ClickHouse codec ------------------------------
    def encode_clickhouse(self) -> bytes:
        """
        Serialize into ClickHouse's DDSketch quantile state.

        Layout (fixed order, every field always present):
          0x02 gamma(f64 LE) index_offset(f64 LE)
          0x01 positive store body
          0x03 negative store body
          0x04 zero_count(f64 LE)
        """
        output = Output()
        self._mapping.encode(output)
        output.write_byte(int(FlagType.POSITIVE_STORE))
        self._positive_store.encode_clickhouse(output)
        output.write_byte(int(FlagType.NEGATIVE_STORE))
        self._negative_store.encode_clickhouse(output)
        features.ZERO_COUNT.encode(output)
        output.write_double_le(self._zero_count)
        return output.to_bytes()

    def decode_clickhouse_and_merge_with(self, data: bytes) -> None:
        input = Input(data)
        decoded = self._new_empty()

        flag = Flag.decode(input)
        if flag.type is not FlagType.INDEX_MAPPING:
            raise InvalidArgumentError("Expected the index mapping flag.")
        self._check_mapping(IndexMapping.decode(input, IndexMappingLayout.of_flag(flag)))

        self._expect_marker(input, int(FlagType.POSITIVE_STORE), "positive store")
        decoded._positive_store.decode_clickhouse_and_merge_with(input)
        self._expect_marker(input, int(FlagType.NEGATIVE_STORE), "negative store")
        decoded._negative_store.decode_clickhouse_and_merge_with(input)
        self._expect_marker(input, features.ZERO_COUNT.marker, "zero count")
        decoded._zero_count = input.read_double_le()
        if input.has_remaining():
            raise InvalidArgumentError("Unexpected trailing bytes after the zero count.")

        decoded._finish_decoding(has_sum=False, has_min=False, has_max=False)
        logger.debug("Decoded %d ClickHouse bytes into %s", input.position, decoded)
        self.merge_with(decoded)

    # ------------------------------- Internals ---------------------------------
    def _new_empty(self) -> "DDSketch":
        return DDSketch(
            self._mapping, self._positive_store.new_empty(), self._negative_store.new_empty()
        )

    def _check_mapping(self, decoded: IndexMapping) -> None:
        if decoded != self._mapping:
            raise InvalidArgumentError(
                "The index mapping of the encoded sketch does not match this sketch."
            )

    @staticmethod
    def _expect_marker(input: Input, marker: int, field: str) -> None:
        found = input.read_byte()
        if found != marker:
            raise InvalidArgumentError(f"Expected the {field} flag 0x{marker:02X}, got 0x{found:02X}.")

    def _finish_decoding(self, *, has_sum: bool, has_min: bool, has_max: bool) -> None:
        """Fill in count, and any summary statistic the payload did not carry."""
        positive = self._positive_store
        negative = self._negative_store
        self._count = self._zero_count + positive.get_total_count() + negative.get_total_count()
        if self._count == 0.0:
            self._sum = 0.0
            self._min = math.inf
            self._max = -math.inf
            return

        if not has_sum:
            self._sum = positive.get_sum(self._mapping) - negative.get_sum(self._mapping)
        # Extremes come from the outermost non-empty buckets.
        if not has_min:
            if not negative.is_empty():
                self._min = -self._mapping.value(_first_index(negative.get_descending_iter()))
            elif self._zero_count > 0.0:
                self._min = 0.0
            else:
                self._min = self._mapping.value(_first_index(positive.get_ascending_iter()))
        if not has_max:
            if not positive.is_empty():
                self._max = self._mapping.value(_first_index(positive.get_descending_iter()))
            elif self._zero_count > 0.0:
                self._max = 0.0
            else:
                self._max = -self._mapping.value(_first_index(negative.get_ascending_iter()))
        if not (has_sum and has_min and has_max):
            logger.debug(
                "Rebuilt summary statistics from bins: sum=%s min=%s max=%s",
                self._sum,
                self._min,
                self._max,
            )


def _first_index(bins: Iterator[Bin]) -> int:
    index, _ = next(bins)
    return index
