# Bucket stores for DDSketch.
#
# A store maps i32 bucket indices to non-negative float counts. The dense
# stores keep a contiguous list of counters covering [offset, offset + len),
# with [min_index, max_index] the populated window inside it. The collapsing
# variants cap that list at ``max_num_bins`` and fold the lowest (or highest)
# buckets into one once the window would grow past the cap.
#
# The codec lives on the abstract base so that every store strategy shares
# the same wire layout.

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import TYPE_CHECKING, Iterable, Iterator, List, Tuple

from . import serde
from .errors import InvalidArgumentError
from .flag import Flag, FlagType
from .serde import I32_MAX, I32_MIN, Input, Output

if TYPE_CHECKING:
    from .mapping import IndexMapping

logger = logging.getLogger(__name__)

Bin = Tuple[int, float]

_FLOAT64_SIZE: int = 8


class BinEncodingMode(IntEnum):
    INDEX_DELTAS_AND_COUNTS = 1
    INDEX_DELTAS = 2
    CONTIGUOUS_COUNTS = 3

    @classmethod
    def of_flag(cls, flag: Flag) -> "BinEncodingMode":
        return cls.of_marker(flag.sub_flag)

    @classmethod
    def of_marker(cls, sub_flag: int) -> "BinEncodingMode":
        try:
            return cls(sub_flag)
        except ValueError:
            raise InvalidArgumentError("Unknown BinEncodingMode.") from None

    def to_flag(self, store_flag_type: FlagType) -> Flag:
        return Flag.with_type(store_flag_type, int(self))


class Store(ABC):
    """Per-bucket counters with a shared encode/decode/merge surface.

    Subclasses supply the primitives (``add``, ``get_count`` and the index
    accessors); merging, iteration, ``get_sum`` and both wire codecs are
    written once here in terms of them.
    """

    __slots__ = ()

    # ------------------------------ Primitives ---------------------------------
    @abstractmethod
    def add(self, index: int, count: float = 1.0) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def is_empty(self) -> bool:
        ...

    @abstractmethod
    def get_total_count(self) -> float:
        ...

    @abstractmethod
    def get_offset(self) -> int:
        ...

    @abstractmethod
    def get_min_index(self) -> int:
        ...

    @abstractmethod
    def get_max_index(self) -> int:
        ...

    @abstractmethod
    def get_count(self, i: int) -> float:
        """Count at slot ``i``, relative to :meth:`get_offset`."""

    @abstractmethod
    def new_empty(self) -> "Store":
        """Return an empty store configured like this one."""

    # ------------------------------ Merging ------------------------------------
    def add_bin(self, bin: Bin) -> None:
        index, count = bin
        self.add(index, count)

    def merge_with(self, bins: Iterable[Bin]) -> None:
        for bin in bins:
            self.add_bin(bin)

    # ------------------------------ Iteration ----------------------------------
    def get_ascending_iter(self) -> Iterator[Bin]:
        """Non-empty ``(index, count)`` pairs from ``min_index`` upward.

        Every call returns a fresh cursor. It reads the live counters, so it
        must not outlive a mutation of the store.
        """
        if self.is_empty():
            return
        offset = self.get_offset()
        for index in range(self.get_min_index(), self.get_max_index() + 1):
            count = self.get_count(index - offset)
            if count != 0.0:
                yield index, count

    def get_descending_iter(self) -> Iterator[Bin]:
        """Non-empty ``(index, count)`` pairs from ``max_index`` downward."""
        if self.is_empty():
            return
        offset = self.get_offset()
        for index in range(self.get_max_index(), self.get_min_index() - 1, -1):
            count = self.get_count(index - offset)
            if count != 0.0:
                yield index, count

    def get_sum(self, index_mapping: "IndexMapping") -> float:
        """Approximate sum of the recorded values, from bucket representatives."""
        return math.fsum(
            index_mapping.value(index) * count for index, count in self.get_ascending_iter()
        )

    # ---------------------------- Native codec ---------------------------------
    def encode(self, output: Output, store_flag_type: FlagType) -> None:
        """Write the bins with whichever of the dense/sparse layouts is smaller.

        Ties go to the dense layout. An empty store writes nothing.
        """
        if self.is_empty():
            return

        min_index = self.get_min_index()
        max_index = self.get_max_index()
        offset = self.get_offset()
        num_bins = max_index - min_index + 1

        dense_size = serde.unsigned_var_long_encoded_length(num_bins)
        dense_size += serde.signed_var_long_encoded_length(min_index)
        dense_size += serde.signed_var_long_encoded_length(1)

        sparse_size = 0
        num_non_empty_bins = 0
        previous_index = 0
        for i in range(min_index - offset, max_index - offset + 1):
            count = self.get_count(i)
            count_length = serde.var_double_encoded_length(count)
            dense_size += count_length
            if count != 0.0:
                num_non_empty_bins += 1
                index = offset + i
                sparse_size += serde.signed_var_long_encoded_length(index - previous_index)
                sparse_size += count_length
                previous_index = index
        sparse_size += serde.unsigned_var_long_encoded_length(num_non_empty_bins)

        if dense_size <= sparse_size:
            BinEncodingMode.CONTIGUOUS_COUNTS.to_flag(store_flag_type).encode(output)
            serde.encode_unsigned_var_long(output, num_bins)
            serde.encode_signed_var_long(output, min_index)
            serde.encode_signed_var_long(output, 1)
            for i in range(min_index - offset, max_index - offset + 1):
                serde.encode_var_double(output, self.get_count(i))
        else:
            BinEncodingMode.INDEX_DELTAS_AND_COUNTS.to_flag(store_flag_type).encode(output)
            serde.encode_unsigned_var_long(output, num_non_empty_bins)
            previous_index = 0
            for index, count in self.get_ascending_iter():
                serde.encode_signed_var_long(output, index - previous_index)
                serde.encode_var_double(output, count)
                previous_index = index

    def decode_and_merge_with(self, input: Input, mode: BinEncodingMode) -> None:
        if mode is BinEncodingMode.INDEX_DELTAS_AND_COUNTS:
            num_bins = serde.decode_unsigned_var_long(input)
            index = 0
            for _ in range(num_bins):
                index += serde.decode_signed_var_long(input)
                count = serde.decode_var_double(input)
                self.add(serde.i64_to_i32_exact(index), count)
        elif mode is BinEncodingMode.INDEX_DELTAS:
            num_bins = serde.decode_unsigned_var_long(input)
            index = 0
            for _ in range(num_bins):
                index += serde.decode_signed_var_long(input)
                self.add(serde.i64_to_i32_exact(index), 1.0)
        elif mode is BinEncodingMode.CONTIGUOUS_COUNTS:
            num_bins = serde.decode_unsigned_var_long(input)
            index = serde.decode_signed_var_long(input)
            index_delta = serde.decode_signed_var_long(input)
            for _ in range(num_bins):
                count = serde.decode_var_double(input)
                self.add(serde.i64_to_i32_exact(index), count)
                index += index_delta
        else:
            raise InvalidArgumentError("Unknown BinEncodingMode.")

    # -------------------------- ClickHouse codec -------------------------------
    def encode_clickhouse(self, output: Output) -> None:
        """Write the bins in the ClickHouse quantile-state layout.

        Same dense/sparse choice as :meth:`encode`, but the mode is a bare
        byte, counts are raw little-endian Float64 values, and an empty store
        still writes a zero-length dense block.
        """
        if self.is_empty():
            output.write_byte(int(BinEncodingMode.CONTIGUOUS_COUNTS))
            serde.encode_unsigned_var_long(output, 0)
            serde.encode_signed_var_long(output, 0)
            serde.encode_signed_var_long(output, 1)
            return

        min_index = self.get_min_index()
        max_index = self.get_max_index()
        num_bins = max_index - min_index + 1
        bins = list(self.get_ascending_iter())

        dense_size = (
            serde.unsigned_var_long_encoded_length(num_bins)
            + serde.signed_var_long_encoded_length(min_index)
            + serde.signed_var_long_encoded_length(1)
            + _FLOAT64_SIZE * num_bins
        )
        sparse_size = serde.unsigned_var_long_encoded_length(len(bins))
        previous_index = 0
        for index, _ in bins:
            sparse_size += serde.signed_var_long_encoded_length(index - previous_index)
            sparse_size += _FLOAT64_SIZE
            previous_index = index

        if dense_size <= sparse_size:
            output.write_byte(int(BinEncodingMode.CONTIGUOUS_COUNTS))
            serde.encode_unsigned_var_long(output, num_bins)
            serde.encode_signed_var_long(output, min_index)
            serde.encode_signed_var_long(output, 1)
            offset = self.get_offset()
            for i in range(min_index - offset, max_index - offset + 1):
                output.write_double_le(self.get_count(i))
        else:
            output.write_byte(int(BinEncodingMode.INDEX_DELTAS_AND_COUNTS))
            serde.encode_unsigned_var_long(output, len(bins))
            previous_index = 0
            for index, count in bins:
                serde.encode_signed_var_long(output, index - previous_index)
                output.write_double_le(count)
                previous_index = index

    def decode_clickhouse_and_merge_with(self, input: Input) -> None:
        mode = BinEncodingMode.of_marker(input.read_byte())
        if mode is BinEncodingMode.CONTIGUOUS_COUNTS:
            num_bins = serde.decode_unsigned_var_long(input)
            index = serde.decode_signed_var_long(input)
            index_delta = serde.decode_signed_var_long(input)
            for _ in range(num_bins):
                count = input.read_double_le()
                self.add(serde.i64_to_i32_exact(index), count)
                index += index_delta
        elif mode is BinEncodingMode.INDEX_DELTAS_AND_COUNTS:
            num_bins = serde.decode_unsigned_var_long(input)
            index = 0
            for _ in range(num_bins):
                index += serde.decode_signed_var_long(input)
                self.add(serde.i64_to_i32_exact(index), input.read_double_le())
        else:
            raise InvalidArgumentError("Unsupported BinEncodingMode for the ClickHouse layout.")


class DenseStore(Store):
    """Unbounded dense store; grows its counter list in fixed increments."""

    # ---------------------------- Tunable constants ----------------------------
    _ARRAY_LENGTH_GROWTH_INCREMENT: int = 64
    _ARRAY_LENGTH_OVERHEAD_RATIO: float = 0.1

    __slots__ = ("_counts", "_offset", "_min_index", "_max_index", "_growth_increment", "_overhead")

    def __init__(self, array_length_growth_increment: int = _ARRAY_LENGTH_GROWTH_INCREMENT):
        if array_length_growth_increment <= 0:
            raise InvalidArgumentError("The array length growth increment must be positive.")
        self._growth_increment = int(array_length_growth_increment)
        self._overhead = int(self._growth_increment * self._ARRAY_LENGTH_OVERHEAD_RATIO)
        self._counts: List[float] = []
        self._offset = 0
        self._min_index = I32_MAX
        self._max_index = I32_MIN

    def __repr__(self) -> str:
        bins = ", ".join(f"{i}: {c}" for i, c in self.get_ascending_iter())
        return f"{type(self).__name__}({{{bins}}})"

    def new_empty(self) -> "DenseStore":
        return DenseStore(self._growth_increment)

    # ------------------------------- Public API --------------------------------
    def add(self, index: int, count: float = 1.0) -> None:
        if not count >= 0.0:
            raise InvalidArgumentError("The count must be a non-negative number.")
        if count == 0.0:
            return
        array_index = self._normalize(index)
        self._counts[array_index] += count

    def clear(self) -> None:
        self._counts = [0.0] * len(self._counts)
        self._offset = 0
        self._min_index = I32_MAX
        self._max_index = I32_MIN

    def is_empty(self) -> bool:
        return self._max_index < self._min_index

    def get_total_count(self) -> float:
        if self.is_empty():
            return 0.0
        return self._get_total_count(self._min_index, self._max_index)

    def get_offset(self) -> int:
        return self._offset

    def get_min_index(self) -> int:
        return self._min_index

    def get_max_index(self) -> int:
        return self._max_index

    def get_count(self, i: int) -> float:
        if 0 <= i < len(self._counts):
            return self._counts[i]
        return 0.0

    # ------------------------------- Internals ---------------------------------
    def _normalize(self, index: int) -> int:
        if index < self._min_index or index > self._max_index:
            self._extend_range(index, index)
        return index - self._offset

    def _get_new_length(self, new_min_index: int, new_max_index: int) -> int:
        desired_length = new_max_index - new_min_index + 1
        return (
            (desired_length + self._overhead - 1) // self._growth_increment + 1
        ) * self._growth_increment

    def _extend_range(self, new_min_index: int, new_max_index: int) -> None:
        new_min_index = min(new_min_index, self._min_index)
        new_max_index = max(new_max_index, self._max_index)
        if self.is_empty():
            initial_length = self._get_new_length(new_min_index, new_max_index)
            if initial_length >= len(self._counts):
                self._counts = [0.0] * initial_length
            self._offset = new_min_index
            self._min_index = new_min_index
            self._max_index = new_max_index
            self._adjust(new_min_index, new_max_index)
        elif new_min_index >= self._offset and new_max_index < self._offset + len(self._counts):
            self._min_index = new_min_index
            self._max_index = new_max_index
        else:
            # Grow with headroom, then re-centre.
            new_length = self._get_new_length(new_min_index, new_max_index)
            if new_length > len(self._counts):
                self._counts.extend([0.0] * (new_length - len(self._counts)))
            self._adjust(new_min_index, new_max_index)

    def _adjust(self, new_min_index: int, new_max_index: int) -> None:
        self._center_counts(new_min_index, new_max_index)

    def _shift_counts(self, shift: int) -> None:
        min_array_index = self._min_index - self._offset
        max_array_index = self._max_index - self._offset
        counts = self._counts
        counts[min_array_index + shift : max_array_index + 1 + shift] = counts[
            min_array_index : max_array_index + 1
        ]
        if shift > 0:
            counts[min_array_index : min_array_index + shift] = [0.0] * shift
        elif shift < 0:
            counts[max_array_index + 1 + shift : max_array_index + 1] = [0.0] * -shift
        self._offset -= shift

    def _center_counts(self, new_min_index: int, new_max_index: int) -> None:
        middle_index = new_min_index + (new_max_index - new_min_index + 1) // 2
        self._shift_counts(self._offset + len(self._counts) // 2 - middle_index)
        self._min_index = new_min_index
        self._max_index = new_max_index

    def _get_total_count(self, from_index: int, to_index: int) -> float:
        return math.fsum(self._counts[from_index - self._offset : to_index - self._offset + 1])

    def _reset_counts(self, from_index: int, to_index: int) -> None:
        start = from_index - self._offset
        stop = to_index - self._offset + 1
        self._counts[start:stop] = [0.0] * (stop - start)


class CollapsingLowestDenseStore(DenseStore):
    """Dense store capped at ``max_num_bins``; collapses the lowest buckets.

    Once collapsed, any index below ``min_index`` is counted in the
    ``min_index`` bucket, so relative accuracy is lost only on the lowest
    quantiles.
    """

    __slots__ = ("_max_num_bins", "_is_collapsed")

    def __init__(
        self,
        max_num_bins: int,
        array_length_growth_increment: int = DenseStore._ARRAY_LENGTH_GROWTH_INCREMENT,
    ):
        if max_num_bins <= 0:
            raise InvalidArgumentError("The maximum number of bins must be positive.")
        super().__init__(array_length_growth_increment)
        self._max_num_bins = int(max_num_bins)
        self._is_collapsed = False

    @property
    def max_num_bins(self) -> int:
        return self._max_num_bins

    @property
    def is_collapsed(self) -> bool:
        return self._is_collapsed

    def new_empty(self) -> "CollapsingLowestDenseStore":
        return type(self)(self._max_num_bins, self._growth_increment)

    def clear(self) -> None:
        super().clear()
        self._is_collapsed = False

    def _get_new_length(self, new_min_index: int, new_max_index: int) -> int:
        return min(super()._get_new_length(new_min_index, new_max_index), self._max_num_bins)

    def _normalize(self, index: int) -> int:
        if index < self._min_index:
            if not self._is_collapsed:
                self._extend_range(index, index)
            if self._is_collapsed:
                return self._min_index - self._offset
        elif index > self._max_index:
            self._extend_range(index, index)
        return index - self._offset

    def _adjust(self, new_min_index: int, new_max_index: int) -> None:
        if new_max_index - new_min_index + 1 <= len(self._counts):
            self._center_counts(new_min_index, new_max_index)
            return

        # The window is too wide: keep the highest indices, fold the rest.
        new_min_index = new_max_index - len(self._counts) + 1
        if new_min_index >= self._max_index:
            # Everything collapses into a single bucket.
            total_count = self.get_total_count()
            self._reset_counts(self._min_index, self._max_index)
            self._offset = new_min_index
            self._min_index = new_min_index
            self._counts[0] = total_count
            logger.debug("Collapsed all bins into index %d (count %s)", new_min_index, total_count)
        else:
            shift = self._offset - new_min_index
            if shift < 0:
                collapsed_count = self._get_total_count(self._min_index, new_min_index - 1)
                self._reset_counts(self._min_index, new_min_index - 1)
                self._counts[new_min_index - self._offset] += collapsed_count
                self._min_index = new_min_index
                self._shift_counts(shift)
                logger.debug(
                    "Collapsed bins below index %d (folded count %s)", new_min_index, collapsed_count
                )
            else:
                self._shift_counts(shift)
                self._min_index = new_min_index
        self._max_index = new_max_index
        self._is_collapsed = True


class CollapsingHighestDenseStore(DenseStore):
    """Dense store capped at ``max_num_bins``; collapses the highest buckets."""

    __slots__ = ("_max_num_bins", "_is_collapsed")

    def __init__(
        self,
        max_num_bins: int,
        array_length_growth_increment: int = DenseStore._ARRAY_LENGTH_GROWTH_INCREMENT,
    ):
        if max_num_bins <= 0:
            raise InvalidArgumentError("The maximum number of bins must be positive.")
        super().__init__(array_length_growth_increment)
        self._max_num_bins = int(max_num_bins)
        self._is_collapsed = False

    @property
    def max_num_bins(self) -> int:
        return self._max_num_bins

    @property
    def is_collapsed(self) -> bool:
        return self._is_collapsed

    def new_empty(self) -> "CollapsingHighestDenseStore":
        return type(self)(self._max_num_bins, self._growth_increment)

    def clear(self) -> None:
        super().clear()
        self._is_collapsed = False

    def _get_new_length(self, new_min_index: int, new_max_index: int) -> int:
        return min(super()._get_new_length(new_min_index, new_max_index), self._max_num_bins)

    def _normalize(self, index: int) -> int:
        if index > self._max_index:
            if not self._is_collapsed:
                self._extend_range(index, index)
            if self._is_collapsed:
                return self._max_index - self._offset
        elif index < self._min_index:
            self._extend_range(index, index)
        return index - self._offset

    def _adjust(self, new_min_index: int, new_max_index: int) -> None:
        if new_max_index - new_min_index + 1 <= len(self._counts):
            self._center_counts(new_min_index, new_max_index)
            return

        new_max_index = new_min_index + len(self._counts) - 1
        if new_max_index <= self._min_index:
            total_count = self.get_total_count()
            self._reset_counts(self._min_index, self._max_index)
            self._offset = new_min_index
            self._max_index = new_max_index
            self._counts[-1] = total_count
            logger.debug("Collapsed all bins into index %d (count %s)", new_max_index, total_count)
        else:
            shift = self._offset - new_min_index
            if shift > 0:
                collapsed_count = self._get_total_count(new_max_index + 1, self._max_index)
                self._reset_counts(new_max_index + 1, self._max_index)
                self._counts[new_max_index - self._offset] += collapsed_count
                self._max_index = new_max_index
                self._shift_counts(shift)
                logger.debug(
                    "Collapsed bins above index %d (folded count %s)", new_max_index, collapsed_count
                )
            else:
                self._shift_counts(shift)
                self._max_index = new_max_index
        self._min_index = new_min_index
        self._is_collapsed = True
