"""Deterministic regression tests for the dense bucket stores."""
from __future__ import annotations

import logging
import random

import pytest

from dd_sketch import (
    BinEncodingMode,
    CollapsingHighestDenseStore,
    CollapsingLowestDenseStore,
    DenseStore,
    FlagType,
    InvalidArgumentError,
    SketchIOError,
)
from dd_sketch import serde
from dd_sketch.flag import Flag
from dd_sketch.serde import Input, Output

FIXED_INDICES = [66, 14, 95, 71, 63, 28, 80, 54, 67, 41, 4, 24, 93, 73, 37, 37, 51, 49, 22, 90]


def _store_with(store, indices):
    for index in indices:
        store.add(index)
    return store


def _encoded(store, flag_type: FlagType = FlagType.POSITIVE_STORE) -> bytes:
    output = Output()
    store.encode(output, flag_type)
    return output.to_bytes()


def _decoded(payload: bytes, store=None):
    store = DenseStore() if store is None else store
    cursor = Input(payload)
    flag = Flag.decode(cursor)
    store.decode_and_merge_with(cursor, BinEncodingMode.of_flag(flag))
    assert not cursor.has_remaining()
    return store


# ------------------------------- DenseStore -----------------------------------
def test_empty_store() -> None:
    store = DenseStore()
    assert store.is_empty()
    assert store.get_total_count() == 0.0
    assert list(store.get_ascending_iter()) == []
    assert list(store.get_descending_iter()) == []
    assert _encoded(store) == b""


def test_dense_store_keeps_every_bucket() -> None:
    rng = random.Random(3)
    indices = [rng.randint(-5_000, 5_000) for _ in range(2_000)]
    store = _store_with(DenseStore(), indices)

    expected = {}
    for index in indices:
        expected[index] = expected.get(index, 0.0) + 1.0
    assert store.get_min_index() == min(indices)
    assert store.get_max_index() == max(indices)
    assert store.get_total_count() == len(indices)
    assert list(store.get_ascending_iter()) == sorted(expected.items())
    assert list(store.get_descending_iter()) == sorted(expected.items(), reverse=True)


def test_counts_are_relative_to_the_offset() -> None:
    store = _store_with(DenseStore(), [7, 7, 9])
    offset = store.get_offset()
    assert store.get_count(7 - offset) == 2.0
    assert store.get_count(8 - offset) == 0.0
    assert store.get_count(9 - offset) == 1.0
    assert store.get_count(-1) == 0.0
    assert store.get_count(10_000) == 0.0


def test_fractional_and_zero_counts() -> None:
    store = DenseStore()
    store.add(3, 0.25)
    store.add(3, 0.0)
    store.add(4, 0.0)
    assert list(store.get_ascending_iter()) == [(3, 0.25)]
    assert store.get_max_index() == 3


@pytest.mark.parametrize("count", [-1.0, float("nan")])
def test_invalid_counts_are_rejected(count: float) -> None:
    store = DenseStore()
    with pytest.raises(InvalidArgumentError):
        store.add(0, count)
    assert store.is_empty()


def test_clear_resets_the_window() -> None:
    store = _store_with(DenseStore(), range(100))
    store.clear()
    assert store.is_empty()
    store.add(-3)
    assert list(store.get_ascending_iter()) == [(-3, 1.0)]


def test_merge_with_adds_bins() -> None:
    left = _store_with(DenseStore(), [1, 2, 2])
    right = _store_with(DenseStore(), [2, 500])
    left.merge_with(right.get_ascending_iter())
    assert list(left.get_ascending_iter()) == [(1, 1.0), (2, 3.0), (500, 1.0)]


def test_new_empty_keeps_configuration() -> None:
    store = _store_with(CollapsingLowestDenseStore(7), range(3))
    fresh = store.new_empty()
    assert isinstance(fresh, CollapsingLowestDenseStore)
    assert fresh.max_num_bins == 7
    assert fresh.is_empty()


# --------------------------- Collapsing stores --------------------------------
def test_collapsing_lowest_fixed_sequence() -> None:
    store = _store_with(CollapsingLowestDenseStore(10), FIXED_INDICES)
    assert store.get_max_index() == 95
    assert store.get_min_index() == 86
    assert store.get_total_count() == 20.0
    assert store.get_count(86 - store.get_offset()) == 17.0
    assert store.is_collapsed


def test_collapsing_highest_fixed_sequence() -> None:
    store = _store_with(CollapsingHighestDenseStore(10), FIXED_INDICES)
    assert store.get_min_index() == 4
    assert store.get_max_index() == 13
    assert store.get_total_count() == 20.0
    assert store.is_collapsed


def test_collapsing_lowest_folds_one_bucket_at_a_time() -> None:
    store = _store_with(CollapsingLowestDenseStore(10), range(20))
    assert store.get_min_index() == 10
    assert store.get_max_index() == 19
    assert list(store.get_ascending_iter())[0] == (10, 11.0)
    assert store.get_total_count() == 20.0


def test_collapsed_low_values_land_in_the_lowest_bucket() -> None:
    store = _store_with(CollapsingLowestDenseStore(4), [10, 11, 12, 13, 14])
    store.add(-1_000, 2.5)
    assert store.get_min_index() == 11
    assert list(store.get_ascending_iter())[0] == (11, 4.5)


def test_collapsing_store_below_capacity_matches_dense_store() -> None:
    indices = [5, -3, 17, 17, 0, 40]
    capped = _store_with(CollapsingLowestDenseStore(100), indices)
    unbounded = _store_with(DenseStore(), indices)
    assert not capped.is_collapsed
    assert list(capped.get_ascending_iter()) == list(unbounded.get_ascending_iter())


@pytest.mark.parametrize("max_num_bins", [1, 2, 10, 100])
def test_collapsing_lowest_never_exceeds_capacity(max_num_bins: int) -> None:
    rng = random.Random(max_num_bins)
    store = CollapsingLowestDenseStore(max_num_bins)
    total = 0.0
    for _ in range(3_000):
        store.add(rng.randint(-10_000, 10_000), 1.5)
        total += 1.5
        assert store.get_max_index() - store.get_min_index() + 1 <= max_num_bins
    assert store.get_total_count() == pytest.approx(total)


def test_collapsing_store_logs_when_it_collapses(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="dd_sketch.store")
    store = _store_with(CollapsingLowestDenseStore(3), [0, 1, 2])
    assert not caplog.records
    store.add(50)
    assert any(record.name == "dd_sketch.store" for record in caplog.records)


def test_clear_forgets_collapse() -> None:
    store = _store_with(CollapsingLowestDenseStore(2), [0, 10])
    assert store.is_collapsed
    store.clear()
    assert not store.is_collapsed
    assert store.is_empty()


@pytest.mark.parametrize("max_num_bins", [0, -4])
def test_capacity_must_be_positive(max_num_bins: int) -> None:
    with pytest.raises(InvalidArgumentError):
        CollapsingLowestDenseStore(max_num_bins)
    with pytest.raises(InvalidArgumentError):
        CollapsingHighestDenseStore(max_num_bins)


# ------------------------------ Native codec ----------------------------------
def test_encode_prefers_contiguous_counts() -> None:
    store = _store_with(DenseStore(), [0, 1, 2])
    assert _encoded(store) == b"\x0d\x03\x00\x02\x02\x02\x02"


def test_encode_switches_to_index_deltas_for_sparse_bins() -> None:
    store = _store_with(DenseStore(), [0, 100])
    assert _encoded(store) == b"\x05\x02\x00\x02\xc8\x01\x02"


def test_encode_tie_goes_to_contiguous_counts() -> None:
    store = _store_with(DenseStore(), [0, 1])
    assert _encoded(store) == b"\x0d\x02\x00\x02\x02\x02"


def test_negative_store_flag() -> None:
    store = _store_with(DenseStore(), [0, 1, 2])
    assert _encoded(store, FlagType.NEGATIVE_STORE)[0] == 0x0F


def test_decode_index_deltas() -> None:
    store = _decoded(b"\x09\x02\x0a\x02")
    assert list(store.get_ascending_iter()) == [(5, 1.0), (6, 1.0)]


def test_decode_contiguous_counts_with_stride() -> None:
    store = _decoded(b"\x0d\x03\x14\x04\x02\x03\x04")
    assert list(store.get_ascending_iter()) == [(10, 1.0), (12, 2.0), (14, 3.0)]


def test_decode_merges_into_existing_bins() -> None:
    store = _store_with(DenseStore(), [5, 5])
    _decoded(b"\x09\x02\x0a\x02", store)
    assert list(store.get_ascending_iter()) == [(5, 3.0), (6, 1.0)]


def test_encode_then_decode_keeps_dyadic_counts() -> None:
    store = DenseStore()
    store.add(-40, 0.25)
    store.add(-39, 3.0)
    store.add(900, 12345.5)
    decoded = _decoded(_encoded(store))
    assert list(decoded.get_ascending_iter()) == list(store.get_ascending_iter())


def test_unknown_bin_encoding_mode_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        _decoded(b"\x01\x00")


def test_index_overflow_is_rejected() -> None:
    output = Output()
    Flag.with_type(FlagType.POSITIVE_STORE, int(BinEncodingMode.INDEX_DELTAS_AND_COUNTS)).encode(output)
    serde.encode_unsigned_var_long(output, 2)
    serde.encode_signed_var_long(output, serde.I32_MAX)
    serde.encode_var_double(output, 1.0)
    serde.encode_signed_var_long(output, 1)
    serde.encode_var_double(output, 1.0)
    with pytest.raises(InvalidArgumentError):
        _decoded(output.to_bytes())


def test_truncated_store_is_an_io_error() -> None:
    with pytest.raises(SketchIOError) as excinfo:
        _decoded(b"\x0d\x03\x00\x02\x02\x02")
    assert excinfo.value.kind == "UnexpectedEof"


# ---------------------------- ClickHouse codec --------------------------------
def _clickhouse(store) -> bytes:
    output = Output()
    store.encode_clickhouse(output)
    return output.to_bytes()


def test_clickhouse_empty_store_is_a_zero_length_dense_block() -> None:
    assert _clickhouse(DenseStore()) == b"\x03\x00\x00\x02"


def test_clickhouse_dense_block_uses_raw_doubles() -> None:
    store = _store_with(DenseStore(), [3, 4, 4])
    payload = _clickhouse(store)
    assert payload[:4] == b"\x03\x02\x06\x02"
    cursor = Input(payload[4:])
    assert [cursor.read_double_le(), cursor.read_double_le()] == [1.0, 2.0]
    assert not cursor.has_remaining()


def test_clickhouse_sparse_block() -> None:
    store = _store_with(DenseStore(), [0, 100])
    payload = _clickhouse(store)
    assert payload[0] == int(BinEncodingMode.INDEX_DELTAS_AND_COUNTS)

    restored = DenseStore()
    cursor = Input(payload)
    restored.decode_clickhouse_and_merge_with(cursor)
    assert not cursor.has_remaining()
    assert list(restored.get_ascending_iter()) == [(0, 1.0), (100, 1.0)]


def test_clickhouse_rejects_index_deltas_mode() -> None:
    with pytest.raises(InvalidArgumentError):
        DenseStore().decode_clickhouse_and_merge_with(Input(b"\x02\x00"))
