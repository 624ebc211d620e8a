"""Property-based tests exercising the guarantees of :mod:`dd_sketch`."""
from __future__ import annotations

from typing import List, Sequence

import pytest

hypothesis = pytest.importorskip("hypothesis")
st = hypothesis.strategies
given = hypothesis.given
settings = hypothesis.settings

from dd_sketch import CollapsingLowestDenseStore, DDSketch, IndexMapping, IndexMappingLayout

values = st.floats(min_value=-1e9, max_value=1e9, allow_nan=False, allow_infinity=False)


def _sorted_list(seq: Sequence[float]) -> List[float]:
    ordered = list(seq)
    ordered.sort()
    return ordered


def _sketch_of(xs: Sequence[float], relative_accuracy: float = 0.02) -> DDSketch:
    sketch = DDSketch.logarithmic_collapsing_lowest_dense(relative_accuracy, 4096)
    sketch.accept_all(xs)
    return sketch


@given(
    st.lists(values, min_size=1, max_size=500),
    st.floats(min_value=0.0, max_value=1.0),
    st.sampled_from([0.005, 0.01, 0.02, 0.05]),
)
@settings(max_examples=100, deadline=None)
def test_quantile_relative_error_is_bounded(
    xs: List[float], q: float, relative_accuracy: float
) -> None:
    sketch = DDSketch.logarithmic_unbounded_dense(relative_accuracy)
    sketch.accept_all(xs)

    estimate = sketch.get_value_at_quantile(q)
    truth = _sorted_list(xs)[int(q * (len(xs) - 1))]
    # Values below the indexable range are answered as exactly zero.
    slack = sketch.get_index_mapping().min_indexable_value
    assert abs(estimate - truth) <= relative_accuracy * abs(truth) * (1 + 1e-9) + slack


@given(
    st.lists(st.integers(min_value=-100_000, max_value=100_000), min_size=0, max_size=1_000),
    st.integers(min_value=1, max_value=300),
)
@settings(max_examples=75, deadline=None)
def test_collapsing_store_stays_within_capacity(indices: List[int], max_num_bins: int) -> None:
    store = CollapsingLowestDenseStore(max_num_bins)
    for index in indices:
        store.add(index)
        assert store.get_max_index() - store.get_min_index() + 1 <= max_num_bins

    assert store.get_total_count() == len(indices)
    if indices:
        assert store.get_max_index() == max(indices)
        assert sum(count for _, count in store.get_ascending_iter()) == len(indices)


@given(
    st.floats(min_value=1e-4, max_value=0.5),
    st.integers(min_value=-2_000, max_value=2_000),
)
@settings(max_examples=100, deadline=None)
def test_mapping_bounds_are_monotone(relative_accuracy: float, index: int) -> None:
    mapping = IndexMapping.with_relative_accuracy(IndexMappingLayout.LOG, relative_accuracy)
    lower = mapping.lower_bound(index)
    upper = mapping.upper_bound(index)
    hypothesis.assume(0.0 < lower and upper < float("inf"))
    assert lower < upper
    assert lower <= mapping.value(index) <= upper
    assert upper == mapping.lower_bound(index + 1)


@given(st.lists(values, min_size=0, max_size=500))
@settings(max_examples=75, deadline=None)
def test_native_round_trip_matches_bins(xs: List[float]) -> None:
    sketch = _sketch_of(xs)
    restored = _sketch_of([])
    restored.decode_and_merge_with(sketch.encode())

    assert restored.get_count() == sketch.get_count()
    assert restored.get_zero_count() == sketch.get_zero_count()
    assert restored.get_sum() == sketch.get_sum()
    for store in ("get_positive_store", "get_negative_store"):
        assert list(getattr(restored, store)().get_ascending_iter()) == list(
            getattr(sketch, store)().get_ascending_iter()
        )
    if xs:
        assert restored.get_min() == sketch.get_min()
        assert restored.get_max() == sketch.get_max()


@given(st.lists(values, min_size=0, max_size=500))
@settings(max_examples=75, deadline=None)
def test_clickhouse_round_trip_matches_bins(xs: List[float]) -> None:
    sketch = _sketch_of(xs)
    restored = _sketch_of([])
    restored.decode_clickhouse_and_merge_with(sketch.encode_clickhouse())

    assert restored.get_count() == sketch.get_count()
    assert restored.get_zero_count() == sketch.get_zero_count()
    for store in ("get_positive_store", "get_negative_store"):
        assert list(getattr(restored, store)().get_ascending_iter()) == list(
            getattr(sketch, store)().get_ascending_iter()
        )
    if xs:
        for q in [0.0, 0.5, 1.0]:
            assert restored.get_value_at_quantile(q) == sketch.get_value_at_quantile(q)


@given(st.lists(values, min_size=0, max_size=300), st.lists(values, min_size=0, max_size=300))
@settings(max_examples=60, deadline=None)
def test_merge_matches_union(xs: List[float], ys: List[float]) -> None:
    union = _sketch_of(xs + ys)

    forward = _sketch_of(xs)
    forward.merge_with(_sketch_of(ys))
    backward = _sketch_of(ys)
    backward.merge_with(_sketch_of(xs))

    for merged in (forward, backward):
        assert merged.get_count() == union.get_count()
        assert merged.get_sum() == pytest.approx(union.get_sum(), rel=1e-9, abs=1.0)
        if xs or ys:
            assert merged.get_min() == union.get_min()
            assert merged.get_max() == union.get_max()
            for q in [0.0, 0.25, 0.5, 0.75, 1.0]:
                assert merged.get_value_at_quantile(q) == union.get_value_at_quantile(q)
