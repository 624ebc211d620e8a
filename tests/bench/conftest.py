from __future__ import annotations

from pathlib import Path

import pytest

BENCH_OUTPUT_DIR = Path("bench_out/pytest")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "benchmark: opt-in DDSketch micro-benchmarks")
    # Target of ``--benchmark-json=bench_out/pytest/results.json``.
    BENCH_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("-m"):
        return
    skip_marker = pytest.mark.skip(reason="DDSketch benchmarks are opt-in; run with -m benchmark")
    for item in items:
        if "benchmark" in item.keywords:
            item.add_marker(skip_marker)
