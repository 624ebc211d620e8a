#!/usr/bin/env python3
"""Validate benchmark outputs against regression thresholds.

This script is intended to run in CI after ``benchmarks/bench_ddsketch.py``. It reads
CSV outputs from ``bench_out`` (or a supplied directory) and enforces
conservative performance and accuracy targets so regressions surface early.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd


# Estimates must stay within the configured relative accuracy; the slack only
# absorbs floating-point rounding in the mapping.
ACCURACY_REL_SLACK = 1e-9
# Pure-Python inserts on shared CI runners; the floor only catches
# order-of-magnitude regressions in the store growth path.
THROUGHPUT_MIN_UPS = 50_000
LATENCY_P95_MAX_US = 5_000.0
MERGE_TIME_MAX_S = 2.0
ENCODED_SIZE_MAX_BYTES = 64 * 1024


def _load_csv(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Expected benchmark artifact missing: {path}")
    return pd.read_csv(path)


def _check_accuracy(df: pd.DataFrame) -> Tuple[bool, Dict[str, float]]:
    if df.empty:
        return True, {"overall": 0.0}
    excess = df["rel_error"] - df["relative_accuracy"] * (1.0 + ACCURACY_REL_SLACK)
    worst = df.groupby(["mode"])["rel_error"].max().to_dict()
    worst.setdefault("overall", float(df["rel_error"].max()))
    return bool((excess <= 0.0).all()), worst


def _check_throughput(df: pd.DataFrame) -> Tuple[bool, float]:
    minimum = float(df["updates_per_sec"].min()) if not df.empty else float("inf")
    return minimum >= THROUGHPUT_MIN_UPS, minimum


def _check_latency(df: pd.DataFrame) -> Tuple[bool, float]:
    if df.empty:
        return True, 0.0
    p95 = float(df["latency_us"].quantile(0.95))
    return p95 <= LATENCY_P95_MAX_US, p95


def _check_merge(df: pd.DataFrame) -> Tuple[bool, float]:
    if df.empty:
        return True, 0.0
    maximum = float(df["merge_time_s"].max())
    return maximum <= MERGE_TIME_MAX_S, maximum


def _check_encoding(df: pd.DataFrame) -> Tuple[bool, float]:
    if df.empty:
        return True, 0.0
    maximum = float(df["size_bytes"].max())
    return maximum <= ENCODED_SIZE_MAX_BYTES, maximum


def _summarise(results: Dict[str, Dict[str, object]]) -> str:
    lines: List[str] = ["# Benchmark validation summary", ""]
    lines.append("| Check | Threshold | Observed | Status |")
    lines.append("| --- | --- | --- | --- |")
    for name, payload in results.items():
        threshold = payload["threshold"]
        observed = payload["observed"]
        status = "PASS" if payload["ok"] else "FAIL"
        lines.append(f"| {name} | {threshold} | {observed} | {status} |")
    lines.append("")
    lines.append("```json")
    lines.append(json.dumps(results, indent=2, sort_keys=True))
    lines.append("```")
    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("outdir", nargs="?", default="bench_out", help="Directory containing benchmark CSVs")
    parser.add_argument("--summary", default="bench_summary.md", help="Filename for the generated markdown summary")
    args = parser.parse_args()

    outdir = Path(args.outdir)
    accuracy = _load_csv(outdir / "accuracy.csv")
    throughput = _load_csv(outdir / "update_throughput.csv")
    latency = _load_csv(outdir / "query_latency.csv")
    merge = _load_csv(outdir / "merge.csv")
    encoding = _load_csv(outdir / "encoding.csv")

    summary: Dict[str, Dict[str, object]] = {}

    accuracy_ok, accuracy_obs = _check_accuracy(accuracy)
    summary["Accuracy rel error"] = {
        "threshold": "<= relative_accuracy",
        "observed": {mode: round(value, 6) for mode, value in accuracy_obs.items()},
        "ok": accuracy_ok,
    }

    throughput_ok, throughput_obs = _check_throughput(throughput)
    summary["Update throughput"] = {
        "threshold": f">= {THROUGHPUT_MIN_UPS} updates/sec",
        "observed": round(throughput_obs, 2),
        "ok": throughput_ok,
    }

    latency_ok, latency_obs = _check_latency(latency)
    summary["Query latency p95"] = {
        "threshold": f"<= {LATENCY_P95_MAX_US} µs",
        "observed": round(latency_obs, 2),
        "ok": latency_ok,
    }

    merge_ok, merge_obs = _check_merge(merge)
    summary["Merge time"] = {
        "threshold": f"<= {MERGE_TIME_MAX_S} s",
        "observed": round(merge_obs, 3),
        "ok": merge_ok,
    }

    encoding_ok, encoding_obs = _check_encoding(encoding)
    summary["Encoded size"] = {
        "threshold": f"<= {ENCODED_SIZE_MAX_BYTES} bytes",
        "observed": int(encoding_obs),
        "ok": encoding_ok,
    }

    summary_path = outdir / args.summary
    summary_path.write_text(_summarise(summary), encoding="utf-8")

    print(summary_path.read_text(encoding="utf-8"))

    if not all(item["ok"] for item in summary.values()):
        raise SystemExit("Benchmark regression detected; see summary above.")


if __name__ == "__main__":
    main()
