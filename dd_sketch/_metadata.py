"""Project metadata shared by the runtime and the packaging configuration."""

from __future__ import annotations

from typing import List, Mapping

PROJECT_METADATA: Mapping[str, object] = {
    "name": "dd-sketch",
    "version": "0.3.0",
    "summary": "DDSketch relative-error quantile sketch with a byte-exact wire codec",
    "requires_python": ">=3.9",
    "license": "Apache-2.0",
    "keywords": [
        "quantiles",
        "sketch",
        "ddsketch",
        "percentiles",
        "metrics",
    ],
    "optional-dependencies": {
        "bench": [
            "numpy>=1.22",
            "pandas>=2.0",
            "pytest-benchmark>=4.0",
        ],
        "test": [
            "pytest>=7.4",
            "hypothesis>=6.88",
            "pytest-cov>=4.1",
        ],
    },
}

SUPPORTED_PYTHON_VERSIONS: List[str] = ["3.9", "3.10", "3.11", "3.12"]
SUPPORTED_PLATFORMS: List[str] = ["Linux", "macOS", "Windows"]

__version__ = PROJECT_METADATA["version"]  # type: ignore[index]
