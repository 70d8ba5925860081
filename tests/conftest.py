"""
Pytest Configuration

Puts ``src`` on ``sys.path`` so the suite runs from a plain checkout and
registers the markers used across the RestGuard tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "unit: mark test as pure unit test (no I/O beyond tmp_path, no transport).",
    )
    config.addinivalue_line(
        "markers",
        "component: mark test as component-level (guard plus scripted transport).",
    )
