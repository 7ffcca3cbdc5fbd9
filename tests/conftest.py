"""Pytest configuration.

The repo is a flat layout (root-level modules plus `core/` and `config/`),
so the repo root is put on sys.path for runs from other directories.
"""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import logging_config  # noqa: E402

logging_config.setup_custom_log_levels()

from tests.fakes import FakeClock  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock(1_000_000.0)
