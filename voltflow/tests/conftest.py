"""
Shared test fixtures for the charging monitor tests.

Cleans all VoltflowSettings environment variables before each test and
provides a deterministic random source and a fixed clock origin.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

# All VoltflowSettings environment variable names, used for cleanup.
_ALL_ENV_VARS = (
    "BATTERY_NAME",
    "POWER_SUPPLY_ROOT",
    "BATTERY_CAPACITY_WH",
    "MAX_WATTAGE",
    "HISTORY_LIMIT",
    "SESSION_HISTORY_LIMIT",
    "POLL_INTERVAL_S",
    "SESSIONS_PATH",
    "STATUS_PATH",
    "INSIGHT_BASE_URL",
    "INSIGHT_API_KEY",
    "INSIGHT_MODEL",
    "INSIGHT_TIMEOUT_S",
)


class FixedRandom:
    """Random source whose ``uniform`` always returns the same offset."""

    def __init__(self, offset: float = 0.0) -> None:
        self.offset = offset
        self.calls: list[tuple[float, float]] = []

    def uniform(self, a: float, b: float) -> float:
        self.calls.append((a, b))
        return self.offset


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def make_rng() -> type[FixedRandom]:
    """Factory for fixed-offset random sources: ``make_rng(0.02)``."""
    return FixedRandom


@pytest.fixture()
def t0() -> datetime:
    """Fixed clock origin for event sequences."""
    return datetime(2026, 10, 18, 10, 0, 0, tzinfo=UTC)
