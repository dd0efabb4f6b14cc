"""Shared pytest fixtures for the logic-expander test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from logic_expander.grammar import Condition, parse_logic
from logic_expander.session import LogicSession

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ── Profile Fixtures ──────────────────────────────────────────────


@pytest.fixture
def sample_profile_path() -> Path:
    return FIXTURES_DIR / "sample_profile.yaml"


@pytest.fixture
def custom_profile_path() -> Path:
    return FIXTURES_DIR / "custom_profile.yaml"


@pytest.fixture
def invalid_profile_path() -> Path:
    return FIXTURES_DIR / "invalid_profile.yaml"


@pytest.fixture
def bad_values_profile_path() -> Path:
    return FIXTURES_DIR / "bad_values_profile.yaml"


@pytest.fixture
def nonexistent_profile_path(tmp_path: Path) -> Path:
    return tmp_path / "does_not_exist.yaml"


# ── Logic Fixtures ────────────────────────────────────────────────


@pytest.fixture
def eight_bit_lines() -> list[str]:
    """All eight single-bit Add Source reads of one byte."""
    return [f"A:0x{prefix}1234" for prefix in "MNOPQRST"]


@pytest.fixture
def chained_logic() -> str:
    """An Add Source line chained into a comparison, then a lone comparison."""
    return "A:0xH1_0xH2=1_0xH3=1"


@pytest.fixture
def logic_file(tmp_path: Path):
    """Factory writing a logic blob to a temporary file."""
    def _write(text: str, name: str = "logic.txt") -> Path:
        path = tmp_path / name
        path.write_text(text + "\n", encoding="utf-8")
        return path
    return _write


@pytest.fixture
def singletons():
    """Factory parsing a blob into singleton groups with ids 1..N."""
    def _parse(text: str) -> list[Condition]:
        conditions = parse_logic(text)
        for idx, condition in enumerate(conditions):
            condition.line_id = idx + 1
            condition.group_id = idx + 1
        return conditions
    return _parse


@pytest.fixture
def session() -> LogicSession:
    return LogicSession()
