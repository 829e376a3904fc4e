"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeProvider

from chatrelay.cache import CustomizationCache
from chatrelay.store import ChatStore


@pytest.fixture
async def store(tmp_path: Path) -> ChatStore:
    """Create a ChatStore backed by a temp database."""
    return ChatStore(db_path=tmp_path / "test.db")


@pytest.fixture
def cache() -> CustomizationCache:
    """A disabled cache: every lookup misses."""
    return CustomizationCache()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
