"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from vitals.health.engine import HealthEngine
from vitals.health.registry import CheckerRegistry


@pytest.fixture
def registry() -> CheckerRegistry:
    return CheckerRegistry()


@pytest.fixture
def engine(registry: CheckerRegistry) -> Generator[HealthEngine, None, None]:
    """Engine with a short shared timeout."""
    with HealthEngine(registry, timeout=0.2) as eng:
        yield eng
