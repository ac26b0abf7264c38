"""Shared fixtures for batch_agent tests."""

import asyncio
from pathlib import Path

import pytest


class FakeClock:
    """Manually advanced clock; sleep() moves time forward instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def write_input(tmp_path: Path):
    """Write lines to a file in tmp_path and return its path."""

    def _write(name: str, lines: list[str]) -> Path:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
