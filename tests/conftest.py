"""Pytest configuration for shellhost.

Integration tests drive a real POSIX shell through the ``posix`` dialect.
"""

import pytest
import pytest_asyncio

from shellhost.config import EngineConfig
from shellhost.engine.supervisor import InterpreterEngine
from tests.helpers import posix_config


@pytest.fixture
def config() -> EngineConfig:
    return posix_config()


@pytest_asyncio.fixture
async def engine(config):
    eng = InterpreterEngine(config)
    await eng.start()
    try:
        yield eng
    finally:
        await eng.stop()
