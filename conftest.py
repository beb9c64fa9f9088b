"""Shared pytest configuration."""

import pytest


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio, the event loop the code is built on."""
    return "asyncio"
