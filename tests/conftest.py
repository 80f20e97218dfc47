"""
Shared fixtures for SafeBack tests.
"""

import tempfile

import pytest

from tests.helpers import FakeClock, build_service, create_workspace


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def service(data_dir, clock):
    """Snapshot service with the default providers."""
    svc = await build_service(data_dir, clock=clock)
    yield svc
    await svc.close()


@pytest.fixture
async def workspace_id(service):
    """Workspace owned by OWNER with ADMIN and MEMBER members."""
    return await create_workspace(service, "ws_1")
