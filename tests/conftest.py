import sys

import pytest

from tool_relay.capabilities import build_registry
from tool_relay.config import Settings
from tool_relay.registry import CapabilityInvoker
from tool_relay.store import open_store


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at an isolated workspace, independent of the caller's env."""
    return Settings(
        openrouter_api_key="test-key",
        workspace_dir=str(tmp_path / "workspace"),
        db_path=":memory:",
        brave_api_key="",
        python_executable=sys.executable,
        code_timeout=10.0,
        http_timeout=5.0,
        invoke_timeout=30.0,
    )


@pytest.fixture
def store():
    conn = open_store(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def invoker(settings, store):
    return CapabilityInvoker(build_registry(settings, store))


@pytest.fixture
def workspace(settings, invoker):
    return settings.resolved_workspace_dir
