"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Test settings (no .env, console logging)
- A fresh step registry and an engine wired to a recording hook
"""

import os
from typing import Any, List

import pytest

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from app.config import get_settings  # noqa: E402
from tasks.implementations.http_task import HttpRequestTask  # noqa: E402
from tasks.registry import create_default_registry  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; make every test see the current environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_http_transport():
    yield
    HttpRequestTask.transport = None


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

class RecordingHook:
    """Collects every event the engine reports."""

    def __init__(self):
        self.events: List[Any] = []

    async def __call__(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, cls) -> List[Any]:
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def registry():
    return create_default_registry()


@pytest.fixture
def hook() -> RecordingHook:
    return RecordingHook()


@pytest.fixture
def engine(registry, hook) -> WorkflowEngine:
    return WorkflowEngine(registry=registry, hook=hook)
