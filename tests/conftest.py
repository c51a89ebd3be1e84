# tests/conftest.py
"""
Shared pytest fixtures for patchloop tests.

Provides:
- Temporary workspace directories (settings patched to point at them)
- In-memory base trees and overlays
- Event recorders
- An httpx client bound to a freshly built app
"""
import shutil
import tempfile
from pathlib import Path
from typing import List

import pytest
from httpx import ASGITransport, AsyncClient

from patchloop.core.config import settings
from patchloop.orchestration.events import TurnEvent
from patchloop.persistence.base_tree import MemoryBaseTree
from patchloop.persistence.overlay import OverlayStore
from tests.utils.fakes import ScriptedGenerator, ScriptedTypechecker


# ═══════════════════════════════════════════════════════
# FIXTURES - Project Setup
# ═══════════════════════════════════════════════════════

@pytest.fixture
def temp_workspace():
    """Temporary directory used as WORKSPACES_DIR for the test."""
    temp_dir = tempfile.mkdtemp(prefix="patchloop_test_")
    workspace = Path(temp_dir)
    original = settings.paths.workspaces_dir
    settings.paths.workspaces_dir = workspace

    yield workspace

    settings.paths.workspaces_dir = original
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def base_tree():
    return MemoryBaseTree({
        "app/layout.tsx": "export default function Layout({ children }) {\n  return children;\n}\n",
        "lib/old.ts": "export const answer = 42;\n",
    })


@pytest.fixture
def overlay(base_tree):
    return OverlayStore(base_tree)


# ═══════════════════════════════════════════════════════
# FIXTURES - Events
# ═══════════════════════════════════════════════════════

class EventRecorder:
    """EventSink that keeps every event it sees."""

    def __init__(self):
        self.events: List[TurnEvent] = []

    async def __call__(self, event: TurnEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [e.type.value for e in self.events]

    def of_type(self, event_type: str) -> List[TurnEvent]:
        return [e for e in self.events if e.type.value == event_type]


@pytest.fixture
def recorder():
    return EventRecorder()


# ═══════════════════════════════════════════════════════
# FIXTURES - HTTP
# ═══════════════════════════════════════════════════════

@pytest.fixture
def generator():
    return ScriptedGenerator([
        'Creating the page.\n<pl-write path="app/page.tsx">\n',
        "```tsx\nexport default function Page() {\n  return <main>Hello</main>;\n}\n```\n",
        "</pl-write>\nDone.",
    ])


@pytest.fixture
def typechecker():
    return ScriptedTypechecker([])


@pytest.fixture
def app(temp_workspace, generator, typechecker):
    from patchloop.main import create_app
    return create_app(generator=generator, typechecker=typechecker)


@pytest.fixture
async def async_client(app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
