"""
Test configuration - repo root on sys.path, and every test isolated in its
own BlockOS home so nothing ever touches ~/.blockos.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from blockos.blocks.store import BlockStore, RoutineStore, SessionStore  # noqa: E402
from blockos.state_store import StateStore  # noqa: E402

OWNER = "u1"


# =============================================================================
# ISOLATION GUARD: never the real home directory
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point BLOCKOS_HOME and BLOCKOS_DB at a per-test temp directory."""
    home = tmp_path / "blockos_home"
    monkeypatch.setenv("BLOCKOS_HOME", str(home))
    monkeypatch.setenv("BLOCKOS_DB", str(home / "data" / "test.db"))
    return home


# =============================================================================
# STORES
# =============================================================================


@pytest.fixture
def state(tmp_path) -> StateStore:
    """Fresh, fully converged store on a temp SQLite file."""
    return StateStore(str(tmp_path / "blocks.db"))


@pytest.fixture
def block_store(state) -> BlockStore:
    return BlockStore(OWNER, state)


@pytest.fixture
def session_store(state) -> SessionStore:
    return SessionStore(OWNER, state)


@pytest.fixture
def routine_store(state) -> RoutineStore:
    return RoutineStore(OWNER, state)
