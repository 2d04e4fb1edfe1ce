#!/usr/bin/env python3
"""
Pytest configuration and fixtures for Skwad coordination testing
"""

import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

# Add the src directory to the path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from api.app import create_app
from app.coordinator import AgentCoordinator
from app.directory import InMemoryAgentDirectory
from app.hooks import build_hook_handlers
from app.models import Agent, RepoInfo, WorktreeInfo
from app.tools import ToolHandler
from skwad.config import Settings

ALICE_ID = "a11ce000-0000-4000-8000-000000000001"
BOB_ID = "b0b00000-0000-4000-8000-000000000002"
SHELL_ID = "5e110000-0000-4000-8000-000000000003"
COMPANION_ID = "c0c00000-0000-4000-8000-000000000004"
DAVE_ID = "da7e0000-0000-4000-8000-000000000005"


class RecordingNotifier:
    def __init__(self):
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def notify_awaiting_input(self, agent: Agent, message: Optional[str]) -> None:
        self.calls.append((agent.id, message))


class RecordingAutopilot:
    def __init__(self):
        self.calls: List[Tuple[str, str, str]] = []

    async def analyze(self, last_message: str, agent_id: str, agent_name: str) -> None:
        self.calls.append((last_message, agent_id, agent_name))


class FakeRepoProvider:
    def __init__(self, root: Path):
        self.root = root
        self.created: List[Tuple[str, str, str]] = []

    async def list_repos(self) -> List[RepoInfo]:
        return [
            RepoInfo(
                name="skwad",
                path=str(self.root / "skwad"),
                worktrees=[WorktreeInfo(name="main", path=str(self.root / "skwad"))],
            )
        ]

    async def list_worktrees(self, repo_path: str) -> List[WorktreeInfo]:
        return [WorktreeInfo(name="main", path=repo_path)]

    async def is_git_repo(self, path: str) -> bool:
        return path.endswith("skwad")

    def suggested_worktree_path(self, repo_path: str, branch_name: str) -> str:
        return str(self.root / f"skwad-{branch_name}")

    async def create_worktree(self, repo_path: str, branch_name: str, destination_path: str) -> None:
        Path(destination_path).mkdir(parents=True)
        self.created.append((repo_path, branch_name, destination_path))


@pytest.fixture
def directory():
    """Agent directory with two workspaces"""
    directory = InMemoryAgentDirectory()
    directory.add_workspace(
        "alpha",
        [
            Agent(id=ALICE_ID, name="alice", folder="/src/alice"),
            Agent(id=BOB_ID, name="bob", folder="/src/bob"),
            Agent(id=SHELL_ID, name="terminal", folder="/src/alice", agent_type="shell"),
            Agent(
                id=COMPANION_ID,
                name="helper",
                folder="/src/alice",
                created_by=ALICE_ID,
                companion=True,
            ),
        ],
    )
    directory.add_workspace(
        "beta",
        [Agent(id=DAVE_ID, name="dave", folder="/src/dave")],
    )
    return directory


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def autopilot():
    return RecordingAutopilot()


@pytest.fixture
def repo_provider(tmp_path):
    return FakeRepoProvider(tmp_path)


@pytest.fixture
def settings():
    return Settings(_env_file=None, autopilot_enabled=False, ai_api_key=None)


@pytest.fixture
def autopilot_settings():
    return Settings(_env_file=None, autopilot_enabled=True, ai_api_key="test-key")


@pytest.fixture
def coordinator(directory, repo_provider):
    return AgentCoordinator(directory, repo_provider=repo_provider)


@pytest.fixture
def tool_handler(coordinator, repo_provider):
    return ToolHandler(coordinator, repo_provider=repo_provider)


@pytest.fixture
def client(coordinator, tool_handler, settings, notifier, autopilot):
    """HTTP client for the full application"""
    hook_handlers = build_hook_handlers(coordinator, settings, notifier, autopilot)
    app = create_app(coordinator, tool_handler, hook_handlers, settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def transcript_file(tmp_path):
    """Write a JSON-Lines transcript and return its path"""

    def _write(*entries) -> str:
        path = tmp_path / "transcript.jsonl"
        path.write_text("\n".join(json.dumps(entry) for entry in entries) + "\n")
        return str(path)

    return _write


def user_entry(text: str) -> dict:
    return {"type": "user", "message": {"role": "user", "content": text}}


def assistant_entry(text: str) -> dict:
    return {
        "type": "assistant",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }
