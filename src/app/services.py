"""
External collaborators of the coordination layer.

Desktop notifications, the autopilot classifier and repository/worktree
management belong to the host application. Only their interfaces live
here, along with log-only stand-ins for running without a host.
"""

import logging
from typing import List, Optional, Protocol

from .models import Agent, RepoInfo, WorktreeInfo


class Notifier(Protocol):
    async def notify_awaiting_input(self, agent: Agent, message: Optional[str]) -> None:
        ...


class Autopilot(Protocol):
    async def analyze(self, last_message: str, agent_id: str, agent_name: str) -> None:
        ...


class RepoProvider(Protocol):
    async def list_repos(self) -> List[RepoInfo]:
        ...

    async def list_worktrees(self, repo_path: str) -> List[WorktreeInfo]:
        ...

    async def is_git_repo(self, path: str) -> bool:
        ...

    def suggested_worktree_path(self, repo_path: str, branch_name: str) -> str:
        ...

    async def create_worktree(
        self, repo_path: str, branch_name: str, destination_path: str
    ) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes to the log."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("Notifier")

    async def notify_awaiting_input(self, agent: Agent, message: Optional[str]) -> None:
        self.logger.info(f"{agent.log_prefix} {agent.name} is awaiting input: {message or ''}")


class LoggingAutopilot:
    """Autopilot that records the hand-off without classifying anything."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("Autopilot")

    async def analyze(self, last_message: str, agent_id: str, agent_name: str) -> None:
        suffix = last_message[-64:]
        self.logger.info(f"Autopilot: agent {agent_name} last message=\"...{suffix}\"")
