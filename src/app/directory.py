"""
Agent directory interface.

The host application owns the live agent records. The coordinator reaches
them only through this interface, always awaiting the call, so the records
can live on another thread or event loop.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from .models import Agent, AgentStatus, StatusSource, Workspace


class AgentDirectory(Protocol):
    """Capabilities the coordinator needs from the host application."""

    async def get_agents(self) -> List[Agent]:
        ...

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...

    async def get_agents_in_same_workspace(self, agent_id: str) -> List[Agent]:
        ...

    async def set_registered(self, agent_id: str, registered: bool) -> None:
        ...

    async def set_session_id(self, agent_id: str, session_id: Optional[str]) -> None:
        ...

    async def update_metadata(self, agent_id: str, metadata: Dict[str, str]) -> None:
        ...

    async def update_status(
        self, agent_id: str, status: AgentStatus, source: StatusSource
    ) -> None:
        ...

    async def inject_text(self, text: str, agent_id: str) -> None:
        ...

    async def add_agent(
        self,
        folder: str,
        name: str,
        avatar: Optional[str],
        agent_type: str,
        created_by: Optional[str],
        companion: bool,
        shell_command: Optional[str],
    ) -> Optional[str]:
        ...

    async def remove_agent(self, agent_id: str) -> bool:
        ...

    async def show_markdown_panel(
        self, file_path: str, agent_id: str, maximized: bool = False
    ) -> bool:
        ...

    async def show_mermaid_panel(
        self, source: str, title: Optional[str], agent_id: str
    ) -> bool:
        ...


class InMemoryAgentDirectory:
    """
    Agent directory held in process memory.

    Used when the server runs without a host UI, and as the test double.
    Records handed out are copies, so callers only mutate state through
    the directory methods.
    """

    DEFAULT_WORKSPACE = "default"

    def __init__(
        self,
        agents: Optional[List[Agent]] = None,
        workspaces: Optional[List[Workspace]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger("AgentDirectory")
        self.agents: Dict[str, Agent] = {agent.id: agent for agent in agents or []}
        self.workspaces: List[Workspace] = list(workspaces or [])

        # Side effects that a host UI would render
        self.injected_text: List[Tuple[str, str]] = []
        self.markdown_panels: List[Tuple[str, str, bool]] = []
        self.mermaid_panels: List[Tuple[str, Optional[str], str]] = []
        self.shell_commands: Dict[str, str] = {}

    @classmethod
    def from_file(
        cls, path: Path, logger: Optional[logging.Logger] = None
    ) -> "InMemoryAgentDirectory":
        """
        Load workspaces and agents from a JSON seed file.

        Format: {"workspaces": [{"name": str, "agents": [<Agent fields>]}]}
        """
        with open(path, "r") as f:
            data = json.load(f)

        directory = cls(logger=logger)
        for entry in data.get("workspaces", []):
            agents = [Agent.model_validate(raw) for raw in entry.get("agents", [])]
            directory.add_workspace(entry.get("name", cls.DEFAULT_WORKSPACE), agents)
        return directory

    def add_workspace(self, name: str, agents: List[Agent]) -> Workspace:
        workspace = Workspace(name=name, agent_ids=[agent.id for agent in agents])
        for agent in agents:
            self.agents[agent.id] = agent
        self.workspaces.append(workspace)
        return workspace

    def workspace_of(self, agent_id: str) -> Optional[Workspace]:
        for workspace in self.workspaces:
            if agent_id in workspace.agent_ids:
                return workspace
        return None

    # AgentDirectory implementation

    async def get_agents(self) -> List[Agent]:
        return [agent.model_copy(deep=True) for agent in self.agents.values()]

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        agent = self.agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def get_agents_in_same_workspace(self, agent_id: str) -> List[Agent]:
        workspace = self.workspace_of(agent_id)
        if workspace is None:
            return []
        return [
            self.agents[member_id].model_copy(deep=True)
            for member_id in workspace.agent_ids
            if member_id in self.agents
        ]

    async def set_registered(self, agent_id: str, registered: bool) -> None:
        agent = self.agents.get(agent_id)
        if agent:
            agent.registered = registered

    async def set_session_id(self, agent_id: str, session_id: Optional[str]) -> None:
        agent = self.agents.get(agent_id)
        if agent:
            agent.session_id = session_id

    async def update_metadata(self, agent_id: str, metadata: Dict[str, str]) -> None:
        agent = self.agents.get(agent_id)
        if agent:
            agent.metadata.update(metadata)

    async def update_status(
        self, agent_id: str, status: AgentStatus, source: StatusSource
    ) -> None:
        agent = self.agents.get(agent_id)
        if agent:
            agent.status = status
            self.logger.debug(f"Agent {agent.name} status={status.value} source={source.value}")

    async def inject_text(self, text: str, agent_id: str) -> None:
        self.injected_text.append((agent_id, text))
        self.logger.debug(f"Injected text for agent {agent_id}: {text}")

    async def add_agent(
        self,
        folder: str,
        name: str,
        avatar: Optional[str],
        agent_type: str,
        created_by: Optional[str],
        companion: bool,
        shell_command: Optional[str],
    ) -> Optional[str]:
        agent = Agent(
            id=str(uuid.uuid4()),
            name=name,
            folder=folder,
            avatar=avatar,
            agent_type=agent_type,
            created_by=created_by,
            companion=companion,
        )
        self.agents[agent.id] = agent
        if shell_command:
            self.shell_commands[agent.id] = shell_command

        # New agents join their creator's workspace
        workspace = self.workspace_of(created_by) if created_by else None
        if workspace is None:
            workspace = next(
                (w for w in self.workspaces if w.name == self.DEFAULT_WORKSPACE), None
            )
        if workspace is None:
            workspace = Workspace(name=self.DEFAULT_WORKSPACE)
            self.workspaces.append(workspace)
        workspace.agent_ids.append(agent.id)
        return agent.id

    async def remove_agent(self, agent_id: str) -> bool:
        if self.agents.pop(agent_id, None) is None:
            return False
        for workspace in self.workspaces:
            if agent_id in workspace.agent_ids:
                workspace.agent_ids.remove(agent_id)
        self.shell_commands.pop(agent_id, None)
        return True

    async def show_markdown_panel(
        self, file_path: str, agent_id: str, maximized: bool = False
    ) -> bool:
        if agent_id not in self.agents:
            return False
        self.markdown_panels.append((agent_id, file_path, maximized))
        return True

    async def show_mermaid_panel(
        self, source: str, title: Optional[str], agent_id: str
    ) -> bool:
        if agent_id not in self.agents:
            return False
        self.mermaid_panels.append((agent_id, title, source))
        return True
