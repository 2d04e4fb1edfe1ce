import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from .directory import AgentDirectory
from .messages import MessageStore
from .models import (
    Agent,
    AgentInfo,
    AgentSession,
    AgentStatus,
    CloseAgentResponse,
    CreateAgentResponse,
    Message,
    StatusSource,
    agent_log_prefix,
)
from .services import RepoProvider
from .session import SessionManager

INBOX_NOTIFICATION = "Check your inbox for messages from other agents"


class AgentCoordinator:
    """
    Single source of truth for cross-agent interaction.

    Composes the session manager and message store with the host's agent
    directory. Every public operation runs under one lock, so concurrent
    request handlers observe operations as if they ran one at a time.
    Messaging is confined to the caller's workspace.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        session_manager: Optional[SessionManager] = None,
        message_store: Optional[MessageStore] = None,
        repo_provider: Optional[RepoProvider] = None,
        max_companions_per_owner: int = 3,
        logger: Optional[logging.Logger] = None,
    ):
        self.directory = directory
        self.logger = logger or logging.getLogger("AgentCoordinator")
        self.session_manager = session_manager or SessionManager(logger=self.logger)
        self.message_store = message_store or MessageStore(logger=self.logger)
        self.repo_provider = repo_provider
        self.max_companions_per_owner = max_companions_per_owner

        self._lock = asyncio.Lock()

    # Agent lookup

    async def find_agent(self, identifier: str) -> Optional[Agent]:
        """Find an agent by id, then by case-insensitive name, across all workspaces."""
        async with self._lock:
            return await self._find_agent(identifier)

    async def find_agent_by_id(self, agent_id: str) -> Optional[Agent]:
        async with self._lock:
            return await self.directory.get_agent(agent_id)

    async def resolve_agent_id(self, agent_id: str) -> Optional[str]:
        """Map an agent id given in any letter case to the directory's record id."""
        async with self._lock:
            agents = await self.directory.get_agents()
        wanted = agent_id.lower()
        for agent in agents:
            if agent.id.lower() == wanted:
                return agent.id
        return None

    async def find_agent_in_workspace(
        self, caller_agent_id: str, identifier: str
    ) -> Optional[Agent]:
        """Same resolution as find_agent, restricted to the caller's workspace."""
        async with self._lock:
            return await self._find_agent_in_workspace(caller_agent_id, identifier)

    async def get_agent_name(self, identifier: str) -> Optional[str]:
        agent = await self.find_agent(identifier)
        return agent.name if agent else None

    async def get_all_agents(self) -> List[Agent]:
        async with self._lock:
            return await self.directory.get_agents()

    async def get_all_agents_for_recovery(self) -> List[AgentInfo]:
        """All agents, used to help an agent that lost track of its own id."""
        agents = await self.get_all_agents()
        return [AgentInfo.from_agent(agent) for agent in agents]

    async def list_agents(self, caller_agent_id: str) -> List[AgentInfo]:
        """
        List agents visible to the caller.

        Args:
            caller_agent_id: Caller id or name

        Returns:
            Agents in the caller's workspace, without shell agents and without
            companions the caller does not own. Empty if the caller is unknown.
        """
        async with self._lock:
            caller = await self._find_agent(caller_agent_id)
            if caller is None:
                self.logger.warning(f"[skwad] Unknown caller for list-agents: {caller_agent_id}")
                return []

            members = await self.directory.get_agents_in_same_workspace(caller.id)
            visible = [
                agent
                for agent in members
                if not agent.is_shell
                and (not agent.companion or agent.created_by == caller.id)
            ]
            return [AgentInfo.from_agent(agent) for agent in visible]

    # Registration

    async def register_agent(self, agent_id: str, session_id: Optional[str] = None) -> bool:
        """
        Register an agent and give it a session.

        Re-registering an agent that is already registered with a live session
        keeps that session. A provided session id is recorded on the agent in
        both cases.

        Args:
            agent_id: Agent id or name
            session_id: Conversation session id reported by the agent, if known

        Returns:
            True on success, False if the agent does not exist
        """
        self.logger.info(f"[skwad] Register agent called: {agent_id}")

        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                self.logger.error(f"[skwad] Agent not found: {agent_id}")
                return False

            if session_id:
                await self.directory.set_session_id(agent.id, session_id)

            existing = await self.session_manager.get_session_for_agent(agent.id)
            if agent.registered and existing is not None:
                await self.session_manager.touch(existing.session_id)
                self.logger.debug(f"{agent.log_prefix} Agent already registered")
                return True

            await self.directory.set_registered(agent.id, True)
            await self.session_manager.create_session(agent.id)

        self.logger.info(f"{agent.log_prefix} Agent registered")
        return True

    async def unregister_agent(self, agent_id: str) -> bool:
        """Mark an agent unregistered and drop its session. Idempotent."""
        self.logger.info(f"[skwad] Unregister agent called: {agent_id}")

        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                self.logger.error(f"[skwad] Agent not found: {agent_id}")
                return False

            await self.directory.set_registered(agent.id, False)
            await self.session_manager.remove_session_for_agent(agent.id)

        self.logger.info(f"{agent.log_prefix} Agent unregistered")
        return True

    async def get_session_for_agent(self, agent_id: str) -> Optional[AgentSession]:
        return await self.session_manager.get_session_for_agent(agent_id)

    # Agent state updates (hook driven)

    async def update_metadata(self, agent_id: str, metadata: Dict[str, str]) -> None:
        if not metadata:
            return
        async with self._lock:
            await self.directory.update_metadata(agent_id, metadata)

    async def set_session_id(self, agent_id: str, session_id: str) -> None:
        async with self._lock:
            await self.directory.set_session_id(agent_id, session_id)
        self.logger.info(f"{agent_log_prefix(agent_id)} Session id set to {session_id}")

    async def update_agent_status(
        self, agent_id: str, status: AgentStatus, source: StatusSource = StatusSource.HOOK
    ) -> None:
        async with self._lock:
            await self.directory.update_status(agent_id, status, source)
            session = await self.session_manager.get_session_for_agent(agent_id)
            if session is not None:
                await self.session_manager.touch(session.session_id)

    # Messaging

    async def send_message(self, sender_id: str, recipient_id: str, content: str) -> Optional[str]:
        """
        Send a message to another agent in the sender's workspace.

        An idle recipient is told to check its inbox.

        Args:
            sender_id: Sender id or name
            recipient_id: Recipient id or name
            content: Message body

        Returns:
            None on success, or the reason the message was rejected
        """
        async with self._lock:
            sender = await self._find_agent(sender_id)
            if sender is None:
                self.logger.warning(f"[skwad] Sender not found: {sender_id}")
                return "Sender not found"

            if not sender.registered:
                self.logger.warning(f"[skwad] Sender not registered: {sender_id}")
                return "Sender not registered"

            recipient = await self._find_agent_in_workspace(sender.id, recipient_id)
            if recipient is None:
                self.logger.warning(
                    f"[skwad] Recipient not found in same workspace: {recipient_id}"
                )
                return "Recipient not found"

            if recipient.is_shell:
                self.logger.warning(f"[skwad] Cannot send message to shell agent: {recipient_id}")
                return "Cannot send messages to shell agents"

            if recipient.companion and recipient.created_by != sender.id:
                self.logger.warning(
                    f"[skwad] Non-owner tried to message companion agent: {recipient_id}"
                )
                return "Only the owner can send messages to a companion agent"

            if sender.companion and recipient.id != sender.created_by:
                self.logger.warning(f"[skwad] Companion tried to message non-owner: {recipient_id}")
                return "Companion agents can only send messages to their owner"

            message = Message(sender=sender.id, recipient=recipient.id, content=content)
            await self.message_store.add(message)

            if recipient.status == AgentStatus.IDLE:
                await self.directory.inject_text(INBOX_NOTIFICATION, recipient.id)

        self.logger.info(f"{sender.log_prefix} Message sent to {recipient.name}")
        return None

    async def broadcast_message(self, sender_id: str, content: str) -> int:
        """
        Send a message to every other registered agent in the sender's workspace.

        Returns:
            Number of recipients reached, 0 if the sender is unknown or unregistered
        """
        async with self._lock:
            sender = await self._find_agent(sender_id)
            if sender is None:
                self.logger.warning(f"[skwad] Sender not found for broadcast: {sender_id}")
                return 0

            if not sender.registered:
                self.logger.warning(f"[skwad] Sender not registered for broadcast: {sender_id}")
                return 0

            members = await self.directory.get_agents_in_same_workspace(sender.id)
            recipients = [
                agent
                for agent in members
                if agent.id != sender.id
                and agent.registered
                and not agent.is_shell
                and (not agent.companion or agent.created_by == sender.id)
                and (not sender.companion or agent.id == sender.created_by)
            ]

            for agent in recipients:
                await self.message_store.add(
                    Message(sender=sender.id, recipient=agent.id, content=content)
                )

            for agent in recipients:
                await self.directory.inject_text(INBOX_NOTIFICATION, agent.id)

        self.logger.info(f"{sender.log_prefix} Broadcast to {len(recipients)} agents")
        return len(recipients)

    async def check_messages(self, agent_id: str, mark_as_read: bool = True) -> List[Message]:
        """
        Return the agent's unread messages.

        Args:
            agent_id: Agent id or name
            mark_as_read: Mark the returned messages read in the same step

        Returns:
            Unread messages, empty if the agent is unknown
        """
        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                self.logger.warning(f"[skwad] Agent not found for check-messages: {agent_id}")
                return []
            return await self.message_store.take_unread(agent.id, mark_as_read)

    async def has_unread_messages(self, agent_id: str) -> bool:
        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                return False
            return await self.message_store.has_unread(agent.id)

    async def latest_unread_message_id(self, agent_id: str) -> Optional[str]:
        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                return None
            return await self.message_store.latest_unread_id(agent.id)

    async def unread_count(self, agent_id: str) -> int:
        async with self._lock:
            agent = await self._find_agent(agent_id)
            if agent is None:
                return 0
            return await self.message_store.unread_count(agent.id)

    # Agent lifecycle (host delegated)

    async def create_agent(
        self,
        name: str,
        agent_type: str,
        repo_path: str,
        icon: Optional[str] = None,
        create_worktree: bool = False,
        branch_name: Optional[str] = None,
        created_by: Optional[str] = None,
        companion: bool = False,
        shell_command: Optional[str] = None,
    ) -> CreateAgentResponse:
        """Create a new agent in the host, optionally on a fresh git worktree."""
        folder = repo_path

        if create_worktree:
            if not branch_name:
                return CreateAgentResponse(
                    success=False,
                    message="branch_name is required when create_worktree is true",
                )
            if self.repo_provider is None:
                return CreateAgentResponse(
                    success=False, message="Worktree management is not available"
                )
            if not await self.repo_provider.is_git_repo(repo_path):
                return CreateAgentResponse(
                    success=False, message=f"Repository not found at path: {repo_path}"
                )

            destination = self.repo_provider.suggested_worktree_path(repo_path, branch_name)
            if os.path.exists(destination):
                return CreateAgentResponse(
                    success=False,
                    message=f"Worktree destination already exists: {destination}",
                )
            try:
                await self.repo_provider.create_worktree(repo_path, branch_name, destination)
            except Exception as e:
                return CreateAgentResponse(
                    success=False, message=f"Failed to create worktree: {e}"
                )
            folder = destination
            self.logger.info(f"[skwad] Created worktree at {destination} for branch {branch_name}")
        elif not os.path.isdir(folder):
            return CreateAgentResponse(success=False, message=f"Folder not found: {folder}")

        async with self._lock:
            if companion and created_by:
                agents = await self.directory.get_agents()
                owned = [a for a in agents if a.companion and a.created_by == created_by]
                if len(owned) >= self.max_companions_per_owner:
                    return CreateAgentResponse(
                        success=False,
                        message=(
                            f"Maximum of {self.max_companions_per_owner} "
                            "companion agents per owner reached"
                        ),
                    )

            new_id = await self.directory.add_agent(
                folder=folder,
                name=name,
                avatar=icon,
                agent_type=agent_type,
                created_by=created_by,
                companion=companion,
                shell_command=shell_command,
            )

        if new_id is None:
            return CreateAgentResponse(success=False, message="Failed to create agent")

        self.logger.info(f"[skwad] Created agent '{name}' with ID {new_id}")
        return CreateAgentResponse(
            success=True, agent_id=new_id, message="Agent created successfully"
        )

    async def close_agent(self, caller_agent_id: str, target_identifier: str) -> CloseAgentResponse:
        """Close an agent the caller created, within the caller's workspace."""
        async with self._lock:
            target = await self._find_agent_in_workspace(caller_agent_id, target_identifier)
            if target is None:
                return CloseAgentResponse(
                    success=False, message=f"Target agent not found: {target_identifier}"
                )

            if target.created_by != caller_agent_id:
                return CloseAgentResponse(
                    success=False,
                    message="Permission denied: you can only close agents that you created",
                )

            removed = await self.directory.remove_agent(target.id)
            if removed:
                await self.session_manager.remove_session_for_agent(target.id)

        if not removed:
            return CloseAgentResponse(success=False, message="Failed to close agent")

        self.logger.info(f"[skwad] Agent '{target.name}' closed by {caller_agent_id}")
        return CloseAgentResponse(success=True, message=f"Agent '{target.name}' closed successfully")

    async def show_markdown_panel(self, file_path: str, agent_id: str, maximized: bool = False) -> bool:
        return await self.directory.show_markdown_panel(file_path, agent_id, maximized)

    async def show_mermaid_panel(self, source: str, title: Optional[str], agent_id: str) -> bool:
        return await self.directory.show_mermaid_panel(source, title, agent_id)

    # Maintenance

    async def cleanup(self, max_idle_seconds: Optional[float] = None) -> Dict[str, int]:
        """Sweep stale sessions and trim the message log."""
        expired = await self.session_manager.sweep(max_idle_seconds)
        agents = await self.get_all_agents()
        removed = await self.message_store.cleanup(agent.id for agent in agents)
        return {"expired_sessions": expired, "removed_messages": removed}

    async def get_status_snapshot(self) -> List[Dict[str, Any]]:
        """Debug view of every agent with its coordinator-visible state."""
        entries = []
        for agent in await self.get_all_agents():
            entry: Dict[str, Any] = {
                "agent_id": agent.id,
                "name": agent.name,
                "folder": agent.folder,
                "status": agent.status.value,
                "registered": agent.registered,
                "agent_type": agent.agent_type,
                "unread_messages": await self.message_store.unread_count(agent.id),
            }
            if agent.session_id:
                entry["session_id"] = agent.session_id
            if agent.metadata:
                entry["metadata"] = dict(agent.metadata)
            session = await self.session_manager.get_session_for_agent(agent.id)
            if session is not None:
                entry["mcp_session"] = {
                    "id": session.session_id,
                    "last_activity": session.last_activity.isoformat(),
                }
            entries.append(entry)
        return entries

    # Unlocked helpers, callers hold self._lock

    async def _find_agent(self, identifier: str) -> Optional[Agent]:
        agents = await self.directory.get_agents()
        return self._match(agents, identifier)

    async def _find_agent_in_workspace(
        self, caller_agent_id: str, identifier: str
    ) -> Optional[Agent]:
        agents = await self.directory.get_agents_in_same_workspace(caller_agent_id)
        return self._match(agents, identifier)

    @staticmethod
    def _match(agents: List[Agent], identifier: str) -> Optional[Agent]:
        wanted = identifier.lower()
        for agent in agents:
            if agent.id.lower() == wanted:
                return agent
        for agent in agents:
            if agent.name.lower() == wanted:
                return agent
        return None
