"""
Lifecycle hook handlers, one per agent flavor.

Each handler turns the raw hook body posted by an agent's host process into
registration and status changes on the coordinator. Handlers share one
contract (``HookHandler``) and are selected by the body's ``agent`` field
through the table built in ``build_hook_handlers``.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Protocol, Set

from skwad.config import Settings

from .coordinator import AgentCoordinator
from .models import AgentStatus, StatusSource, agent_log_prefix
from .services import Autopilot, Notifier
from .transcript import extract_last_assistant_message

CLAUDE_METADATA_KEYS = ("transcript_path", "cwd", "model", "session_id")
CODEX_METADATA_KEYS = ("cwd", "thread-id", "turn-id")

CLAUDE_STATUSES = {
    "running": AgentStatus.RUNNING,
    "idle": AgentStatus.IDLE,
    "input": AgentStatus.INPUT,
}


class HookHandler(Protocol):
    async def handle_registration(self, agent_id: str, body: Dict[str, Any]) -> bool:
        ...

    async def handle_activity(self, agent_id: str, body: Dict[str, Any]) -> Optional[AgentStatus]:
        ...


def extract_metadata(payload: Any, known_keys: Iterable[str]) -> Dict[str, str]:
    """Pick the known, non-empty string fields out of a raw hook payload."""
    if not isinstance(payload, dict):
        return {}
    return {
        key: payload[key]
        for key in known_keys
        if isinstance(payload.get(key), str) and payload[key]
    }


def hook_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    payload = body.get("payload")
    return payload if isinstance(payload, dict) else {}


class AutopilotDispatcher:
    """Hands an idle agent's last message to the autopilot without waiting on it."""

    def __init__(self, autopilot: Autopilot, logger: logging.Logger):
        self.autopilot = autopilot
        self.logger = logger
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, last_message: str, agent_id: str, agent_name: str) -> None:
        task = asyncio.create_task(self._run(last_message, agent_id, agent_name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run(self, last_message: str, agent_id: str, agent_name: str) -> None:
        try:
            await self.autopilot.analyze(last_message, agent_id, agent_name)
        except Exception as e:
            self.logger.error(f"{agent_log_prefix(agent_id)} Autopilot failed: {e}")


class ClaudeHookHandler:
    """
    Handles hook events from Claude agents.

    SessionStart fires with ``source=startup`` for every launch and, when a
    conversation is resumed, once more with ``source=resume``. The two can
    arrive in either order, so:

    - resume always carries the session the agent is really using and sets
      it, except on a fork where the fork's own startup session wins;
    - startup registers the agent, passing its session id only for a fresh
      start or a fork (a plain resume gets its id from the resume event).
    """

    def __init__(
        self,
        coordinator: AgentCoordinator,
        settings: Settings,
        notifier: Notifier,
        autopilot: Autopilot,
        logger: Optional[logging.Logger] = None,
    ):
        self.coordinator = coordinator
        self.settings = settings
        self.notifier = notifier
        self.logger = logger or logging.getLogger("ClaudeHookHandler")
        self.autopilot = AutopilotDispatcher(autopilot, self.logger)

    async def handle_registration(self, agent_id: str, body: Dict[str, Any]) -> bool:
        """
        Handle SessionStart registration.

        Args:
            agent_id: Agent id from the hook body
            body: Full hook body

        Returns:
            True on success so the caller can build the HTTP response
        """
        payload = hook_payload(body)
        session_id = body.get("session_id") or payload.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            session_id = None
        source = body.get("source") or payload.get("source") or "startup"
        prefix = agent_log_prefix(agent_id)

        await self.coordinator.update_metadata(
            agent_id, extract_metadata(payload, CLAUDE_METADATA_KEYS)
        )

        agent = await self.coordinator.find_agent_by_id(agent_id)
        agent_session = agent.session_id if agent else None
        is_fork = agent.fork_session if agent else False

        if source == "resume":
            self.logger.info(
                f"{prefix} Register source={source} payload_session={session_id} "
                f"agent_session={agent_session} fork={is_fork}"
            )
            if agent is not None and not is_fork and session_id:
                await self.coordinator.set_session_id(agent.id, session_id)
            return True

        is_resuming = agent is not None and agent.resume_session_id is not None and not is_fork
        self.logger.info(
            f"{prefix} Register source={source} payload_session={session_id} "
            f"agent_session={agent_session} is_resuming={is_resuming}"
        )
        return await self.coordinator.register_agent(
            agent_id, session_id=None if is_resuming else session_id
        )

    async def handle_activity(self, agent_id: str, body: Dict[str, Any]) -> Optional[AgentStatus]:
        """
        Handle UserPromptSubmit / Stop / PreToolUse / Notification hooks.

        Returns:
            The new status, or None when the status string is not recognized
        """
        status_string = body.get("status")
        status = CLAUDE_STATUSES.get(status_string) if isinstance(status_string, str) else None
        if status is None:
            return None

        payload = hook_payload(body)
        await self.coordinator.update_metadata(
            agent_id, extract_metadata(payload, CLAUDE_METADATA_KEYS)
        )

        if status == AgentStatus.INPUT:
            agent = await self.coordinator.find_agent_by_id(agent_id)
            if agent is not None:
                message = payload.get("message")
                await self.notifier.notify_awaiting_input(
                    agent, message if isinstance(message, str) else None
                )

        if self._is_stop_hook(body, payload) and self.settings.autopilot_active:
            await self._run_autopilot(agent_id, payload)

        await self.coordinator.update_agent_status(agent_id, status, StatusSource.HOOK)
        return status

    @staticmethod
    def _is_stop_hook(body: Dict[str, Any], payload: Dict[str, Any]) -> bool:
        return body.get("hook") == "Stop" or payload.get("hook_event_name") == "Stop"

    async def _run_autopilot(self, agent_id: str, payload: Dict[str, Any]) -> None:
        prefix = agent_log_prefix(agent_id)
        agent = await self.coordinator.find_agent_by_id(agent_id)

        transcript_path = payload.get("transcript_path")
        if not isinstance(transcript_path, str) or not transcript_path:
            transcript_path = agent.metadata.get("transcript_path") if agent else None
        if not transcript_path:
            self.logger.debug(f"{prefix} Autopilot: no transcript path")
            return

        last_message = await asyncio.to_thread(extract_last_assistant_message, transcript_path)
        if last_message is None:
            self.logger.debug(f"{prefix} Autopilot: no assistant message in transcript")
            return
        if last_message == "":
            self.logger.info(f"{prefix} Autopilot: reply to registration prompt, skipping")
            return

        agent_name = agent.name if agent else "Unknown"
        self.autopilot.dispatch(last_message, agent_id, agent_name)


class CodexHookHandler:
    """
    Handles hook events from Codex agents.

    Codex fires a single ``notify`` event (agent-turn-complete) carrying the
    last assistant message in the payload, so no transcript is read.
    """

    def __init__(
        self,
        coordinator: AgentCoordinator,
        settings: Settings,
        autopilot: Autopilot,
        logger: Optional[logging.Logger] = None,
    ):
        self.coordinator = coordinator
        self.settings = settings
        self.logger = logger or logging.getLogger("CodexHookHandler")
        self.autopilot = AutopilotDispatcher(autopilot, self.logger)

    async def handle_registration(self, agent_id: str, body: Dict[str, Any]) -> bool:
        payload = hook_payload(body)
        await self.coordinator.update_metadata(
            agent_id, extract_metadata(payload, CODEX_METADATA_KEYS)
        )

        session_id = body.get("session_id") or payload.get("thread-id")
        if not isinstance(session_id, str):
            session_id = None
        self.logger.info(f"{agent_log_prefix(agent_id)} Register payload_session={session_id}")
        return await self.coordinator.register_agent(agent_id, session_id=session_id)

    async def handle_activity(self, agent_id: str, body: Dict[str, Any]) -> Optional[AgentStatus]:
        payload = hook_payload(body)
        if payload.get("type") != "agent-turn-complete":
            return None

        await self.coordinator.update_metadata(
            agent_id, extract_metadata(payload, CODEX_METADATA_KEYS)
        )

        if self.settings.autopilot_active:
            last_message = payload.get("last-assistant-message")
            if isinstance(last_message, str) and last_message:
                agent = await self.coordinator.find_agent_by_id(agent_id)
                agent_name = agent.name if agent else "Unknown"
                self.autopilot.dispatch(last_message, agent_id, agent_name)

        await self.coordinator.update_agent_status(agent_id, AgentStatus.IDLE, StatusSource.HOOK)
        return AgentStatus.IDLE


def build_hook_handlers(
    coordinator: AgentCoordinator,
    settings: Settings,
    notifier: Notifier,
    autopilot: Autopilot,
) -> Dict[str, HookHandler]:
    """Dispatch table keyed by the hook body's ``agent`` field."""
    return {
        "claude": ClaudeHookHandler(coordinator, settings, notifier, autopilot),
        "codex": CodexHookHandler(coordinator, settings, autopilot),
    }
