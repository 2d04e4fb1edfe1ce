import asyncio
import logging
from typing import Any, Dict, List, Optional

from .models import AgentSession, agent_log_prefix, utcnow


class SessionManager:
    """
    Manages MCP sessions for registered agents.

    Holds at most one session per agent: creating a session for an agent
    replaces any session the agent already had. Sessions are indexed by both
    session id and agent id, and every operation runs under a single lock.
    """

    def __init__(
        self,
        session_timeout_seconds: int = 3600,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger("SessionManager")
        self.session_timeout_seconds = session_timeout_seconds

        self._lock = asyncio.Lock()
        self._sessions: Dict[str, AgentSession] = {}
        self._agent_sessions: Dict[str, str] = {}

        self._session_metrics = {
            "total_created": 0,
            "total_replaced": 0,
            "total_expired": 0,
        }

    async def create_session(self, agent_id: str) -> AgentSession:
        """
        Create a new session for an agent, dropping its previous one.

        Args:
            agent_id: Owning agent identifier

        Returns:
            The new session
        """
        async with self._lock:
            existing_id = self._agent_sessions.get(agent_id)
            if existing_id is not None:
                self._sessions.pop(existing_id, None)
                self._session_metrics["total_replaced"] += 1
                self.logger.debug(
                    f"{agent_log_prefix(agent_id)} Replacing session {existing_id}"
                )

            session = AgentSession(agent_id=agent_id)
            self._sessions[session.session_id] = session
            self._agent_sessions[agent_id] = session.session_id
            self._session_metrics["total_created"] += 1

        self.logger.info(
            f"{agent_log_prefix(agent_id)} Created session {session.session_id}"
        )
        return session

    async def get_session(self, session_id: str) -> Optional[AgentSession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def get_session_for_agent(self, agent_id: str) -> Optional[AgentSession]:
        async with self._lock:
            session_id = self._agent_sessions.get(agent_id)
            if session_id is None:
                return None
            return self._sessions.get(session_id)

    async def touch(self, session_id: str) -> bool:
        """
        Record activity on a session.

        Returns:
            True if the session exists, False otherwise
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.last_activity = utcnow()
            return True

    async def remove_session(self, session_id: str) -> bool:
        async with self._lock:
            return self._remove(session_id)

    async def remove_session_for_agent(self, agent_id: str) -> bool:
        async with self._lock:
            session_id = self._agent_sessions.get(agent_id)
            if session_id is None:
                return False
            return self._remove(session_id)

    async def list_sessions(self) -> List[AgentSession]:
        async with self._lock:
            return list(self._sessions.values())

    async def sweep(self, max_idle_seconds: Optional[float] = None) -> int:
        """
        Remove every session idle for longer than the threshold.

        Args:
            max_idle_seconds: Idle threshold, defaults to the session timeout

        Returns:
            Number of sessions removed
        """
        threshold = (
            self.session_timeout_seconds if max_idle_seconds is None else max_idle_seconds
        )

        async with self._lock:
            stale = [
                session_id
                for session_id, session in self._sessions.items()
                if session.idle_seconds > threshold
            ]
            for session_id in stale:
                self._remove(session_id)
            self._session_metrics["total_expired"] += len(stale)

        if stale:
            self.logger.info(f"Cleaned up {len(stale)} stale sessions")
        return len(stale)

    def get_session_metrics(self) -> Dict[str, Any]:
        """Get session manager metrics."""
        return {
            **self._session_metrics,
            "active_count": len(self._sessions),
            "session_timeout_seconds": self.session_timeout_seconds,
        }

    def _remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if self._agent_sessions.get(session.agent_id) == session_id:
            del self._agent_sessions[session.agent_id]
        return True
