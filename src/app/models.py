"""
Application-level data models for the coordination layer.

Defines agent records, sessions, messages, tool responses and the
JSON-RPC envelope used by the MCP endpoint.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from mcp.types import ErrorData
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentStatus(str, Enum):
    """Activity status of an agent."""

    IDLE = "idle"
    RUNNING = "running"
    INPUT = "input"
    ERROR = "error"


class StatusSource(str, Enum):
    """Where a status change came from."""

    HOOK = "hook"
    TERMINAL = "terminal"


class Agent(BaseModel):
    """Agent record as owned by the host application's agent directory."""

    id: str
    name: str
    folder: str = ""
    avatar: Optional[str] = None
    agent_type: str = "claude"
    created_by: Optional[str] = None
    companion: bool = False

    # Runtime state
    status: AgentStatus = AgentStatus.IDLE
    registered: bool = False
    session_id: Optional[str] = None
    resume_session_id: Optional[str] = None
    fork_session: bool = False
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_shell(self) -> bool:
        return self.agent_type == "shell"

    @property
    def log_prefix(self) -> str:
        return agent_log_prefix(self.id)


class Workspace(BaseModel):
    """A named group of agents. Messaging never crosses workspaces."""

    name: str
    agent_ids: List[str] = Field(default_factory=list)


class AgentSession(BaseModel):
    """MCP session bound to exactly one agent."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)

    @property
    def idle_seconds(self) -> float:
        return (utcnow() - self.last_activity).total_seconds()


class Message(BaseModel):
    """A point-to-point message between two agents."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sender: str
    recipient: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    is_read: bool = False


# Tool responses


class AgentInfo(BaseModel):
    id: str
    name: str
    folder: str
    status: str
    is_registered: bool

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentInfo":
        return cls(
            id=agent.id,
            name=agent.name,
            folder=agent.folder,
            status=agent.status.value,
            is_registered=agent.registered,
        )


class ListAgentsResponse(BaseModel):
    agents: List[AgentInfo]


class SendMessageResponse(BaseModel):
    success: bool
    message: str


class MessageInfo(BaseModel):
    id: str
    sender: str = Field(serialization_alias="from")
    content: str
    timestamp: str


class CheckMessagesResponse(BaseModel):
    messages: List[MessageInfo]


class BroadcastResponse(BaseModel):
    success: bool
    recipient_count: int


class RegisterAgentResponse(BaseModel):
    success: bool
    message: str
    unread_message_count: int
    workspace_members: List[AgentInfo]


class WorktreeInfo(BaseModel):
    name: str
    path: str


class RepoInfo(BaseModel):
    name: str
    path: str
    worktrees: List[WorktreeInfo] = Field(default_factory=list)


class ListReposResponse(BaseModel):
    repos: List[RepoInfo]


class ListWorktreesResponse(BaseModel):
    repo_path: str
    worktrees: List[WorktreeInfo]


class CreateAgentResponse(BaseModel):
    success: bool
    agent_id: Optional[str] = None
    message: str


class CloseAgentResponse(BaseModel):
    success: bool
    message: str


class CreateWorktreeResponse(BaseModel):
    success: bool
    path: Optional[str] = None
    message: str


class PanelResponse(BaseModel):
    success: bool
    message: str


# JSON-RPC envelope

RequestId = Union[int, str]


class JSONRPCRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[RequestId] = None
    method: str
    params: Optional[Union[Dict[str, Any], List[Any]]] = None

    @property
    def is_notification(self) -> bool:
        """Notifications carry no id (or use the notifications/ prefix)."""
        return self.method.startswith("notifications/") or "id" not in self.model_fields_set

    def param(self, key: str) -> Any:
        if isinstance(self.params, dict):
            return self.params.get(key)
        return None


class JSONRPCResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[RequestId] = None
    result: Optional[Any] = None
    error: Optional[ErrorData] = None

    @classmethod
    def success(cls, request_id: Optional[RequestId], result: Any) -> "JSONRPCResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls, request_id: Optional[RequestId], code: int, message: str
    ) -> "JSONRPCResponse":
        return cls(id=request_id, error=ErrorData(code=code, message=message))

    def to_payload(self) -> Dict[str, Any]:
        """Render the envelope with exactly one of result or error."""
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result if self.result is not None else {}
        return payload


def agent_log_prefix(agent_id: str) -> str:
    return f"[skwad][{agent_id[:8].lower()}]"
