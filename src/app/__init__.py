"""
Agent Coordination Package

Provides the coordination layer shared by every agent of a workspace:
registration and MCP sessions, workspace-scoped messaging, lifecycle hook
handling and the MCP tool catalog.

This package serves as the domain layer behind the HTTP server that:
- Tracks one live MCP session per registered agent
- Stores point-to-point and broadcast messages between agents
- Reconciles startup/resume/fork hook events into a registration state
- Exposes the coordinator to MCP clients as a set of tools
"""

from .coordinator import AgentCoordinator
from .directory import AgentDirectory, InMemoryAgentDirectory
from .hooks import ClaudeHookHandler, CodexHookHandler, HookHandler, build_hook_handlers
from .messages import MessageStore
from .models import Agent, AgentSession, AgentStatus, Message, StatusSource, Workspace
from .services import Autopilot, LoggingAutopilot, LoggingNotifier, Notifier, RepoProvider
from .session import SessionManager
from .tools import ToolHandler, ToolName

__all__ = [
    "AgentCoordinator",
    "AgentDirectory",
    "InMemoryAgentDirectory",
    "SessionManager",
    "MessageStore",
    "HookHandler",
    "ClaudeHookHandler",
    "CodexHookHandler",
    "build_hook_handlers",
    "ToolHandler",
    "ToolName",
    "Agent",
    "AgentSession",
    "AgentStatus",
    "Message",
    "StatusSource",
    "Workspace",
    "Notifier",
    "Autopilot",
    "RepoProvider",
    "LoggingNotifier",
    "LoggingAutopilot",
]
