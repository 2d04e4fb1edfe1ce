import logging
import os
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import CallToolResult, TextContent, Tool
from pydantic import BaseModel

from .coordinator import AgentCoordinator
from .models import (
    BroadcastResponse,
    CheckMessagesResponse,
    CreateWorktreeResponse,
    ListAgentsResponse,
    ListReposResponse,
    ListWorktreesResponse,
    MessageInfo,
    PanelResponse,
    RegisterAgentResponse,
    SendMessageResponse,
)
from .services import RepoProvider


class ToolName(str, Enum):
    REGISTER_AGENT = "register-agent"
    LIST_AGENTS = "list-agents"
    SEND_MESSAGE = "send-message"
    CHECK_MESSAGES = "check-messages"
    BROADCAST_MESSAGE = "broadcast-message"
    LIST_REPOS = "list-repos"
    LIST_WORKTREES = "list-worktrees"
    CREATE_AGENT = "create-agent"
    CLOSE_AGENT = "close-agent"
    CREATE_WORKTREE = "create-worktree"
    DISPLAY_MARKDOWN = "display-markdown"
    VIEW_MERMAID = "view-mermaid"


def _schema(properties: Dict[str, Dict[str, str]], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def _prop(type_: str, description: str) -> Dict[str, str]:
    return {"type": type_, "description": description}


TOOL_DEFINITIONS: List[Tool] = [
    Tool(
        name=ToolName.REGISTER_AGENT.value,
        description="Register this agent with the skwad. Call this first before using other tools.",
        inputSchema=_schema(
            {
                "agentId": _prop("string", "The agent ID provided by Skwad"),
                "sessionId": _prop("string", "Your internal session ID."),
            },
            ["agentId"],
        ),
    ),
    Tool(
        name=ToolName.LIST_AGENTS.value,
        description="List all registered agents with their status (name, folder, working/idle)",
        inputSchema=_schema({"agentId": _prop("string", "Your agent ID")}, ["agentId"]),
    ),
    Tool(
        name=ToolName.SEND_MESSAGE.value,
        description="Send a message to another agent by name or ID",
        inputSchema=_schema(
            {
                "from": _prop("string", "Your agent ID"),
                "to": _prop("string", "Recipient agent name or ID"),
                "content": _prop("string", "Message content"),
            },
            ["from", "to", "content"],
        ),
    ),
    Tool(
        name=ToolName.CHECK_MESSAGES.value,
        description="Check your inbox for messages from other agents",
        inputSchema=_schema(
            {
                "agentId": _prop("string", "Your agent ID"),
                "markAsRead": _prop("boolean", "Mark messages as read (default: true)"),
            },
            ["agentId"],
        ),
    ),
    Tool(
        name=ToolName.BROADCAST_MESSAGE.value,
        description="Send a message to all other registered agents",
        inputSchema=_schema(
            {
                "from": _prop("string", "Your agent ID"),
                "content": _prop("string", "Message content"),
            },
            ["from", "content"],
        ),
    ),
    Tool(
        name=ToolName.LIST_REPOS.value,
        description="List all git repositories in the configured source folder",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name=ToolName.LIST_WORKTREES.value,
        description="List all worktrees for a given repository",
        inputSchema=_schema(
            {"repoPath": _prop("string", "Path to the repository")}, ["repoPath"]
        ),
    ),
    Tool(
        name=ToolName.CREATE_AGENT.value,
        description=(
            "Create a new agent in Skwad. Can optionally create a new git worktree for "
            "the agent. Note: shell agents are plain terminals without an AI agent, so "
            "do not try to send messages to them."
        ),
        inputSchema=_schema(
            {
                "agentId": _prop("string", "Your agent ID (used to track who created the agent)"),
                "name": _prop("string", "Name for the agent"),
                "icon": _prop("string", "Emoji icon for the agent"),
                "agentType": _prop(
                    "string",
                    "Agent type: claude, codex, opencode, gemini, copilot, custom1, custom2, or shell",
                ),
                "repoPath": _prop("string", "Path to the repository or worktree folder"),
                "createWorktree": _prop("boolean", "If true, create a new worktree from repoPath"),
                "branchName": _prop(
                    "string", "Branch name for new worktree (required if createWorktree is true)"
                ),
                "companion": _prop(
                    "boolean",
                    "If true, the new agent is a companion of the creator: it won't appear in "
                    "the agent list and only its owner can message it. Only use this flag if "
                    "the user has explicitly asked for a companion agent.",
                ),
                "command": _prop("string", "Command to run (only for shell agent type)"),
            },
            ["name", "agentType", "repoPath"],
        ),
    ),
    Tool(
        name=ToolName.CLOSE_AGENT.value,
        description=(
            "Close an agent that you created. You can only close agents that you created, "
            "not agents created by the user or other agents."
        ),
        inputSchema=_schema(
            {
                "agentId": _prop("string", "Your agent ID"),
                "target": _prop("string", "The agent to close (name or ID)"),
            },
            ["agentId", "target"],
        ),
    ),
    Tool(
        name=ToolName.CREATE_WORKTREE.value,
        description="Create a new git worktree from a repository. Returns the path to the new worktree.",
        inputSchema=_schema(
            {
                "repoPath": _prop("string", "Path to the source repository"),
                "branchName": _prop("string", "Branch name for the new worktree"),
            },
            ["repoPath", "branchName"],
        ),
    ),
    Tool(
        name=ToolName.DISPLAY_MARKDOWN.value,
        description=(
            "Display a markdown file in a panel for the user to review. Use this to show "
            "plans, documentation, or any markdown content that needs user attention. Never "
            "assume the panel is still open: call the tool again when relevant."
        ),
        inputSchema=_schema(
            {
                "agentId": _prop("string", "Your agent ID"),
                "filePath": _prop("string", "Absolute path to the markdown file to display"),
                "maximized": _prop(
                    "boolean",
                    "If true, maximize the panel. Only set to true if the user explicitly "
                    "requests it. Default: false",
                ),
            },
            ["agentId", "filePath"],
        ),
    ),
    Tool(
        name=ToolName.VIEW_MERMAID.value,
        description=(
            "Display a Mermaid diagram in a panel for the user to view. Supports flowcharts, "
            "state, sequence, class and ER diagrams. Pass the mermaid source text directly."
        ),
        inputSchema=_schema(
            {
                "agentId": _prop("string", "Your agent ID"),
                "source": _prop("string", "Mermaid diagram source text (e.g. 'graph TD; A-->B;')"),
                "title": _prop("string", "Optional title to display above the diagram"),
            },
            ["agentId", "source"],
        ),
    ),
]


class ToolHandler:
    """
    MCP tool catalog and execution.

    Messaging and registration tools are backed by the coordinator; repository
    tools delegate to the host's repo provider when one is configured.
    """

    def __init__(
        self,
        coordinator: AgentCoordinator,
        repo_provider: Optional[RepoProvider] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.coordinator = coordinator
        self.repo_provider = repo_provider
        self.logger = logger or logging.getLogger("ToolHandler")

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[CallToolResult]]] = {
            ToolName.REGISTER_AGENT.value: self._handle_register_agent,
            ToolName.LIST_AGENTS.value: self._handle_list_agents,
            ToolName.SEND_MESSAGE.value: self._handle_send_message,
            ToolName.CHECK_MESSAGES.value: self._handle_check_messages,
            ToolName.BROADCAST_MESSAGE.value: self._handle_broadcast_message,
            ToolName.LIST_REPOS.value: self._handle_list_repos,
            ToolName.LIST_WORKTREES.value: self._handle_list_worktrees,
            ToolName.CREATE_AGENT.value: self._handle_create_agent,
            ToolName.CLOSE_AGENT.value: self._handle_close_agent,
            ToolName.CREATE_WORKTREE.value: self._handle_create_worktree,
            ToolName.DISPLAY_MARKDOWN.value: self._handle_display_markdown,
            ToolName.VIEW_MERMAID.value: self._handle_view_mermaid,
        }

    def list_tools(self) -> List[Tool]:
        return list(TOOL_DEFINITIONS)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            return self._error_result(f"Unknown tool: {name}")

        self.logger.debug(f"Tool call: {name}")
        return await handler(arguments)

    # Core tools

    async def _handle_register_agent(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")

        session_id = _string_arg(arguments, "sessionId")
        if not await self.coordinator.register_agent(agent_id, session_id=session_id):
            return self._error_result("Failed to register: agent not found or invalid ID")

        members = await self.coordinator.list_agents(agent_id)
        unread = await self.coordinator.unread_count(agent_id)
        return self._success_result(
            RegisterAgentResponse(
                success=True,
                message=(
                    "Successfully registered with the skwad. Note: skwad members can change "
                    "over time as agents join or leave. Use list-agents to get the current list."
                ),
                unread_message_count=unread,
                workspace_members=members,
            )
        )

    async def _handle_list_agents(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")

        if await self.coordinator.find_agent(agent_id) is None:
            return await self._agent_not_found_error(agent_id)

        agents = await self.coordinator.list_agents(agent_id)
        return self._success_result(ListAgentsResponse(agents=agents))

    async def _handle_send_message(self, arguments: Dict[str, Any]) -> CallToolResult:
        recipient = _string_arg(arguments, "to")
        if recipient is None:
            return self._error_result("Missing required parameter: to")
        content = _string_arg(arguments, "content")
        if content is None:
            return self._error_result("Missing required parameter: content")
        sender = _string_arg(arguments, "from")
        if sender is None:
            return self._error_result("Missing required parameter: from (your agent ID)")

        if await self.coordinator.find_agent(sender) is None:
            return await self._agent_not_found_error(sender)

        error = await self.coordinator.send_message(sender, recipient, content)
        if error is not None:
            return self._error_result(f"Failed to send message: {error}")

        return self._success_result(
            SendMessageResponse(
                success=True,
                message=(
                    "Message sent successfully. Don't check for a response right away - "
                    "you will be notified when the other agent responds."
                ),
            )
        )

    async def _handle_check_messages(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")

        if await self.coordinator.find_agent(agent_id) is None:
            return await self._agent_not_found_error(agent_id)

        mark_as_read = arguments.get("markAsRead", True)
        if not isinstance(mark_as_read, bool):
            mark_as_read = True

        messages = await self.coordinator.check_messages(agent_id, mark_as_read=mark_as_read)

        infos = []
        for message in messages:
            sender_name = await self.coordinator.get_agent_name(message.sender)
            infos.append(
                MessageInfo(
                    id=message.id,
                    sender=sender_name or message.sender,
                    content=message.content,
                    timestamp=message.timestamp.isoformat(),
                )
            )
        return self._success_result(CheckMessagesResponse(messages=infos))

    async def _handle_broadcast_message(self, arguments: Dict[str, Any]) -> CallToolResult:
        sender = _string_arg(arguments, "from")
        if sender is None:
            return self._error_result("Missing required parameter: from")
        content = _string_arg(arguments, "content")
        if content is None:
            return self._error_result("Missing required parameter: content")

        if await self.coordinator.find_agent(sender) is None:
            return await self._agent_not_found_error(sender)

        count = await self.coordinator.broadcast_message(sender, content)
        return self._success_result(BroadcastResponse(success=count > 0, recipient_count=count))

    # Host-delegated tools

    async def _handle_list_repos(self, arguments: Dict[str, Any]) -> CallToolResult:
        if self.repo_provider is None:
            return self._error_result("Repository discovery is not available")
        repos = await self.repo_provider.list_repos()
        return self._success_result(ListReposResponse(repos=repos))

    async def _handle_list_worktrees(self, arguments: Dict[str, Any]) -> CallToolResult:
        repo_path = _string_arg(arguments, "repoPath")
        if repo_path is None:
            return self._error_result("Missing required parameter: repoPath")
        if self.repo_provider is None:
            return self._error_result("Repository discovery is not available")

        worktrees = await self.repo_provider.list_worktrees(repo_path)
        return self._success_result(ListWorktreesResponse(repo_path=repo_path, worktrees=worktrees))

    async def _handle_create_agent(self, arguments: Dict[str, Any]) -> CallToolResult:
        name = _string_arg(arguments, "name")
        if name is None:
            return self._error_result("Missing required parameter: name")
        agent_type = _string_arg(arguments, "agentType")
        if agent_type is None:
            return self._error_result("Missing required parameter: agentType")
        repo_path = _string_arg(arguments, "repoPath")
        if repo_path is None:
            return self._error_result("Missing required parameter: repoPath")

        create_worktree = arguments.get("createWorktree") is True
        branch_name = _string_arg(arguments, "branchName")
        if create_worktree and not branch_name:
            return self._error_result("branchName is required when createWorktree is true")

        created_by = None
        caller_id = _string_arg(arguments, "agentId")
        if caller_id is not None:
            caller = await self.coordinator.find_agent(caller_id)
            created_by = caller.id if caller else None

        result = await self.coordinator.create_agent(
            name=name,
            agent_type=agent_type,
            repo_path=repo_path,
            icon=_string_arg(arguments, "icon"),
            create_worktree=create_worktree,
            branch_name=branch_name,
            created_by=created_by,
            companion=arguments.get("companion") is True,
            shell_command=_string_arg(arguments, "command"),
        )
        return self._success_result(result)

    async def _handle_close_agent(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")
        target = _string_arg(arguments, "target")
        if target is None:
            return self._error_result("Missing required parameter: target")

        caller = await self.coordinator.find_agent(agent_id)
        if caller is None:
            return await self._agent_not_found_error(agent_id)
        if not caller.registered:
            return self._error_result("You must be registered to close agents")

        result = await self.coordinator.close_agent(caller.id, target)
        return self._success_result(result)

    async def _handle_create_worktree(self, arguments: Dict[str, Any]) -> CallToolResult:
        repo_path = _string_arg(arguments, "repoPath")
        if repo_path is None:
            return self._error_result("Missing required parameter: repoPath")
        branch_name = _string_arg(arguments, "branchName")
        if not branch_name:
            return self._error_result("Missing required parameter: branchName")
        if self.repo_provider is None:
            return self._error_result("Worktree management is not available")

        if not await self.repo_provider.is_git_repo(repo_path):
            return self._error_result(f"Not a git repository: {repo_path}")

        worktree_path = self.repo_provider.suggested_worktree_path(repo_path, branch_name)
        try:
            await self.repo_provider.create_worktree(repo_path, branch_name, worktree_path)
        except Exception as e:
            return self._error_result(f"Failed to create worktree: {e}")

        return self._success_result(
            CreateWorktreeResponse(
                success=True, path=worktree_path, message=f"Worktree created at {worktree_path}"
            )
        )

    async def _handle_display_markdown(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")
        file_path = _string_arg(arguments, "filePath")
        if file_path is None:
            return self._error_result("Missing required parameter: filePath")

        agent = await self.coordinator.find_agent(agent_id)
        if agent is None:
            return await self._agent_not_found_error(agent_id)

        if not os.path.exists(file_path):
            return self._error_result(f"File not found: {file_path}")

        maximized = arguments.get("maximized") is True
        if not await self.coordinator.show_markdown_panel(file_path, agent.id, maximized):
            return self._error_result("Failed to open markdown panel")

        return self._success_result(
            PanelResponse(
                success=True,
                message=(
                    f"Markdown panel opened for: {file_path}. Inform the user they can "
                    "highlight text in the preview to make comments, then click "
                    "'Submit Review' to send them to you."
                ),
            )
        )

    async def _handle_view_mermaid(self, arguments: Dict[str, Any]) -> CallToolResult:
        agent_id = _string_arg(arguments, "agentId")
        if agent_id is None:
            return self._error_result("Missing required parameter: agentId")
        source = _string_arg(arguments, "source")
        if source is None:
            return self._error_result("Missing required parameter: source")

        agent = await self.coordinator.find_agent(agent_id)
        if agent is None:
            return await self._agent_not_found_error(agent_id)

        title = _string_arg(arguments, "title")
        if not await self.coordinator.show_mermaid_panel(source, title, agent.id):
            return self._error_result("Failed to open mermaid panel")

        return self._success_result(
            PanelResponse(
                success=True,
                message=(
                    "Mermaid diagram panel opened. Supported diagram types: flowcharts, "
                    "state, sequence, class, and ER diagrams."
                ),
            )
        )

    # Helpers

    async def _agent_not_found_error(self, provided_id: str) -> CallToolResult:
        agents = await self.coordinator.get_all_agents_for_recovery()

        message = f"Agent ID '{provided_id}' not found. "
        if not agents:
            message += (
                "No agents are currently available. Ask the user to check if Skwad is "
                "running correctly."
            )
        else:
            message += (
                "You may have forgotten your ID due to context loss. Here are all agents - "
                "find yourself by matching your working directory:\n\n"
            )
            for agent in agents:
                message += f"- {agent.name}: {agent.folder} (ID: {agent.id})\n"
            message += (
                "\nIf you're unsure which one you are, ask the user to right-click on your "
                "agent in Skwad and select 'Register'."
            )

        return self._error_result(message)

    def _success_result(self, response: BaseModel) -> CallToolResult:
        text = response.model_dump_json(indent=2, by_alias=True)
        return CallToolResult(content=[TextContent(type="text", text=text)], isError=False)

    def _error_result(self, message: str) -> CallToolResult:
        return CallToolResult(content=[TextContent(type="text", text=message)], isError=True)


def _string_arg(arguments: Dict[str, Any], key: str) -> Optional[str]:
    value = arguments.get(key)
    return value if isinstance(value, str) else None
