from typing import Dict

from fastapi import Request

from app.coordinator import AgentCoordinator
from app.hooks import HookHandler
from app.tools import ToolHandler
from skwad.config import Settings


def get_coordinator(request: Request) -> AgentCoordinator:
    return request.app.state.coordinator


def get_tool_handler(request: Request) -> ToolHandler:
    return request.app.state.tool_handler


def get_hook_handlers(request: Request) -> Dict[str, HookHandler]:
    return request.app.state.hook_handlers


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
