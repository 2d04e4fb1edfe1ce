from typing import Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import hooks_router, info_router, mcp_router
from app.coordinator import AgentCoordinator
from app.hooks import HookHandler
from app.tools import ToolHandler
from skwad.config import Settings


def create_app(
    coordinator: AgentCoordinator,
    tool_handler: ToolHandler,
    hook_handlers: Dict[str, HookHandler],
    settings: Settings,
) -> FastAPI:
    """
    Build the HTTP application around an already constructed coordinator.

    Collaborators are stored on ``app.state`` and handed to the routers
    through the getters in ``api.dependencies``.
    """
    app = FastAPI(
        title="Skwad MCP Server",
        description="Agent coordination server: MCP tools and lifecycle hooks",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.coordinator = coordinator
    app.state.tool_handler = tool_handler
    app.state.hook_handlers = hook_handlers
    app.state.settings = settings

    app.include_router(mcp_router, tags=["MCP"])
    app.include_router(hooks_router, prefix="/api/v1/agent", tags=["Hooks"])
    app.include_router(info_router, tags=["System Info"])

    return app
