from .hooks import router as hooks_router
from .info import router as info_router
from .mcp import router as mcp_router

__all__ = ["hooks_router", "info_router", "mcp_router"]
