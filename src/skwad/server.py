import asyncio
import logging
import os
from typing import Optional

import uvicorn

from api.app import create_app
from app.coordinator import AgentCoordinator
from app.directory import AgentDirectory, InMemoryAgentDirectory
from app.hooks import build_hook_handlers
from app.messages import MessageStore
from app.services import Autopilot, LoggingAutopilot, LoggingNotifier, Notifier, RepoProvider
from app.session import SessionManager
from app.tools import ToolHandler
from skwad.config import Settings


class SkwadServer:
    """
    Owns the coordinator and serves it over HTTP.

    The coordinator is built once here and passed explicitly to the tool
    handler, the hook handlers and the FastAPI application.
    """

    def __init__(
        self,
        logger: logging.Logger,
        settings: Settings,
        directory: Optional[AgentDirectory] = None,
        notifier: Optional[Notifier] = None,
        autopilot: Optional[Autopilot] = None,
        repo_provider: Optional[RepoProvider] = None,
    ) -> None:
        self.logger = logger
        self.settings = settings

        self.host = settings.host
        self.port = settings.port

        if directory is None:
            directory = self.load_directory()
        self.directory = directory

        self.session_manager = SessionManager(
            session_timeout_seconds=settings.session_timeout_seconds
        )
        self.message_store = MessageStore(max_read_messages=settings.max_read_messages)
        self.coordinator = AgentCoordinator(
            directory=self.directory,
            session_manager=self.session_manager,
            message_store=self.message_store,
            repo_provider=repo_provider,
            max_companions_per_owner=settings.max_companions_per_owner,
        )

        self.tool_handler = ToolHandler(self.coordinator, repo_provider=repo_provider)
        self.hook_handlers = build_hook_handlers(
            self.coordinator,
            settings,
            notifier or LoggingNotifier(),
            autopilot or LoggingAutopilot(),
        )

        self.app = create_app(
            coordinator=self.coordinator,
            tool_handler=self.tool_handler,
            hook_handlers=self.hook_handlers,
            settings=settings,
        )

        self._cleanup_task: Optional[asyncio.Task] = None

    def load_directory(self) -> AgentDirectory:
        """Load the agent directory from the seed file, or start empty."""
        path = self.settings.agents_file
        if path is None or not path.exists():
            self.logger.info("No agents file configured, starting with an empty directory")
            return InMemoryAgentDirectory()

        try:
            directory = InMemoryAgentDirectory.from_file(path)
        except (OSError, ValueError) as e:
            self.logger.error(f"Error loading agents file {path}: {e}")
            return InMemoryAgentDirectory()

        self.logger.info(f"Loaded {len(directory.agents)} agents from {path}")
        return directory

    async def cleanup_loop(self) -> None:
        """Periodically sweep stale sessions and trim the message log."""
        interval = self.settings.cleanup_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                result = await self.coordinator.cleanup()
                if result["expired_sessions"] or result["removed_messages"]:
                    self.logger.info(
                        f"[skwad] Cleanup: {result['expired_sessions']} sessions expired, "
                        f"{result['removed_messages']} messages removed"
                    )
            except Exception as e:
                self.logger.error(f"[skwad] Cleanup failed: {e}")

    async def listen(self):
        """Start the server and listen for connections."""
        self.logger.info(f"[skwad] Starting MCP server on port {self.port}")
        await self.start()

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info" if self.settings.debug else "warning",
        )
        server = uvicorn.Server(config)

        try:
            self.logger.info(f"[skwad] MCP server running on http://{self.host}:{self.port}/mcp")
            await server.serve()
        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
        finally:
            await self.shutdown()

    async def start(self):
        if self.settings.cleanup_interval_seconds > 0:
            self._cleanup_task = asyncio.create_task(self.cleanup_loop())
        self.logger.info(f"Skwad server started with PID {os.getpid()}")

    async def shutdown(self):
        """Stop background work and drop every live session."""
        self.logger.info("[skwad] Stopping MCP server")
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for session in await self.session_manager.list_sessions():
            await self.session_manager.remove_session(session.session_id)
        self.logger.info("Skwad server shutdown completed")
