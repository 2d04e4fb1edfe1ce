import json
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import logfire
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse

from api.dependencies import get_coordinator, get_hook_handlers
from app.coordinator import AgentCoordinator
from app.hooks import HookHandler
from app.models import RegisterAgentResponse, agent_log_prefix

router = APIRouter()
logger = logging.getLogger("HookEndpoints")


class HookParseError(Exception):
    """Raised when a hook body cannot be turned into an agent id and payload."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


async def parse_hook_request(request: Request) -> Tuple[Dict[str, Any], str]:
    """
    Read a hook body and validate its agent id.

    Returns:
        The decoded body and the agent id as a canonical UUID string
    """
    try:
        body = json.loads(await request.body())
    except ValueError:
        raise HookParseError("Failed to read body")

    agent_id = body.get("agent_id") if isinstance(body, dict) else None
    if not isinstance(agent_id, str):
        raise HookParseError("Missing or invalid agent_id")
    try:
        canonical_id = str(uuid.UUID(agent_id))
    except ValueError:
        raise HookParseError("Missing or invalid agent_id")

    return body, canonical_id


def plain_response(status_code: int, body: str) -> Response:
    return PlainTextResponse(content=body, status_code=status_code)


def select_handler(
    body: Dict[str, Any], handlers: Dict[str, HookHandler]
) -> Tuple[Optional[HookHandler], Any]:
    agent_type = body.get("agent") or "claude"
    handler = handlers.get(agent_type) if isinstance(agent_type, str) else None
    return handler, agent_type


@router.post("/register", summary="Hook based agent registration")
async def register_hook(
    request: Request,
    coordinator: AgentCoordinator = Depends(get_coordinator),
    handlers: Dict[str, HookHandler] = Depends(get_hook_handlers),
) -> Response:
    try:
        body, hook_agent_id = await parse_hook_request(request)
    except HookParseError as e:
        return plain_response(status.HTTP_400_BAD_REQUEST, e.message)

    handler, agent_type = select_handler(body, handlers)
    if handler is None:
        return plain_response(status.HTTP_400_BAD_REQUEST, f"Unknown agent type: {agent_type}")

    agent_id = await coordinator.resolve_agent_id(hook_agent_id)
    if agent_id is None:
        logger.warning(f"{agent_log_prefix(hook_agent_id)} Hook registration for unknown agent")
        return plain_response(status.HTTP_404_NOT_FOUND, "Agent not found")

    with logfire.span("skwad.hook_register", agent_id=agent_id, agent_type=agent_type):
        success = await handler.handle_registration(agent_id, body)

    if not success:
        return plain_response(status.HTTP_404_NOT_FOUND, "Agent not found")

    logger.info(f"{agent_log_prefix(agent_id)} Hook registration successful")
    response = RegisterAgentResponse(
        success=True,
        message="Registered",
        unread_message_count=await coordinator.unread_count(agent_id),
        workspace_members=await coordinator.list_agents(agent_id),
    )
    return Response(content=response.model_dump_json(), media_type="application/json")


@router.post("/status", summary="Hook based activity status")
async def status_hook(
    request: Request,
    coordinator: AgentCoordinator = Depends(get_coordinator),
    handlers: Dict[str, HookHandler] = Depends(get_hook_handlers),
) -> Response:
    try:
        body, hook_agent_id = await parse_hook_request(request)
    except HookParseError as e:
        return plain_response(status.HTTP_400_BAD_REQUEST, e.message)

    handler, agent_type = select_handler(body, handlers)
    if handler is None:
        return plain_response(status.HTTP_400_BAD_REQUEST, f"Unknown agent type: {agent_type}")

    agent_id = await coordinator.resolve_agent_id(hook_agent_id)
    if agent_id is None:
        return plain_response(status.HTTP_400_BAD_REQUEST, "Agent not found")

    with logfire.span("skwad.hook_status", agent_id=agent_id, agent_type=agent_type):
        agent_status = await handler.handle_activity(agent_id, body)

    if agent_status is None:
        return plain_response(
            status.HTTP_400_BAD_REQUEST, "Invalid status (expected: running, idle or input)"
        )

    logger.info(f"{agent_log_prefix(agent_id)} Hook status: {agent_status.value}")
    return plain_response(status.HTTP_200_OK, "OK")
