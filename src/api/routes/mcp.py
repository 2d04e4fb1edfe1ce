import json
import logging
import uuid
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import logfire
from fastapi import APIRouter, Depends, Request, Response, status
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    Implementation,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    ToolsCapability,
)
from pydantic import BaseModel, ValidationError
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from api.dependencies import get_tool_handler
from app.models import JSONRPCRequest, JSONRPCResponse
from app.tools import ToolHandler

router = APIRouter()
logger = logging.getLogger("MCPTransport")

SESSION_HEADER = "Mcp-Session-Id"
EVENT_STREAM = "text/event-stream"

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "skwad-mcp"
SERVER_VERSION = "1.0.0"


async def handle_initialize(request: JSONRPCRequest, tools: ToolHandler) -> JSONRPCResponse:
    result = InitializeResult(
        protocolVersion=PROTOCOL_VERSION,
        capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
        serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
    )
    return JSONRPCResponse.success(request.id, result)


async def handle_list_tools(request: JSONRPCRequest, tools: ToolHandler) -> JSONRPCResponse:
    return JSONRPCResponse.success(request.id, ListToolsResult(tools=tools.list_tools()))


async def handle_call_tool(request: JSONRPCRequest, tools: ToolHandler) -> JSONRPCResponse:
    name = request.param("name")
    if not isinstance(name, str) or not name:
        return JSONRPCResponse.failure(
            request.id, INVALID_PARAMS, "Invalid params: missing tool name"
        )

    arguments = request.param("arguments")
    if not isinstance(arguments, dict):
        arguments = {}

    result = await tools.call_tool(name, arguments)
    return JSONRPCResponse.success(request.id, result)


async def handle_shutdown(request: JSONRPCRequest, tools: ToolHandler) -> JSONRPCResponse:
    return JSONRPCResponse.success(request.id, {})


METHOD_HANDLERS: Dict[str, Callable[[JSONRPCRequest, ToolHandler], Awaitable[JSONRPCResponse]]] = {
    "initialize": handle_initialize,
    "tools/list": handle_list_tools,
    "tools/call": handle_call_tool,
    "shutdown": handle_shutdown,
}


async def dispatch(request: JSONRPCRequest, tools: ToolHandler) -> JSONRPCResponse:
    handler = METHOD_HANDLERS.get(request.method)
    if handler is None:
        return JSONRPCResponse.failure(
            request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}"
        )

    try:
        return await handler(request, tools)
    except Exception as e:
        logger.exception(f"[skwad] Error handling {request.method}")
        return JSONRPCResponse.failure(request.id, INTERNAL_ERROR, f"Internal error: {e}")


def encode_response(response: JSONRPCResponse) -> str:
    payload = response.to_payload()
    result = payload.get("result")
    if isinstance(result, BaseModel):
        payload["result"] = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(payload)


def error_response(code: int, message: str) -> Response:
    body = json.dumps(JSONRPCResponse.failure(None, code, message).to_payload())
    return Response(
        content=body,
        status_code=status.HTTP_400_BAD_REQUEST,
        media_type="application/json",
    )


async def single_event(data: str, event: str) -> AsyncIterator[ServerSentEvent]:
    yield ServerSentEvent(data=data, event=event)


def sse_response(
    data: str, event: str, headers: Optional[Dict[str, str]] = None
) -> EventSourceResponse:
    """Stream that carries one Server-Sent-Event frame and then closes."""
    return EventSourceResponse(single_event(data, event), headers=headers)


@router.post("/mcp", summary="JSON-RPC endpoint for MCP clients")
async def mcp_request(
    request: Request,
    tools: ToolHandler = Depends(get_tool_handler),
) -> Response:
    session_id = request.headers.get(SESSION_HEADER)
    accepts_sse = EVENT_STREAM in request.headers.get("accept", "")

    try:
        raw = await request.body()
        rpc_request = JSONRPCRequest.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.debug(f"[skwad] Unparseable MCP request: {e}")
        return error_response(PARSE_ERROR, "Parse error: invalid JSON")

    logger.debug(f"[skwad] Received MCP request: {rpc_request.method}")

    if rpc_request.is_notification:
        return Response(status_code=status.HTTP_202_ACCEPTED)

    with logfire.span("skwad.mcp_request", method=rpc_request.method):
        response = await dispatch(rpc_request, tools)

    try:
        body = encode_response(response)
    except (TypeError, ValueError) as e:
        logger.error(f"[skwad] Could not encode response for {rpc_request.method}: {e}")
        return error_response(INTERNAL_ERROR, "Internal error: could not encode response")

    if rpc_request.method == "initialize" or not session_id:
        session_id = str(uuid.uuid4())

    headers = {SESSION_HEADER: session_id}
    if accepts_sse:
        return sse_response(body, "message", headers)

    return Response(content=body, media_type="application/json", headers=headers)


@router.get("/mcp", summary="Event stream acknowledgement for MCP clients")
async def mcp_stream() -> Response:
    # Server-initiated messages are not pushed; clients only get the handshake frame
    return sse_response(json.dumps({"status": "connected"}), "connected")
