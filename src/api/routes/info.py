from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse

from api.dependencies import get_coordinator
from app.coordinator import AgentCoordinator

router = APIRouter()


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    response_class=PlainTextResponse,
    summary="Health check endpoint"
)
async def health_check() -> str:
    return "OK"


@router.get(
    "/status",
    status_code=status.HTTP_200_OK,
    summary="Debug snapshot of all agents"
)
async def get_status(
    coordinator: AgentCoordinator = Depends(get_coordinator),
) -> List[Dict[str, Any]]:
    return await coordinator.get_status_snapshot()
