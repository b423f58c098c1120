"""el_inventory REST API — caller's item stacks."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.database import get_db_session
from src.el_common.response import ApiResponse, success_response
from src.el_gateway.auth.dependencies import get_current_player_id
from src.el_inventory.application.service import InventoryApplicationService

router = APIRouter(prefix="/inventory", tags=["inventory"])

_service = InventoryApplicationService()


@router.get("")
async def list_inventory(
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.list_inventory(db, player_id)
    resp = success_response(data.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
