"""el_trade REST API — offers, acceptance, history and ratings.

Caller identity comes from the gateway headers (X-Player-Id / X-Player-Name).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.el_common.database import get_db_session
from src.el_common.enums import TradeOfferStatus
from src.el_common.response import ApiResponse, success_response
from src.el_gateway.auth.dependencies import (
    get_current_player_id,
    get_current_player_name,
    require_operator,
)
from src.el_trade.application.schemas import CreateOfferRequest, RateTradeRequest
from src.el_trade.application.service import TradeApplicationService

router = APIRouter(prefix="/trade", tags=["trade"])

_service = TradeApplicationService()


def _wrap(data: dict, request: Request) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/offers", status_code=201)
async def create_offer(
    body: CreateOfferRequest,
    player_id: Annotated[str, Depends(get_current_player_id)],
    player_name: Annotated[str | None, Depends(get_current_player_name)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.create_offer(db, player_id, body, owner_username=player_name)
    return _wrap(data.model_dump(), request)


@router.get("/offers/mine")
async def list_my_offers(
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    status: TradeOfferStatus | None = Query(None, description="Filter by offer status"),
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    data = await _service.list_my_offers(
        db, player_id, status.value if status else None, cursor, limit
    )
    return _wrap(data.model_dump(), request)


@router.get("/offers/available")
async def list_available_offers(
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    data = await _service.list_available_offers(db, player_id, cursor, limit)
    return _wrap(data.model_dump(), request)


@router.get("/offers/{offer_id}")
async def get_offer(
    offer_id: str,
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_offer(db, offer_id)
    return _wrap(data.model_dump(), request)


@router.post("/offers/{offer_id}/accept")
async def accept_offer(
    offer_id: str,
    player_id: Annotated[str, Depends(get_current_player_id)],
    player_name: Annotated[str | None, Depends(get_current_player_name)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.accept_offer(db, offer_id, player_id, acceptor_username=player_name)
    return _wrap(data.model_dump(), request)


@router.post("/offers/{offer_id}/cancel")
async def cancel_offer(
    offer_id: str,
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.cancel_offer(db, offer_id, player_id)
    return _wrap(data.model_dump(), request)


@router.get("/history")
async def list_history(
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    data = await _service.list_history(db, player_id, cursor, limit)
    return _wrap(data.model_dump(), request)


@router.post("/history/{history_id}/rate")
async def rate_trade(
    history_id: str,
    body: RateTradeRequest,
    player_id: Annotated[str, Depends(get_current_player_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.rate_trade(db, history_id, player_id, body)
    return _wrap(data.model_dump(), request)


@router.post("/maintenance/expire")
async def expire_stale_offers(
    operator_id: Annotated[str, Depends(require_operator)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int | None = Query(None, ge=1, le=1000, description="Max offers to expire"),
) -> ApiResponse:
    data = await _service.expire_stale_offers(db, limit)
    return _wrap(data.model_dump(), request)
