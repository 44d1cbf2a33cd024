from decimal import Decimal

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import get_settings
from app.core.pagination import DEFAULT_LIMIT, Page, paginate
from app.deps import get_current_user, require_antiforgery
from app.models.bet import Bet, BetStatus
from app.models.user import User
from app.services import betting as betting_service

router = APIRouter()


class PlaceBetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: PydanticObjectId = Field(..., alias="eventId")
    team_id: int = Field(..., alias="teamId")
    stake: Decimal = Field(..., gt=0, decimal_places=2)


def bet_out(b: Bet) -> dict:
    return {
        "id": str(b.id),
        "event_id": str(b.event_id),
        "team_id": b.team_id,
        "stake": str(b.stake),
        "odds": str(b.odds),
        "potential_payout": str(b.potential_payout),
        "payout": str(b.payout),
        "status": b.status.value,
        "created_at": b.created_at.isoformat(),
        "settled_at": b.settled_at.isoformat() if b.settled_at else None,
    }


@router.post("")
async def place_bet(body: PlaceBetRequest, request: Request, user: User = Depends(get_current_user)):
    require_antiforgery(request, user)
    bet = await betting_service.place_bet(user, body.event_id, body.team_id, body.stake)
    return bet_out(bet)


@router.get("")
async def list_bets(
    user: User = Depends(get_current_user),
    status: BetStatus | None = None,
    limit: int = Query(DEFAULT_LIMIT),
    offset: int = Query(0),
):
    limit, offset = paginate(limit, offset)
    bets = await betting_service.list_bets(user.id, status, limit, offset)
    total = await betting_service.count_bets(user.id, status)
    return Page[dict](items=[bet_out(b) for b in bets], limit=limit, offset=offset, total=total)


@router.get("/statistics")
async def bet_statistics(user: User = Depends(get_current_user)):
    stats = await betting_service.get_statistics(user.id)
    return {k: str(v) if isinstance(v, Decimal) else v for k, v in stats.items()}


@router.get("/limits")
async def bet_limits(user: User = Depends(get_current_user)):
    limit = betting_service.daily_stake_limit_for(user)
    today = await betting_service.staked_today(user.id)
    return {
        "role": user.role,
        "min_stake": str(get_settings().min_stake),
        "max_stake": str(betting_service.max_stake_for(user)),
        "daily_limit": str(limit),
        "staked_today": str(today),
        "remaining_today": str(max(limit - today, Decimal("0"))),
    }


@router.post("/{bet_id}/cancel")
async def cancel_bet(bet_id: PydanticObjectId, request: Request, user: User = Depends(get_current_user)):
    """Cancel a pending bet before kickoff; the stake is refunded."""
    require_antiforgery(request, user)
    bet = await betting_service.cancel_bet(user, bet_id)
    return bet_out(bet)
