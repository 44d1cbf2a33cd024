from datetime import datetime
from decimal import Decimal

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.core.audit import log_event
from app.core.exceptions import ConflictError, NotFoundError
from app.deps import require_admin, require_antiforgery
from app.models.bet import Bet
from app.models.event import EventTeam
from app.models.user import User
from app.services import catalog as catalog_service
from app.services import odds as odds_service
from app.services.settlement import ConcurrencyConflict, SettlementEngine, SettlementStatus, settle_event

router = APIRouter()


class SettleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    outcome: str = ""
    winning_team_id: int | None = Field(None, alias="winningTeamId")


class CancelEventRequest(BaseModel):
    reason: str = ""


class TeamIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team_id: int = Field(..., alias="teamId")
    name: str
    odds: Decimal = Field(Decimal("2.00"), gt=1)


class CreateEventRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    date: datetime
    sport_key: str = ""
    teams: list[TeamIn]


class TeamOddsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    team_id: int = Field(..., alias="teamId")
    odds: Decimal = Field(..., gt=1)


class UpdateOddsRequest(BaseModel):
    odds: list[TeamOddsIn] = Field(..., min_length=1)


class CreateProductRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., alias="productId", gt=0)
    name: str = Field(..., min_length=1, max_length=100)
    price_in_cents: int = Field(..., alias="priceInCents", gt=0)
    chips: int = Field(..., gt=0)
    currency: str = "crc"
    stripe_price_id: str | None = Field(None, alias="stripePriceId")
    description: str | None = Field(None, max_length=255)


@router.post("/events")
async def admin_create_event(body: CreateEventRequest, request: Request, user: User = Depends(require_admin)):
    require_antiforgery(request, user)
    teams = [EventTeam(team_id=t.team_id, name=t.name, odds=t.odds) for t in body.teams]
    event = await catalog_service.create_event(body.name, body.date, teams, body.sport_key)
    return {"id": str(event.id), "name": event.name, "date": event.date.isoformat()}


@router.put("/events/{event_id}/odds")
async def admin_update_odds(
    event_id: PydanticObjectId,
    body: UpdateOddsRequest,
    request: Request,
    user: User = Depends(require_admin),
):
    """Admin: change the odds of an open event; new bets use them, placed bets keep theirs."""
    require_antiforgery(request, user)
    event = await odds_service.update_odds(
        event_id, {o.team_id: o.odds for o in body.odds}, source=odds_service.SOURCE_ADMIN
    )
    await log_event(
        str(user.id), "admin_update_odds", "event", str(event_id),
        {"odds": {str(o.team_id): str(o.odds) for o in body.odds}},
    )
    return {
        "success": True,
        "data": {"id": str(event.id), "teams": [{"teamId": t.team_id, "odds": str(t.odds)} for t in event.teams]},
    }


@router.post("/products")
async def admin_create_product(body: CreateProductRequest, request: Request, user: User = Depends(require_admin)):
    require_antiforgery(request, user)
    product = await catalog_service.create_product(
        body.product_id,
        body.name,
        body.price_in_cents,
        body.chips,
        body.currency,
        body.stripe_price_id,
        body.description,
    )
    return {"id": product.product_id, "name": product.name}


@router.post("/events/{event_id}/settle")
async def admin_settle_event(
    event_id: PydanticObjectId,
    body: SettleRequest,
    request: Request,
    user: User = Depends(require_admin),
    background: bool = Query(False),
):
    """Admin: settle all pending bets of an event (idempotent per event)."""
    require_antiforgery(request, user)
    if background:
        from app.worker.tasks import enqueue_settlement
        job_id = await enqueue_settlement(str(event_id), body.outcome, body.winning_team_id)
        return {"success": True, "message": "Settlement queued", "data": {"job_id": job_id}}
    result = await settle_event(event_id, body.outcome, body.winning_team_id)
    await log_event(
        str(user.id), "admin_settle_event", "event", str(event_id),
        {"outcome": result.outcome, "status": result.status.value},
    )
    if result.status == SettlementStatus.ALREADY_SETTLED:
        return {"success": False, "message": result.message, "data": result.model_dump(mode="json")}
    return {"success": True, "message": result.message, "data": result.model_dump(mode="json")}


@router.post("/events/{event_id}/cancel")
async def admin_cancel_event(
    event_id: PydanticObjectId,
    body: CancelEventRequest,
    request: Request,
    user: User = Depends(require_admin),
):
    """Admin: void the event; every pending bet is refunded."""
    require_antiforgery(request, user)
    result = await settle_event(event_id, "CANCELLED")
    await log_event(
        str(user.id), "admin_cancel_event", "event", str(event_id),
        {"reason": body.reason, "status": result.status.value},
    )
    return {
        "success": result.status == SettlementStatus.SETTLED,
        "message": result.message,
        "data": result.model_dump(mode="json"),
    }


@router.post("/bets/{bet_id}/cancel")
async def admin_cancel_bet(bet_id: PydanticObjectId, request: Request, user: User = Depends(require_admin)):
    """Admin: cancel one pending bet with a full refund, regardless of kickoff time."""
    require_antiforgery(request, user)
    bet = await Bet.get(bet_id)
    if not bet:
        raise NotFoundError("Bet not found")
    try:
        updated = await SettlementEngine().cancel_single_bet(bet)
    except ConcurrencyConflict:
        raise ConflictError("Bet is no longer pending")
    return {"success": True, "message": "Bet cancelled and refunded", "data": {"id": str(updated.id)}}
