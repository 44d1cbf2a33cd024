"""Odds updates and history; the database tests skip when MongoDB is not reachable."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.event import EventTeam
from app.models.odds_history import OddsHistory
from app.models.payment_transaction import TransactionType
from app.models.user import User
from app.services import betting as betting_service
from app.services import catalog as catalog_service
from app.services import credits as credits_service
from app.services import odds as odds_service

def test_compute_movement():
    assert odds_service.compute_movement(Decimal("2.00"), Decimal("2.50")) == Decimal("25.00")
    assert odds_service.compute_movement(Decimal("3.00"), Decimal("2.00")) == Decimal("-33.33")
    assert odds_service.compute_movement(Decimal("0"), Decimal("2.00")) == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize("team_odds", [{}, {1: Decimal("1.00")}, {1: Decimal("2.0"), 2: Decimal("0.5")}])
async def test_update_odds_rejects_bad_input(team_odds):
    with pytest.raises(BadRequestError):
        await odds_service.update_odds(PydanticObjectId(), team_odds)


async def _event():
    return await catalog_service.create_event(
        "Clasico",
        datetime.utcnow() + timedelta(days=2),
        [EventTeam(team_id=1, name="A", odds=Decimal("2.00")), EventTeam(team_id=2, name="B", odds=Decimal("1.80"))],
    )


@pytest.mark.asyncio
async def test_create_event_records_initial_odds(mongo):
    event = await _event()
    rows = await odds_service.get_odds_history(event.id)
    assert {(r.team_id, r.odds, r.source) for r in rows} == {
        (1, Decimal("2.00"), "INITIAL"),
        (2, Decimal("1.80"), "INITIAL"),
    }


@pytest.mark.asyncio
async def test_update_odds_appends_history(mongo):
    event = await _event()

    updated = await odds_service.update_odds(event.id, {1: Decimal("2.50")}, source="ADMIN")

    assert updated.team(1).odds == Decimal("2.50")
    assert updated.team(2).odds == Decimal("1.80")
    history = await odds_service.get_odds_history(event.id, team_id=1)
    assert [(r.odds, r.source) for r in history] == [(Decimal("2.00"), "INITIAL"), (Decimal("2.50"), "ADMIN")]
    assert await odds_service.get_odds_movement(event.id, 1) == Decimal("25.00")
    assert await odds_service.get_odds_movement(event.id, 2) == Decimal("0")


@pytest.mark.asyncio
async def test_placed_bet_keeps_its_odds(mongo):
    user = User(email=f"{PydanticObjectId()}@example.com", name="Bettor")
    await user.insert()
    await credits_service.apply_transaction(user.id, Decimal("100"), TransactionType.DEPOSIT)
    event = await _event()
    bet = await betting_service.place_bet(user, event.id, 1, Decimal("10"))

    await odds_service.update_odds(event.id, {1: Decimal("3.00")})

    later = await betting_service.place_bet(user, event.id, 1, Decimal("10"))
    assert bet.odds == Decimal("2.00")
    assert later.odds == Decimal("3.00")


@pytest.mark.asyncio
async def test_update_odds_unknown_team_or_event(mongo):
    event = await _event()
    with pytest.raises(BadRequestError):
        await odds_service.update_odds(event.id, {9: Decimal("2.00")})
    with pytest.raises(NotFoundError):
        await odds_service.update_odds(PydanticObjectId(), {1: Decimal("2.00")})
    assert await OddsHistory.find(OddsHistory.event_id == event.id, OddsHistory.team_id == 9).count() == 0


@pytest.mark.asyncio
async def test_update_odds_after_settlement_rejected(mongo):
    from app.services.settlement import settle_event

    event = await _event()
    await settle_event(event.id, "", winning_team_id=1)
    with pytest.raises(BadRequestError):
        await odds_service.update_odds(event.id, {1: Decimal("2.20")})


@pytest.mark.asyncio
async def test_odds_history_endpoint(mongo, client):
    from app.deps import get_current_user
    from app.main import app

    event = await _event()
    await odds_service.update_odds(event.id, {2: Decimal("2.25")})
    viewer = User.model_construct(id=PydanticObjectId(), email="viewer@example.com", role="user", session_version=0)
    app.dependency_overrides[get_current_user] = lambda: viewer
    try:
        r = await client.get(f"/events/{event.id}/odds", params={"teamId": 2})
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 200
    body = r.json()
    assert body["teams"] == [{"team_id": 2, "name": "B", "odds": "2.25", "movement": "25.00"}]
    assert [(h["odds"], h["source"]) for h in body["history"]] == [("1.80", "INITIAL"), ("2.25", "SYSTEM")]
