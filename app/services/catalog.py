"""Minimal admin creation of events and chip products."""

from datetime import datetime
from decimal import Decimal

from app.core.exceptions import BadRequestError, ConflictError
from app.core.logging import get_logger
from app.models.chip_product import ChipProduct
from app.models.event import Event, EventTeam
from app.services import odds as odds_service

log = get_logger(__name__)


async def create_event(name: str, date: datetime, teams: list[EventTeam], sport_key: str = "") -> Event:
    if len(teams) < 2:
        raise BadRequestError("An event needs at least 2 teams")
    if len({t.team_id for t in teams}) != len(teams):
        raise BadRequestError("Duplicate team ids")
    if any(t.odds <= Decimal("1") for t in teams):
        raise BadRequestError("Odds must be greater than 1")
    event = Event(name=name, date=date, teams=teams, sport_key=sport_key)
    await event.insert()
    await odds_service.record_initial_odds(event)
    log.info("event_created", event_id=str(event.id), teams=len(teams))
    return event


async def create_product(
    product_id: int,
    name: str,
    price_in_cents: int,
    chips: int,
    currency: str,
    stripe_price_id: str | None = None,
    description: str | None = None,
) -> ChipProduct:
    if await ChipProduct.find_one(ChipProduct.product_id == product_id):
        raise ConflictError(f"Product {product_id} already exists")
    if stripe_price_id and not stripe_price_id.startswith("price_"):
        raise BadRequestError("Stripe price id must start with price_")
    product = ChipProduct(
        product_id=product_id,
        name=name,
        price_in_cents=price_in_cents,
        chips=chips,
        currency=currency,
        stripe_price_id=stripe_price_id,
        description=description,
    )
    await product.insert()
    log.info("product_created", product_id=product_id, chips=chips)
    return product
