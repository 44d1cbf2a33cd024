"""Event odds updates and their history. Placed bets keep their snapshot odds."""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.logging import get_logger
from app.models.event import Event
from app.models.odds_history import OddsHistory

log = get_logger(__name__)

SOURCE_INITIAL = "INITIAL"
SOURCE_SYSTEM = "SYSTEM"
SOURCE_ADMIN = "ADMIN"


def compute_movement(previous: Decimal, latest: Decimal) -> Decimal:
    """Percentage change from previous to latest odds (0 when there is no previous reading)."""
    if not previous:
        return Decimal("0")
    return ((Decimal(latest) - Decimal(previous)) / Decimal(previous) * 100).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


async def _record(event: Event, team_odds: dict[int, Decimal], source: str, at: datetime) -> None:
    await OddsHistory.insert_many([
        OddsHistory(event_id=event.id, team_id=team_id, odds=odds, source=source, retrieved_at=at)
        for team_id, odds in team_odds.items()
    ])


async def record_initial_odds(event: Event) -> None:
    await _record(event, {t.team_id: t.odds for t in event.teams}, SOURCE_INITIAL, event.created_at)


async def update_odds(event_id: PydanticObjectId, team_odds: dict[int, Decimal], source: str = SOURCE_SYSTEM) -> Event:
    """Set new odds for some teams of an open event and append one history row per team."""
    if not team_odds:
        raise BadRequestError("No odds given")
    team_odds = {int(k): Decimal(v) for k, v in team_odds.items()}
    if any(v <= 1 for v in team_odds.values()):
        raise BadRequestError("Odds must be greater than 1")

    event = await Event.get(event_id)
    if not event:
        raise NotFoundError("Event not found")
    if event.is_settled:
        raise BadRequestError("Event is already settled")
    unknown = set(team_odds) - {t.team_id for t in event.teams}
    if unknown:
        raise BadRequestError("Team does not take part in this event", details={"team_ids": sorted(unknown)})

    now = datetime.utcnow()
    teams = [t.model_copy(update={"odds": team_odds.get(t.team_id, t.odds)}) for t in event.teams]
    # updated_at guards against a concurrent odds update overwriting the other teams
    updated = await Event.find_one(
        Event.id == event_id, Event.outcome == "", Event.updated_at == event.updated_at
    ).update(
        Set({Event.teams: teams, Event.updated_at: now}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        raise ConflictError("Event changed while updating odds, try again")

    await _record(updated, team_odds, source, now)
    log.info("odds_updated", event_id=str(event_id), teams=len(team_odds), source=source)
    return updated


async def get_odds_history(
    event_id: PydanticObjectId, team_id: int | None = None, days: int | None = None
) -> list[OddsHistory]:
    """History rows of the last `days` days, oldest first."""
    days = days or get_settings().odds_history_days
    conditions = [OddsHistory.event_id == event_id, OddsHistory.retrieved_at >= datetime.utcnow() - timedelta(days=days)]
    if team_id is not None:
        conditions.append(OddsHistory.team_id == team_id)
    return await OddsHistory.find(*conditions).sort(+OddsHistory.retrieved_at).to_list()


async def get_odds_movement(event_id: PydanticObjectId, team_id: int) -> Decimal:
    latest = (
        await OddsHistory.find(OddsHistory.event_id == event_id, OddsHistory.team_id == team_id)
        .sort(-OddsHistory.retrieved_at)
        .limit(2)
        .to_list()
    )
    if len(latest) < 2:
        return Decimal("0")
    return compute_movement(latest[1].odds, latest[0].odds)
