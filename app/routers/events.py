from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query

from app.core.exceptions import NotFoundError
from app.deps import get_current_user
from app.models.event import Event
from app.models.user import User
from app.services import odds as odds_service

router = APIRouter()


@router.get("/{event_id}/odds")
async def odds_history(
    event_id: PydanticObjectId,
    team_id: int | None = Query(None, alias="teamId"),
    days: int | None = Query(None, ge=1, le=90),
    user: User = Depends(get_current_user),
):
    """Current odds per team, their recent history and the last movement in percent."""
    event = await Event.get(event_id)
    if not event:
        raise NotFoundError("Event not found")
    rows = await odds_service.get_odds_history(event_id, team_id, days)
    teams = [t for t in event.teams if team_id is None or t.team_id == team_id]
    return {
        "event_id": str(event.id),
        "teams": [
            {
                "team_id": t.team_id,
                "name": t.name,
                "odds": str(t.odds),
                "movement": str(await odds_service.get_odds_movement(event_id, t.team_id)),
            }
            for t in teams
        ],
        "history": [
            {
                "team_id": r.team_id,
                "odds": str(r.odds),
                "source": r.source,
                "retrieved_at": r.retrieved_at.isoformat(),
            }
            for r in rows
        ],
    }
