from datetime import datetime
from decimal import Decimal

from beanie import DecimalAnnotation, Document
from pydantic import BaseModel, Field

CANCELLED_OUTCOME = "CANCELLED"


class EventTeam(BaseModel):
    team_id: int
    name: str
    odds: DecimalAnnotation = Decimal("2.00")


class Event(Document):
    name: str
    sport_key: str = ""
    date: datetime
    outcome: str = ""  # empty until settled; CANCELLED for void events
    winning_team_id: int | None = None
    teams: list[EventTeam] = Field(default_factory=list)
    settled_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_settled(self) -> bool:
        return bool(self.outcome)

    def team(self, team_id: int) -> EventTeam | None:
        return next((t for t in self.teams if t.team_id == team_id), None)

    class Settings:
        name = "events"
        indexes = [[("date", 1)], [("outcome", 1)]]
