from datetime import datetime

from beanie import DecimalAnnotation, Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING


class OddsHistory(Document):
    """One odds reading for a team in an event. Bets keep the odds they were placed at."""
    event_id: PydanticObjectId
    team_id: int
    odds: DecimalAnnotation
    source: str = "SYSTEM"  # INITIAL | SYSTEM | ADMIN
    retrieved_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "odds_history"
        indexes = [[("event_id", ASCENDING), ("team_id", ASCENDING), ("retrieved_at", DESCENDING)]]
