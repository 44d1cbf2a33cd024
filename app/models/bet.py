from datetime import datetime
from decimal import Decimal
from enum import Enum

from beanie import DecimalAnnotation, Document, PydanticObjectId
from pydantic import Field


class BetStatus(str, Enum):
    PENDING = "Pending"
    WON = "Won"
    LOST = "Lost"
    CANCELLED = "Cancelled"


class Bet(Document):
    event_id: PydanticObjectId
    team_id: int
    user_ids: list[PydanticObjectId]  # first entry owns the stake and receives payouts
    stake: DecimalAnnotation
    odds: DecimalAnnotation
    potential_payout: DecimalAnnotation = Decimal("0")
    payout: DecimalAnnotation = Decimal("0")
    status: BetStatus = BetStatus.PENDING
    transaction_id: PydanticObjectId | None = None
    settled_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def owner_id(self) -> PydanticObjectId:
        return self.user_ids[0]

    class Settings:
        name = "bets"
        indexes = [
            [("event_id", 1), ("status", 1)],
            [("user_ids", 1), ("created_at", -1)],
        ]
