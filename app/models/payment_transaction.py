from datetime import datetime
from enum import Enum

from beanie import DecimalAnnotation, Document, Link, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from app.models.user import User


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    BET = "BET"
    PAYOUT = "PAYOUT"
    REFUND = "REFUND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


DEBIT_TYPES = (TransactionType.WITHDRAWAL, TransactionType.BET)


class PaymentTransaction(Document):
    """Audit record for every balance change. Amount is always positive; the type gives the sign."""
    user: Link[User]
    type: TransactionType
    amount: DecimalAnnotation
    status: TransactionStatus = TransactionStatus.COMPLETED
    balance_after: DecimalAnnotation | None = None
    bet_ids: list[PydanticObjectId] = Field(default_factory=list)
    description: str = ""
    reference_type: str | None = None  # stripe_checkout, bet, event, ...
    reference_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def signed_amount(self):
        return -self.amount if self.type in DEBIT_TYPES else self.amount

    class Settings:
        name = "payment_transactions"
        indexes = [
            [("user", ASCENDING), ("created_at", DESCENDING)],
            IndexModel(
                [("idempotency_key", ASCENDING)],
                name="idempotency_key_unique",
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
            ),
            [("status", ASCENDING)],
        ]
