from datetime import datetime
from decimal import Decimal

from beanie import DecimalAnnotation, Document, Link
from pydantic import Field
from pymongo import IndexModel

from app.models.user import User


class CreditBalance(Document):
    """Chip balance per user; every change is paired with a PaymentTransaction."""
    user: Link[User]
    balance: DecimalAnnotation = Decimal("0")
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_balances"
        indexes = [IndexModel([("user", 1)], name="user_unique", unique=True)]
