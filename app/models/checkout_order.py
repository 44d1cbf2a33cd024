from datetime import datetime

from beanie import Document, Link
from pydantic import Field

from app.models.user import User


class CheckoutOrder(Document):
    """Stripe checkout session_id -> user/product for return-URL and webhook attribution."""
    session_id: str
    user: Link[User]
    product_id: int
    amount_cents: int
    currency: str = "crc"
    status: str = "open"  # open | paid
    created_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: datetime | None = None

    class Settings:
        name = "checkout_orders"
        indexes = [[("session_id", 1)]]
