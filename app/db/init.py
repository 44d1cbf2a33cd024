import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.bet import Bet
from app.models.checkout_order import CheckoutOrder
from app.models.chip_product import ChipProduct
from app.models.credit_balance import CreditBalance
from app.models.event import Event
from app.models.odds_history import OddsHistory
from app.models.failed_job import FailedJob
from app.models.payment_transaction import PaymentTransaction
from app.models.user import User

DOCUMENT_MODELS = [
    User,
    CreditBalance,
    PaymentTransaction,
    CheckoutOrder,
    ChipProduct,
    Event,
    OddsHistory,
    Bet,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db() -> None:
    settings = get_settings()
    kwargs = {"serverSelectionTimeoutMS": settings.mongodb_timeout_ms}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
