from app.models.user import User
from app.models.credit_balance import CreditBalance
from app.models.payment_transaction import PaymentTransaction
from app.models.checkout_order import CheckoutOrder
from app.models.chip_product import ChipProduct
from app.models.event import Event
from app.models.odds_history import OddsHistory
from app.models.bet import Bet
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "CreditBalance",
    "PaymentTransaction",
    "CheckoutOrder",
    "ChipProduct",
    "Event",
    "OddsHistory",
    "Bet",
    "AuditLog",
    "FailedJob",
]
