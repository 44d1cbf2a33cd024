from app.client.checkout import CheckoutSessionManager, CheckoutState
from app.client.errors import CheckoutError, CheckoutErrorKind

__all__ = ["CheckoutSessionManager", "CheckoutState", "CheckoutError", "CheckoutErrorKind"]
