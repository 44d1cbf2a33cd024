"""Thin wrapper over the Stripe SDK: embedded checkout sessions and webhook verification."""

from typing import Any

import stripe
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ProviderError
from app.core.logging import get_logger
from app.models.chip_product import ChipProduct

log = get_logger(__name__)


class CheckoutSessionInfo(BaseModel):
    id: str
    client_secret: str | None = None
    payment_status: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    user_id: str | None = None
    product_id: int | None = None
    price_id: str | None = None


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, None)


def _to_info(session: Any) -> CheckoutSessionInfo:
    metadata = _field(session, "metadata")
    user_id = _field(metadata, "userId") or _field(session, "client_reference_id")
    package = _field(metadata, "packageId")
    price_id = None
    items = _field(_field(session, "line_items"), "data")
    if items:
        price_id = _field(_field(items[0], "price"), "id")
    return CheckoutSessionInfo(
        id=_field(session, "id"),
        client_secret=_field(session, "client_secret"),
        payment_status=_field(session, "payment_status"),
        amount_total=_field(session, "amount_total"),
        currency=_field(session, "currency"),
        user_id=str(user_id) if user_id else None,
        product_id=int(package) if package and str(package).isdigit() else None,
        price_id=price_id,
    )


def _api_key() -> str:
    key = get_settings().stripe_secret_key
    if not key:
        raise BadRequestError("Payments not configured")
    if not (key.startswith("sk_test_") or key.startswith("sk_live_")):
        raise BadRequestError("Stripe secret key format is invalid")
    return key


def create_embedded_session(product: ChipProduct, origin: str, user_id: str) -> CheckoutSessionInfo:
    """Create an embedded Checkout Session for one unit of product; return its client secret."""
    settings = get_settings()
    if not origin:
        raise BadRequestError("Invalid origin")
    if product.has_stripe_price:
        line_item: dict[str, Any] = {"price": product.stripe_price_id, "quantity": 1}
    else:
        line_item = {
            "price_data": {
                "currency": product.currency or settings.stripe_currency,
                "unit_amount": product.price_in_cents,
                "product_data": {"name": product.name},
            },
            "quantity": 1,
        }
    try:
        session = stripe.checkout.Session.create(
            api_key=_api_key(),
            ui_mode="embedded",
            mode="payment",
            line_items=[line_item],
            return_url=origin.rstrip("/") + settings.checkout_return_path,
            client_reference_id=user_id,
            metadata={"userId": user_id, "packageId": str(product.product_id)},
        )
    except stripe.StripeError as e:
        log.error("stripe_session_create_failed", product_id=product.product_id, error=str(e))
        raise ProviderError("Could not create the Stripe session") from e
    info = _to_info(session)
    if not info.client_secret:
        raise ProviderError("Stripe did not return a client secret")
    log.info("stripe_session_created", session_id=info.id, product_id=product.product_id)
    return info


def retrieve_session(session_id: str) -> CheckoutSessionInfo:
    try:
        session = stripe.checkout.Session.retrieve(
            session_id,
            api_key=_api_key(),
            expand=["line_items", "line_items.data.price"],
        )
    except stripe.StripeError as e:
        log.error("stripe_session_retrieve_failed", session_id=session_id, error=str(e))
        raise ProviderError("Could not validate the payment") from e
    return _to_info(session)


def parse_webhook(payload: bytes, signature: str) -> tuple[str, CheckoutSessionInfo | None]:
    """Verify the Stripe signature; return (event type, checkout session if the event carries one)."""
    secret = get_settings().stripe_webhook_secret
    if not secret:
        raise BadRequestError("Webhook secret not configured")
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise BadRequestError("Invalid webhook signature") from e
    event_type = _field(event, "type") or ""
    obj = _field(_field(event, "data"), "object")
    if event_type.startswith("checkout.session.") and obj is not None:
        return event_type, _to_info(obj)
    return event_type, None
