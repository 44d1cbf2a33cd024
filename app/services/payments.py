"""Stripe embedded checkout for chip packs: session creation, idempotent crediting, dev bypass."""

from datetime import datetime
from decimal import Decimal

from beanie import PydanticObjectId
from beanie.operators import Set

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from app.core.logging import get_logger
from app.core.security import bypass_code_matches
from app.models.checkout_order import CheckoutOrder
from app.models.chip_product import ChipProduct
from app.models.payment_transaction import PaymentTransaction, TransactionType
from app.models.user import User
from app.services import credits as credits_service
from app.services import stripe_gateway
from app.services.stripe_gateway import CheckoutSessionInfo

log = get_logger(__name__)


async def list_products() -> list[ChipProduct]:
    return await ChipProduct.find(ChipProduct.is_active == True).sort(+ChipProduct.price_in_cents).to_list()  # noqa: E712


async def get_product(product_id: int) -> ChipProduct | None:
    return await ChipProduct.find_one(ChipProduct.product_id == product_id, ChipProduct.is_active == True)  # noqa: E712


async def create_checkout_session(user: User, product_id: int, origin: str) -> str:
    """Create the Stripe session for product_id and return its client secret."""
    product = await get_product(product_id)
    if not product:
        raise NotFoundError("Product not found")
    info = stripe_gateway.create_embedded_session(product, origin, str(user.id))
    await CheckoutOrder(
        session_id=info.id,
        user=user,
        product_id=product.product_id,
        amount_cents=product.price_in_cents,
        currency=product.currency,
    ).insert()
    return info.client_secret


async def _resolve_product(info: CheckoutSessionInfo) -> ChipProduct | None:
    if info.product_id:
        product = await ChipProduct.find_one(ChipProduct.product_id == info.product_id)
        if product:
            return product
    if info.price_id:
        return await ChipProduct.find_one(ChipProduct.stripe_price_id == info.price_id)
    return None


async def _claim_order(session_id: str) -> bool | None:
    """Move the order open -> paid. True if claimed here, False if already paid, None if there is no order."""
    result = await CheckoutOrder.find_one(
        CheckoutOrder.session_id == session_id, CheckoutOrder.status == "open"
    ).update_one(Set({CheckoutOrder.status: "paid", CheckoutOrder.paid_at: datetime.utcnow()}))
    if result is not None and result.modified_count == 1:
        return True
    if await CheckoutOrder.find_one(CheckoutOrder.session_id == session_id):
        return False
    return None


async def _release_order(session_id: str) -> None:
    await CheckoutOrder.find_one(CheckoutOrder.session_id == session_id, CheckoutOrder.status == "paid").update_one(
        Set({CheckoutOrder.status: "open", CheckoutOrder.paid_at: None})
    )


async def credit_paid_session(info: CheckoutSessionInfo, fallback_user_id: PydanticObjectId | None = None) -> PaymentTransaction | None:
    """
    Credit the chips of a paid session once. Returns the DEPOSIT transaction, None if already credited.

    The webhook and the return-URL confirmation can race on one session: the order is
    claimed open -> paid before crediting, and the unique idempotency key covers
    sessions without an order.
    """
    if (info.payment_status or "").lower() != "paid":
        raise BadRequestError("Payment was not completed")
    idempotency_key = f"stripe_checkout:{info.id}"
    if await credits_service.find_by_idempotency_key(idempotency_key):
        return None

    user_id: PydanticObjectId | None = None
    if info.user_id and PydanticObjectId.is_valid(info.user_id):
        user_id = PydanticObjectId(info.user_id)
    if user_id is None:
        user_id = fallback_user_id
    if user_id is None:
        raise BadRequestError("Could not determine the user for this payment")

    product = await _resolve_product(info)
    if not product:
        raise BadRequestError("Could not determine the purchased product")

    claimed = await _claim_order(info.id)
    if claimed is False:
        log.info("checkout_already_claimed", session_id=info.id)
        return None

    amount_paid = Decimal(info.amount_total or 0) / 100
    try:
        tx, balance_after = await credits_service.apply_transaction(
            user_id,
            Decimal(product.chips),
            TransactionType.DEPOSIT,
            description=f"Stripe checkout: {product.name} (+{product.chips} chips, paid {amount_paid})",
            reference_type="stripe_checkout",
            reference_id=info.id,
            idempotency_key=idempotency_key,
        )
    except Exception:
        if claimed:
            await _release_order(info.id)
        raise
    log.info("checkout_credited", session_id=info.id, user_id=str(user_id), chips=product.chips)
    await log_event(
        str(user_id), "payment_captured", "payment", info.id,
        {"amount_paid": str(amount_paid), "chips": product.chips, "balance_after": str(balance_after)},
        message="Deposit credited",
    )
    return tx


async def confirm_checkout_session(session_id: str, current_user: User | None) -> PaymentTransaction | None:
    """Return-URL confirmation: look the session up at Stripe and credit it if paid."""
    if not session_id or not session_id.strip():
        raise BadRequestError("Invalid Stripe session")
    info = stripe_gateway.retrieve_session(session_id.strip())
    return await credit_paid_session(info, current_user.id if current_user else None)


async def handle_webhook(payload: bytes, signature: str) -> None:
    """Verify signature and credit checkout.session.completed idempotently."""
    event_type, info = stripe_gateway.parse_webhook(payload, signature)
    if event_type not in ("checkout.session.completed", "checkout.session.async_payment_succeeded") or info is None:
        return
    if (info.payment_status or "").lower() != "paid":
        log.info("checkout_not_paid_yet", session_id=info.id, payment_status=info.payment_status)
        return
    fallback = None
    order = await CheckoutOrder.find_one(CheckoutOrder.session_id == info.id)
    if order:
        fallback = order.user.ref.id
        if info.product_id is None:
            info.product_id = order.product_id
    await credit_paid_session(info, fallback)


def bypass_allowed(user: User) -> bool:
    settings = get_settings()
    return settings.is_development or (settings.payment_enable_bypass and user.is_admin)


async def confirm_bypass(user: User, product_id: int, code: str | None) -> tuple[ChipProduct, Decimal]:
    """Credit a chip pack without payment (development, or admins when enabled)."""
    if not bypass_allowed(user):
        raise NotFoundError()
    if not bypass_code_matches(get_settings().payment_bypass_code, code):
        raise ForbiddenError("Invalid bypass code")
    product = await get_product(product_id)
    if not product:
        raise NotFoundError("Product not found")
    _, balance_after = await credits_service.apply_transaction(
        user.id,
        Decimal(product.chips),
        TransactionType.DEPOSIT,
        description=f"DEV_BYPASS: {product.name} (+{product.chips} chips)",
        reference_type="dev_bypass",
        reference_id=str(product.product_id),
    )
    log.info("bypass_credited", user_id=str(user.id), product_id=product.product_id, chips=product.chips)
    return product, balance_after
