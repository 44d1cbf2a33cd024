from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import get_settings
from app.core.exceptions import AppError, BadRequestError, NotFoundError, ProviderError, UnauthorizedError
from app.core.logging import get_logger
from app.core.security import create_antiforgery_token
from app.deps import ANTIFORGERY_COOKIE_NAME, get_current_user, require_antiforgery
from app.models.user import User
from app.services import payments as payments_service

router = APIRouter()
log = get_logger(__name__)


class ProductPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., alias="productId", gt=0)


def json_success(data: dict | None = None, message: str | None = None) -> dict:
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def json_error(message: str) -> JSONResponse:
    return JSONResponse({"success": False, "message": message})


async def get_optional_user(request: Request) -> User | None:
    try:
        return await get_current_user(request)
    except UnauthorizedError:
        return None


@router.get("/products")
async def products():
    """Active chip packs plus the publishable key for the embedded checkout."""
    items = await payments_service.list_products()
    return {
        "publishable_key": get_settings().stripe_publishable_key,
        "products": [
            {
                "id": p.product_id,
                "name": p.name,
                "price_in_cents": p.price_in_cents,
                "currency": p.currency,
                "chips": p.chips,
                "description": p.description,
            }
            for p in items
        ],
    }


@router.get("/antiforgery")
async def antiforgery(user: User = Depends(get_current_user)):
    """Issue the antiforgery cookie; the same token goes in the RequestVerificationToken header."""
    token = create_antiforgery_token(str(user.id))
    response = JSONResponse({"token": token})
    response.set_cookie(ANTIFORGERY_COOKIE_NAME, token, httponly=True, samesite="strict")
    return response


@router.post("/create-checkout-session")
async def create_checkout_session(
    body: ProductPaymentRequest,
    request: Request,
    user: User = Depends(get_current_user),
):
    """Create an embedded Stripe checkout session; the widget mounts with the returned client secret."""
    require_antiforgery(request, user)
    origin = str(request.base_url).rstrip("/")
    try:
        client_secret = await payments_service.create_checkout_session(user, body.product_id, origin)
    except NotFoundError:
        return json_error("Product not found")
    except ProviderError as e:
        log.error("checkout_session_failed", product_id=body.product_id, error=e.message)
        return json_error("Could not create the Stripe session")
    except BadRequestError as e:
        log.error("checkout_session_rejected", product_id=body.product_id, error=e.message)
        return json_error(e.message)
    return json_success({"clientSecret": client_secret})


@router.get("/checkout/success")
async def checkout_success(
    session_id: str = "",
    user: User | None = Depends(get_optional_user),
):
    """Stripe return URL: confirm the session is paid and credit the chips once."""
    try:
        await payments_service.confirm_checkout_session(session_id, user)
    except AppError as e:
        log.warning("checkout_confirm_failed", session_id=session_id, error=e.message)
        return json_error(e.message)
    return json_success(message="Deposit credited successfully")


@router.post("/webhook")
async def stripe_webhook(request: Request, stripe_signature: str = Header(..., alias="Stripe-Signature")):
    """Stripe webhook: checkout.session.completed -> credit chips (idempotent)."""
    body = await request.body()
    await payments_service.handle_webhook(body, stripe_signature)
    return {"status": "ok"}


@router.post("/dev/confirm")
async def dev_confirm(
    body: ProductPaymentRequest,
    request: Request,
    user: User = Depends(get_current_user),
    x_bypass_code: str | None = Header(None, alias="X-Bypass-Code"),
):
    """Free purchase for development and, when enabled, admins."""
    require_antiforgery(request, user)
    try:
        product, balance = await payments_service.confirm_bypass(user, body.product_id, x_bypass_code)
    except NotFoundError as e:
        if e.message == "Product not found":
            return json_error(e.message)
        raise
    return json_success(
        {"newBalance": str(balance), "product": product.name},
        message=f"Credited {product.chips} chips (DEV BYPASS).",
    )
