from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.core.pagination import DEFAULT_LIMIT, MAX_LIMIT, Page, paginate
from app.deps import get_current_user, require_antiforgery
from app.models.payment_transaction import PaymentTransaction
from app.models.user import User
from app.services import credits as credits_service

router = APIRouter()


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)


def transaction_out(t: PaymentTransaction) -> dict:
    return {
        "id": str(t.id),
        "type": t.type.value,
        "status": t.status.value,
        "amount": str(t.amount),
        "balance_after": str(t.balance_after) if t.balance_after is not None else None,
        "description": t.description,
        "bet_ids": [str(b) for b in t.bet_ids],
        "reference_type": t.reference_type,
        "reference_id": t.reference_id,
        "created_at": t.created_at.isoformat(),
    }


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    """Return current chip balance."""
    balance = await credits_service.get_balance(user.id)
    return {"balance": str(balance)}


@router.get("/transactions")
async def credits_transactions(
    user: User = Depends(get_current_user),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Return transactions for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await credits_service.list_transactions(user.id, limit, offset)
    return Page[dict](items=[transaction_out(e) for e in entries], limit=limit, offset=offset)


@router.post("/withdrawals")
async def credits_withdraw(body: WithdrawalRequest, request: Request, user: User = Depends(get_current_user)):
    require_antiforgery(request, user)
    tx, balance_after = await credits_service.request_withdrawal(user, body.amount)
    return {"transaction": transaction_out(tx), "balance": str(balance_after)}
