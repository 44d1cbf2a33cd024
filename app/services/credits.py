"""Chip balance and transaction ledger: every balance change is paired with a PaymentTransaction."""

from datetime import datetime
from decimal import Decimal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc, Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InsufficientFundsError, NotFoundError
from app.core.logging import get_logger
from app.models.bet import Bet, BetStatus
from app.models.credit_balance import CreditBalance
from app.models.payment_transaction import DEBIT_TYPES, PaymentTransaction, TransactionStatus, TransactionType
from app.models.user import User

log = get_logger(__name__)


async def get_balance(user_id: PydanticObjectId) -> Decimal:
    """Return current balance for user (0 if no record)."""
    bal = await CreditBalance.find_one(CreditBalance.user.id == user_id)
    return bal.balance if bal else Decimal("0")


async def _ensure_balance_doc(user: User) -> None:
    if await CreditBalance.find_one(CreditBalance.user.id == user.id):
        return
    try:
        await CreditBalance(user=user, balance=Decimal("0")).insert()
    except DuplicateKeyError:
        pass  # created by a concurrent first transaction


async def _inc_balance(user_id: PydanticObjectId, delta: Decimal, floor: Decimal | None = None) -> CreditBalance | None:
    """$inc the balance; with floor set, only when balance >= floor. Returns the updated doc or None."""
    conditions = [CreditBalance.user.id == user_id]
    if floor is not None:
        conditions.append(CreditBalance.balance >= floor)
    return await CreditBalance.find_one(*conditions).update(
        Inc({CreditBalance.balance: delta}),
        Set({CreditBalance.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def find_by_idempotency_key(idempotency_key: str) -> PaymentTransaction | None:
    return await PaymentTransaction.find_one(PaymentTransaction.idempotency_key == idempotency_key)


async def apply_transaction(
    user_id: PydanticObjectId,
    amount: Decimal,
    tx_type: TransactionType,
    description: str = "",
    bet_ids: list[PydanticObjectId] | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[PaymentTransaction, Decimal]:
    """
    Change the balance and record the matching COMPLETED transaction.
    Returns (transaction, balance_after).
    WITHDRAWAL and BET are debits and never take the balance below zero.

    Idempotency: the transaction is inserted (PENDING) before the balance moves, and
    idempotency_key is unique, so of several concurrent calls with one key only the
    one whose insert succeeds changes the balance. The others get the existing transaction.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise BadRequestError("Amount must be positive")
    if not isinstance(tx_type, TransactionType):
        raise BadRequestError(f"Invalid transaction type: {tx_type}")
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    if idempotency_key:
        existing = await find_by_idempotency_key(idempotency_key)
        if existing:
            return existing, await get_balance(user_id)

    await _ensure_balance_doc(user)
    tx = PaymentTransaction(
        user=user,
        type=tx_type,
        amount=amount,
        status=TransactionStatus.PENDING,
        bet_ids=bet_ids or [],
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )
    try:
        await tx.insert()
    except DuplicateKeyError:
        existing = await find_by_idempotency_key(idempotency_key)
        if existing is None:
            raise
        log.info("transaction_duplicate", user_id=str(user_id), idempotency_key=idempotency_key)
        return existing, await get_balance(user_id)

    try:
        if tx_type in DEBIT_TYPES:
            updated = await _inc_balance(user_id, -amount, floor=amount)
            if updated is None:
                raise InsufficientFundsError()
        else:
            updated = await _inc_balance(user_id, amount)
    except Exception:
        # No balance change, no audit record.
        await tx.delete()
        raise
    balance_after = updated.balance

    try:
        await tx.set({
            PaymentTransaction.status: TransactionStatus.COMPLETED,
            PaymentTransaction.balance_after: balance_after,
            PaymentTransaction.updated_at: datetime.utcnow(),
        })
    except PyMongoError:
        # balance already moved; the record stays PENDING with the key held
        log.exception("transaction_complete_failed", transaction_id=str(tx.id), user_id=str(user_id))
    log.info(
        "balance_changed",
        user_id=str(user_id),
        type=tx_type.value,
        amount=str(amount),
        balance_after=str(balance_after),
    )
    return tx, balance_after


def minimum_withdrawal(user: User) -> Decimal:
    s = get_settings()
    if user.role == "vip":
        return s.min_withdrawal_vip
    if user.role == "premium":
        return s.min_withdrawal_premium
    return s.min_withdrawal_default


async def request_withdrawal(user: User, amount: Decimal) -> tuple[PaymentTransaction, Decimal]:
    """Withdraw chips: role-based minimum, refused while the user has pending bets."""
    minimum = minimum_withdrawal(user)
    if amount < minimum:
        raise BadRequestError(f"Minimum withdrawal is {minimum}", details={"minimum": str(minimum)})
    pending = await Bet.find_one(Bet.user_ids == user.id, Bet.status == BetStatus.PENDING)
    if pending:
        raise BadRequestError("Cannot withdraw with pending bets")
    return await apply_transaction(
        user.id,
        amount,
        TransactionType.WITHDRAWAL,
        description=f"Withdrawal of {amount}",
        reference_type="withdrawal",
    )


async def list_transactions(user_id: PydanticObjectId, limit: int, offset: int) -> list[PaymentTransaction]:
    return (
        await PaymentTransaction.find(PaymentTransaction.user.id == user_id)
        .sort(-PaymentTransaction.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
