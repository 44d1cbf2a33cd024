"""
Event settlement: resolve every Pending bet of a finished event exactly once.

Each bet is its own unit: the Pending -> Won/Lost/Cancelled compare-and-swap and the
balance credit (with its PAYOUT/REFUND transaction) land together, or the status is
put back to Pending. One bad bet never blocks the rest of the batch.
"""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Awaitable, Callable

from beanie import PydanticObjectId
from pydantic import BaseModel

from app.core.audit import log_event
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.models.bet import Bet, BetStatus
from app.models.event import CANCELLED_OUTCOME
from app.models.payment_transaction import TransactionType
from app.services.bet_repository import BetRepository, get_bet_repository

log = get_logger(__name__)

CANCEL_OUTCOMES = {"cancel", "cancelled", "canceled", "void"}
CENT = Decimal("0.01")

Notifier = Callable[..., Awaitable[None]]


class SettlementStatus(str, Enum):
    SETTLED = "SETTLED"
    ALREADY_SETTLED = "ALREADY_SETTLED"


class ConcurrencyConflict(Exception):
    """The bet left Pending before this settlement could claim it."""


class SettlementResult(BaseModel):
    status: SettlementStatus
    event_id: str
    outcome: str
    settled: int = 0
    won: int = 0
    lost: int = 0
    cancelled: int = 0
    conflicts: int = 0
    failed: int = 0
    total_payout: Decimal = Decimal("0")
    total_refunded: Decimal = Decimal("0")
    message: str = ""


def is_cancel_outcome(outcome: str | None) -> bool:
    return (outcome or "").strip().lower() in CANCEL_OUTCOMES


def compute_payout(stake: Decimal, odds: Decimal) -> Decimal:
    return (Decimal(stake) * Decimal(odds)).quantize(CENT, rounding=ROUND_HALF_UP)


class SettlementEngine:
    def __init__(self, repository: BetRepository | None = None, notifier: Notifier | None = None):
        self.repository = repository or get_bet_repository()
        self.notifier = notifier or log_event

    async def settle_event(
        self,
        event_id: PydanticObjectId,
        outcome: str,
        winning_team_id: int | None = None,
    ) -> SettlementResult:
        event = await self.repository.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")
        if event.is_settled:
            return self._already_settled(event_id, event.outcome)

        cancel = is_cancel_outcome(outcome)
        if not cancel and winning_team_id is not None and event.team(winning_team_id) is None:
            raise BadRequestError("Winning team does not take part in this event")
        resolved = self._resolve_outcome(event, outcome, winning_team_id, cancel)

        claimed = await self.repository.claim_event_outcome(
            event_id, resolved, None if cancel else winning_team_id
        )
        if not claimed:
            current = await self.repository.get_event(event_id)
            return self._already_settled(event_id, current.outcome if current else resolved)

        result = await self._resolve_pending(event_id, resolved, cancel, None if cancel else winning_team_id)
        await self.notifier(
            None,
            "event_settled",
            "event",
            str(event_id),
            {"outcome": resolved, "settled": result.settled, "failed": result.failed},
        )
        return result

    async def resume_event(self, event_id: PydanticObjectId) -> SettlementResult:
        """Resolve bets still Pending on an already settled event (e.g. after a per-bet failure)."""
        event = await self.repository.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")
        if not event.is_settled:
            raise BadRequestError("Event is not settled")
        cancel = event.outcome == CANCELLED_OUTCOME
        return await self._resolve_pending(event_id, event.outcome, cancel, event.winning_team_id)

    async def _resolve_pending(
        self,
        event_id: PydanticObjectId,
        resolved: str,
        cancel: bool,
        winning_team_id: int | None,
    ) -> SettlementResult:
        result = SettlementResult(status=SettlementStatus.SETTLED, event_id=str(event_id), outcome=resolved)
        bets = await self.repository.load_pending_by_event(event_id)
        for bet in bets:
            try:
                if cancel:
                    await self._cancel_bet(bet, result)
                elif winning_team_id is not None and bet.team_id == winning_team_id:
                    await self._win_bet(bet, result)
                else:
                    await self._lose_bet(bet, result)
            except ConcurrencyConflict:
                result.conflicts += 1
                log.warning("settlement_conflict", event_id=str(event_id), bet_id=str(bet.id))
            except Exception as e:
                result.failed += 1
                log.exception("settlement_bet_failed", event_id=str(event_id), bet_id=str(bet.id), error=str(e))

        result.message = self._summary(result)
        log.info(
            "event_settled",
            event_id=str(event_id),
            outcome=resolved,
            settled=result.settled,
            conflicts=result.conflicts,
            failed=result.failed,
            total_payout=str(result.total_payout),
        )
        return result

    async def cancel_single_bet(self, bet: Bet) -> Bet:
        """Cancel one Pending bet with a full refund (user or admin cancel)."""
        result = SettlementResult(status=SettlementStatus.SETTLED, event_id=str(bet.event_id), outcome="")
        return await self._cancel_bet(bet, result)

    async def _transition(
        self,
        bet: Bet,
        new_status: BetStatus,
        payout: Decimal,
        credit: Decimal,
        tx_type: TransactionType | None,
        description: str,
    ) -> Bet:
        updated = await self.repository.compare_and_swap_status(bet.id, BetStatus.PENDING, new_status, payout)
        if updated is None:
            raise ConcurrencyConflict(str(bet.id))
        if credit <= 0 or tx_type is None:
            return updated
        try:
            tx = await self.repository.credit_balance(
                bet.owner_id,
                credit,
                tx_type,
                bet.id,
                description,
                idempotency_key=f"settle:{bet.id}",
            )
        except Exception:
            await self.repository.compare_and_swap_status(bet.id, new_status, BetStatus.PENDING, Decimal("0"))
            raise
        # the balance is credited from here on; the bet must not go back to Pending
        try:
            await self.repository.link_transaction(bet.id, tx.id)
            updated.transaction_id = tx.id
        except Exception as e:
            log.warning("settlement_link_failed", bet_id=str(bet.id), transaction_id=str(tx.id), error=str(e))
        return updated

    async def _win_bet(self, bet: Bet, result: SettlementResult) -> Bet:
        payout = compute_payout(bet.stake, bet.odds)
        updated = await self._transition(
            bet, BetStatus.WON, payout, payout, TransactionType.PAYOUT, f"Payout for bet {bet.id}"
        )
        result.settled += 1
        result.won += 1
        result.total_payout += payout
        await self.notifier(
            str(bet.owner_id), "bet_won", "bet", str(bet.id), {"payout": str(payout)},
            message=f"Congratulations! You won {payout} on your bet",
        )
        return updated

    async def _lose_bet(self, bet: Bet, result: SettlementResult) -> Bet:
        updated = await self._transition(bet, BetStatus.LOST, Decimal("0"), Decimal("0"), None, "")
        result.settled += 1
        result.lost += 1
        return updated

    async def _cancel_bet(self, bet: Bet, result: SettlementResult) -> Bet:
        stake = Decimal(bet.stake)
        updated = await self._transition(
            bet, BetStatus.CANCELLED, Decimal("0"), stake, TransactionType.REFUND, f"Refund for bet {bet.id}"
        )
        result.settled += 1
        result.cancelled += 1
        result.total_refunded += stake
        await self.notifier(
            str(bet.owner_id), "bet_refunded", "bet", str(bet.id), {"stake": str(stake)},
            message=f"Bet cancelled. {stake} returned to your balance",
        )
        return updated

    @staticmethod
    def _resolve_outcome(event, outcome: str, winning_team_id: int | None, cancel: bool) -> str:
        if cancel:
            return CANCELLED_OUTCOME
        value = (outcome or "").strip()
        if value:
            return value
        if winning_team_id is not None:
            return f"WINNER:{event.team(winning_team_id).name}"
        return "NO_WINNER"

    @staticmethod
    def _already_settled(event_id: PydanticObjectId, outcome: str) -> SettlementResult:
        log.info("event_already_settled", event_id=str(event_id), outcome=outcome)
        return SettlementResult(
            status=SettlementStatus.ALREADY_SETTLED,
            event_id=str(event_id),
            outcome=outcome,
            message="Event already settled; no bets were changed",
        )

    @staticmethod
    def _summary(result: SettlementResult) -> str:
        msg = f"Event settled: {result.settled} bets processed"
        if result.conflicts or result.failed:
            msg += f", {result.conflicts} skipped, {result.failed} failed"
        return msg


async def settle_event(
    event_id: PydanticObjectId, outcome: str, winning_team_id: int | None = None
) -> SettlementResult:
    return await SettlementEngine().settle_event(event_id, outcome, winning_team_id)
