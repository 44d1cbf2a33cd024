"""Storage seam for settlement: pending-bet lookup, status compare-and-swap, balance credit."""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Set

from app.models.bet import Bet, BetStatus
from app.models.event import Event
from app.models.payment_transaction import PaymentTransaction, TransactionType
from app.services import credits as credits_service


class BetRepository(ABC):
    @abstractmethod
    async def get_event(self, event_id: PydanticObjectId) -> Event | None:
        ...

    @abstractmethod
    async def claim_event_outcome(
        self, event_id: PydanticObjectId, outcome: str, winning_team_id: int | None
    ) -> bool:
        """Set the outcome only while it is still empty. True if this call won the claim."""
        ...

    @abstractmethod
    async def load_pending_by_event(self, event_id: PydanticObjectId) -> list[Bet]:
        ...

    @abstractmethod
    async def compare_and_swap_status(
        self,
        bet_id: PydanticObjectId,
        expected: BetStatus,
        new: BetStatus,
        payout: Decimal,
    ) -> Bet | None:
        """Move the bet from expected to new; None if its status is no longer expected."""
        ...

    @abstractmethod
    async def credit_balance(
        self,
        user_id: PydanticObjectId,
        amount: Decimal,
        tx_type: TransactionType,
        bet_id: PydanticObjectId,
        description: str,
        idempotency_key: str,
    ) -> PaymentTransaction:
        ...

    @abstractmethod
    async def link_transaction(self, bet_id: PydanticObjectId, transaction_id: PydanticObjectId) -> None:
        """Point the bet at the transaction that paid it out."""
        ...


class BeanieBetRepository(BetRepository):
    async def get_event(self, event_id: PydanticObjectId) -> Event | None:
        return await Event.get(event_id)

    async def claim_event_outcome(
        self, event_id: PydanticObjectId, outcome: str, winning_team_id: int | None
    ) -> bool:
        now = datetime.utcnow()
        result = await Event.find_one(Event.id == event_id, Event.outcome == "").update_one(
            Set({
                Event.outcome: outcome,
                Event.winning_team_id: winning_team_id,
                Event.settled_at: now,
                Event.updated_at: now,
            })
        )
        return result is not None and result.modified_count == 1

    async def load_pending_by_event(self, event_id: PydanticObjectId) -> list[Bet]:
        return await Bet.find(Bet.event_id == event_id, Bet.status == BetStatus.PENDING).to_list()

    async def compare_and_swap_status(
        self,
        bet_id: PydanticObjectId,
        expected: BetStatus,
        new: BetStatus,
        payout: Decimal,
    ) -> Bet | None:
        now = datetime.utcnow()
        return await Bet.find_one(Bet.id == bet_id, Bet.status == expected).update(
            Set({
                Bet.status: new,
                Bet.payout: payout,
                Bet.settled_at: None if new == BetStatus.PENDING else now,
                Bet.updated_at: now,
            }),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    async def credit_balance(
        self,
        user_id: PydanticObjectId,
        amount: Decimal,
        tx_type: TransactionType,
        bet_id: PydanticObjectId,
        description: str,
        idempotency_key: str,
    ) -> PaymentTransaction:
        tx, _ = await credits_service.apply_transaction(
            user_id,
            amount,
            tx_type,
            description=description,
            bet_ids=[bet_id],
            reference_type="bet",
            reference_id=str(bet_id),
            idempotency_key=idempotency_key,
        )
        return tx

    async def link_transaction(self, bet_id: PydanticObjectId, transaction_id: PydanticObjectId) -> None:
        await Bet.find_one(Bet.id == bet_id).update_one(
            Set({Bet.transaction_id: transaction_id, Bet.updated_at: datetime.utcnow()})
        )


def get_bet_repository() -> BetRepository:
    return BeanieBetRepository()
