"""Settlement engine against an in-memory repository (no MongoDB needed)."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError, NotFoundError
from app.models.bet import Bet, BetStatus
from app.models.event import CANCELLED_OUTCOME, Event, EventTeam
from app.models.payment_transaction import PaymentTransaction, TransactionType
from app.services.bet_repository import BetRepository
from app.services.settlement import (
    SettlementEngine,
    SettlementStatus,
    compute_payout,
    is_cancel_outcome,
)

pytestmark = pytest.mark.asyncio


class InMemoryBetRepository(BetRepository):
    def __init__(self):
        self.events: dict[PydanticObjectId, Event] = {}
        self.bets: dict[PydanticObjectId, Bet] = {}
        self.balances: dict[PydanticObjectId, Decimal] = {}
        self.transactions: list[PaymentTransaction] = []
        self.keys: set[str] = set()
        self.fail_credit_for: set[PydanticObjectId] = set()
        self.fail_link_for: set[PydanticObjectId] = set()

    async def get_event(self, event_id):
        return self.events.get(event_id)

    async def claim_event_outcome(self, event_id, outcome, winning_team_id):
        event = self.events[event_id]
        if event.outcome:
            return False
        event.outcome = outcome
        event.winning_team_id = winning_team_id
        event.settled_at = datetime.utcnow()
        return True

    async def load_pending_by_event(self, event_id):
        return [
            b.model_copy()
            for b in self.bets.values()
            if b.event_id == event_id and b.status == BetStatus.PENDING
        ]

    async def compare_and_swap_status(self, bet_id, expected, new, payout):
        bet = self.bets[bet_id]
        if bet.status != expected:
            return None
        bet.status = new
        bet.payout = payout
        return bet

    async def credit_balance(self, user_id, amount, tx_type, bet_id, description, idempotency_key):
        if bet_id in self.fail_credit_for:
            raise RuntimeError("balance store unavailable")
        if idempotency_key in self.keys:
            return next(t for t in self.transactions if t.idempotency_key == idempotency_key)
        self.keys.add(idempotency_key)
        self.balances[user_id] = self.balances.get(user_id, Decimal("0")) + amount
        tx = PaymentTransaction.model_construct(
            id=PydanticObjectId(),
            type=tx_type,
            amount=amount,
            balance_after=self.balances[user_id],
            bet_ids=[bet_id],
            description=description,
            idempotency_key=idempotency_key,
        )
        self.transactions.append(tx)
        return tx

    async def link_transaction(self, bet_id, transaction_id):
        if bet_id in self.fail_link_for:
            raise RuntimeError("bets collection unavailable")
        self.bets[bet_id].transaction_id = transaction_id

    # helpers

    def add_event(self, teams):
        event = Event.model_construct(
            id=PydanticObjectId(),
            name="Derby",
            date=datetime.utcnow() - timedelta(hours=2),
            outcome="",
            winning_team_id=None,
            teams=[EventTeam(team_id=t, name=name, odds=Decimal("2.0")) for t, name in teams],
        )
        self.events[event.id] = event
        return event

    def add_bet(self, event, team_id, stake, odds="2.0", user_id=None):
        bet = Bet.model_construct(
            id=PydanticObjectId(),
            event_id=event.id,
            team_id=team_id,
            user_ids=[user_id or PydanticObjectId()],
            stake=Decimal(stake),
            odds=Decimal(odds),
            payout=Decimal("0"),
            status=BetStatus.PENDING,
        )
        self.bets[bet.id] = bet
        return bet


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    async def __call__(self, user_id, event_type, entity_type, entity_id=None, metadata=None, message=""):
        self.calls.append((user_id, event_type, entity_id))


@pytest.fixture
def repo():
    return InMemoryBetRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(repo, notifier):
    return SettlementEngine(repository=repo, notifier=notifier)


def test_compute_payout_rounds_half_up():
    assert compute_payout(Decimal("100"), Decimal("2.0")) == Decimal("200.00")
    assert compute_payout(Decimal("10.01"), Decimal("1.5")) == Decimal("15.02")


def test_is_cancel_outcome():
    assert is_cancel_outcome(" Cancelled ")
    assert is_cancel_outcome("VOID")
    assert not is_cancel_outcome("WINNER:A")
    assert not is_cancel_outcome(None)


async def test_settle_pays_winners_only(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    u1, u2, u3 = PydanticObjectId(), PydanticObjectId(), PydanticObjectId()
    b1 = repo.add_bet(event, 1, "100", user_id=u1)
    b2 = repo.add_bet(event, 2, "200", user_id=u2)
    b3 = repo.add_bet(event, 1, "300", user_id=u3)

    result = await engine.settle_event(event.id, "", winning_team_id=1)

    assert result.status == SettlementStatus.SETTLED
    assert result.outcome == "WINNER:A"
    assert (result.settled, result.won, result.lost) == (3, 2, 1)
    assert result.total_payout == Decimal("800.00")
    assert repo.bets[b1.id].status == BetStatus.WON
    assert repo.bets[b2.id].status == BetStatus.LOST
    assert repo.bets[b3.id].payout == Decimal("600.00")
    assert repo.balances == {u1: Decimal("200.00"), u3: Decimal("600.00")}
    assert {t.type for t in repo.transactions} == {TransactionType.PAYOUT}
    assert repo.bets[b1.id].transaction_id == repo.transactions[0].id
    assert repo.bets[b2.id].transaction_id is None
    assert repo.events[event.id].winning_team_id == 1


async def test_settle_twice_is_noop(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    repo.add_bet(event, 1, "100")

    first = await engine.settle_event(event.id, "", winning_team_id=1)
    second = await engine.settle_event(event.id, "", winning_team_id=2)

    assert first.status == SettlementStatus.SETTLED
    assert second.status == SettlementStatus.ALREADY_SETTLED
    assert second.outcome == "WINNER:A"
    assert len(repo.transactions) == 1


async def test_concurrent_settlements_claim_once(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    for _ in range(5):
        repo.add_bet(event, 1, "10")

    results = await asyncio.gather(
        engine.settle_event(event.id, "", winning_team_id=1),
        engine.settle_event(event.id, "", winning_team_id=1),
    )

    statuses = sorted(r.status.value for r in results)
    assert statuses == ["ALREADY_SETTLED", "SETTLED"]
    assert len(repo.transactions) == 5


async def test_cancel_refunds_stake(repo, engine, notifier):
    event = repo.add_event([(1, "A"), (2, "B")])
    bets = [repo.add_bet(event, 1, "100"), repo.add_bet(event, 2, "250.50")]

    result = await engine.settle_event(event.id, "cancelled")

    assert result.outcome == CANCELLED_OUTCOME
    assert result.cancelled == 2
    assert result.total_refunded == Decimal("350.50")
    for bet in bets:
        assert repo.bets[bet.id].status == BetStatus.CANCELLED
        assert repo.balances[bet.owner_id] == bet.stake
    assert all(t.type == TransactionType.REFUND for t in repo.transactions)
    assert [c[1] for c in notifier.calls].count("bet_refunded") == 2


async def test_no_winner_marks_all_lost(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    repo.add_bet(event, 1, "100")
    repo.add_bet(event, 2, "100")

    result = await engine.settle_event(event.id, "")

    assert result.outcome == "NO_WINNER"
    assert result.lost == 2
    assert repo.transactions == []


async def test_bet_settled_elsewhere_is_skipped(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    bet = repo.add_bet(event, 1, "100")
    other = repo.add_bet(event, 1, "50")
    original_load = repo.load_pending_by_event

    async def load_then_race(event_id):
        pending = await original_load(event_id)
        repo.bets[bet.id].status = BetStatus.CANCELLED
        return pending

    repo.load_pending_by_event = load_then_race

    result = await engine.settle_event(event.id, "", winning_team_id=1)

    assert result.conflicts == 1
    assert result.won == 1
    assert repo.bets[bet.id].status == BetStatus.CANCELLED
    assert repo.bets[other.id].status == BetStatus.WON
    assert len(repo.transactions) == 1


async def test_failed_credit_rolls_bet_back_to_pending(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    broken = repo.add_bet(event, 1, "100")
    ok = repo.add_bet(event, 1, "40")
    repo.fail_credit_for.add(broken.id)

    result = await engine.settle_event(event.id, "", winning_team_id=1)

    assert result.failed == 1
    assert result.won == 1
    assert repo.bets[broken.id].status == BetStatus.PENDING
    assert repo.bets[broken.id].payout == Decimal("0")
    assert repo.bets[ok.id].status == BetStatus.WON
    assert "1 failed" in result.message

    repo.fail_credit_for.clear()
    resumed = await engine.resume_event(event.id)
    assert resumed.won == 1
    assert repo.bets[broken.id].status == BetStatus.WON
    assert repo.balances[broken.owner_id] == Decimal("200.00")


async def test_resume_requires_settled_event(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    with pytest.raises(BadRequestError):
        await engine.resume_event(event.id)


async def test_unknown_event(engine):
    with pytest.raises(NotFoundError):
        await engine.settle_event(PydanticObjectId(), "", winning_team_id=1)


async def test_winning_team_must_take_part(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    repo.add_bet(event, 1, "100")
    with pytest.raises(BadRequestError):
        await engine.settle_event(event.id, "", winning_team_id=9)
    assert repo.events[event.id].outcome == ""


async def test_cancel_single_bet(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    bet = repo.add_bet(event, 2, "75")

    updated = await engine.cancel_single_bet(bet)

    assert updated.status == BetStatus.CANCELLED
    assert repo.balances[bet.owner_id] == Decimal("75")
    assert repo.transactions[0].idempotency_key == f"settle:{bet.id}"


async def test_failed_link_keeps_credited_bet_settled(repo, engine):
    event = repo.add_event([(1, "A"), (2, "B")])
    bet = repo.add_bet(event, 1, "100")
    repo.fail_link_for.add(bet.id)

    result = await engine.settle_event(event.id, "", winning_team_id=1)

    assert result.won == 1
    assert result.failed == 0
    assert repo.bets[bet.id].status == BetStatus.WON
    assert repo.bets[bet.id].payout == Decimal("200.00")
    assert repo.bets[bet.id].transaction_id is None
    assert repo.balances[bet.owner_id] == Decimal("200.00")
    assert len(repo.transactions) == 1

    resumed = await engine.resume_event(event.id)
    assert resumed.settled == 0
    assert repo.balances[bet.owner_id] == Decimal("200.00")
