"""Bet placement and user-side cancellation."""

from datetime import datetime, timedelta
from decimal import Decimal

from beanie import PydanticObjectId
from beanie.operators import Set

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.logging import get_logger
from app.models.bet import Bet, BetStatus
from app.models.event import Event
from app.models.payment_transaction import TransactionType
from app.models.user import User
from app.services import credits as credits_service
from app.services.settlement import ConcurrencyConflict, SettlementEngine, compute_payout

log = get_logger(__name__)


def max_stake_for(user: User) -> Decimal:
    s = get_settings()
    return {
        "vip": s.max_stake_vip,
        "premium": s.max_stake_premium,
        "user": s.max_stake_user,
    }.get(user.role, s.max_stake_default)


def daily_stake_limit_for(user: User) -> Decimal:
    s = get_settings()
    return {
        "vip": s.daily_stake_limit_vip,
        "premium": s.daily_stake_limit_premium,
        "user": s.daily_stake_limit_user,
    }.get(user.role, s.daily_stake_limit_default)


async def staked_today(user_id: PydanticObjectId) -> Decimal:
    """Sum of the stakes the user placed since 00:00 UTC, cancelled bets included."""
    start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    bets = await Bet.find(Bet.user_ids == user_id, Bet.created_at >= start).to_list()
    return sum((Decimal(b.stake) for b in bets), Decimal("0"))


def check_stake(user: User, stake: Decimal) -> None:
    """Minimum stake and the role's per-bet maximum."""
    minimum = get_settings().min_stake
    maximum = max_stake_for(user)
    if stake < minimum or stake > maximum:
        raise BadRequestError(
            f"Stake must be between {minimum} and {maximum} for role {user.role}",
            details={"min": str(minimum), "max": str(maximum), "role": user.role},
        )


async def check_daily_limit(user: User, stake: Decimal) -> None:
    limit = daily_stake_limit_for(user)
    today = await staked_today(user.id)
    if today + stake > limit:
        raise BadRequestError(
            f"Daily stake limit of {limit} for role {user.role} exceeded",
            details={"limit": str(limit), "staked_today": str(today), "role": user.role},
        )


async def place_bet(user: User, event_id: PydanticObjectId, team_id: int, stake: Decimal) -> Bet:
    """Debit the stake and create a Pending bet at the team's current odds."""
    check_stake(user, stake)
    event = await Event.get(event_id)
    if not event:
        raise NotFoundError("Event not found")
    if event.is_settled:
        raise BadRequestError("Event is already settled")
    if event.date <= datetime.utcnow():
        raise BadRequestError("Event has already started")
    team = event.team(team_id)
    if not team:
        raise BadRequestError("Team does not take part in this event")
    if team.odds <= 1:
        raise BadRequestError("No valid odds for this selection")
    await check_daily_limit(user, stake)

    bet_id = PydanticObjectId()
    tx, balance_after = await credits_service.apply_transaction(
        user.id,
        stake,
        TransactionType.BET,
        description=f"Bet on {team.name} ({event.name})",
        bet_ids=[bet_id],
        reference_type="bet",
        reference_id=str(bet_id),
        idempotency_key=f"bet:{bet_id}",
    )
    bet = Bet(
        id=bet_id,
        event_id=event.id,
        team_id=team_id,
        user_ids=[user.id],
        stake=stake,
        odds=team.odds,
        potential_payout=compute_payout(stake, team.odds),
        transaction_id=tx.id,
    )
    try:
        await bet.insert()
    except Exception:
        await credits_service.apply_transaction(
            user.id,
            stake,
            TransactionType.REFUND,
            description=f"Refund for failed bet {bet_id}",
            bet_ids=[bet_id],
            reference_type="bet",
            reference_id=str(bet_id),
            idempotency_key=f"bet-rollback:{bet_id}",
        )
        raise
    await User.find_one(User.id == user.id).update_one(Set({User.last_bet_at: datetime.utcnow()}))
    log.info("bet_placed", bet_id=str(bet.id), event_id=str(event.id), stake=str(stake), balance_after=str(balance_after))
    await log_event(
        str(user.id), "bet_placed", "bet", str(bet.id), {"stake": str(stake)},
        message=f"Bet placed. Stake: {stake}",
    )
    return bet


async def cancel_bet(user: User, bet_id: PydanticObjectId, engine: SettlementEngine | None = None) -> Bet:
    """Owner cancels a Pending bet before the event starts; the stake is refunded."""
    bet = await Bet.find_one(Bet.id == bet_id, Bet.user_ids == user.id)
    if not bet:
        raise NotFoundError("Bet not found")
    if bet.status != BetStatus.PENDING:
        raise BadRequestError("Only pending bets can be cancelled")
    event = await Event.get(bet.event_id)
    cutoff = datetime.utcnow() + timedelta(minutes=get_settings().bet_cancel_cutoff_minutes)
    if not event or event.date <= cutoff:
        raise BadRequestError("Bets can no longer be cancelled for this event")
    engine = engine or SettlementEngine()
    try:
        return await engine.cancel_single_bet(bet)
    except ConcurrencyConflict:
        raise ConflictError("Bet was already settled")


async def list_bets(user_id: PydanticObjectId, status: BetStatus | None, limit: int, offset: int) -> list[Bet]:
    conditions = [Bet.user_ids == user_id]
    if status is not None:
        conditions.append(Bet.status == status)
    return await Bet.find(*conditions).sort(-Bet.created_at).skip(offset).limit(limit).to_list()


def summarize_bets(bets: list[Bet]) -> dict[str, Decimal | int]:
    total = len(bets)
    won = [b for b in bets if b.status == BetStatus.WON]
    lost = [b for b in bets if b.status == BetStatus.LOST]
    return {
        "total_bets": total,
        "total_staked": sum((b.stake for b in bets), Decimal("0")),
        "total_won": sum((b.payout for b in won), Decimal("0")),
        "total_lost": sum((b.stake for b in lost), Decimal("0")),
        "pending_bets": sum(1 for b in bets if b.status == BetStatus.PENDING),
        "win_rate": (Decimal(len(won)) / total * 100).quantize(Decimal("0.01")) if total else Decimal("0"),
        "average_stake": (sum((b.stake for b in bets), Decimal("0")) / total).quantize(Decimal("0.01")) if total else Decimal("0"),
        "average_odds": (sum((b.odds for b in bets), Decimal("0")) / total).quantize(Decimal("0.01")) if total else Decimal("0"),
    }


async def count_bets(user_id: PydanticObjectId, status: BetStatus | None) -> int:
    conditions = [Bet.user_ids == user_id]
    if status is not None:
        conditions.append(Bet.status == status)
    return await Bet.find(*conditions).count()


async def get_statistics(user_id: PydanticObjectId) -> dict[str, Decimal | int]:
    bets = await Bet.find(Bet.user_ids == user_id).to_list()
    return summarize_bets(bets)
