"""Cron: finish settlement of bets that stayed Pending after a per-bet failure."""

from beanie.operators import In, NE

from app.core.logging import get_logger
from app.models.bet import Bet, BetStatus
from app.models.event import Event
from app.services.settlement import SettlementEngine

log = get_logger(__name__)


async def run_resume_settlements() -> int:
    """Returns the number of bets resolved in this sweep."""
    event_ids = await Bet.distinct(Bet.event_id, {"status": BetStatus.PENDING.value})
    if not event_ids:
        return 0
    events = await Event.find(In(Event.id, event_ids), NE(Event.outcome, "")).to_list()
    engine = SettlementEngine()
    resolved = 0
    for event in events:
        result = await engine.resume_event(event.id)
        resolved += result.settled
        if result.failed:
            log.warning("resume_settlement_incomplete", event_id=str(event.id), failed=result.failed)
    if resolved:
        log.info("resume_settlements", events=len(events), resolved=resolved)
    return resolved
