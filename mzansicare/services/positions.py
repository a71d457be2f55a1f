"""Queue rank and wait-time estimation.

A ticket's position is its 1-based rank among the *active* tickets
(waiting or called) of its facility under the queue's ordering policy, and
its ETA is the time everybody strictly ahead is expected to take:

    eta_minutes = max(0, (position - 1) * avg_service_minutes)

Ordering policies are plain sort-key functions so that a priority-aware
schedule can be swapped in without touching the callers.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session

from ..models.ticket import ACTIVE_STATUSES, Ticket, TicketPriority

logger = logging.getLogger(__name__)

OrderingPolicy = Callable[[Ticket], Tuple]

PRIORITY_RANK: Dict[TicketPriority, int] = {
    TicketPriority.EMERGENCY: 0,
    TicketPriority.ELDERLY: 1,
    TicketPriority.VIP: 2,
    TicketPriority.NORMAL: 3,
}


def fifo_order(ticket: Ticket) -> Tuple[datetime, int]:
    """Admission order; equal timestamps fall back to the admission sequence."""
    return (ticket.created_at, ticket.sequence)


def priority_order(ticket: Ticket) -> Tuple[int, datetime, int]:
    return (PRIORITY_RANK.get(ticket.priority, PRIORITY_RANK[TicketPriority.NORMAL]),) + fifo_order(ticket)


ORDERING_POLICIES: Dict[str, OrderingPolicy] = {
    "fifo": fifo_order,
    "priority": priority_order,
}


def get_ordering_policy(name: str) -> OrderingPolicy:
    try:
        return ORDERING_POLICIES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown queue ordering policy: {name!r}") from None


def compute_eta(position: int, avg_service_minutes: float) -> int:
    return max(0, int(round((position - 1) * avg_service_minutes)))


def rank_active(tickets: Iterable[Ticket], order: OrderingPolicy = fifo_order) -> List[Tuple[Ticket, int]]:
    """Pair every active ticket with its position; inactive tickets are skipped."""
    active = sorted((t for t in tickets if t.status in ACTIVE_STATUSES), key=order)
    return [(ticket, index) for index, ticket in enumerate(active, start=1)]


def recompute_positions(
    db: Session,
    facility_id: str,
    avg_service_minutes: float,
    order: OrderingPolicy = fifo_order,
) -> List[Ticket]:
    """Renumber the facility's active tickets in the current transaction.

    Returns the tickets whose position or ETA changed so callers can publish
    them to watchers once the transaction commits.
    """
    tickets = db.query(Ticket).filter(
        Ticket.facility_id == facility_id,
        Ticket.status.in_(ACTIVE_STATUSES),
    ).all()

    changed = []
    for ticket, position in rank_active(tickets, order):
        eta = compute_eta(position, avg_service_minutes)
        if ticket.position != position or ticket.eta_minutes != eta:
            ticket.position = position
            ticket.eta_minutes = eta
            changed.append(ticket)

    if changed:
        db.flush()
        logger.debug(f"Renumbered {len(changed)} ticket(s) at {facility_id}")
    return changed
