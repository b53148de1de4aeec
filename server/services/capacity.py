import logging

from database.DB import EVENTS
from .errors import EventFull

logger = logging.getLogger(__name__)


async def increment(db, event: dict) -> dict:
    """
    Take one slot of ``event`` with a single conditional update.

    The filter compares the stored count with the stored maximum, so two requests racing
    for the last slot cannot both succeed and a stale ``event`` snapshot cannot overrule
    a maximum changed since it was read. Raises EventFull when no slot was taken.
    """
    updated = await db.find_one_and_update(
        EVENTS,
        {
            "event_id": event["event_id"],
            "$expr": {"$lt": ["$current_participants", "$max_participants"]},
        },
        {"$inc": {"current_participants": 1}},
    )
    if updated is None:
        raise EventFull("Event is full", event_id=event["event_id"])
    return updated


async def decrement(db, event_id: str):
    """Release one slot, never going below zero. Returns the updated event or None."""
    updated = await db.find_one_and_update(
        EVENTS,
        {"event_id": event_id, "current_participants": {"$gt": 0}},
        {"$inc": {"current_participants": -1}},
    )
    if updated is None:
        logger.warning("Participant count for event %s already at zero or event missing", event_id)
    return updated
