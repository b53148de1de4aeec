import datetime as dt
from typing import Optional

from database.DB import EVENTS, REGISTRATIONS
from models.models import ACTIVE_PAYMENT_STATUSES, RegistrationStatus


def calendar_date(value) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def same_slot(first: dict, second: dict) -> bool:
    # Exact match of the display time only; overlapping durations are not detected.
    return calendar_date(first["date"]) == calendar_date(second["date"]) and first["time"] == second["time"]


def describe(event: dict) -> dict:
    return {"name": event["name"], "date": str(event["date"]), "time": event["time"]}


async def find_conflict(db, *, user_id: str, event: dict) -> Optional[dict]:
    """Return the first event on the user's active registrations sharing ``event``'s slot."""
    result = await db.find_many(
        REGISTRATIONS,
        {
            "user_id": user_id,
            "status": {"$ne": RegistrationStatus.CANCELLED.value},
            "payment_status": {"$in": ACTIVE_PAYMENT_STATUSES},
        },
        sort=[("created_at", 1)],
    )
    registrations = [r for r in result["data"] if r["event_id"] != event["event_id"]]
    if not registrations:
        return None

    events = await db.find_many(EVENTS, {"event_id": {"$in": [r["event_id"] for r in registrations]}})
    by_id = {e["event_id"]: e for e in events["data"]}

    for registration in registrations:
        registered = by_id.get(registration["event_id"])
        if registered and same_slot(registered, event):
            return registered
    return None
