"""
Admin read models (dashboard totals, user directory, notification log) and role changes.
"""
import datetime as dt
import logging
import re
from typing import List, Optional

from database.DB import EVENTS, NOTIFICATIONS, PAYMENTS, REGISTRATIONS, USERS
from models.models import PaymentRecordStatus, Role, public_user, utcnow
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

RECENT_DAYS = 7
RECENT_REGISTRATIONS = 10


async def dashboard(db) -> dict:
    captured = PaymentRecordStatus.CAPTURED.value
    since = utcnow() - dt.timedelta(days=RECENT_DAYS)

    revenue = await db.aggregate(PAYMENTS, [
        {"$match": {"status": captured}},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ])
    per_event = await db.aggregate(REGISTRATIONS, [
        {"$group": {"_id": "$event_id", "registrations": {"$sum": 1}, "revenue": {"$sum": "$amount"}}},
        {"$sort": {"registrations": -1}},
    ])

    recent = await db.find_many(REGISTRATIONS, sort=[("created_at", -1)], limit=RECENT_REGISTRATIONS)
    user_ids = list({r["user_id"] for r in recent["data"]})
    users = await db.find_many(USERS, {"user_id": {"$in": user_ids}}, projection={"user_id": 1, "name": 1, "email": 1})
    user_map = {u["user_id"]: {"name": u["name"], "email": u["email"]} for u in users["data"]}

    event_ids = list({r["event_id"] for r in recent["data"]} | {row["_id"] for row in per_event["data"]})
    events = await db.find_many(EVENTS, {"event_id": {"$in": event_ids}}, projection={"event_id": 1, "name": 1})
    event_names = {e["event_id"]: e["name"] for e in events["data"]}

    recent_registrations = []
    for registration in recent["data"]:
        registration["user"] = user_map.get(registration["user_id"])
        registration["event"] = {"name": event_names.get(registration["event_id"])}
        recent_registrations.append(registration)

    return {
        "stats": {
            "total_users": await db.count(USERS),
            "total_events": await db.count(EVENTS),
            "total_registrations": await db.count(REGISTRATIONS),
            "total_payments": await db.count(PAYMENTS, {"status": captured}),
            "total_revenue": revenue["data"][0]["total"] if revenue["data"] else 0,
            "recent_payments": await db.count(PAYMENTS, {"status": captured, "created_at": {"$gte": since}}),
        },
        "recent_registrations": recent_registrations,
        "event_stats": [
            {
                "event_id": row["_id"],
                "event_name": event_names.get(row["_id"]),
                "registrations": row["registrations"],
                "revenue": row["revenue"],
            }
            for row in per_event["data"]
        ],
    }


async def list_users(db, search: Optional[str] = None, role: Optional[str] = None) -> List[dict]:
    """Users matching ``search`` (case-insensitive, on name, email or college) and ``role``."""
    query = {}
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}, {"college": pattern}]
    if role:
        query["role"] = role
    result = await db.find_many(USERS, query, sort=[("created_at", -1)])
    return [public_user(user) for user in result["data"]]


async def set_role(db, *, user_id: str, role: str, admin: dict) -> dict:
    try:
        role = Role(role).value
    except ValueError:
        raise ValidationError("Invalid role", role=role)

    updated = await db.find_one_and_update(USERS, {"user_id": user_id}, {"$set": {"role": role}})
    if updated is None:
        raise NotFoundError("User not found", user_id=user_id)
    logger.info("Role of %s set to %s by %s", updated["email"], role, admin["email"])
    return public_user(updated)


async def list_notifications(db, status: Optional[str] = None, email: Optional[str] = None,
                             limit: int = 100) -> List[dict]:
    query = {}
    if status:
        query["status"] = status
    if email:
        query["email"] = email.lower()
    result = await db.find_many(NOTIFICATIONS, query, sort=[("created_at", -1)], limit=limit)
    return result["data"]
