import logging
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from config.config import REGISTRATION_NUMBER_PREFIX
from database.DB import COUNTERS, EVENTS, PAYMENTS, REGISTRATIONS, USERS
from models.models import (
    PaymentMethod,
    PaymentStatus,
    Registration,
    RegistrationStatus,
    Role,
    TeamMemberIn,
    public_user,
    utcnow,
)
from . import capacity
from .conflicts import describe, find_conflict
from .errors import (
    AlreadyCancelled,
    AuthorizationError,
    DuplicateRegistration,
    EventFull,
    NotFoundError,
    RegistrationClosed,
    ScheduleConflict,
)
from .teams import build_team, validate_team

logger = logging.getLogger(__name__)


async def next_registration_number(db, prefix: str = REGISTRATION_NUMBER_PREFIX) -> str:
    """Atomically advance the shared sequence and format it as PREFIX-NNNN."""
    counter = await db.find_one_and_update(
        COUNTERS,
        {"_id": "registration_number"},
        {"$inc": {"seq": 1}},
        upsert=True,
    )
    return f"{prefix}-{counter['seq']:04d}"


async def get_event(db, event_id: str) -> dict:
    event = await db.find_one(EVENTS, {"event_id": event_id})
    if not event:
        raise NotFoundError("Event not found", event_id=event_id)
    return event


def is_admin(user: dict) -> bool:
    return user.get("role") == Role.ADMIN.value


def notification_data(user: dict, event: dict, registration: dict) -> dict:
    return {
        "name": user["name"],
        "event_name": event["name"],
        "event_date": event["date"],
        "event_time": event["time"],
        "venue": event["venue"],
        "registration_number": registration["registration_number"],
        "team_name": registration.get("team_name") or "Individual",
        "amount": registration["amount"],
        "payment_status": str(registration["payment_status"]).upper(),
        "event_id": event["event_id"],
        "registration_id": registration["registration_id"],
    }


async def insert_registration(db, registration: Registration) -> dict:
    """Persist a registration; the (user, event) unique index is the authoritative duplicate guard."""
    try:
        result = await db.add(REGISTRATIONS, registration.to_document())
    except DuplicateKeyError:
        raise DuplicateRegistration("You are already registered for this event", event_id=registration.event_id)
    return result["data"]


async def register(db, *, user: dict, event_id: str, team_name: Optional[str] = None,
                   team_members: Optional[List[TeamMemberIn]] = None, dispatcher=None) -> dict:
    """
    Register ``user`` (the leader) for an event.

    Checks run in a fixed order and each failure is its own error: closed, full,
    duplicate, schedule conflict, then team validation. A slot is reserved before the
    insert and handed back if the insert fails.
    """
    event = await get_event(db, event_id)
    if not event.get("online_registration_open", True):
        raise RegistrationClosed(
            "Online registration is currently closed for this event. Please contact the admin.",
            event_id=event_id,
        )

    if event["current_participants"] >= event["max_participants"]:
        raise EventFull("Event is full", event_id=event_id)

    if await db.find_one(REGISTRATIONS, {"user_id": user["user_id"], "event_id": event_id}):
        raise DuplicateRegistration("You are already registered for this event", event_id=event_id)

    conflicting = await find_conflict(db, user_id=user["user_id"], event=event)
    if conflicting:
        raise ScheduleConflict(
            f'You are already registered for "{conflicting["name"]}" which is scheduled at the same time '
            f'({conflicting["time"]} on {conflicting["date"]}). '
            "You cannot register for multiple events at the same time.",
            conflicting_event=describe(conflicting),
        )

    members = await validate_team(db, event=event, leader=user, members=team_members)

    await capacity.increment(db, event)
    try:
        fee = event.get("registration_fee", 0)
        registration = Registration(
            user_id=user["user_id"],
            event_id=event_id,
            team_name=team_name,
            team_members=build_team(user, members),
            amount=fee,
            payment_status=PaymentStatus.COMPLETED if fee == 0 else PaymentStatus.PENDING,
            payment_method=PaymentMethod.FREE if fee == 0 else None,
            registration_number=await next_registration_number(db),
        )
        created = await insert_registration(db, registration)
    except Exception:
        await capacity.decrement(db, event_id)
        raise

    logger.info("Registration %s created for %s in %s", created["registration_number"], user["email"], event["name"])
    if dispatcher is not None:
        dispatcher.dispatch(user["email"], "registration_confirmed", notification_data(user, event, created))
    return created


async def get_owned_registration(db, registration_id: str, user: dict, allow_admin: bool = False) -> dict:
    registration = await db.find_one(REGISTRATIONS, {"registration_id": registration_id})
    if not registration:
        raise NotFoundError("Registration not found", registration_id=registration_id)
    if registration["user_id"] != user["user_id"] and not (allow_admin and is_admin(user)):
        raise AuthorizationError("Not authorized")
    return registration


async def cancel(db, *, registration_id: str, user: dict) -> dict:
    registration = await get_owned_registration(db, registration_id, user)
    if registration["status"] == RegistrationStatus.CANCELLED.value:
        raise AlreadyCancelled("Registration already cancelled", registration_id=registration_id)

    updated = await db.find_one_and_update(
        REGISTRATIONS,
        {"registration_id": registration_id, "status": {"$ne": RegistrationStatus.CANCELLED.value}},
        {"$set": {"status": RegistrationStatus.CANCELLED.value, "cancelled_at": utcnow()}},
    )
    if updated is None:
        raise AlreadyCancelled("Registration already cancelled", registration_id=registration_id)

    await capacity.decrement(db, registration["event_id"])
    logger.info("Registration %s cancelled by %s", registration["registration_number"], user["email"])
    return updated


async def attach_events(db, registrations: List[dict]) -> List[dict]:
    event_ids = list({r["event_id"] for r in registrations})
    events = await db.find_many(EVENTS, {"event_id": {"$in": event_ids}}) if event_ids else {"data": []}
    by_id = {e["event_id"]: e for e in events["data"]}
    for registration in registrations:
        registration["event"] = by_id.get(registration["event_id"])
    return registrations


async def list_for_user(db, user_id: str) -> List[dict]:
    result = await db.find_many(REGISTRATIONS, {"user_id": user_id}, sort=[("created_at", -1)])
    return await attach_events(db, result["data"])


async def list_all(db, user: dict) -> List[dict]:
    query = {} if is_admin(user) else {"user_id": user["user_id"]}
    result = await db.find_many(REGISTRATIONS, query, sort=[("created_at", -1)])
    return await attach_events(db, result["data"])


async def list_for_event(db, event_id: str) -> List[dict]:
    await get_event(db, event_id)
    result = await db.find_many(REGISTRATIONS, {"event_id": event_id}, sort=[("created_at", -1)])
    registrations = result["data"]
    users = await db.find_many(USERS, {"user_id": {"$in": list({r["user_id"] for r in registrations})}})
    by_id = {u["user_id"]: public_user(u) for u in users["data"]}
    for registration in registrations:
        registration["user"] = by_id.get(registration["user_id"])
    return registrations


async def check_conflict(db, *, user: dict, event_id: str) -> dict:
    event = await get_event(db, event_id)
    conflicting = await find_conflict(db, user_id=user["user_id"], event=event)
    return {
        "hasConflict": conflicting is not None,
        "conflictingEvent": describe(conflicting) if conflicting else None,
    }


def payment_status_display(registration: dict, payment: Optional[dict]) -> str:
    status = registration["payment_status"]
    if status == PaymentStatus.COMPLETED.value and payment and payment.get("status") == "captured":
        return "APPROVED"
    if status == PaymentStatus.VERIFICATION_PENDING.value:
        return "PENDING VERIFICATION"
    if status == PaymentStatus.FAILED.value:
        return "REJECTED"
    return status.upper()


async def export_event(db, event_id: str) -> dict:
    """Read model joining registrations, their payment and their user for one event."""
    event = await get_event(db, event_id)
    result = await db.find_many(REGISTRATIONS, {"event_id": event_id}, sort=[("created_at", 1)])
    registrations = result["data"]

    ids = [r["registration_id"] for r in registrations]
    payments = await db.find_many(PAYMENTS, {"registration_id": {"$in": ids}})
    payment_map = {p["registration_id"]: p for p in payments["data"]}
    users = await db.find_many(USERS, {"user_id": {"$in": list({r["user_id"] for r in registrations})}})
    user_map = {u["user_id"]: u for u in users["data"]}

    rows = []
    for index, registration in enumerate(registrations, start=1):
        payment = payment_map.get(registration["registration_id"])
        user = user_map.get(registration["user_id"]) or {}
        rows.append({
            "sno": index,
            "registration_number": registration["registration_number"],
            "user_code": user.get("user_code", "N/A"),
            "name": user.get("name", "N/A"),
            "email": user.get("email", "N/A"),
            "phone": user.get("phone", "N/A"),
            "college": user.get("college", "N/A"),
            "team_name": registration.get("team_name") or "Individual",
            "team_size": len(registration.get("team_members") or []) or 1,
            "amount": registration["amount"],
            "payment_status": payment_status_display(registration, payment),
            "utr_number": (payment or {}).get("utr_number") or "N/A",
            "payment_date": (payment or {}).get("paid_at") or "N/A",
            "registration_date": registration["created_at"],
            "status": registration["status"].upper(),
        })

    statuses = [r["payment_status"] for r in registrations]
    return {
        "event": {"event_id": event["event_id"], "name": event["name"]},
        "rows": rows,
        "summary": {
            "total": len(registrations),
            "approved": statuses.count(PaymentStatus.COMPLETED.value),
            "pending": statuses.count(PaymentStatus.PENDING.value) + statuses.count(PaymentStatus.VERIFICATION_PENDING.value),
            "rejected": statuses.count(PaymentStatus.FAILED.value),
        },
    }
