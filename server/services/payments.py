"""
Manual (bank transfer) payment verification.

Registration payment status moves ``pending -> verification_pending -> completed`` on
approval, or the registration is deleted outright on rejection. The payment record is
kept in every case as the audit trail.
"""
import logging
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from config.config import CURRENCY, PAYMENT_ACCOUNT_NAME, PAYMENT_UPI_ID
from database.DB import EVENTS, PAYMENTS, REGISTRATIONS, USERS
from models.models import (
    Payment,
    PaymentMethod,
    PaymentRecordStatus,
    PaymentStatus,
    RegistrationStatus,
    public_user,
    utcnow,
)
from . import capacity
from .errors import AlreadyCancelled, AlreadyPaid, AuthorizationError, NotFoundError, PaymentAlreadyRejected, ValidationError
from .registrations import get_owned_registration, is_admin

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Payment verification failed"


def payment_instructions(amount: int) -> str:
    return "\n".join([
        "Scan the QR code or pay to the UPI id using any UPI app",
        f"Enter the exact amount shown: {amount}",
        "Complete the payment",
        "Take a screenshot of the payment confirmation",
        "Upload the screenshot and enter the UTR number",
    ])


async def payment_details(db, *, registration_id: str, user: dict) -> dict:
    """What the participant needs to make the transfer for a registration."""
    registration = await get_owned_registration(db, registration_id, user)
    if registration["payment_status"] == PaymentStatus.COMPLETED.value:
        raise AlreadyPaid("Payment already completed", registration_id=registration_id)

    event = await db.find_one(EVENTS, {"event_id": registration["event_id"]}) or {}
    return {
        "registration_id": registration_id,
        "registration_number": registration["registration_number"],
        "amount": registration["amount"],
        "currency": CURRENCY,
        "event_name": event.get("name"),
        "upi_id": event.get("payment_upi") or PAYMENT_UPI_ID,
        "account_name": event.get("payment_account_name") or PAYMENT_ACCOUNT_NAME,
        "instructions": event.get("payment_instructions") or payment_instructions(registration["amount"]),
    }


async def check_submittable(db, *, registration_id: str, user: dict, utr_number: str) -> dict:
    """
    Everything about a proof submission that can be checked before the screenshot is
    stored: the UTR, ownership, and that the registration still awaits payment.
    """
    if not (utr_number or "").strip():
        raise ValidationError("Please provide registration ID and UTR number")

    registration = await get_owned_registration(db, registration_id, user)
    if registration["payment_status"] == PaymentStatus.COMPLETED.value:
        raise AlreadyPaid("Payment already completed", registration_id=registration_id)
    if registration["status"] == RegistrationStatus.CANCELLED.value:
        raise AlreadyCancelled("Registration has been cancelled", registration_id=registration_id)

    existing = await db.find_one(PAYMENTS, {"registration_id": registration_id})
    if existing and existing["status"] == PaymentRecordStatus.CAPTURED.value:
        raise AlreadyPaid("Payment already completed", registration_id=registration_id)
    return registration


async def submit_proof(db, *, registration_id: str, user: dict, utr_number: str, screenshot_url: str) -> dict:
    """
    Record (or overwrite) the transfer proof for a registration and mark it as awaiting
    verification. Resubmitting before an admin acts replaces the previous proof.
    """
    registration = await check_submittable(db, registration_id=registration_id, user=user, utr_number=utr_number)
    utr_number = utr_number.strip()
    if not screenshot_url:
        raise ValidationError("Please upload payment screenshot")

    now = utcnow()
    template = Payment(
        user_id=registration["user_id"],
        registration_id=registration_id,
        event_id=registration["event_id"],
        amount=registration["amount"],
        currency=CURRENCY,
    ).to_document()
    proof = {
        "utr_number": utr_number,
        "screenshot_url": screenshot_url,
        "transaction_date": now,
        "method": PaymentMethod.OFFLINE.value,
    }
    # registration_id and status come from the upsert filter
    on_insert = {key: value for key, value in template.items() if key not in proof and key not in ("registration_id", "status")}

    try:
        payment = await db.find_one_and_update(
            PAYMENTS,
            {"registration_id": registration_id, "status": PaymentRecordStatus.CREATED.value},
            {"$set": proof, "$setOnInsert": on_insert},
            upsert=True,
        )
    except DuplicateKeyError:
        # an admin settled the payment after the checks above
        settled = await db.find_one(PAYMENTS, {"registration_id": registration_id})
        if settled:
            _raise_for_settled(settled)
        raise AlreadyPaid("Payment already completed", registration_id=registration_id)

    updated = await db.find_one_and_update(
        REGISTRATIONS,
        {"registration_id": registration_id, "payment_status": {"$ne": PaymentStatus.COMPLETED.value}},
        {"$set": {
            "payment_status": PaymentStatus.VERIFICATION_PENDING.value,
            "payment_method": PaymentMethod.OFFLINE.value,
            "payment_id": payment["payment_id"],
        }},
    )
    if updated is None:
        raise AlreadyPaid("Payment already completed", registration_id=registration_id)

    logger.info("Payment proof %s submitted for registration %s", utr_number, registration["registration_number"])
    return {"payment": payment, "registration": updated}


async def get_payment(db, payment_id: str) -> dict:
    payment = await db.find_one(PAYMENTS, {"payment_id": payment_id})
    if not payment:
        raise NotFoundError("Payment not found", payment_id=payment_id)
    return payment


def _raise_for_settled(payment: dict):
    if payment["status"] == PaymentRecordStatus.CAPTURED.value:
        raise AlreadyPaid("Payment already approved", payment_id=payment["payment_id"])
    if payment["status"] == PaymentRecordStatus.FAILED.value:
        raise PaymentAlreadyRejected("Payment was already rejected", payment_id=payment["payment_id"])


async def _claim(db, payment: dict, changes: dict) -> dict:
    """Move a payment out of ``created``; only one admin action can win."""
    _raise_for_settled(payment)
    claimed = await db.find_one_and_update(
        PAYMENTS,
        {"payment_id": payment["payment_id"], "status": PaymentRecordStatus.CREATED.value},
        {"$set": changes},
    )
    if claimed is None:
        _raise_for_settled(await get_payment(db, payment["payment_id"]))
        raise NotFoundError("Payment not found", payment_id=payment["payment_id"])
    return claimed


async def _notify(db, dispatcher, payment: dict, template: str, extra: Optional[dict] = None):
    if dispatcher is None:
        return
    # the payment is already settled; a failed lookup only costs the email
    try:
        user = await db.find_one(USERS, {"user_id": payment["user_id"]})
        event = await db.find_one(EVENTS, {"event_id": payment["event_id"]})
    except Exception:
        logger.exception("Could not prepare '%s' notification for payment %s", template, payment["payment_id"])
        return
    if not user or not event:
        logger.warning("Skipping '%s' notification for payment %s: user or event missing", template, payment["payment_id"])
        return
    data = {
        "name": user["name"],
        "event_name": event["name"],
        "event_id": payment["event_id"],
        "registration_id": payment["registration_id"],
        **(extra or {}),
    }
    dispatcher.dispatch(user["email"], template, data)


async def approve(db, *, payment_id: str, admin: dict, dispatcher=None) -> dict:
    payment = await get_payment(db, payment_id)
    now = utcnow()
    payment = await _claim(db, payment, {
        "status": PaymentRecordStatus.CAPTURED.value,
        "paid_at": now,
        "verified_by": admin["user_id"],
    })

    registration = await db.find_one_and_update(
        REGISTRATIONS,
        {"registration_id": payment["registration_id"]},
        {"$set": {
            "payment_status": PaymentStatus.COMPLETED.value,
            "paid_at": now,
            "payment_id": payment_id,
        }},
    )
    if registration is None:
        logger.warning("Approved payment %s has no registration %s", payment_id, payment["registration_id"])

    logger.info("Payment %s approved by %s", payment_id, admin["email"])
    await _notify(db, dispatcher, payment, "payment_approved", {
        "registration_number": (registration or {}).get("registration_number", "N/A"),
    })
    return payment


async def reject(db, *, payment_id: str, admin: dict, reason: Optional[str] = None, dispatcher=None) -> dict:
    """
    Fail the payment and undo the registration: the registration is deleted and its
    slot released, so the participant may register again for this event or another
    event in the same time slot.
    """
    payment = await get_payment(db, payment_id)
    reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    payment = await _claim(db, payment, {
        "status": PaymentRecordStatus.FAILED.value,
        "rejection_reason": reason,
        "verified_by": admin["user_id"],
        "rejected_at": utcnow(),
    })

    registration = await db.find_one(REGISTRATIONS, {"registration_id": payment["registration_id"]})
    if registration is None:
        logger.warning("Rejected payment %s has no registration %s", payment_id, payment["registration_id"])
    else:
        deleted = await db.delete(REGISTRATIONS, {"registration_id": registration["registration_id"]})
        # a cancelled registration already gave its slot back
        if deleted["deleted_count"] and registration["status"] != RegistrationStatus.CANCELLED.value:
            await capacity.decrement(db, registration["event_id"])

    logger.info("Payment %s rejected by %s: %s", payment_id, admin["email"], reason)
    await _notify(db, dispatcher, payment, "payment_rejected", {"reason": reason})
    return payment


async def _with_references(db, payments: List[dict], include_user: bool = False) -> List[dict]:
    event_ids = list({p["event_id"] for p in payments})
    events = await db.find_many(EVENTS, {"event_id": {"$in": event_ids}}, projection={"event_id": 1, "name": 1, "date": 1})
    event_map = {e["event_id"]: e for e in events["data"]}
    registration_ids = [p["registration_id"] for p in payments]
    registrations = await db.find_many(
        REGISTRATIONS,
        {"registration_id": {"$in": registration_ids}},
        projection={"registration_id": 1, "registration_number": 1, "team_name": 1},
    )
    registration_map = {r["registration_id"]: r for r in registrations["data"]}
    user_map = {}
    if include_user:
        users = await db.find_many(USERS, {"user_id": {"$in": list({p["user_id"] for p in payments})}})
        user_map = {u["user_id"]: public_user(u) for u in users["data"]}

    for payment in payments:
        payment["event"] = event_map.get(payment["event_id"])
        payment["registration"] = registration_map.get(payment["registration_id"])
        if include_user:
            payment["user"] = user_map.get(payment["user_id"])
    return payments


async def list_for_user(db, user_id: str) -> List[dict]:
    result = await db.find_many(PAYMENTS, {"user_id": user_id}, sort=[("created_at", -1)])
    return await _with_references(db, result["data"])


async def list_all(db, status: Optional[str] = None) -> List[dict]:
    query = {"status": status} if status else {}
    result = await db.find_many(PAYMENTS, query, sort=[("created_at", -1)])
    return await _with_references(db, result["data"], include_user=True)


async def get_for_user(db, *, payment_id: str, user: dict) -> dict:
    payment = await get_payment(db, payment_id)
    if payment["user_id"] != user["user_id"] and not is_admin(user):
        raise AuthorizationError("Not authorized")
    return (await _with_references(db, [payment], include_user=True))[0]


async def event_summary(db, event_id: str) -> dict:
    result = await db.find_many(PAYMENTS, {"event_id": event_id}, sort=[("created_at", -1)])
    payments = await _with_references(db, result["data"], include_user=True)
    captured = [p for p in payments if p["status"] == PaymentRecordStatus.CAPTURED.value]
    return {
        "stats": {
            "total": len(payments),
            "completed": len(captured),
            "pending": sum(1 for p in payments if p["status"] == PaymentRecordStatus.CREATED.value),
            "failed": sum(1 for p in payments if p["status"] == PaymentRecordStatus.FAILED.value),
            "total_amount": sum(p["amount"] for p in captured),
        },
        "payments": payments,
    }
