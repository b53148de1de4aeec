from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from database.DB import get_db
from models.models import Payload
from services import payments
from services.errors import EngineError
from .dependencies import get_current_user, get_dispatcher, get_file_store, require_admin

router = APIRouter()


class RejectRequest(Payload):
    reason: Optional[str] = None


@router.get('/details/{registration_id}')
async def payment_details(registration_id: str, user: dict = Depends(get_current_user), db = Depends(get_db)):
    return {"success": True, "payment": await payments.payment_details(db, registration_id=registration_id, user=user)}


@router.post('/offline')
async def submit_offline_payment(
    registrationId: str = Form(...),
    utrNumber: str = Form(...),
    screenshot: UploadFile = File(...),
    user: dict = Depends(get_current_user),
    db = Depends(get_db),
    file_store = Depends(get_file_store),
):
    """Upload the transfer proof; the registration waits for an admin to verify it"""
    await payments.check_submittable(db, registration_id=registrationId, user=user, utr_number=utrNumber)
    content = await screenshot.read()
    screenshot_url = await file_store.store(content, screenshot.content_type)
    try:
        result = await payments.submit_proof(
            db,
            registration_id=registrationId,
            user=user,
            utr_number=utrNumber,
            screenshot_url=screenshot_url,
        )
    except EngineError:
        await file_store.remove(screenshot_url)
        raise
    return {
        "success": True,
        "message": "Payment proof submitted successfully. Admin will verify your payment soon.",
        **result,
    }


@router.get('/my')
async def my_payments(user: dict = Depends(get_current_user), db = Depends(get_db)):
    return {"success": True, "payments": await payments.list_for_user(db, user["user_id"])}


@router.get('/all')
async def all_payments(status: Optional[str] = Query(None), admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    return {"success": True, "payments": await payments.list_all(db, status=status)}


@router.get('/event/{event_id}')
async def event_payments(event_id: str, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    return {"success": True, **await payments.event_summary(db, event_id)}


@router.get('/{payment_id}')
async def get_payment(payment_id: str, user: dict = Depends(get_current_user), db = Depends(get_db)):
    return {"success": True, "payment": await payments.get_for_user(db, payment_id=payment_id, user=user)}


@router.put('/{payment_id}/approve')
async def approve_payment(payment_id: str, admin_user: dict = Depends(require_admin),
                          db = Depends(get_db), dispatcher = Depends(get_dispatcher)):
    payment = await payments.approve(db, payment_id=payment_id, admin=admin_user, dispatcher=dispatcher)
    return {"success": True, "message": "Payment approved successfully", "payment": payment}


@router.put('/{payment_id}/reject')
async def reject_payment(payment_id: str, body: Optional[RejectRequest] = None, admin_user: dict = Depends(require_admin),
                         db = Depends(get_db), dispatcher = Depends(get_dispatcher)):
    payment = await payments.reject(
        db,
        payment_id=payment_id,
        admin=admin_user,
        reason=body.reason if body else None,
        dispatcher=dispatcher,
    )
    return {"success": True, "message": "Payment rejected. Registration has been removed.", "payment": payment}
