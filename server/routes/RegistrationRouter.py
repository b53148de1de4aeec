from fastapi import APIRouter, Depends

from database.DB import get_db
from models.models import AdminRegistrationCreate, RegistrationCreate
from services import onboarding, registrations
from .dependencies import get_current_account, get_current_user, get_dispatcher, require_admin

router = APIRouter()


@router.post('', status_code=201)
async def create_registration(body: RegistrationCreate, account: dict = Depends(get_current_account),
                              db = Depends(get_db), dispatcher = Depends(get_dispatcher)):
    registration = await registrations.register(
        db,
        user=account,
        event_id=body.event_id,
        team_name=body.team_name,
        team_members=body.team_members,
        dispatcher=dispatcher,
    )
    return {"success": True, "message": "Registration successful", "registration": registration}


@router.get('')
async def get_registrations(user: dict = Depends(get_current_user), db = Depends(get_db)):
    """Admins see every registration, participants only their own"""
    return {"success": True, "registrations": await registrations.list_all(db, user)}


@router.get('/my')
async def my_registrations(user: dict = Depends(get_current_user), db = Depends(get_db)):
    return {"success": True, "registrations": await registrations.list_for_user(db, user["user_id"])}


@router.get('/check-conflict/{event_id}')
async def check_conflict(event_id: str, user: dict = Depends(get_current_user), db = Depends(get_db)):
    return await registrations.check_conflict(db, user=user, event_id=event_id)


@router.get('/event/{event_id}')
async def event_registrations(event_id: str, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    return {"success": True, "registrations": await registrations.list_for_event(db, event_id)}


@router.get('/export/{event_id}')
async def export_registrations(event_id: str, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    return {"success": True, **await registrations.export_event(db, event_id)}


@router.post('/admin-register', status_code=201)
async def admin_register(body: AdminRegistrationCreate, admin_user: dict = Depends(require_admin),
                         db = Depends(get_db), dispatcher = Depends(get_dispatcher)):
    """Create a new participant (and any missing team accounts) and register them in one step"""
    result = await onboarding.admin_register(db, request=body, admin=admin_user, dispatcher=dispatcher)
    return {"success": True, "message": "User account created and registered successfully", **result}


@router.get('/{registration_id}')
async def get_registration(registration_id: str, user: dict = Depends(get_current_user), db = Depends(get_db)):
    registration = await registrations.get_owned_registration(db, registration_id, user, allow_admin=True)
    await registrations.attach_events(db, [registration])
    return {"success": True, "registration": registration}


@router.put('/{registration_id}/cancel')
async def cancel_registration(registration_id: str, user: dict = Depends(get_current_user), db = Depends(get_db)):
    registration = await registrations.cancel(db, registration_id=registration_id, user=user)
    return {"success": True, "message": "Registration cancelled", "registration": registration}
