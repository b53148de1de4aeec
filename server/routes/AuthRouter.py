import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field

from database.DB import get_db
from models.models import NewUserProfile, Payload, ProfileUpdate, public_user
from services import accounts
from .dependencies import get_current_account, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


class SignupRequest(NewUserProfile):
    password: str = Field(min_length=6)


class LoginRequest(Payload):
    email: EmailStr
    password: str


@router.post('/signup', status_code=201)
async def signup(request: Request, body: SignupRequest, db = Depends(get_db)):
    user = await accounts.signup(
        db,
        name=body.name,
        email=body.email,
        phone=body.phone,
        college=body.college,
        password=body.password,
    )
    request.session.clear()
    request.session['user'] = accounts.session_user(user)
    logger.info("New participant %s signed up with code %s", user["email"], user["user_code"])
    return {"success": True, "user": user}


@router.post('/login')
async def login(request: Request, body: LoginRequest, db = Depends(get_db)):
    user = await accounts.authenticate(db, email=body.email, password=body.password)
    request.session.clear()
    request.session['user'] = accounts.session_user(user)
    return {"success": True, "user": user}


@router.get('/health')
async def health_check():
    """Simple health check endpoint"""
    return JSONResponse(content={"status": "healthy", "message": "Server is running"})


@router.get('/user/profile')
async def user_profile(account: dict = Depends(get_current_account)):
    return public_user(account)


@router.put('/user/profile')
async def update_profile(request: Request, body: ProfileUpdate, user: dict = Depends(get_current_user), db = Depends(get_db)):
    """Edit the signed-in participant's profile; existing team snapshots are left as they were"""
    updated = await accounts.update_profile(db, user_id=user["user_id"], changes=body.model_dump())
    if 'user' in request.session:
        request.session['user'] = accounts.session_user(updated)
    return {"success": True, "message": "Profile updated successfully", "user": updated}


@router.get('/logout')
async def logout(request: Request):
    request.session.pop('user', None)
    return {"success": True, "message": "Logged out"}
