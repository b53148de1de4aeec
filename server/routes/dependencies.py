"""
Shared dependency functions for FastAPI routers.
"""
from fastapi import Request, HTTPException, Depends

from database.DB import get_db
from services.accounts import load_user


async def get_current_user(request: Request):
    """
    Dependency to get the currently authenticated user from session.
    Raises HTTPException if user is not authenticated.
    """
    user = request.session.get('user')
    if not user:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user


async def require_admin(user: dict = Depends(get_current_user)):
    """
    Dependency to require admin role.
    Raises HTTPException if user is not an admin.
    """
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_current_account(user: dict = Depends(get_current_user), db = Depends(get_db)):
    """The full user document behind the session; team snapshots need name, phone and college."""
    account = await load_user(db, user["user_id"])
    if not account:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return account


def get_dispatcher(request: Request):
    return request.app.state.dispatcher


def get_file_store(request: Request):
    return request.app.state.file_store
