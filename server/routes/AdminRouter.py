from typing import Optional

from fastapi import APIRouter, Depends, Query

from database.DB import get_db
from models.models import Payload
from services import admin
from .dependencies import require_admin

router = APIRouter()


class RoleUpdate(Payload):
    role: str


@router.get('/dashboard')
async def dashboard(admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    """Festival-wide totals, the latest registrations and per-event counts (Admin only)"""
    return {"success": True, **await admin.dashboard(db)}


@router.get('/users')
async def list_users(search: Optional[str] = Query(None), role: Optional[str] = Query(None),
                     admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    users = await admin.list_users(db, search=search, role=role)
    return {"success": True, "count": len(users), "users": users}


@router.put('/users/{user_id}/role')
async def update_user_role(user_id: str, body: RoleUpdate, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    user = await admin.set_role(db, user_id=user_id, role=body.role, admin=admin_user)
    return {"success": True, "message": "User role updated successfully", "user": user}


@router.get('/notifications')
async def list_notifications(status: Optional[str] = Query(None), email: Optional[str] = Query(None),
                             admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    return {"success": True, "notifications": await admin.list_notifications(db, status=status, email=email)}
