import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from database.DB import EVENTS, get_db
from models.models import Event, Payload, TeamSize, utcnow
from services.errors import NotFoundError, ValidationError
from services.registrations import get_event
from .dependencies import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


class EventCreate(Payload):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    date: dt.date
    time: str = Field(min_length=1)
    venue: str = Field(min_length=1)
    registration_fee: int = Field(default=0, ge=0)
    team_size: TeamSize = Field(default_factory=TeamSize)
    max_participants: int = Field(default=100, ge=1)
    online_registration_open: bool = True
    payment_upi: Optional[str] = None
    payment_account_name: Optional[str] = None
    payment_instructions: Optional[str] = None


class EventUpdate(Payload):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    venue: Optional[str] = None
    registration_fee: Optional[int] = Field(default=None, ge=0)
    team_size: Optional[TeamSize] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    online_registration_open: Optional[bool] = None
    payment_upi: Optional[str] = None
    payment_account_name: Optional[str] = None
    payment_instructions: Optional[str] = None


@router.post('', status_code=201)
async def create_event(event_data: EventCreate, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    """Create a new event (Admin only)"""
    event = Event(**event_data.model_dump(), created_by=admin_user["user_id"])
    result = await db.add(EVENTS, event.to_document())
    logger.info("Event %s created by %s", event.name, admin_user["email"])
    return {"success": True, "event": result["data"]}


@router.get('')
async def get_events(db = Depends(get_db)):
    result = await db.find_many(EVENTS, sort=[("date", 1), ("time", 1)])
    return {"success": True, "events": result["data"]}


@router.get('/{event_id}')
async def get_event_by_id(event_id: str, db = Depends(get_db)):
    return {"success": True, "event": await get_event(db, event_id)}


@router.put('/{event_id}')
async def update_event(event_id: str, event_data: EventUpdate, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    """Update an existing event (Admin only). Occupancy is never writable here."""
    update_data = event_data.model_dump(exclude_none=True)
    if not update_data:
        raise ValidationError("No fields to update")
    if "date" in update_data:
        update_data["date"] = update_data["date"].isoformat()

    query = {"event_id": event_id}
    if "max_participants" in update_data:
        query["current_participants"] = {"$lte": update_data["max_participants"]}

    update_data["updated_at"] = utcnow()
    update_data["updated_by"] = admin_user["user_id"]
    updated = await db.find_one_and_update(EVENTS, query, {"$set": update_data})
    if updated is None:
        event = await get_event(db, event_id)
        raise ValidationError(
            f"Maximum participants cannot be lower than the current {event['current_participants']} registrations",
            current_participants=event["current_participants"],
        )
    return {"success": True, "event": updated}


@router.delete('/{event_id}')
async def delete_event(event_id: str, admin_user: dict = Depends(require_admin), db = Depends(get_db)):
    """Delete an event (Admin only)"""
    result = await db.delete(EVENTS, {"event_id": event_id})
    if result["deleted_count"] == 0:
        raise NotFoundError("Event not found", event_id=event_id)
    logger.info("Event %s deleted by %s", event_id, admin_user["email"])
    return {"success": True, "message": "Event deleted successfully"}
