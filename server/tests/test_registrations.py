import asyncio
import datetime as dt

import pytest

from database.DB import EVENTS, REGISTRATIONS
from models.models import TeamMemberIn
from services import capacity, registrations
from services.conflicts import same_slot
from services.errors import (
    AlreadyCancelled,
    AuthorizationError,
    DuplicateRegistration,
    EventFull,
    MemberNotRegistered,
    MemberPhoneMismatch,
    NotFoundError,
    RegistrationClosed,
    ScheduleConflict,
    TeamSizeInvalid,
    ValidationError,
)


async def participants(db, event):
    return (await db.find_one(EVENTS, {"event_id": event["event_id"]}))["current_participants"]


# Capacity

async def test_increment_stops_at_max(db, make_event):
    event = await make_event(max_participants=2)

    await capacity.increment(db, event)
    await capacity.increment(db, event)
    with pytest.raises(EventFull):
        await capacity.increment(db, event)

    assert await participants(db, event) == 2


async def test_decrement_never_goes_below_zero(db, make_event, caplog):
    event = await make_event()

    assert await capacity.decrement(db, event["event_id"]) is None
    assert await participants(db, event) == 0
    assert "already at zero" in caplog.text


async def test_concurrent_increments_never_oversell(db, make_event):
    event = await make_event(max_participants=3)

    results = await asyncio.gather(*[capacity.increment(db, event) for _ in range(5)], return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, EventFull)) == 2
    assert await participants(db, event) == 3


async def test_last_slot_goes_to_exactly_one_participant(db, make_user, make_event):
    event = await make_event(max_participants=1)
    first, second = await make_user(), await make_user()

    results = await asyncio.gather(
        registrations.register(db, user=first, event_id=event["event_id"]),
        registrations.register(db, user=second, event_id=event["event_id"]),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, dict)) == 1
    assert sum(1 for r in results if isinstance(r, EventFull)) == 1
    assert await participants(db, event) == 1
    assert await db.count(REGISTRATIONS, {"event_id": event["event_id"]}) == 1


async def test_failed_insert_releases_reserved_slot(db, make_user, make_event, monkeypatch):
    event = await make_event()
    other = await make_event(name="Quiz", time="02:00 PM")
    user, second = await make_user(), await make_user()
    existing = await registrations.register(db, user=user, event_id=other["event_id"])

    async def reused_number(db):
        return existing["registration_number"]

    monkeypatch.setattr(registrations, "next_registration_number", reused_number)
    with pytest.raises(DuplicateRegistration):
        await registrations.register(db, user=second, event_id=event["event_id"])

    assert await participants(db, event) == 0


async def test_stale_event_read_cannot_take_the_last_slot(db, make_user, make_event, monkeypatch):
    event = await make_event(max_participants=1)
    first, second = await make_user(), await make_user()
    await registrations.register(db, user=first, event_id=event["event_id"])

    async def stale_event(db, event_id):
        return dict(event)

    monkeypatch.setattr(registrations, "get_event", stale_event)
    with pytest.raises(EventFull):
        await registrations.register(db, user=second, event_id=event["event_id"])

    assert await participants(db, event) == 1
    assert await db.count(REGISTRATIONS, {"event_id": event["event_id"]}) == 1


async def test_increment_honours_maximum_lowered_after_read(db, make_event):
    event = await make_event(max_participants=5, current_participants=2)
    await db.update(EVENTS, {"event_id": event["event_id"]}, {"$set": {"max_participants": 2}})

    with pytest.raises(EventFull):
        await capacity.increment(db, event)
    assert await participants(db, event) == 2


async def test_duplicate_inserted_after_precheck_releases_slot(db, make_user, make_event, monkeypatch):
    event = await make_event()
    user = await make_user()
    find_conflict = registrations.find_conflict

    async def duplicate_lands_first(db, *, user_id, event):
        await db.add(REGISTRATIONS, {
            "registration_id": "twin",
            "registration_number": "FEST2025-9999",
            "user_id": user_id,
            "event_id": event["event_id"],
        })
        return await find_conflict(db, user_id=user_id, event=event)

    monkeypatch.setattr(registrations, "find_conflict", duplicate_lands_first)
    with pytest.raises(DuplicateRegistration):
        await registrations.register(db, user=user, event_id=event["event_id"])

    assert await participants(db, event) == 0
    assert await db.count(REGISTRATIONS, {"user_id": user["user_id"]}) == 1


# Registration numbers

async def test_registration_numbers_are_sequential(db):
    assert await registrations.next_registration_number(db) == "FEST2025-0001"
    assert await registrations.next_registration_number(db) == "FEST2025-0002"
    assert await registrations.next_registration_number(db, prefix="EXPO") == "EXPO-0003"


async def test_concurrent_registration_numbers_are_unique(db):
    numbers = await asyncio.gather(*[registrations.next_registration_number(db) for _ in range(25)])
    assert len(set(numbers)) == 25


# Lifecycle

async def test_free_event_registration_is_completed(db, make_user, make_event, dispatcher, notifier):
    event = await make_event()
    user = await make_user()

    registration = await registrations.register(db, user=user, event_id=event["event_id"], dispatcher=dispatcher)
    await dispatcher.drain()

    assert registration["payment_status"] == "completed"
    assert registration["payment_method"] == "free"
    assert registration["status"] == "registered"
    assert registration["registration_number"].startswith("FEST2025-")
    assert registration["team_members"][0]["email"] == user["email"]
    assert await participants(db, event) == 1
    assert notifier.templates(user["email"]) == ["registration_confirmed"]


async def test_paid_event_registration_is_pending(db, make_user, make_event):
    event = await make_event(registration_fee=200)
    registration = await registrations.register(db, user=await make_user(), event_id=event["event_id"])

    assert registration["payment_status"] == "pending"
    assert registration["payment_method"] is None
    assert registration["amount"] == 200


async def test_unknown_event(db, make_user):
    with pytest.raises(NotFoundError):
        await registrations.register(db, user=await make_user(), event_id="missing")


async def test_closed_registration_is_rejected(db, make_user, make_event):
    event = await make_event(online_registration_open=False)

    with pytest.raises(RegistrationClosed) as info:
        await registrations.register(db, user=await make_user(), event_id=event["event_id"])
    assert info.value.status_code == 403
    assert await participants(db, event) == 0


async def test_duplicate_registration(db, make_user, make_event):
    event = await make_event()
    user = await make_user()
    await registrations.register(db, user=user, event_id=event["event_id"])

    with pytest.raises(DuplicateRegistration):
        await registrations.register(db, user=user, event_id=event["event_id"])
    assert await participants(db, event) == 1


async def test_cancel_releases_slot_once(db, make_user, make_event):
    event = await make_event()
    user = await make_user()
    registration = await registrations.register(db, user=user, event_id=event["event_id"])

    cancelled = await registrations.cancel(db, registration_id=registration["registration_id"], user=user)
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_at"]
    assert await participants(db, event) == 0

    with pytest.raises(AlreadyCancelled):
        await registrations.cancel(db, registration_id=registration["registration_id"], user=user)
    assert await participants(db, event) == 0


async def test_cannot_cancel_someone_elses_registration(db, make_user, make_event):
    event = await make_event()
    owner, stranger = await make_user(), await make_user()
    registration = await registrations.register(db, user=owner, event_id=event["event_id"])

    with pytest.raises(AuthorizationError):
        await registrations.cancel(db, registration_id=registration["registration_id"], user=stranger)


# Conflicts

def test_same_slot_compares_calendar_date_and_exact_time():
    monday = {"date": "2025-03-10", "time": "10:00 AM"}
    assert same_slot(monday, {"date": dt.date(2025, 3, 10), "time": "10:00 AM"})
    assert same_slot(monday, {"date": "2025-03-10T00:00:00", "time": "10:00 AM"})
    assert not same_slot(monday, {"date": "2025-03-10", "time": "10:30 AM"})
    assert not same_slot(monday, {"date": "2025-03-11", "time": "10:00 AM"})


async def test_schedule_conflict_until_cancelled(db, make_user, make_event):
    dance = await make_event(name="Dance", time="10:00 AM")
    drama = await make_event(name="Drama", time="10:00 AM")
    quiz = await make_event(name="Quiz", time="02:00 PM")
    user = await make_user()

    first = await registrations.register(db, user=user, event_id=dance["event_id"])

    with pytest.raises(ScheduleConflict) as info:
        await registrations.register(db, user=user, event_id=drama["event_id"])
    assert info.value.context["conflicting_event"]["name"] == "Dance"
    assert await participants(db, drama) == 0

    assert (await registrations.check_conflict(db, user=user, event_id=drama["event_id"]))["hasConflict"]
    await registrations.register(db, user=user, event_id=quiz["event_id"])

    await registrations.cancel(db, registration_id=first["registration_id"], user=user)
    result = await registrations.check_conflict(db, user=user, event_id=drama["event_id"])
    assert result == {"hasConflict": False, "conflictingEvent": None}
    await registrations.register(db, user=user, event_id=drama["event_id"])


async def test_failed_payment_does_not_hold_the_slot(db, make_user, make_event):
    dance = await make_event(name="Dance", registration_fee=100)
    drama = await make_event(name="Drama")
    user = await make_user()
    first = await registrations.register(db, user=user, event_id=dance["event_id"])
    await db.update(REGISTRATIONS, {"registration_id": first["registration_id"]}, {"$set": {"payment_status": "failed"}})

    await registrations.register(db, user=user, event_id=drama["event_id"])


async def test_check_conflict_ignores_the_event_itself(db, make_user, make_event):
    event = await make_event()
    user = await make_user()
    await registrations.register(db, user=user, event_id=event["event_id"])

    assert not (await registrations.check_conflict(db, user=user, event_id=event["event_id"]))["hasConflict"]


# Teams

def member(user, **overrides):
    values = {"name": user["name"], "email": user["email"], "phone": user["phone"]}
    values.update(overrides)
    return TeamMemberIn(**values)


async def test_team_registration_snapshots_accounts(db, make_user, make_event):
    event = await make_event(team_size={"min": 2, "max": 4})
    leader, mate = await make_user(name="Asha"), await make_user(name="Ravi")

    registration = await registrations.register(
        db,
        user=leader,
        event_id=event["event_id"],
        team_name="Byte Me",
        team_members=[member(mate, name="ravi k", email=mate["email"].upper())],
    )

    assert [m["name"] for m in registration["team_members"]] == ["Asha", "Ravi"]
    assert registration["team_members"][1]["phone"] == mate["phone"]
    assert registration["team_name"] == "Byte Me"
    assert await participants(db, event) == 1


async def test_team_below_minimum(db, make_user, make_event):
    event = await make_event(team_size={"min": 2, "max": 4})

    with pytest.raises(TeamSizeInvalid):
        await registrations.register(db, user=await make_user(), event_id=event["event_id"])
    assert await participants(db, event) == 0


async def test_members_on_individual_event(db, make_user, make_event):
    event = await make_event()
    leader, mate = await make_user(), await make_user()

    with pytest.raises(TeamSizeInvalid):
        await registrations.register(db, user=leader, event_id=event["event_id"], team_members=[member(mate)])


async def test_member_without_account(db, make_user, make_event):
    event = await make_event(team_size={"min": 1, "max": 3})
    stranger = TeamMemberIn(name="Nobody", email="nobody@example.com", phone="9999999999")

    with pytest.raises(MemberNotRegistered):
        await registrations.register(db, user=await make_user(), event_id=event["event_id"], team_members=[stranger])
    assert await participants(db, event) == 0


async def test_member_phone_mismatch(db, make_user, make_event):
    event = await make_event(team_size={"min": 1, "max": 3})
    leader, mate = await make_user(), await make_user()

    with pytest.raises(MemberPhoneMismatch):
        await registrations.register(
            db, user=leader, event_id=event["event_id"], team_members=[member(mate, phone="1234567890")],
        )


async def test_leader_listed_as_member(db, make_user, make_event):
    event = await make_event(team_size={"min": 1, "max": 3})
    leader = await make_user()

    with pytest.raises(ValidationError):
        await registrations.register(db, user=leader, event_id=event["event_id"], team_members=[member(leader)])


# Read side

async def test_export_summary(db, make_user, make_event):
    event = await make_event(registration_fee=50, max_participants=10)
    users = [await make_user() for _ in range(3)]
    created = [await registrations.register(db, user=u, event_id=event["event_id"]) for u in users]
    await db.update(REGISTRATIONS, {"registration_id": created[0]["registration_id"]}, {"$set": {"payment_status": "completed"}})
    await db.update(REGISTRATIONS, {"registration_id": created[1]["registration_id"]}, {"$set": {"payment_status": "verification_pending"}})

    export = await registrations.export_event(db, event["event_id"])

    assert export["summary"] == {"total": 3, "approved": 1, "pending": 2, "rejected": 0}
    assert [row["sno"] for row in export["rows"]] == [1, 2, 3]
    assert export["rows"][1]["payment_status"] == "PENDING VERIFICATION"
    assert export["rows"][2]["team_name"] == "Individual"
    assert export["rows"][0]["user_code"] == users[0]["user_code"]
