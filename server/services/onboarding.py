"""
Admin-assisted onboarding: create a brand-new leader account and, with it, a team
registration whose other members may be new or existing accounts.

Runs in two phases. The validate phase performs no writes and reports every problem
at once; the commit phase only starts when validation found nothing.
"""
import logging
from typing import List

from pymongo.errors import DuplicateKeyError

from database.DB import REGISTRATIONS, USERS
from models.models import (
    AdminRegistrationCreate,
    OnboardingIssue,
    PaymentMethod,
    PaymentStatus,
    Registration,
    public_user,
)
from . import capacity
from .accounts import code_generator_for, create_account, credentials
from .errors import DuplicateRegistration, EventFull, OnboardingValidationError
from .registrations import get_event, insert_registration, next_registration_number, notification_data
from .teams import build_team

logger = logging.getLogger(__name__)

LEADER = "Main User"

INSTRUCTIONS = [
    "The main user must be a NEW user with unique email and phone",
    "Team members can be existing users (they can participate in multiple events)",
    "Check for duplicate entries within your team",
    "Verify all information before submitting",
]


def member_role(index: int) -> str:
    # the leader is member 1
    return f"Team Member {index + 2}"


def submission_issues(request: AdminRegistrationCreate) -> List[OnboardingIssue]:
    """Emails and phones that repeat within the submission itself. Pure; touches no store."""
    entries = [(LEADER, request.new_user)] + [
        (member_role(i), member) for i, member in enumerate(request.team_members)
    ]
    issues = []
    for field, normalize in (("email", str.lower), ("phone", str.strip)):
        seen = set()
        for role, person in entries:
            value = normalize(str(getattr(person, field)))
            if value in seen:
                issues.append(OnboardingIssue(
                    role=role,
                    field=field,
                    value=value,
                    message=f"Duplicate {field} found within team: {value} ({role})",
                ))
            seen.add(value)
    return issues


async def validate(db, request: AdminRegistrationCreate, event: dict) -> List[OnboardingIssue]:
    """Collect every problem with the submission without writing anything."""
    issues = submission_issues(request)
    leader = request.new_user

    if await db.find_one(USERS, {"email": leader.email.lower()}):
        issues.append(OnboardingIssue(
            role=LEADER,
            field="email",
            value=leader.email,
            message=f"Main user email already registered: {leader.email}. Please use a different email for the main user.",
        ))
    if await db.find_one(USERS, {"phone": leader.phone}):
        issues.append(OnboardingIssue(
            role=LEADER,
            field="phone",
            value=leader.phone,
            message=f"Main user phone number already registered: {leader.phone}. Please use a different phone number for the main user.",
        ))

    for index, member in enumerate(request.team_members):
        if await db.find_one(USERS, {"email": member.email.lower()}):
            continue
        owner = await db.find_one(USERS, {"phone": member.phone})
        if owner:
            issues.append(OnboardingIssue(
                role=member_role(index),
                field="phone",
                value=member.phone,
                message=f"Phone number {member.phone} already belongs to another account ({member_role(index)})",
            ))

    bounds = event.get("team_size") or {"min": 1, "max": 1}
    total = 1 + len(request.team_members)
    if not bounds["min"] <= total <= bounds["max"]:
        issues.append(OnboardingIssue(
            role="Team",
            field="team_members",
            value=str(total),
            message=f"{event['name']} allows between {bounds['min']} and {bounds['max']} members (got {total})",
        ))

    if event["current_participants"] >= event["max_participants"]:
        issues.append(OnboardingIssue(role="Event", field="event_id", value=event["event_id"], message="Event is full"))
    return issues


async def _new_account(db, person, admin: dict, generator):
    temporary_password = credentials.temporary_password()
    user = await create_account(
        db,
        name=person.name,
        email=person.email.lower(),
        phone=person.phone,
        college=person.college,
        password=temporary_password,
        created_by=admin["user_id"],
        generator=generator,
    )
    logger.info("Account %s (%s) created by admin %s", user["email"], user["user_code"], admin["email"])
    return user, temporary_password


async def _account_for_role(db, person, role: str, admin: dict, generator, created: list) -> dict:
    """Create the account for ``role``; an email or phone taken since validation becomes a role-tagged issue."""
    try:
        user, password = await _new_account(db, person, admin, generator)
    except DuplicateKeyError:
        if await db.find_one(USERS, {"email": person.email.lower()}):
            field, value = "email", person.email
        else:
            field, value = "phone", person.phone
        raise OnboardingValidationError(
            [OnboardingIssue(
                role=role,
                field=field,
                value=value,
                message=f"{role} {field} was registered while this request was processed: {value}",
            ).model_dump()],
            INSTRUCTIONS,
        )
    created.append((user, password))
    return user


async def _roll_back(db, event: dict, created: list, inserted: list):
    for registration in inserted:
        await db.delete(REGISTRATIONS, {"registration_id": registration["registration_id"]})
    for account, _ in created:
        await db.delete(USERS, {"user_id": account["user_id"]})
    await capacity.decrement(db, event["event_id"])
    logger.warning(
        "Admin registration for %s rolled back: removed %d account(s) and %d registration(s)",
        event["name"], len(created), len(inserted),
    )


async def admin_register(db, *, request: AdminRegistrationCreate, admin: dict, dispatcher=None) -> dict:
    event = await get_event(db, request.event_id)

    issues = await validate(db, request, event)
    if issues:
        raise OnboardingValidationError([issue.model_dump() for issue in issues], INSTRUCTIONS)

    # Commit phase. The slot is taken first so a full event cannot leave orphan accounts.
    try:
        await capacity.increment(db, event)
    except EventFull:
        raise OnboardingValidationError(
            [OnboardingIssue(role="Event", field="event_id", value=event["event_id"], message="Event is full").model_dump()],
            INSTRUCTIONS,
        )

    generator = code_generator_for(db)
    # every account and registration written below is undone if any later write fails
    created = []
    inserted = []
    members = []
    reused = []
    distinct = {}
    fee = event.get("registration_fee", 0)
    try:
        leader = await _account_for_role(db, request.new_user, LEADER, admin, generator, created)
        for index, member in enumerate(request.team_members):
            account = await db.find_one(USERS, {"email": member.email.lower()})
            if account is None:
                account = await _account_for_role(db, member, member_role(index), admin, generator, created)
            else:
                reused.append(account)
            members.append(account)

        team = build_team(leader, members)
        registration = await insert_registration(db, Registration(
            user_id=leader["user_id"],
            event_id=event["event_id"],
            team_name=request.team_name,
            team_members=team,
            amount=fee,
            payment_status=PaymentStatus.COMPLETED if fee == 0 else PaymentStatus.PENDING,
            payment_method=PaymentMethod.FREE if fee == 0 else None,
            registration_number=await next_registration_number(db),
            created_by=admin["user_id"],
        ))
        inserted.append(registration)

        for account in members:
            if account["user_id"] != leader["user_id"]:
                distinct.setdefault(account["user_id"], account)
        for account in distinct.values():
            if await db.find_one(REGISTRATIONS, {"user_id": account["user_id"], "event_id": event["event_id"]}):
                logger.info("Team member %s already registered for %s", account["email"], event["name"])
                continue
            try:
                inserted.append(await insert_registration(db, Registration(
                    user_id=account["user_id"],
                    event_id=event["event_id"],
                    team_name=request.team_name,
                    is_team_leader=False,
                    leader_registration_id=registration["registration_id"],
                    team_members=team,
                    amount=0,
                    payment_status=PaymentStatus.COMPLETED,
                    payment_method=PaymentMethod.FREE,
                    registration_number=await next_registration_number(db),
                    created_by=admin["user_id"],
                )))
            except DuplicateRegistration:
                logger.info("Team member %s registered concurrently for %s", account["email"], event["name"])
    except Exception:
        await _roll_back(db, event, created, inserted)
        raise

    if dispatcher is not None:
        for account, password in created:
            dispatcher.dispatch(account["email"], "account_created", {
                "name": account["name"],
                "email": account["email"],
                "temporary_password": password,
                "user_code": account["user_code"],
            })
        dispatcher.dispatch(leader["email"], "admin_registration_created", notification_data(leader, event, registration))
        for account in distinct.values():
            data = notification_data(account, event, registration)
            data["team_name"] = request.team_name or leader["name"]
            dispatcher.dispatch(account["email"], "team_registration_confirmed", data)

    return {
        "registration": registration,
        "member_registrations": inserted[1:],
        "leader": public_user(leader),
        "created_accounts": [account["email"] for account, _ in created],
        "reused_accounts": [account["email"] for account in reused],
    }
