from typing import List, Optional

from database.DB import USERS
from models.models import TeamMember, TeamMemberIn
from .errors import MemberNotRegistered, MemberPhoneMismatch, TeamSizeInvalid, ValidationError


def check_team_size(event: dict, additional_members: int) -> None:
    """The leader always counts as the first member."""
    bounds = event.get("team_size") or {"min": 1, "max": 1}
    total = 1 + additional_members
    if not bounds["min"] <= total <= bounds["max"]:
        if bounds["max"] == 1:
            message = f"{event['name']} is an individual event; team members cannot be added"
        else:
            message = (
                f"{event['name']} requires between {bounds['min']} and {bounds['max']} members "
                f"including the team leader (got {total})"
            )
        raise TeamSizeInvalid(message, team_size=bounds, submitted=total)


async def validate_team(db, *, event: dict, leader: dict, members: Optional[List[TeamMemberIn]]) -> List[dict]:
    """
    Check team size and that every additional member has an account whose phone matches.

    Returns the resolved member accounts in submission order.
    """
    members = members or []
    check_team_size(event, len(members))

    seen = {leader["email"].lower()}
    accounts = []
    for member in members:
        email = member.email.lower()
        if email in seen:
            raise ValidationError(f"{member.email} appears more than once in the team", email=member.email)
        seen.add(email)

        account = await db.find_one(USERS, {"email": email})
        if not account:
            raise MemberNotRegistered(
                f"Team member {member.name} ({member.email}) must have an account. "
                "Please ask them to sign up first.",
                member={"name": member.name, "email": member.email},
            )
        if account["phone"] != member.phone:
            raise MemberPhoneMismatch(
                f"Phone number for {member.name} doesn't match their registered account.",
                member={"name": member.name, "email": member.email},
            )
        accounts.append(account)
    return accounts


def build_team(leader: dict, members: List[dict]) -> List[dict]:
    """Snapshot list with the leader first."""
    return [TeamMember.snapshot(user).model_dump() for user in [leader, *members]]
