import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from config.config import ADMIN_EMAIL, USER_CODE_MAX_ATTEMPTS, USER_CODE_PREFIX, USER_CODE_SUFFIX_LENGTH
from database.DB import USERS
from helpers.CredentialStrategy import CredentialStrategy
from helpers.UserCodeGenerator import UserCodeGenerator
from models.models import Role, User, public_user
from .errors import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

credentials = CredentialStrategy()

# Retries when a concurrently generated code wins the unique index first
CODE_INSERT_ATTEMPTS = 3


def code_generator_for(db) -> UserCodeGenerator:
    async def exists(code: str) -> bool:
        return await db.find_one(USERS, {"user_code": code}) is not None

    return UserCodeGenerator(
        exists,
        prefix=USER_CODE_PREFIX,
        suffix_length=USER_CODE_SUFFIX_LENGTH,
        max_attempts=USER_CODE_MAX_ATTEMPTS,
    )


async def create_account(db, *, name: str, email: str, phone: str, college: Optional[str],
                         password: str, created_by: Optional[str] = None,
                         generator: Optional[UserCodeGenerator] = None) -> dict:
    """
    Insert a participant with a freshly generated unique code.

    A DuplicateKeyError caused by the code is retried with a new code; one caused by the
    email or phone propagates to the caller.
    """
    generator = generator or code_generator_for(db)
    password_hash = credentials.hash(password)

    for attempt in range(1, CODE_INSERT_ATTEMPTS + 1):
        user = User(
            name=name.strip(),
            email=email,
            phone=phone.strip(),
            college=(college or "Not specified").strip(),
            user_code=await generator.generate(),
            password_hash=password_hash,
            created_by=created_by,
        )
        try:
            result = await db.add(USERS, user.to_document())
            return result["data"]
        except DuplicateKeyError:
            if await db.find_one(USERS, {"user_code": user.user_code}) is None:
                raise
            logger.warning("User code %s taken concurrently (attempt %d), retrying", user.user_code, attempt)

    raise ValidationError("Could not assign a unique user code, please try again")


async def signup(db, *, name: str, email: str, phone: str, college: str, password: str) -> dict:
    email = email.lower()
    if await db.find_one(USERS, {"email": email}):
        raise ValidationError("Email already registered", field="email")
    if await db.find_one(USERS, {"phone": phone.strip()}):
        raise ValidationError("Phone number already registered", field="phone")

    try:
        user = await create_account(db, name=name, email=email, phone=phone, college=college, password=password)
    except DuplicateKeyError:
        raise ValidationError("Email or phone number already registered")
    return public_user(user)


async def authenticate(db, *, email: str, password: str) -> dict:
    user = await db.find_one(USERS, {"email": email.lower()})
    if not user or not credentials.verify(password, user.get("password_hash")):
        raise AuthorizationError("Invalid email or password")

    if ADMIN_EMAIL and user["email"] == ADMIN_EMAIL.lower() and user.get("role") != Role.ADMIN.value:
        await db.update(USERS, {"user_id": user["user_id"]}, {"$set": {"role": Role.ADMIN.value}})
        user["role"] = Role.ADMIN.value
    return public_user(user)


def session_user(user: dict) -> dict:
    return {
        "user_id": user["user_id"],
        "name": user["name"],
        "email": user["email"],
        "role": user.get("role", Role.PARTICIPANT.value),
    }


async def load_user(db, user_id: str) -> Optional[dict]:
    return await db.find_one(USERS, {"user_id": user_id})


async def update_profile(db, *, user_id: str, changes: dict) -> dict:
    """
    Apply profile edits to the account. Registrations keep the team snapshots taken when
    they were created, so nothing else is rewritten.
    """
    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        raise ValidationError("No fields to update")
    if "phone" in changes:
        owner = await db.find_one(USERS, {"phone": changes["phone"]})
        if owner and owner["user_id"] != user_id:
            raise ValidationError("Phone number already registered", field="phone")

    try:
        updated = await db.find_one_and_update(USERS, {"user_id": user_id}, {"$set": changes})
    except DuplicateKeyError:
        raise ValidationError("Phone number already registered", field="phone")
    if updated is None:
        raise NotFoundError("User not found", user_id=user_id)
    logger.info("Profile of %s updated: %s", updated["email"], ", ".join(sorted(changes)))
    return public_user(updated)
