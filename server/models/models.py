from typing import List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
import datetime as dt
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    PARTICIPANT = "participant"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    """Payment progress as seen on a registration."""
    PENDING = "pending"
    VERIFICATION_PENDING = "verification_pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"  # reserved, nothing transitions into it yet


class PaymentRecordStatus(str, Enum):
    CREATED = "created"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class RegistrationStatus(str, Enum):
    REGISTERED = "registered"
    CANCELLED = "cancelled"
    ATTENDED = "attended"
    NO_SHOW = "no-show"


class PaymentMethod(str, Enum):
    OFFLINE = "offline"
    FREE = "free"


class NotificationType(str, Enum):
    REGISTRATION = "registration"
    PAYMENT = "payment"
    UPDATE = "update"
    CANCELLATION = "cancellation"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# Statuses that still hold a time slot for the conflict check
ACTIVE_PAYMENT_STATUSES = [
    PaymentStatus.COMPLETED.value,
    PaymentStatus.PENDING.value,
    PaymentStatus.VERIFICATION_PENDING.value,
]


class Payload(BaseModel):
    """Request bodies accept both snake_case and camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    def to_document(self) -> dict:
        return self.model_dump()


class User(Document):
    user_id: str = Field(default_factory=new_id)
    name: str
    email: str
    phone: str
    college: str
    role: Role = Role.PARTICIPANT
    user_code: str
    avatar: Optional[str] = None
    bio: Optional[str] = None
    password_hash: str
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


def public_user(user: dict) -> dict:
    """User document without credential material."""
    if user is None:
        return None
    return {key: value for key, value in user.items() if key not in ("password_hash", "_id")}


class TeamSize(BaseModel):
    min: int = Field(default=1, ge=1)
    max: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min > self.max:
            raise ValueError("team size min cannot exceed max")
        return self


class Event(Document):
    event_id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    date: dt.date
    time: str
    venue: str
    registration_fee: int = Field(default=0, ge=0)
    team_size: TeamSize = Field(default_factory=TeamSize)
    max_participants: int = Field(default=100, ge=0)
    current_participants: int = Field(default=0, ge=0)
    online_registration_open: bool = True
    payment_upi: Optional[str] = None
    payment_account_name: Optional[str] = None
    payment_instructions: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_capacity(self):
        if self.current_participants > self.max_participants:
            raise ValueError("current_participants cannot exceed max_participants")
        return self

    def to_document(self) -> dict:
        # calendar dates are stored as ISO strings; BSON has no date-only type
        document = self.model_dump()
        document["date"] = self.date.isoformat()
        return document


class TeamMember(BaseModel):
    """Copy of a member's contact details taken at registration time."""
    name: str
    email: str
    phone: str
    college: Optional[str] = None

    @classmethod
    def snapshot(cls, user: dict) -> "TeamMember":
        return cls(
            name=user["name"],
            email=user["email"],
            phone=user["phone"],
            college=user.get("college") or "Not specified",
        )


class Registration(Document):
    registration_id: str = Field(default_factory=new_id)
    user_id: str
    event_id: str
    team_name: Optional[str] = None
    is_team_leader: bool = True
    leader_registration_id: Optional[str] = None
    team_members: List[TeamMember] = Field(default_factory=list)
    amount: int = 0
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    registration_number: str
    status: RegistrationStatus = RegistrationStatus.REGISTERED
    cancelled_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Payment(Document):
    payment_id: str = Field(default_factory=new_id)
    user_id: str
    registration_id: str
    event_id: str
    amount: int
    currency: str = "INR"
    method: PaymentMethod = PaymentMethod.OFFLINE
    utr_number: Optional[str] = None
    screenshot_url: Optional[str] = None
    transaction_date: Optional[datetime] = None
    status: PaymentRecordStatus = PaymentRecordStatus.CREATED
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class NotificationRecord(Document):
    """One delivery attempt, kept as an audit trail of what was sent to whom."""
    notification_id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    email: str
    type: NotificationType
    template: str
    subject: str
    content: str
    status: NotificationStatus
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    related_event: Optional[str] = None
    related_registration: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# Request contracts shared between routers and services

class TeamMemberIn(Payload):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    college: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, value: str) -> str:
        return value.strip()


class NewUserProfile(Payload):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    college: str = Field(min_length=1)

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, value: str) -> str:
        return value.strip()


class RegistrationCreate(Payload):
    event_id: str
    team_name: Optional[str] = None
    team_members: Optional[List[TeamMemberIn]] = None


class AdminRegistrationCreate(Payload):
    event_id: str
    new_user: NewUserProfile
    team_name: Optional[str] = None
    team_members: List[TeamMemberIn] = Field(default_factory=list)


class OnboardingIssue(BaseModel):
    """One admin onboarding validation failure, tagged with the role that caused it."""
    role: str
    field: str
    value: Optional[str] = None
    message: str


class ProfileUpdate(Payload):
    """Profile fields a participant may change; email and user code are fixed."""
    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=1)
    college: Optional[str] = Field(default=None, min_length=1)
    bio: Optional[str] = Field(default=None, max_length=200)
    avatar: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else value
