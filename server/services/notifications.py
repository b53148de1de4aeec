import asyncio
import logging
from email.message import EmailMessage
from typing import Optional, Protocol

import aiosmtplib

from config.config import EMAIL_FROM, FESTIVAL_NAME, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USER
from database.DB import NOTIFICATIONS, USERS
from models.models import NotificationRecord, NotificationStatus, NotificationType, utcnow

logger = logging.getLogger(__name__)

# template -> (subject, body); rendered with str.format(**data)
TEMPLATES = {
    "registration_confirmed": (
        "Registration Confirmed - {event_name}",
        "Hi {name},\n\nYou have registered for {event_name}.\n\n"
        "Registration Number: {registration_number}\n"
        "Date: {event_date}\nTime: {event_time}\nVenue: {venue}\n"
        "Amount: {amount}\nPayment Status: {payment_status}\n",
    ),
    "payment_approved": (
        "Payment Approved - {event_name}",
        "Hi {name},\n\nYour payment for {event_name} has been verified.\n"
        "Registration Number: {registration_number}\nYour registration is confirmed.\n",
    ),
    "payment_rejected": (
        "Payment Verification Failed - {event_name}",
        "Hi {name},\n\nWe could not verify your payment for {event_name}.\nReason: {reason}\n\n"
        "Your registration has been removed. You can register again for this event, "
        "or for another event in the same time slot.\n",
    ),
    "account_created": (
        "Welcome to {festival} - Account Created",
        "Hi {name},\n\nAn account has been created for you by the admin team.\n\n"
        "Email: {email}\nTemporary Password: {temporary_password}\nYour Unique Code: {user_code}\n\n"
        "Please change your password after first login.\n",
    ),
    "admin_registration_created": (
        "Event Registration - {event_name}",
        "Hi {name},\n\nYou have been registered for {event_name} by the admin team.\n\n"
        "Registration Number: {registration_number}\nTeam Name: {team_name}\n"
        "Amount: {amount}\nPayment Status: {payment_status}\n",
    ),
    "team_registration_confirmed": (
        "Event Registration Confirmed - {event_name}",
        "Hi {name},\n\nYou have been registered for {event_name} as part of team {team_name}.\n"
        "Date: {event_date}\nTime: {event_time}\nVenue: {venue}\n",
    ),
}


TEMPLATE_TYPES = {
    "registration_confirmed": NotificationType.REGISTRATION,
    "payment_approved": NotificationType.PAYMENT,
    "payment_rejected": NotificationType.PAYMENT,
    "account_created": NotificationType.UPDATE,
    "admin_registration_created": NotificationType.REGISTRATION,
    "team_registration_confirmed": NotificationType.REGISTRATION,
}

# never written to the notification log
SECRET_FIELDS = ("temporary_password",)


def render(template: str, data: dict):
    subject, body = TEMPLATES[template]
    values = {"festival": FESTIVAL_NAME, **data}
    return subject.format(**values), body.format(**values)


class Notifier(Protocol):
    async def send(self, to_address: str, template: str, data: dict) -> None:
        ...


class EmailNotifier:
    """Plain-text mail over SMTP. Sends are skipped (and logged) when SMTP is not configured."""

    def __init__(self, host: str = SMTP_HOST, port: int = SMTP_PORT, username: str = SMTP_USER,
                 password: str = SMTP_PASSWORD, sender: str = EMAIL_FROM):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    async def send(self, to_address: str, template: str, data: dict) -> None:
        subject, body = render(template, data)
        if not self.is_configured:
            logger.warning("Email not configured, skipping '%s' to %s", subject, to_address)
            return

        message = EmailMessage()
        message["From"] = f"{FESTIVAL_NAME} <{self.sender}>"
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)

        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=True,
        )
        logger.info("Email '%s' sent to %s", subject, to_address)


class NotificationLog:
    """Stores every delivery attempt in the notifications collection."""

    def __init__(self, db):
        self.db = db

    async def record(self, to_address: str, template: str, data: dict, error: Optional[str] = None) -> dict:
        masked = {key: ("********" if key in SECRET_FIELDS else value) for key, value in data.items()}
        subject, content = render(template, masked)
        account = await self.db.find_one(USERS, {"email": to_address})
        entry = NotificationRecord(
            user_id=account["user_id"] if account else None,
            email=to_address,
            type=TEMPLATE_TYPES.get(template, NotificationType.UPDATE),
            template=template,
            subject=subject,
            content=content,
            status=NotificationStatus.FAILED if error else NotificationStatus.SENT,
            sent_at=None if error else utcnow(),
            error=error,
            related_event=data.get("event_id"),
            related_registration=data.get("registration_id"),
        )
        result = await self.db.add(NOTIFICATIONS, entry.to_document())
        return result["data"]


class NotificationDispatcher:
    """
    Runs each notification as its own task. Callers never await delivery, and a failed
    send is only logged. With a NotificationLog every attempt is also recorded.
    """

    def __init__(self, notifier: Notifier, log: Optional[NotificationLog] = None):
        self.notifier = notifier
        self.log = log
        self._tasks = set()

    def dispatch(self, to_address: Optional[str], template: str, data: dict):
        if not to_address:
            logger.warning("No address for '%s' notification, skipping", template)
            return None
        task = asyncio.create_task(self._deliver(to_address, template, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, to_address: str, template: str, data: dict) -> bool:
        try:
            await self.notifier.send(to_address, template, data)
        except Exception as error:
            logger.exception("Notification '%s' to %s failed", template, to_address)
            await self._record(to_address, template, data, str(error) or type(error).__name__)
            return False
        await self._record(to_address, template, data)
        return True

    async def _record(self, to_address: str, template: str, data: dict, error: Optional[str] = None):
        if self.log is None:
            return
        try:
            await self.log.record(to_address, template, data, error)
        except Exception:
            logger.exception("Could not log '%s' notification to %s", template, to_address)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every in-flight notification (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
