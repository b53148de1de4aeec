"""
Errors raised by the registration and payment engine.

Every error carries a stable machine-readable ``kind``, an HTTP status code and a
human message. Extra keyword arguments become response context (for example the
conflicting event of a schedule clash).
"""


class EngineError(Exception):
    kind = "engine_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"success": False, "kind": self.kind, "message": self.message}
        body.update(self.context)
        return body


class ValidationError(EngineError):
    kind = "validation_error"


class OnboardingValidationError(ValidationError):
    kind = "onboarding_validation_failed"

    def __init__(self, errors, instructions):
        super().__init__(
            "Registration validation failed. Please fix the following issues:",
            errors=errors,
            instructions=instructions,
        )
        self.errors = errors
        self.instructions = instructions


class ConflictError(EngineError):
    kind = "conflict"


class RegistrationClosed(ConflictError):
    kind = "registration_closed"
    status_code = 403


class EventFull(ConflictError):
    kind = "event_full"


class DuplicateRegistration(ConflictError):
    kind = "duplicate_registration"


class ScheduleConflict(ConflictError):
    kind = "schedule_conflict"


class TeamSizeInvalid(ConflictError):
    kind = "team_size_invalid"


class MemberNotRegistered(ConflictError):
    kind = "member_not_registered"


class MemberPhoneMismatch(ConflictError):
    kind = "member_phone_mismatch"


class AlreadyPaid(ConflictError):
    kind = "already_paid"


class AlreadyCancelled(ConflictError):
    kind = "already_cancelled"


class PaymentAlreadyRejected(ConflictError):
    kind = "payment_already_rejected"


class AuthorizationError(EngineError):
    kind = "not_authorized"
    status_code = 403


class NotFoundError(EngineError):
    kind = "not_found"
    status_code = 404


class DependencyFailure(EngineError):
    """A collaborator (mail, file storage) failed. Logged, never returned for a succeeded operation."""
    kind = "dependency_failure"
    status_code = 502
