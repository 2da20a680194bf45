"""Signup error taxonomy.

Every rejection is an HTTPException whose detail is a terse cause code,
never prose and never raw internal error text.
"""

from fastapi import HTTPException

# PolicyViolation causes
INVALID_CAPTCHA = "INVALID_CAPTCHA"
INVALID_EMAIL = "INVALID_EMAIL"
EMAIL_UNAVAILABLE = "EMAIL_UNAVAILABLE"
INVITATION_CODE_REQUIRED = "INVITATION_CODE_REQUIRED"
INVALID_TICKET = "INVALID_TICKET"
DUPLICATED_USERNAME = "DUPLICATED_USERNAME"
USED_USERNAME = "USED_USERNAME"
DENIED_USERNAME = "DENIED_USERNAME"

# AccountCreationError causes
INVALID_INPUT = "INVALID_INPUT"
POLICY = "POLICY"

# Unexpected failure while registering
SIGNUP_FAILED = "SIGNUP_FAILED"
ACCOUNT_CREATION_CAUSES = frozenset(
    {DUPLICATED_USERNAME, USED_USERNAME, INVALID_INPUT, POLICY}
)


class SignupError(HTTPException):
    """Bad request carrying a cause code.

    `extra` holds additional terse fields merged into the JSON error body.
    """

    status_code_default = 400

    def __init__(self, cause: str, status_code: int | None = None, **extra: str | None) -> None:
        super().__init__(status_code=status_code or self.status_code_default, detail=cause)
        self.cause = cause
        self.extra = extra


class PolicyViolation(SignupError):
    pass


class EmailUnavailable(PolicyViolation):
    def __init__(self, reason: str | None) -> None:
        super().__init__(EMAIL_UNAVAILABLE, reason=reason)
        self.reason = reason


class InvalidCaptcha(PolicyViolation):
    def __init__(self, error: str) -> None:
        super().__init__(INVALID_CAPTCHA, error=error)


class NotFound(SignupError):
    def __init__(self) -> None:
        super().__init__("NOT_FOUND")


class Expired(SignupError):
    def __init__(self) -> None:
        super().__init__("EXPIRED")


class AccountCreationError(SignupError):
    """Account collaborator rejected the request.

    `cause` is always one of ACCOUNT_CREATION_CAUSES; the raw message is
    kept on `message` for server-side logging only.
    """

    def __init__(self, cause: str, message: str = "") -> None:
        if cause not in ACCOUNT_CREATION_CAUSES:
            cause = POLICY
        super().__init__(cause)
        self.message = message or cause


class TransportFailure(SignupError):
    """An outbound provider or mail call failed or timed out."""

    status_code_default = 502

    def __init__(self, service: str) -> None:
        super().__init__("TRANSPORT_FAILURE")
        self.service = service
