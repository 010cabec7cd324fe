"""Session DTOs shared across application layers."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Literal, Optional

from use_cases.domain_models import AccountHandle
from use_cases.results import ErrorKind

# Message keys resolved to user-visible text by the UI layer.
ERROR_LOGIN = "error_login"
ERROR_EMAIL_NOT_VERIFIED = "error_email_not_verified"
ERROR_NO_INTERNET = "error_no_internet"
ERROR_SAVE_PLAYER = "error_save_player"
ERROR_SIGN_OUT = "error_sign_out"
ERROR_ACCOUNT_EXISTS = "error_account_exists"
ERROR_WEAK_PASSWORD = "error_weak_password"
ERROR_CANCELLED = "error_cancelled"
ERROR_NO_CURRENT_USER = "error_no_current_user"
ERROR_FEDERATED_LOGIN = "error_federated_login"
ERROR_MANUAL_TIMEOUT = "error_manual_timeout"
ERROR_UNKNOWN = "error_unknown"
VERIFICATION_SENT = "create_account_verification_sent"

_MESSAGE_BY_KIND: Dict[ErrorKind, str] = {
    ErrorKind.NO_INTERNET: ERROR_NO_INTERNET,
    ErrorKind.CANCELLED: ERROR_CANCELLED,
    ErrorKind.INVALID_CREDENTIAL: ERROR_LOGIN,
    ErrorKind.ALREADY_EXISTS: ERROR_ACCOUNT_EXISTS,
    ErrorKind.WEAK_CREDENTIAL: ERROR_WEAK_PASSWORD,
    ErrorKind.NOT_VERIFIED: ERROR_EMAIL_NOT_VERIFIED,
    ErrorKind.STORE_FAILURE: ERROR_SAVE_PLAYER,
    ErrorKind.PRECONDITION: ERROR_NO_CURRENT_USER,
}


def message_for(kind: ErrorKind) -> str:
    return _MESSAGE_BY_KIND.get(kind, ERROR_UNKNOWN)


class SessionStatus(str, Enum):
    LOGGED_OUT = "LOGGED_OUT"
    IN_PROGRESS = "IN_PROGRESS"
    LOGOUT_IN_PROGRESS = "LOGOUT_IN_PROGRESS"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    LOGGED_IN = "LOGGED_IN"
    NO_INTERNET = "NO_INTERNET"
    FAILED = "FAILED"
    ERROR = "ERROR"


TRANSIENT_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.IN_PROGRESS, SessionStatus.LOGOUT_IN_PROGRESS}
)
ERROR_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.NO_INTERNET, SessionStatus.FAILED, SessionStatus.ERROR}
)


class InvalidSessionStateError(ValueError):
    pass


@dataclass(frozen=True)
class Session:
    status: SessionStatus = SessionStatus.LOGGED_OUT
    user_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    email_verified: bool = False
    message: Optional[str] = None
    error: Optional[ErrorKind] = None

    def __post_init__(self):
        if self.status == SessionStatus.LOGGED_IN and not self.user_id:
            raise InvalidSessionStateError("LOGGED_IN session requires a user_id")
        if self.status in TRANSIENT_STATUSES and self.message is not None:
            raise InvalidSessionStateError(f"{self.status.value} session cannot carry a message")
        if self.status in ERROR_STATUSES and not self.message:
            raise InvalidSessionStateError(f"{self.status.value} session requires a message key")

    @classmethod
    def logged_out(cls) -> "Session":
        return cls(status=SessionStatus.LOGGED_OUT)

    @classmethod
    def in_progress(cls) -> "Session":
        return cls(status=SessionStatus.IN_PROGRESS)

    @classmethod
    def logout_in_progress(cls) -> "Session":
        return cls(status=SessionStatus.LOGOUT_IN_PROGRESS)

    @classmethod
    def logged_in(cls, account: AccountHandle) -> "Session":
        return cls(
            status=SessionStatus.LOGGED_IN,
            user_id=account.user_id,
            email=account.email,
            display_name=account.display_name,
            email_verified=account.email_verified,
        )

    @classmethod
    def email_not_verified(cls, account: AccountHandle) -> "Session":
        return cls(
            status=SessionStatus.EMAIL_NOT_VERIFIED,
            email=account.email,
            message=ERROR_EMAIL_NOT_VERIFIED,
            error=ErrorKind.NOT_VERIFIED,
        )

    @classmethod
    def no_internet(cls) -> "Session":
        return cls(status=SessionStatus.NO_INTERNET, message=ERROR_NO_INTERNET, error=ErrorKind.NO_INTERNET)

    @classmethod
    def failed(cls, message: str, error: Optional[ErrorKind] = None) -> "Session":
        return cls(status=SessionStatus.FAILED, message=message, error=error)

    @classmethod
    def errored(cls, message: str, error: Optional[ErrorKind] = None) -> "Session":
        return cls(status=SessionStatus.ERROR, message=message, error=error)


class CreationPhase(str, Enum):
    INITIAL = "INITIAL"
    IN_PROGRESS = "IN_PROGRESS"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    VERIFICATION_SENT = "VERIFICATION_SENT"
    NO_INTERNET = "NO_INTERNET"
    FAILED = "FAILED"
    ERROR = "ERROR"


CREATION_TRANSITIONS: Dict[CreationPhase, FrozenSet[CreationPhase]] = {
    CreationPhase.INITIAL: frozenset(
        {CreationPhase.IN_PROGRESS, CreationPhase.NO_INTERNET, CreationPhase.FAILED}
    ),
    CreationPhase.IN_PROGRESS: frozenset(
        {CreationPhase.ACCOUNT_CREATED, CreationPhase.FAILED, CreationPhase.ERROR}
    ),
    CreationPhase.ACCOUNT_CREATED: frozenset(
        {
            CreationPhase.VERIFICATION_SENT,
            CreationPhase.NO_INTERNET,
            CreationPhase.FAILED,
            CreationPhase.ERROR,
        }
    ),
    CreationPhase.VERIFICATION_SENT: frozenset(
        {CreationPhase.VERIFICATION_SENT, CreationPhase.FAILED, CreationPhase.ERROR}
    ),
    CreationPhase.NO_INTERNET: frozenset(),
    CreationPhase.FAILED: frozenset(),
    CreationPhase.ERROR: frozenset(),
}

# Failed verification sends that a retry may reopen once the account exists.
VERIFICATION_RETRY_PHASES: FrozenSet[CreationPhase] = frozenset(
    {CreationPhase.NO_INTERNET, CreationPhase.FAILED, CreationPhase.ERROR}
)


@dataclass(frozen=True)
class AccountCreationState:
    phase: CreationPhase = CreationPhase.INITIAL
    message: Optional[str] = None

    def can_advance_to(self, phase: CreationPhase) -> bool:
        return phase in CREATION_TRANSITIONS[self.phase]


UpdateStatus = Literal["SUCCESS", "FAILED", "NO_INTERNET"]


@dataclass(frozen=True)
class UpdateResult:
    """Result contract for account update operations (password reset)."""

    status: UpdateStatus
    reason: Optional[str] = None


def is_logged_in(session: Session) -> bool:
    return session.status == SessionStatus.LOGGED_IN


def is_terminal_error(session: Session) -> bool:
    return session.status in ERROR_STATUSES
