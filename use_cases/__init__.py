"""Application layer contracts for orchestrating high-level flows."""

from .auth_flow import AuthFlowResult, AuthFlowStatus, AuthSessionController, ensure_authenticated_session
from .federated_flow import FederatedResult, FederatedSignIn, FederatedState
from .results import ErrorKind, IdentityError, Result
from .session_models import (
    AccountCreationState,
    CreationPhase,
    Session,
    SessionStatus,
    UpdateResult,
    is_logged_in,
    is_terminal_error,
)
from .validators import is_non_empty, is_valid_email, is_valid_password

__all__ = [
    "AccountCreationState",
    "AuthFlowResult",
    "AuthFlowStatus",
    "AuthSessionController",
    "CreationPhase",
    "ErrorKind",
    "FederatedResult",
    "FederatedSignIn",
    "FederatedState",
    "IdentityError",
    "Result",
    "Session",
    "SessionStatus",
    "UpdateResult",
    "ensure_authenticated_session",
    "is_logged_in",
    "is_non_empty",
    "is_terminal_error",
    "is_valid_email",
    "is_valid_password",
]
