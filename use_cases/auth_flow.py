"""Authentication flow orchestration (application layer)."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional, Set

from infrastructure.repositories.sqlite_audit_repository import AuditAction
from use_cases.domain_models import DEFAULT_PLAYER_NAME, AccountHandle
from use_cases.federated_flow import FederatedResult, FederatedSignIn
from use_cases.ports import AuditLog, Connectivity, IdentityClient, ProfileStore
from use_cases.results import ErrorKind, IdentityError, Result
from use_cases.session_models import (
    ERROR_CANCELLED,
    ERROR_EMAIL_NOT_VERIFIED,
    ERROR_FEDERATED_LOGIN,
    ERROR_MANUAL_TIMEOUT,
    ERROR_NO_CURRENT_USER,
    ERROR_NO_INTERNET,
    ERROR_SAVE_PLAYER,
    ERROR_SIGN_OUT,
    VERIFICATION_RETRY_PHASES,
    VERIFICATION_SENT,
    AccountCreationState,
    CreationPhase,
    Session,
    SessionStatus,
    UpdateResult,
    message_for,
)
from utils.state_flow import MutableStateFlow, StateFlow

log = logging.getLogger(__name__)

MANUAL_SIGN_IN_TIMEOUT_SECONDS = 120.0

AuthFlowStatus = Literal["CONTINUE", "STOP"]


@dataclass(frozen=True)
class AuthFlowResult:
    """Result contract for auth flow orchestration."""

    status: AuthFlowStatus
    reason: str
    user_id: Optional[str] = None


class AuthSessionController:
    """
    Owns the process-wide Session, the account-creation progress and the
    manual-sign-in flag, and is their only writer.

    Every public operation runs under a single lock, so operations complete in
    the order they were issued. Each operation takes a generation number when
    it starts; a write carrying an older generation (a watchdog of a superseded
    manual sign-in, for example) is dropped instead of overwriting newer state.
    Backend failures are converted into state, never raised to the caller.
    Only task cancellation propagates, after the attempt is marked FAILED.
    """

    def __init__(
        self,
        identity: IdentityClient,
        profiles: ProfileStore,
        connectivity: Connectivity,
        federated: Optional[FederatedSignIn] = None,
        audit: Optional[AuditLog] = None,
        manual_timeout: float = MANUAL_SIGN_IN_TIMEOUT_SECONDS,
    ):
        self._identity = identity
        self._profiles = profiles
        self._connectivity = connectivity
        self._federated = federated
        self._audit = audit
        self._manual_timeout = manual_timeout

        self._session = MutableStateFlow(Session.logged_out(), name="session")
        self._creation = MutableStateFlow(AccountCreationState(), name="account_creation")
        self._manual_required = MutableStateFlow(False, name="manual_sign_in_required")
        self._errors: MutableStateFlow[Optional[str]] = MutableStateFlow(None, name="errors")

        self._lock = asyncio.Lock()
        self._generation = 0
        self._creation_attempt = 0
        self._created_user_id: Optional[str] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # -- observable state -------------------------------------------------

    @property
    def session(self) -> StateFlow[Session]:
        return self._session.read_only()

    @property
    def account_creation(self) -> StateFlow[AccountCreationState]:
        return self._creation.read_only()

    @property
    def manual_sign_in_required(self) -> StateFlow[bool]:
        return self._manual_required.read_only()

    @property
    def errors(self) -> StateFlow[Optional[str]]:
        """Secondary errors that do not change the session (profile save, platform sign-out)."""
        return self._errors.read_only()

    # -- email / password -------------------------------------------------

    async def login(self, email: str, password: str) -> Session:
        async with self._lock:
            generation = self._begin()
            self._abandon_manual()

            if not self._connectivity.is_connected():
                log.info("Login skipped, no internet connection")
                return self._write(Session.no_internet(), generation)

            self._write(Session.in_progress(), generation)
            result = await self._call(
                self._identity.sign_in(email, password),
                on_cancel=lambda: self._write_cancelled(generation),
            )
            if not result.ok:
                self._audit_action(AuditAction.LOGIN_FAIL, metadata={"reason": result.error.kind.value}, result="fail")
                return self._write_failure(result.error, generation)

            account = result.value
            if not account.email_verified:
                log.warning(f"Login rejected for user {account.user_id}: email not verified")
                self._identity.sign_out()
                self._audit_action(
                    AuditAction.LOGIN_FAIL,
                    actor_user_id=account.user_id,
                    metadata={"reason": ErrorKind.NOT_VERIFIED.value},
                    result="fail",
                )
                return self._write(Session.errored(ERROR_EMAIL_NOT_VERIFIED, ErrorKind.NOT_VERIFIED), generation)

            log.info(f"User {account.user_id} logged in")
            self._audit_action(AuditAction.LOGIN_SUCCESS, actor_user_id=account.user_id)
            return self._write(Session.logged_in(account), generation)

    async def create_account(self, name: str, email: str, password: str) -> AccountCreationState:
        async with self._lock:
            self._creation_attempt += 1
            attempt = self._creation_attempt
            self._created_user_id = None
            self._creation.emit(AccountCreationState())

            if not self._connectivity.is_connected():
                log.info("Account creation skipped, no internet connection")
                return self._advance(attempt, CreationPhase.NO_INTERNET, ERROR_NO_INTERNET)

            self._advance(attempt, CreationPhase.IN_PROGRESS)
            result = await self._call(
                self._identity.create_account(email, password),
                on_cancel=lambda: self._advance(attempt, CreationPhase.FAILED, ERROR_CANCELLED),
            )
            if not result.ok:
                self._audit_action(
                    AuditAction.ACCOUNT_CREATE, metadata={"reason": result.error.kind.value}, result="fail"
                )
                self._log_unknown(result.error)
                return self._advance(attempt, CreationPhase.FAILED, message_for(result.error.kind))

            account = result.value
            log.info(f"Account {account.user_id} created")
            self._audit_action(AuditAction.ACCOUNT_CREATE, actor_user_id=account.user_id)
            self._created_user_id = account.user_id
            state = self._advance(attempt, CreationPhase.ACCOUNT_CREATED)
            self._spawn(self._save_created_profile(attempt, account, name, email))
            return state

    async def send_verification_email(self) -> AccountCreationState:
        async with self._lock:
            attempt = self._creation_attempt
            self._reopen_verification()

            if not self._connectivity.is_connected():
                return self._advance(attempt, CreationPhase.NO_INTERNET, ERROR_NO_INTERNET)

            account = self._identity.current_account()
            if account is None:
                log.warning("Verification email requested without a signed-in account")
                return self._advance(attempt, CreationPhase.FAILED, ERROR_NO_CURRENT_USER)

            current = self._creation.value
            if not current.can_advance_to(CreationPhase.VERIFICATION_SENT):
                log.warning(f"Verification email not sent, account creation is {current.phase.value}")
                return current

            result = await self._call(
                self._identity.send_verification_email(account),
                on_cancel=lambda: self._advance(attempt, CreationPhase.FAILED, ERROR_CANCELLED),
            )
            if result.ok:
                self._audit_action(AuditAction.VERIFICATION_SENT, actor_user_id=account.user_id)
                return self._advance(attempt, CreationPhase.VERIFICATION_SENT, VERIFICATION_SENT)
            if result.error.kind == ErrorKind.CANCELLED:
                return self._advance(attempt, CreationPhase.FAILED, ERROR_CANCELLED)
            self._log_unknown(result.error)
            return self._advance(attempt, CreationPhase.ERROR, message_for(result.error.kind))

    async def logout(self) -> Session:
        async with self._lock:
            generation = self._begin()
            self._abandon_manual()
            user_id = self._session.value.user_id

            self._write(Session.logout_in_progress(), generation)
            self._identity.sign_out()
            try:
                if self._federated is not None and not await self._federated.sign_out():
                    self._report(ERROR_SIGN_OUT)
            except asyncio.CancelledError:
                self._write(Session.logged_out(), generation)
                raise

            self._audit_action(AuditAction.LOGOUT, actor_user_id=user_id)
            log.info("Logged out")
            return self._write(Session.logged_out(), generation)

    async def reset_password(self) -> UpdateResult:
        account = self._identity.current_account()
        email = (account.email if account is not None else None) or self._session.value.email
        if not email:
            log.warning("Password reset requested without a known user email")
            return UpdateResult(status="FAILED", reason=ERROR_NO_CURRENT_USER)

        if not self._connectivity.is_connected():
            return UpdateResult(status="NO_INTERNET", reason=ERROR_NO_INTERNET)

        result = await self._call(self._identity.send_password_reset(email), on_cancel=lambda: None)
        if result.ok:
            self._audit_action(AuditAction.PASSWORD_RESET, actor_user_id=account.user_id if account else None)
            return UpdateResult(status="SUCCESS")
        self._log_unknown(result.error)
        return UpdateResult(status="FAILED", reason=message_for(result.error.kind))

    # -- federated ----------------------------------------------------------

    async def login_silently(self) -> Session:
        async with self._lock:
            generation = self._begin()
            self._abandon_manual()

            if self._federated is None:
                log.error("Silent login requested but no federated sign-in is configured")
                return self._write(Session.errored(ERROR_FEDERATED_LOGIN, ErrorKind.PRECONDITION), generation)

            if not self._connectivity.is_connected():
                log.info("Silent login skipped, no internet connection")
                return self._write(Session.no_internet(), generation)

            self._write(Session.in_progress(), generation)
            try:
                federated = await self._federated.attempt_silent()
            except asyncio.CancelledError:
                self._write_cancelled(generation)
                raise

            if federated.status == "SUCCESS":
                return await self._exchange(federated, generation)

            log.info(f"Manual sign-in required: {federated.reason}")
            self._manual_required.emit(True)
            self._arm_watchdog(generation)
            return self._session.value

    async def complete_manual_login(self, raw_result) -> Session:
        async with self._lock:
            generation = self._begin()
            self._disarm_watchdog()
            if self._manual_required.value:
                self._manual_required.emit(False)

            if self._federated is None:
                return self._write(Session.errored(ERROR_FEDERATED_LOGIN, ErrorKind.PRECONDITION), generation)

            if not self._connectivity.is_connected():
                self._federated.cancel()
                return self._write(Session.no_internet(), generation)

            if self._session.value.status != SessionStatus.IN_PROGRESS:
                self._write(Session.in_progress(), generation)

            federated = self._federated.complete_manual(raw_result)
            if federated.status != "SUCCESS":
                self._audit_action(AuditAction.FEDERATED_LOGIN, metadata={"reason": federated.reason}, result="fail")
                return self._write(Session.errored(ERROR_FEDERATED_LOGIN, ErrorKind.INVALID_CREDENTIAL), generation)
            return await self._exchange(federated, generation)

    async def cancel_manual_login(self) -> Session:
        async with self._lock:
            generation = self._begin()
            pending = self._manual_required.value
            self._abandon_manual()
            if pending and self._session.value.status == SessionStatus.IN_PROGRESS:
                log.info("Manual sign-in cancelled by caller")
                return self._write(Session.logged_out(), generation)
            return self._session.value

    # -- queries / lifecycle -------------------------------------------------

    def is_logged_in(self) -> bool:
        account = self._identity.current_account()
        return account is not None and account.email_verified

    async def is_account_registered(self, email: str) -> Optional[bool]:
        if not self._connectivity.is_connected():
            return None
        result = await self._call(self._identity.is_account_registered(email), on_cancel=lambda: None)
        if not result.ok:
            self._log_unknown(result.error)
            return None
        return bool(result.value)

    async def restore_session(self) -> Session:
        """Reconcile the session with the identity client's cached account."""
        async with self._lock:
            generation = self._begin()
            account = self._identity.current_account()
            if account is None:
                return self._session.value
            if account.email_verified:
                log.info(f"Restored session for user {account.user_id}")
                return self._write(Session.logged_in(account), generation)
            log.info(f"Cached account {account.user_id} is not verified, signing out")
            self._identity.sign_out()
            return self._write(Session.email_not_verified(account), generation)

    async def join_background_tasks(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self._disarm_watchdog()
        for task in list(self._background):
            task.cancel()
        await self.join_background_tasks()

    # -- internals ----------------------------------------------------------

    def _begin(self) -> int:
        self._generation += 1
        return self._generation

    def _write(self, session: Session, generation: int) -> Session:
        if generation != self._generation:
            log.debug(f"Dropping stale session write {session.status.value} (generation {generation})")
            return self._session.value
        self._session.emit(session)
        return session

    def _write_cancelled(self, generation: int) -> Session:
        return self._write(Session.failed(ERROR_CANCELLED, ErrorKind.CANCELLED), generation)

    def _write_failure(self, error: IdentityError, generation: int) -> Session:
        if error.kind == ErrorKind.CANCELLED:
            return self._write_cancelled(generation)
        self._log_unknown(error)
        return self._write(Session.errored(message_for(error.kind), error.kind), generation)

    def _advance(self, attempt: int, phase: CreationPhase, message: Optional[str] = None) -> AccountCreationState:
        current = self._creation.value
        if attempt != self._creation_attempt:
            log.debug(f"Dropping stale account creation write {phase.value} (attempt {attempt})")
            return current
        if not current.can_advance_to(phase):
            log.warning(f"Ignoring account creation transition {current.phase.value} -> {phase.value}")
            return current
        state = AccountCreationState(phase=phase, message=message)
        self._creation.emit(state)
        return state

    def _reopen_verification(self) -> None:
        """A failed verification send of an account created in this attempt may be retried."""
        current = self._creation.value
        if self._created_user_id is None or current.phase not in VERIFICATION_RETRY_PHASES:
            return
        log.info(f"Retrying verification for account {self._created_user_id} after {current.phase.value}")
        self._creation.emit(AccountCreationState(phase=CreationPhase.ACCOUNT_CREATED))

    async def _call(self, awaitable: Awaitable[Result], on_cancel: Callable[[], object]) -> Result:
        try:
            return await awaitable
        except asyncio.CancelledError:
            on_cancel()
            raise
        except Exception as e:
            log.error(f"Backend call failed unexpectedly: {e}", exc_info=True)
            return Result.failure(ErrorKind.UNKNOWN, str(e))

    async def _exchange(self, federated: FederatedResult, generation: int) -> Session:
        result = await self._call(
            self._identity.sign_in_with_federated_credential(federated.credential),
            on_cancel=lambda: self._write_cancelled(generation),
        )
        if not result.ok:
            self._audit_action(
                AuditAction.FEDERATED_LOGIN, metadata={"reason": result.error.kind.value}, result="fail"
            )
            return self._write_failure(result.error, generation)

        account = result.value
        session = self._write(Session.logged_in(account), generation)
        self._audit_action(AuditAction.FEDERATED_LOGIN, actor_user_id=account.user_id)

        name = federated.account.player_name() if federated.account else (account.display_name or DEFAULT_PLAYER_NAME)
        email = account.email or (federated.account.email if federated.account else None)
        if not await self._has_profile(account.user_id):
            await self._save_profile(account.user_id, name, email)
        return session

    async def _has_profile(self, user_id: str) -> bool:
        try:
            return await self._profiles.get(user_id) is not None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Loading player profile for {user_id} failed: {e}", exc_info=True)
            return False

    async def _save_created_profile(self, attempt: int, account: AccountHandle, name: str, email: str) -> None:
        result = await self._save_profile(account.user_id, name, email)
        if not result.ok:
            self._advance(attempt, CreationPhase.ERROR, ERROR_SAVE_PLAYER)

    async def _save_profile(self, user_id: str, name: str, email: Optional[str]) -> Result:
        result = await self._call(self._profiles.create(user_id, name, email), on_cancel=lambda: None)
        if not result.ok:
            log.error(f"Saving player profile for {user_id} failed: {result.error.detail}")
            self._audit_action(
                AuditAction.PROFILE_SAVE,
                actor_user_id=user_id,
                metadata={"reason": ErrorKind.STORE_FAILURE.value, "error_message": result.error.detail},
                result="fail",
            )
            self._report(ERROR_SAVE_PLAYER)
        return result

    def _report(self, message: str) -> None:
        self._errors.emit(message)

    def _log_unknown(self, error: IdentityError) -> None:
        if error.kind == ErrorKind.UNKNOWN:
            log.error(f"Identity backend error: {error.detail}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _abandon_manual(self) -> None:
        self._disarm_watchdog()
        if self._manual_required.value:
            self._manual_required.emit(False)
        if self._federated is not None:
            self._federated.cancel()

    def _arm_watchdog(self, generation: int) -> None:
        self._disarm_watchdog()
        self._watchdog = asyncio.create_task(self._expire_manual(generation))

    def _disarm_watchdog(self) -> None:
        if self._watchdog is not None and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()
        self._watchdog = None

    async def _expire_manual(self, generation: int) -> None:
        await asyncio.sleep(self._manual_timeout)
        async with self._lock:
            if generation != self._generation:
                return
            log.warning(f"Manual sign-in not completed within {self._manual_timeout}s, resetting session")
            self._watchdog = None
            self._abandon_manual()
            self._write(Session.logged_out(), generation)
            self._report(ERROR_MANUAL_TIMEOUT)

    def _audit_action(self, action: AuditAction, actor_user_id: Optional[str] = None, **kwargs) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log_action(action, target_type="auth", actor_user_id=actor_user_id, **kwargs)
        except Exception as e:
            # Audit failures must not break authentication
            log.error(f"Audit log failed for action {action}: {e}", exc_info=True)


async def ensure_authenticated_session(controller: AuthSessionController) -> AuthFlowResult:
    """Run the auth gate and return a control-flow status for the UI layer."""
    session = await controller.restore_session()
    if session.status == SessionStatus.LOGGED_IN:
        return AuthFlowResult(status="CONTINUE", reason="authenticated", user_id=session.user_id)
    if session.status == SessionStatus.EMAIL_NOT_VERIFIED:
        return AuthFlowResult(status="STOP", reason="email_not_verified")
    return AuthFlowResult(status="STOP", reason="auth_required")
