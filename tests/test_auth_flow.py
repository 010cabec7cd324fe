import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from infrastructure.repositories.sqlite_audit_repository import AuditAction
from tests.fakes import platform_account
from use_cases.auth_flow import AuthSessionController
from use_cases.federated_flow import FederatedSignIn
from use_cases.ports import PlatformSignInError
from use_cases.results import ErrorKind, Result
from use_cases.session_models import (
    ERROR_ACCOUNT_EXISTS,
    ERROR_CANCELLED,
    ERROR_EMAIL_NOT_VERIFIED,
    ERROR_FEDERATED_LOGIN,
    ERROR_LOGIN,
    ERROR_MANUAL_TIMEOUT,
    ERROR_NO_CURRENT_USER,
    ERROR_NO_INTERNET,
    ERROR_SAVE_PLAYER,
    ERROR_SIGN_OUT,
    ERROR_UNKNOWN,
    VERIFICATION_SENT,
    CreationPhase,
    SessionStatus,
)

EMAIL = "player@example.com"
PASSWORD = "Abcdef12!@"

MANUAL_RESULT = {
    "is_success": True,
    "account_id": "g-2",
    "given_name": "Grace",
    "family_name": "Hopper",
    "granted_scopes": ["games_lite"],
    "server_auth_code": "manual-code",
}


def make_controller(identity, profiles, connectivity, platform, audit, **kwargs):
    return AuthSessionController(
        identity=identity,
        profiles=profiles,
        connectivity=connectivity,
        federated=FederatedSignIn(platform),
        audit=audit,
        **kwargs,
    )


def record_statuses(controller):
    statuses = []
    controller.session.add_listener(lambda s: statuses.append(s.status))
    return statuses


# -- login ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_login_offline_never_calls_identity(controller, identity, connectivity):
    connectivity.connected = False
    statuses = record_statuses(controller)

    session = await controller.login(EMAIL, PASSWORD)

    assert session.status == SessionStatus.NO_INTERNET
    assert session.message == ERROR_NO_INTERNET
    assert identity.calls == []
    assert statuses == [SessionStatus.LOGGED_OUT, SessionStatus.NO_INTERNET]


@pytest.mark.asyncio
async def test_login_verified_account(controller, identity, audit):
    account = identity.register(EMAIL, PASSWORD, verified=True)
    statuses = record_statuses(controller)

    session = await controller.login(EMAIL, PASSWORD)

    assert session.status == SessionStatus.LOGGED_IN
    assert session.user_id == account.user_id
    assert controller.session.value == session
    assert statuses == [SessionStatus.LOGGED_OUT, SessionStatus.IN_PROGRESS, SessionStatus.LOGGED_IN]
    assert controller.is_logged_in() is True
    assert (AuditAction.LOGIN_SUCCESS, account.user_id, None, "success") in audit.entries


@pytest.mark.asyncio
async def test_login_unverified_account_signs_out(controller, identity):
    identity.register(EMAIL, PASSWORD, verified=False)

    session = await controller.login(EMAIL, PASSWORD)

    assert session.status == SessionStatus.ERROR
    assert session.message == ERROR_EMAIL_NOT_VERIFIED
    assert session.error == ErrorKind.NOT_VERIFIED
    assert identity.current_account() is None
    assert identity.sign_out_calls == 1
    assert controller.is_logged_in() is False


@pytest.mark.asyncio
async def test_login_wrong_password(controller, identity, audit):
    identity.register(EMAIL, PASSWORD)

    session = await controller.login(EMAIL, "Wrong-pass-1")

    assert session.status == SessionStatus.ERROR
    assert session.message == ERROR_LOGIN
    action, _, metadata, result = audit.entries[-1]
    assert action == AuditAction.LOGIN_FAIL
    assert result == "fail"
    assert metadata == {"reason": "INVALID_CREDENTIAL"}


@pytest.mark.asyncio
async def test_login_unexpected_exception_becomes_unknown_error(controller, identity):
    identity.sign_in = AsyncMock(side_effect=RuntimeError("socket closed"))

    session = await controller.login(EMAIL, PASSWORD)

    assert session.status == SessionStatus.ERROR
    assert session.message == ERROR_UNKNOWN
    assert session.error == ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_cancelled_login_marks_session_failed(controller, identity):
    identity.register(EMAIL, PASSWORD)
    identity.gate = asyncio.Event()

    task = asyncio.create_task(controller.login(EMAIL, PASSWORD))
    await controller.session.wait_for(lambda s: s.status == SessionStatus.IN_PROGRESS, timeout=1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert controller.session.value.status == SessionStatus.FAILED
    assert controller.session.value.message == ERROR_CANCELLED


@pytest.mark.asyncio
async def test_audit_failure_does_not_break_login(identity, profiles, connectivity, platform):
    broken_audit = MagicMock()
    broken_audit.log_action.side_effect = RuntimeError("Database is completely down")
    controller = make_controller(identity, profiles, connectivity, platform, broken_audit)
    identity.register(EMAIL, PASSWORD)

    session = await controller.login(EMAIL, PASSWORD)

    assert session.status == SessionStatus.LOGGED_IN
    broken_audit.log_action.assert_called_once()


# -- account creation ------------------------------------------------------

@pytest.mark.asyncio
async def test_create_account_saves_profile(controller, profiles, audit):
    phases = []
    controller.account_creation.add_listener(lambda s: phases.append(s.phase))

    state = await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()

    assert state.phase == CreationPhase.ACCOUNT_CREATED
    assert phases == [CreationPhase.INITIAL, CreationPhase.INITIAL, CreationPhase.IN_PROGRESS, CreationPhase.ACCOUNT_CREATED]
    profile = next(iter(profiles.profiles.values()))
    assert profile.name == "Ada"
    assert profile.email == EMAIL
    assert audit.entries[0][0] == AuditAction.ACCOUNT_CREATE


@pytest.mark.asyncio
async def test_create_account_profile_failure_reports_error(controller, profiles, identity):
    profiles.fail = True

    state = await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()

    assert state.phase == CreationPhase.ACCOUNT_CREATED
    assert controller.account_creation.value.phase == CreationPhase.ERROR
    assert controller.account_creation.value.message == ERROR_SAVE_PLAYER
    assert controller.errors.value == ERROR_SAVE_PLAYER
    # The identity account exists even though its profile does not
    assert await controller.is_account_registered(EMAIL) is True


@pytest.mark.asyncio
async def test_create_account_existing_email(controller, identity):
    identity.register(EMAIL, PASSWORD)

    state = await controller.create_account("Ada", EMAIL, PASSWORD)

    assert state.phase == CreationPhase.FAILED
    assert state.message == ERROR_ACCOUNT_EXISTS


@pytest.mark.asyncio
async def test_create_account_offline(controller, identity, connectivity):
    connectivity.connected = False

    state = await controller.create_account("Ada", EMAIL, PASSWORD)

    assert state.phase == CreationPhase.NO_INTERNET
    assert identity.calls == []


@pytest.mark.asyncio
async def test_send_verification_email_after_creation(controller, identity, audit):
    await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()

    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.VERIFICATION_SENT
    assert state.message == VERIFICATION_SENT
    assert "send_verification_email" in identity.calls
    assert audit.entries[-1][0] == AuditAction.VERIFICATION_SENT


@pytest.mark.asyncio
async def test_send_verification_email_without_account(controller, identity):
    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.FAILED
    assert state.message == ERROR_NO_CURRENT_USER
    assert "send_verification_email" not in identity.calls


@pytest.mark.asyncio
async def test_send_verification_email_backend_error(controller, identity):
    await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()
    identity.fail["send_verification_email"] = Result.failure(ErrorKind.UNKNOWN, "TOO_MANY_ATTEMPTS_TRY_LATER")

    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.ERROR
    assert state.message == ERROR_UNKNOWN


@pytest.mark.asyncio
async def test_send_verification_email_retry_after_offline(controller, identity, connectivity):
    await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()

    connectivity.connected = False
    offline = await controller.send_verification_email()
    assert offline.phase == CreationPhase.NO_INTERNET
    assert "send_verification_email" not in identity.calls

    connectivity.connected = True
    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.VERIFICATION_SENT
    assert state.message == VERIFICATION_SENT
    assert controller.account_creation.value == state


@pytest.mark.asyncio
async def test_send_verification_email_retry_after_error(controller, identity):
    await controller.create_account("Ada", EMAIL, PASSWORD)
    await controller.join_background_tasks()
    identity.fail["send_verification_email"] = Result.failure(ErrorKind.UNKNOWN, "TOO_MANY_ATTEMPTS_TRY_LATER")
    failed = await controller.send_verification_email()
    assert failed.phase == CreationPhase.ERROR

    del identity.fail["send_verification_email"]
    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.VERIFICATION_SENT
    assert identity.calls.count("send_verification_email") == 2


@pytest.mark.asyncio
async def test_send_verification_email_after_failed_creation_is_not_sent(controller, identity):
    identity.register(EMAIL, PASSWORD)
    await controller.create_account("Ada", EMAIL, PASSWORD)
    identity.current = identity.register("other@example.com", PASSWORD, verified=False)

    state = await controller.send_verification_email()

    assert state.phase == CreationPhase.FAILED
    assert state.message == ERROR_ACCOUNT_EXISTS
    assert "send_verification_email" not in identity.calls


# -- logout / password reset ---------------------------------------------

@pytest.mark.asyncio
async def test_logout_signs_out_everywhere(controller, identity, platform, audit):
    account = identity.register(EMAIL, PASSWORD)
    await controller.login(EMAIL, PASSWORD)
    statuses = record_statuses(controller)

    session = await controller.logout()

    assert session.status == SessionStatus.LOGGED_OUT
    assert statuses == [SessionStatus.LOGGED_IN, SessionStatus.LOGOUT_IN_PROGRESS, SessionStatus.LOGGED_OUT]
    assert identity.current_account() is None
    assert platform.sign_out_calls == 1
    assert (AuditAction.LOGOUT, account.user_id, None, "success") in audit.entries


@pytest.mark.asyncio
async def test_logout_platform_failure_is_reported_separately(controller, identity, platform):
    identity.register(EMAIL, PASSWORD)
    await controller.login(EMAIL, PASSWORD)
    platform.sign_out_error = PlatformSignInError("token revoked")

    session = await controller.logout()

    assert session.status == SessionStatus.LOGGED_OUT
    assert controller.errors.value == ERROR_SIGN_OUT


@pytest.mark.asyncio
async def test_concurrent_logout_then_login_ends_with_login_outcome(controller, identity):
    identity.register(EMAIL, PASSWORD)
    await controller.login(EMAIL, PASSWORD)
    statuses = record_statuses(controller)

    await asyncio.gather(controller.logout(), controller.login(EMAIL, PASSWORD))

    assert controller.session.value.status == SessionStatus.LOGGED_IN
    assert statuses.index(SessionStatus.LOGOUT_IN_PROGRESS) < statuses.index(SessionStatus.LOGGED_OUT)
    assert statuses[-1] == SessionStatus.LOGGED_IN


@pytest.mark.asyncio
async def test_reset_password_without_user(controller, identity):
    result = await controller.reset_password()

    assert result.status == "FAILED"
    assert result.reason == ERROR_NO_CURRENT_USER
    assert identity.calls == []


@pytest.mark.asyncio
async def test_reset_password_for_current_user(controller, identity, connectivity, audit):
    identity.register(EMAIL, PASSWORD)
    await controller.login(EMAIL, PASSWORD)

    result = await controller.reset_password()
    assert result.status == "SUCCESS"
    assert "send_password_reset" in identity.calls
    assert audit.entries[-1][0] == AuditAction.PASSWORD_RESET

    connectivity.connected = False
    offline = await controller.reset_password()
    assert offline.status == "NO_INTERNET"
    assert offline.reason == ERROR_NO_INTERNET


# -- federated -------------------------------------------------------------

@pytest.mark.asyncio
async def test_login_silently_with_cached_platform_account(controller, platform, profiles, identity, audit):
    platform.cached = platform_account()

    session = await controller.login_silently()

    assert session.status == SessionStatus.LOGGED_IN
    assert identity.exchanged_tokens == ["auth-code-1"]
    assert profiles.profiles[session.user_id].name == "Ada Lovelace"
    assert controller.manual_sign_in_required.value is False
    assert any(entry[0] == AuditAction.FEDERATED_LOGIN and entry[3] == "success" for entry in audit.entries)


@pytest.mark.asyncio
async def test_login_silently_keeps_existing_profile(controller, platform, profiles):
    platform.cached = platform_account()
    await controller.login_silently()
    await controller.logout()

    platform.cached = platform_account(server_auth_code="auth-code-2")
    await controller.login_silently()

    assert profiles.create_calls == 1


@pytest.mark.asyncio
async def test_login_silently_profile_failure_keeps_session(controller, platform, profiles):
    platform.cached = platform_account()
    profiles.fail = True

    session = await controller.login_silently()

    assert session.status == SessionStatus.LOGGED_IN
    assert controller.errors.value == ERROR_SAVE_PLAYER


@pytest.mark.asyncio
async def test_login_silently_offline(controller, platform, connectivity):
    connectivity.connected = False

    session = await controller.login_silently()

    assert session.status == SessionStatus.NO_INTERNET
    assert platform.silent_calls == 0


@pytest.mark.asyncio
async def test_manual_sign_in_required_then_completed(controller, platform):
    platform.silent_error = PlatformSignInError("no stored platform authorization")
    statuses = record_statuses(controller)

    session = await controller.login_silently()

    assert session.status == SessionStatus.IN_PROGRESS
    assert controller.manual_sign_in_required.value is True
    assert SessionStatus.LOGGED_IN not in statuses

    session = await controller.complete_manual_login(MANUAL_RESULT)

    assert session.status == SessionStatus.LOGGED_IN
    assert controller.manual_sign_in_required.value is False
    await controller.close()


@pytest.mark.asyncio
async def test_manual_sign_in_failure(controller, platform, audit):
    platform.silent_error = PlatformSignInError("no stored platform authorization")
    await controller.login_silently()

    session = await controller.complete_manual_login({"is_success": False, "status_message": "SIGN_IN_CANCELLED"})

    assert session.status == SessionStatus.ERROR
    assert session.message == ERROR_FEDERATED_LOGIN
    assert audit.entries[-1][3] == "fail"
    await controller.close()


@pytest.mark.asyncio
async def test_cancel_manual_login_returns_to_logged_out(controller, platform):
    platform.silent_error = PlatformSignInError("no stored platform authorization")
    await controller.login_silently()

    session = await controller.cancel_manual_login()

    assert session.status == SessionStatus.LOGGED_OUT
    assert controller.manual_sign_in_required.value is False


@pytest.mark.asyncio
async def test_abandoned_manual_sign_in_times_out(identity, profiles, connectivity, platform, audit):
    controller = make_controller(identity, profiles, connectivity, platform, audit, manual_timeout=0.01)
    platform.silent_error = PlatformSignInError("no stored platform authorization")

    await controller.login_silently()
    session = await controller.session.wait_for(lambda s: s.status == SessionStatus.LOGGED_OUT, timeout=1)

    assert session.status == SessionStatus.LOGGED_OUT
    assert controller.manual_sign_in_required.value is False
    assert controller.errors.value == ERROR_MANUAL_TIMEOUT


@pytest.mark.asyncio
async def test_superseded_manual_timeout_does_not_overwrite_login(identity, profiles, connectivity, platform, audit):
    controller = make_controller(identity, profiles, connectivity, platform, audit, manual_timeout=0.05)
    identity.register(EMAIL, PASSWORD)
    platform.silent_error = PlatformSignInError("no stored platform authorization")

    await controller.login_silently()
    await controller.login(EMAIL, PASSWORD)
    await asyncio.sleep(0.1)

    assert controller.session.value.status == SessionStatus.LOGGED_IN
    assert controller.errors.value is None


# -- queries ----------------------------------------------------------------

@pytest.mark.asyncio
async def test_is_account_registered(controller, identity, connectivity):
    identity.register(EMAIL, PASSWORD)
    assert await controller.is_account_registered(EMAIL) is True
    assert await controller.is_account_registered("other@example.com") is False

    identity.fail["is_account_registered"] = Result.failure(ErrorKind.UNKNOWN, "backend down")
    assert await controller.is_account_registered(EMAIL) is None

    connectivity.connected = False
    assert await controller.is_account_registered(EMAIL) is None


@pytest.mark.asyncio
async def test_restore_session(controller, identity):
    identity.current = identity.register(EMAIL, PASSWORD, verified=True)

    session = await controller.restore_session()

    assert session.status == SessionStatus.LOGGED_IN


@pytest.mark.asyncio
async def test_restore_unverified_session_signs_out(controller, identity):
    identity.current = identity.register(EMAIL, PASSWORD, verified=False)

    session = await controller.restore_session()

    assert session.status == SessionStatus.EMAIL_NOT_VERIFIED
    assert session.message == ERROR_EMAIL_NOT_VERIFIED
    assert identity.current_account() is None
