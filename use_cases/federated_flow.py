"""Silent-then-manual game platform sign-in (application layer)."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from use_cases.domain_models import Credential, PlatformAccount
from use_cases.ports import PlatformSignInClient

log = logging.getLogger(__name__)

SERVER_AUTH_CODE = "serverAuthCode"
ID_TOKEN = "id_token"
ID_TOKEN_PROVIDER_ID = "google.com"

FederatedStatus = Literal["SUCCESS", "NEEDS_MANUAL", "FAILED"]


class FederatedState(str, Enum):
    IDLE = "IDLE"
    SILENT_ATTEMPT = "SILENT_ATTEMPT"
    NEEDS_MANUAL = "NEEDS_MANUAL"
    MANUAL_ATTEMPT = "MANUAL_ATTEMPT"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class FederatedResult:
    """Result contract for a federated sign-in attempt."""

    status: FederatedStatus
    credential: Optional[Credential] = None
    account: Optional[PlatformAccount] = None
    reason: Optional[str] = None


class FederatedSignIn:
    """
    Drives a platform sign-in client through the silent attempt and, when that
    is not possible, signals that an interactive flow has to be launched by the
    UI. The interactive result comes back through ``complete_manual``.
    """

    def __init__(self, client: PlatformSignInClient):
        self._client = client
        self._state = FederatedState.IDLE

    @property
    def state(self) -> FederatedState:
        return self._state

    @property
    def manual_required(self) -> bool:
        return self._state == FederatedState.NEEDS_MANUAL

    async def attempt_silent(self) -> FederatedResult:
        self._state = FederatedState.SILENT_ATTEMPT
        required = self._client.required_scopes

        account = self._client.last_signed_in_account()
        if account is not None and account.has_scopes(required):
            credential = self._credential_for(account)
            if credential is not None:
                log.info("Reusing previously authorized platform account")
                return self._succeed(account, credential)
            log.info("Cached platform account has no token material, trying silent sign-in")

        try:
            account = await self._client.silent_sign_in()
        except asyncio.CancelledError:
            self._state = FederatedState.IDLE
            raise
        except Exception as e:
            log.info(f"Silent platform sign-in failed, manual sign-in required: {e}")
            return self._needs_manual(str(e))

        if not account.has_scopes(required):
            return self._needs_manual("missing required scopes")
        credential = self._credential_for(account)
        if credential is None:
            return self._needs_manual("no token material returned")
        return self._succeed(account, credential)

    def complete_manual(self, raw_result: Mapping[str, Any]) -> FederatedResult:
        """Parse the raw result of the interactive sign-in flow."""
        if self._state != FederatedState.NEEDS_MANUAL:
            log.debug(f"Manual sign-in result received in state {self._state.value}")
        self._state = FederatedState.MANUAL_ATTEMPT

        if not raw_result or not raw_result.get("is_success"):
            reason = (raw_result or {}).get("status_message") or "manual sign-in was not successful"
            log.warning(f"Login to game platform failed: {reason}")
            return self._fail(reason)

        scopes = raw_result.get("granted_scopes") or ()
        account = PlatformAccount(
            account_id=str(raw_result.get("account_id") or ""),
            given_name=raw_result.get("given_name"),
            family_name=raw_result.get("family_name"),
            email=raw_result.get("email"),
            granted_scopes=tuple(scopes),
            server_auth_code=raw_result.get("server_auth_code"),
            id_token=raw_result.get("id_token"),
        )
        credential = self._credential_for(account)
        if credential is None:
            return self._fail("manual sign-in returned no token material")
        return self._succeed(account, credential)

    def cancel(self) -> None:
        if self._state in (FederatedState.NEEDS_MANUAL, FederatedState.MANUAL_ATTEMPT):
            log.info(f"Federated sign-in abandoned in state {self._state.value}")
        self._state = FederatedState.IDLE

    async def sign_out(self) -> bool:
        self._state = FederatedState.IDLE
        try:
            await self._client.sign_out()
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"Platform sign-out failed: {e}")
            return False

    def _credential_for(self, account: PlatformAccount) -> Optional[Credential]:
        if account.server_auth_code:
            return Credential(self._client.provider_id, SERVER_AUTH_CODE, account.server_auth_code)
        if account.id_token:
            return Credential(ID_TOKEN_PROVIDER_ID, ID_TOKEN, account.id_token)
        return None

    def _succeed(self, account: PlatformAccount, credential: Credential) -> FederatedResult:
        self._state = FederatedState.SUCCESS
        return FederatedResult(status="SUCCESS", credential=credential, account=account)

    def _needs_manual(self, reason: str) -> FederatedResult:
        self._state = FederatedState.NEEDS_MANUAL
        return FederatedResult(status="NEEDS_MANUAL", reason=reason)

    def _fail(self, reason: str) -> FederatedResult:
        self._state = FederatedState.FAILED
        return FederatedResult(status="FAILED", reason=reason)
