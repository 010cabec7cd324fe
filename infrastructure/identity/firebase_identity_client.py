import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from use_cases.domain_models import AccountHandle, Credential, CredentialAlreadyUsedError
from use_cases.results import ErrorKind, Result

log = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
DEFAULT_REQUEST_URI = "http://localhost"

_ERROR_KINDS = {
    "EMAIL_EXISTS": ErrorKind.ALREADY_EXISTS,
    "WEAK_PASSWORD": ErrorKind.WEAK_CREDENTIAL,
    "EMAIL_NOT_FOUND": ErrorKind.INVALID_CREDENTIAL,
    "INVALID_PASSWORD": ErrorKind.INVALID_CREDENTIAL,
    "INVALID_LOGIN_CREDENTIALS": ErrorKind.INVALID_CREDENTIAL,
    "INVALID_EMAIL": ErrorKind.INVALID_CREDENTIAL,
    "USER_DISABLED": ErrorKind.INVALID_CREDENTIAL,
    "INVALID_IDP_RESPONSE": ErrorKind.INVALID_CREDENTIAL,
    "INVALID_ID_TOKEN": ErrorKind.INVALID_CREDENTIAL,
    "USER_NOT_FOUND": ErrorKind.INVALID_CREDENTIAL,
}


class IdentityBackendError(Exception):
    def __init__(self, code: str, status_code: Optional[int] = None):
        super().__init__(code)
        self.code = code
        self.status_code = status_code


def map_error_code(message: str) -> ErrorKind:
    """Backend messages look like 'WEAK_PASSWORD : Password should be at least 6 characters'."""
    code = (message or "").split(":", 1)[0].strip()
    return _ERROR_KINDS.get(code, ErrorKind.UNKNOWN)


class FirebaseIdentityClient:
    """
    IdentityClient over the Identity Toolkit REST API.

    Blocking HTTP calls run in a worker thread so that every operation is a
    single suspension point for the event loop. Every failure is returned as a
    tagged Result; nothing raises past this class.
    """

    def __init__(self, api_key: str, timeout: float = 10, base_url: str = IDENTITY_TOOLKIT_URL):
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._account: Optional[AccountHandle] = None
        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None

    def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise IdentityBackendError("MISSING_API_KEY")
        url = f"{self.base_url}/accounts:{method}"
        resp = requests.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        if resp.status_code == 200:
            return resp.json()
        try:
            message = resp.json().get("error", {}).get("message", "")
        except ValueError:
            message = ""
        raise IdentityBackendError(message or f"HTTP_{resp.status_code}", resp.status_code)

    async def _request(self, method: str, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        try:
            data = await asyncio.to_thread(self._post, method, payload)
        except IdentityBackendError as e:
            kind = map_error_code(e.code)
            if kind == ErrorKind.UNKNOWN:
                log.error(f"❌ Identity backend rejected {method}: {e.code}")
            else:
                log.info(f"Identity backend rejected {method}: {e.code}")
            return Result.failure(kind, e.code)
        except requests.RequestException as e:
            log.error(f"❌ Network error during {method}: {e}")
            return Result.failure(ErrorKind.UNKNOWN, f"network: {e}")
        except ValueError as e:
            log.error(f"❌ Malformed response for {method}: {e}")
            return Result.failure(ErrorKind.UNKNOWN, f"malformed response: {e}")
        return Result.success(data)

    async def _lookup(self, id_token: str) -> Result[Dict[str, Any]]:
        result = await self._request("lookup", {"idToken": id_token})
        if not result.ok:
            return result
        users = result.value.get("users") or []
        if not users:
            return Result.failure(ErrorKind.UNKNOWN, "lookup returned no users")
        return Result.success(users[0])

    def _remember(self, data: Dict[str, Any], user: Dict[str, Any]) -> AccountHandle:
        account = AccountHandle(
            user_id=str(data.get("localId") or user["localId"]),
            email=user.get("email") or data.get("email"),
            display_name=user.get("displayName") or data.get("displayName") or None,
            email_verified=bool(user.get("emailVerified", data.get("emailVerified", False))),
        )
        self._account = account
        self._id_token = data.get("idToken")
        self._refresh_token = data.get("refreshToken")
        return account

    async def _establish(self, method: str, payload: Dict[str, Any]) -> Result[AccountHandle]:
        result = await self._request(method, payload)
        if not result.ok:
            return Result(error=result.error)
        data = result.value
        user = data
        if "emailVerified" not in data and data.get("idToken"):
            lookup = await self._lookup(data["idToken"])
            if not lookup.ok:
                return Result(error=lookup.error)
            user = lookup.value
        if not (data.get("localId") or user.get("localId")):
            log.error(f"❌ {method} response carried no localId")
            return Result.failure(ErrorKind.UNKNOWN, "response carried no localId")
        return Result.success(self._remember(data, user))

    async def create_account(self, email: str, password: str) -> Result[AccountHandle]:
        return await self._establish(
            "signUp", {"email": email, "password": password, "returnSecureToken": True}
        )

    async def sign_in(self, email: str, password: str) -> Result[AccountHandle]:
        return await self._establish(
            "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )

    async def sign_in_with_federated_credential(self, credential: Credential) -> Result[AccountHandle]:
        try:
            token = credential.consume()
        except CredentialAlreadyUsedError as e:
            log.warning(f"Rejected federated credential reuse: {e}")
            return Result.failure(ErrorKind.INVALID_CREDENTIAL, str(e))

        payload = {
            "postBody": f"{credential.token_type}={token}&providerId={credential.provider_id}",
            "requestUri": DEFAULT_REQUEST_URI,
            "returnIdpCredential": True,
            "returnSecureToken": True,
        }
        return await self._establish("signInWithIdp", payload)

    async def send_verification_email(self, account: AccountHandle) -> Result[None]:
        if self._id_token is None or self._account is None or self._account.user_id != account.user_id:
            return Result.failure(ErrorKind.PRECONDITION, "account is not signed in")
        result = await self._request("sendOobCode", {"requestType": "VERIFY_EMAIL", "idToken": self._id_token})
        return Result(error=result.error)

    async def send_password_reset(self, email: str) -> Result[None]:
        result = await self._request("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})
        return Result(error=result.error)

    async def is_account_registered(self, email: str) -> Result[bool]:
        result = await self._request(
            "createAuthUri", {"identifier": email, "continueUri": DEFAULT_REQUEST_URI}
        )
        if not result.ok:
            return Result(error=result.error)
        return Result.success(bool(result.value.get("registered", False)))

    def sign_out(self) -> None:
        self._account = None
        self._id_token = None
        self._refresh_token = None

    def current_account(self) -> Optional[AccountHandle]:
        return self._account
