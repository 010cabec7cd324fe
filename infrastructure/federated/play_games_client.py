import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import requests

from use_cases.domain_models import PlatformAccount
from use_cases.ports import PlatformSignInError

log = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
PLAY_GAMES_PROVIDER_ID = "playgames.google.com"
DEFAULT_GAMES_SCOPES = ("openid", "https://www.googleapis.com/auth/games_lite")
# Cached id tokens are not reused during their last minute
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class PlayGamesSignInClient:
    """
    PlatformSignInClient for Google Play Games.

    The last authorized account and its OAuth refresh token are cached in a
    local JSON file. Silent sign-in exchanges the refresh token for a fresh id
    token; when there is nothing to refresh the caller has to run the
    interactive flow and store its outcome with ``remember_authorization``.
    """

    provider_id = PLAY_GAMES_PROVIDER_ID

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        cache_path: str,
        required_scopes: Tuple[str, ...] = DEFAULT_GAMES_SCOPES,
        timeout: float = 10,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.cache_path = cache_path
        self.required_scopes = tuple(required_scopes)
        self.timeout = timeout

    def _load_cache(self) -> Dict[str, Any]:
        if not os.path.exists(self.cache_path):
            return {}
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.error(f"Error loading platform account cache: {e}")
            return {}

    def _save_cache(self, data: Dict[str, Any]) -> None:
        try:
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=4)
        except OSError as e:
            log.error(f"Error saving platform account cache: {e}")

    @staticmethod
    def _to_account(data: Dict[str, Any], include_token: bool) -> PlatformAccount:
        return PlatformAccount(
            account_id=str(data.get("account_id") or ""),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            email=data.get("email"),
            granted_scopes=tuple(data.get("granted_scopes") or ()),
            id_token=data.get("id_token") if include_token else None,
        )

    def last_signed_in_account(self) -> Optional[PlatformAccount]:
        data = self._load_cache()
        if not data.get("account_id"):
            return None
        expires_at = data.get("id_token_expires_at") or 0
        fresh = bool(data.get("id_token")) and expires_at - TOKEN_EXPIRY_MARGIN_SECONDS > time.time()
        return self._to_account(data, include_token=fresh)

    def remember_authorization(self, account: PlatformAccount, refresh_token: Optional[str]) -> None:
        data = {
            "account_id": account.account_id,
            "given_name": account.given_name,
            "family_name": account.family_name,
            "email": account.email,
            "granted_scopes": list(account.granted_scopes),
            "refresh_token": refresh_token,
        }
        self._save_cache(data)

    def _refresh(self, refresh_token: str) -> Dict[str, Any]:
        resp = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise PlatformSignInError(f"token refresh failed: HTTP {resp.status_code}")
        return resp.json()

    async def silent_sign_in(self) -> PlatformAccount:
        data = self._load_cache()
        refresh_token = data.get("refresh_token")
        if not refresh_token:
            raise PlatformSignInError("no stored platform authorization")

        try:
            token = await asyncio.to_thread(self._refresh, refresh_token)
        except requests.RequestException as e:
            raise PlatformSignInError(f"network error during silent sign-in: {e}") from e
        except ValueError as e:
            raise PlatformSignInError(f"malformed token response: {e}") from e

        if not token.get("id_token"):
            raise PlatformSignInError("token response carried no id_token")

        data["id_token"] = token["id_token"]
        data["id_token_expires_at"] = int(time.time()) + int(token.get("expires_in", 0))
        if token.get("scope"):
            data["granted_scopes"] = token["scope"].split()
        if token.get("refresh_token"):
            data["refresh_token"] = token["refresh_token"]
        self._save_cache(data)
        log.info("Silent platform sign-in refreshed the cached authorization")
        return self._to_account(data, include_token=True)

    async def sign_out(self) -> None:
        if os.path.exists(self.cache_path):
            await asyncio.to_thread(os.remove, self.cache_path)
