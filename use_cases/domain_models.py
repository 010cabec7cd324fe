from dataclasses import InitVar, dataclass, asdict, field
from typing import Any, Dict, Optional, Tuple

DEFAULT_PLAYER_NAME = "Player"


class CredentialAlreadyUsedError(Exception):
    pass


@dataclass(frozen=True)
class AccountHandle:
    """DTO for an account as reported by the identity backend."""
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    email_verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(eq=False)
class Credential:
    """
    Federated proof of identity (server auth code, id token, ...).
    The token can be read exactly once; the second read raises
    CredentialAlreadyUsedError.
    """
    provider_id: str
    token_type: str
    token: InitVar[str]
    _token: str = field(init=False, repr=False)
    _consumed: bool = field(init=False, default=False, repr=False)

    def __post_init__(self, token: str):
        self._token = token

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> str:
        if self._consumed:
            raise CredentialAlreadyUsedError(f"{self.provider_id} credential was already exchanged")
        self._consumed = True
        token, self._token = self._token, ""
        return token


@dataclass(frozen=True)
class PlatformAccount:
    """DTO for a game-platform account returned by a platform sign-in client."""
    account_id: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None
    granted_scopes: Tuple[str, ...] = ()
    server_auth_code: Optional[str] = field(default=None, repr=False)
    id_token: Optional[str] = field(default=None, repr=False)

    def has_scopes(self, required: Tuple[str, ...]) -> bool:
        return set(required).issubset(self.granted_scopes)

    def player_name(self) -> str:
        parts = [self.given_name or DEFAULT_PLAYER_NAME, self.family_name or DEFAULT_PLAYER_NAME]
        return " ".join(parts)


@dataclass(frozen=True)
class PlayerProfile:
    user_id: str
    name: str
    email: Optional[str]
    created_at: str
