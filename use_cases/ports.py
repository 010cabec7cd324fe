"""Collaborator contracts consumed by the authentication use cases."""

from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from use_cases.domain_models import AccountHandle, Credential, PlatformAccount, PlayerProfile
from use_cases.results import Result


@runtime_checkable
class IdentityClient(Protocol):
    async def create_account(self, email: str, password: str) -> Result[AccountHandle]: ...

    async def sign_in(self, email: str, password: str) -> Result[AccountHandle]: ...

    async def sign_in_with_federated_credential(self, credential: Credential) -> Result[AccountHandle]: ...

    async def send_verification_email(self, account: AccountHandle) -> Result[None]: ...

    async def send_password_reset(self, email: str) -> Result[None]: ...

    async def is_account_registered(self, email: str) -> Result[bool]: ...

    def sign_out(self) -> None: ...

    def current_account(self) -> Optional[AccountHandle]: ...


class PlatformSignInError(Exception):
    pass


@runtime_checkable
class PlatformSignInClient(Protocol):
    provider_id: str
    required_scopes: Tuple[str, ...]

    def last_signed_in_account(self) -> Optional[PlatformAccount]: ...

    async def silent_sign_in(self) -> PlatformAccount: ...

    async def sign_out(self) -> None: ...


@runtime_checkable
class ProfileStore(Protocol):
    async def create(self, user_id: str, name: str, email: Optional[str]) -> Result[None]: ...

    async def get(self, user_id: str) -> Optional[PlayerProfile]: ...


@runtime_checkable
class Connectivity(Protocol):
    def is_connected(self) -> bool: ...


@runtime_checkable
class AuditLog(Protocol):
    def log_action(
        self,
        action: Any,
        target_type: str,
        actor_user_id: Optional[str] = None,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        result: str = "success",
    ) -> None: ...
