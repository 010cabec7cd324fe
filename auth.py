from infrastructure.federated.play_games_client import PlayGamesSignInClient
from infrastructure.identity.firebase_identity_client import FirebaseIdentityClient
from infrastructure.network.connectivity import DEFAULT_PROBE_URL, RequestsConnectivity
from infrastructure.repositories.sqlite_audit_repository import SQLiteAuditRepository
from infrastructure.repositories.sqlite_profile_repository import SQLiteProfileRepository
from use_cases.auth_flow import AuthSessionController
from use_cases.federated_flow import FederatedSignIn
import logging
import os
import toml

log = logging.getLogger(__name__)

PROFILE_DB = "players.db"
PLATFORM_CACHE_FILE = ".platform_account.json"
SECRETS_FILE = os.getenv("SECRETS_FILE", ".secrets.toml")
MANUAL_SIGN_IN_TIMEOUT_SECONDS = float(os.getenv("MANUAL_SIGN_IN_TIMEOUT_SECONDS", "120"))
HTTP_TIMEOUT = 10
CONNECTIVITY_PROBE_URL = os.getenv("CONNECTIVITY_PROBE_URL", DEFAULT_PROBE_URL)

def _load_secrets():
    if not os.path.exists(SECRETS_FILE):
        return {}
    try:
        return toml.load(SECRETS_FILE)
    except (OSError, toml.TomlDecodeError) as e:
        log.error(f"Error reading secrets file {SECRETS_FILE}: {e}")
        return {}

def get_secret(key):
    value = _load_secrets().get(key)
    if value is None:
        value = os.getenv(key)
    return value

_profile_repo = None
_audit_repo = None
_identity_client = None
_platform_client = None
_connectivity = None
_controller = None

def get_profile_repo() -> SQLiteProfileRepository:
    global _profile_repo
    if _profile_repo is None or _profile_repo.db_path != PROFILE_DB:
        _profile_repo = SQLiteProfileRepository(PROFILE_DB)
        _profile_repo.init_db()
    return _profile_repo

def get_audit_repo() -> SQLiteAuditRepository:
    global _audit_repo
    if _audit_repo is None or _audit_repo.db_path != PROFILE_DB:
        # audit_log lives in the profile database and is created by its migrations
        get_profile_repo()
        _audit_repo = SQLiteAuditRepository(PROFILE_DB)
    return _audit_repo

def get_identity_client() -> FirebaseIdentityClient:
    global _identity_client
    if _identity_client is None:
        api_key = get_secret("FIREBASE_API_KEY")
        if not api_key:
            log.warning("FIREBASE_API_KEY is not configured, identity calls will fail")
        _identity_client = FirebaseIdentityClient(api_key or "", timeout=HTTP_TIMEOUT)
    return _identity_client

def get_platform_client() -> PlayGamesSignInClient:
    global _platform_client
    if _platform_client is None:
        _platform_client = PlayGamesSignInClient(
            client_id=get_secret("GOOGLE_CLIENT_ID") or "",
            client_secret=get_secret("GOOGLE_CLIENT_SECRET") or "",
            cache_path=PLATFORM_CACHE_FILE,
            timeout=HTTP_TIMEOUT,
        )
    return _platform_client

def get_connectivity() -> RequestsConnectivity:
    global _connectivity
    if _connectivity is None:
        _connectivity = RequestsConnectivity(CONNECTIVITY_PROBE_URL)
    return _connectivity

def get_controller() -> AuthSessionController:
    """The process-wide session controller. Built on first use."""
    global _controller
    if _controller is None:
        _controller = AuthSessionController(
            identity=get_identity_client(),
            profiles=get_profile_repo(),
            connectivity=get_connectivity(),
            federated=FederatedSignIn(get_platform_client()),
            audit=get_audit_repo(),
            manual_timeout=MANUAL_SIGN_IN_TIMEOUT_SECONDS,
        )
    return _controller

async def reset_controller():
    """Close the current controller and drop every cached adapter."""
    global _controller, _identity_client, _platform_client, _connectivity, _profile_repo, _audit_repo
    controller = _controller
    _controller = None
    _identity_client = None
    _platform_client = None
    _connectivity = None
    _profile_repo = None
    _audit_repo = None
    if controller is not None:
        await controller.close()
