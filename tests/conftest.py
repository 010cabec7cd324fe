import pytest

from tests.fakes import FakeAuditLog, FakeConnectivity, FakeIdentityClient, FakePlatformClient, FakeProfileStore
from use_cases.auth_flow import AuthSessionController
from use_cases.federated_flow import FederatedSignIn


@pytest.fixture
def identity():
    return FakeIdentityClient()


@pytest.fixture
def platform():
    return FakePlatformClient()


@pytest.fixture
def profiles():
    return FakeProfileStore()


@pytest.fixture
def connectivity():
    return FakeConnectivity()


@pytest.fixture
def audit():
    return FakeAuditLog()


@pytest.fixture
def controller(identity, profiles, connectivity, platform, audit):
    return AuthSessionController(
        identity=identity,
        profiles=profiles,
        connectivity=connectivity,
        federated=FederatedSignIn(platform),
        audit=audit,
    )
