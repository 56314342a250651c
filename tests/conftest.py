"""Shared fixtures: an in-memory portal wired the same way the API wires it."""

from dataclasses import dataclass, replace

import pytest
from fastapi.testclient import TestClient

from civicwatch.config import settings
from civicwatch.domain.roles import Actor, Role
from civicwatch.infra.ai_oracle import TextOracle
from civicwatch.infra.identity import InMemoryIdentityProvider
from civicwatch.infra.repositories import InMemoryRepository
from civicwatch.infra.storage import InMemoryBlobStore
from civicwatch.services.container import PortalServices
from civicwatch.services.rate_limiter import RateLimiter


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@dataclass
class SeededUser:
    profile_id: str
    token: str
    actor: Actor

    @property
    def headers(self):
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture
def test_settings():
    return replace(settings, allowed_origins=(), trust_proxy_headers=False, log_dir="")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(clock, test_settings):
    return PortalServices.assemble(
        InMemoryRepository(),
        InMemoryBlobStore(),
        InMemoryIdentityProvider(),
        TextOracle(),
        limiter=RateLimiter(clock=clock),
        config=test_settings,
    )


@pytest.fixture
def make_user(services):
    """Create an identity-provider user, its profile and role, and a bearer token."""
    counter = {"n": 0}

    def _make(role=Role.CITIZEN, email=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.org"
        user = services.identity_provider.create_user(email, "secret123", {})
        profile = services.repo.create_profile({"auth_user_id": user["id"], "email": email, "full_name": email})
        services.repo.set_user_role(profile["id"], role.value)
        token = services.identity_provider.issue_token(user["id"])
        return SeededUser(
            profile_id=profile["id"],
            token=token,
            actor=Actor(profile_id=profile["id"], role=role, auth_user_id=user["id"]),
        )

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user(Role.CITIZEN)


@pytest.fixture
def official(make_user):
    return make_user(Role.OFFICIAL)


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture
def client(services, test_settings):
    from civicwatch.api.main import create_app

    with TestClient(create_app(services, config=test_settings)) as test_client:
        yield test_client


@pytest.fixture
def pothole():
    return {
        "type": "infrastructure",
        "category": "roads",
        "title": "Pothole",
        "description": "Large pothole on Elm St",
        "severity": "high",
        "is_anonymous": False,
    }
