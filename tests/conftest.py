import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ENABLE_PERSISTENCE", "false")
os.environ.setdefault("ENABLE_BREACH_CHECK", "false")
os.environ.setdefault("EMAIL_PROVIDER", "console")

import time  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from aurelia.main import app  # noqa: E402
from aurelia.models import User  # noqa: E402
from aurelia.services.auth_service import AuthService  # noqa: E402
from aurelia.services.database import database  # noqa: E402
from aurelia.services.jwt_service import jwt_service  # noqa: E402
from aurelia.services.redis_cache import redis_cache  # noqa: E402


class StubPipeline:
    def __init__(self, redis: "StubRedis"):
        self.redis = redis
        self.ops: list[tuple[str, str]] = []

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def expire(self, key, _ttl):
        self.ops.append(("expire", key))
        return self

    async def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                value = int(self.redis.store.get(key, 0)) + 1
                self.redis.store[key] = str(value)
                results.append(value)
            else:
                results.append(True)
        return results


class StubRedis:
    """In-memory stand-in for the handful of Redis commands the services use."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expiry: dict[str, float] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.expiry[key] = time.time() + ttl
        return True

    async def delete(self, key):
        existed = key in self.store
        self.store.pop(key, None)
        self.expiry.pop(key, None)
        return 1 if existed else 0

    async def ttl(self, key):
        if key not in self.expiry:
            return -2
        return int(self.expiry[key] - time.time())

    def pipeline(self):
        return StubPipeline(self)

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def reset_redis_state():
    """Ensure redis_cache is disconnected after each test."""
    original_client = redis_cache.client
    original_connected = redis_cache._connected
    try:
        redis_cache.client = None
        redis_cache._connected = False
        yield
    finally:
        redis_cache.client = original_client
        redis_cache._connected = original_connected


@pytest.fixture
def fake_redis():
    stub = StubRedis()
    redis_cache.client = stub
    redis_cache._connected = True
    return stub


@pytest.fixture
async def db():
    connected = await database.connect("sqlite+aiosqlite:///:memory:")
    assert connected
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
async def api(db):
    """Async client sharing the test's event loop with the SQLite engine."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def create_user(
    email: str = "member@example.com",
    password: str | None = "SecurePass123",
    is_admin: bool = False,
    membership_tier: str | None = None,
    **fields,
) -> User:
    user = User(
        email=email,
        email_verified=True,
        password_hash=AuthService.hash_password(password) if password else None,
        is_admin=is_admin,
        membership_tier=membership_tier,
        **fields,
    )
    async with database.session() as session:
        session.add(user)
        await session.commit()
        await session.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = jwt_service.create_access_token(
        user.id, user.email, is_admin=user.is_admin, membership_tier=user.membership_tier
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def member(db):
    return await create_user()


@pytest.fixture
async def admin(db):
    return await create_user(email="staff@example.com", is_admin=True)
