from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

from abuseguard import container
from abuseguard.domain.guard.identity import InMemoryIdentityProvider
from abuseguard.domain.guard.models import UserProfile
from abuseguard.domain.guard.rate_limit import InMemoryCounterStore
from abuseguard.domain.guard.store import InMemoryGuardRepository
from abuseguard.main import app
from abuseguard.settings import settings


class FakeClock:
	"""Manually advanced epoch clock shared by the limiter and account-age checks."""

	def __init__(self, start: float = 1_700_000_000.0) -> None:
		self.value = start

	def __call__(self) -> float:
		return self.value

	def advance(self, seconds: float) -> None:
		self.value += seconds

	def datetime(self) -> datetime:
		return datetime.fromtimestamp(self.value, tz=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from abuseguard.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode, and bootstrap runs without a setup key unless a test sets one.
	"""
	original_env = settings.environment
	original_setup_key = settings.initial_admin_setup_key
	settings.environment = "dev"
	settings.initial_admin_setup_key = None
	try:
		yield
	finally:
		settings.environment = original_env
		settings.initial_admin_setup_key = original_setup_key


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture
def repo() -> InMemoryGuardRepository:
	return InMemoryGuardRepository()


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
	return InMemoryIdentityProvider()


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
	return InMemoryCounterStore()


@pytest.fixture(autouse=True)
def wired(repo, identity, counter_store, clock):
	container.configure(repository=repo, identity=identity, counter_store=counter_store, clock=clock)
	try:
		yield
	finally:
		container.reset()


@pytest.fixture
def service(wired):
	return container.get_service()


@pytest.fixture
def make_user(repo, clock):
	def _make(user_id: str, *, age_hours: float = 48.0, **fields) -> UserProfile:
		profile = UserProfile(
			id=user_id,
			created_at=clock.datetime() - timedelta(hours=age_hours),
			**fields,
		)
		repo.users[user_id] = profile
		return profile

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
