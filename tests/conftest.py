import itertools
import os
import tempfile
from dataclasses import dataclass

_DB_DIR = tempfile.mkdtemp(prefix="quickserve-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"
for _name in ("RABBIT_URL", "REDIS_URL", "MOMO_BASE_URL"):
    os.environ.pop(_name, None)

import httpx  # noqa: E402
import pytest  # noqa: E402

from quickserve.db import Base, SessionLocal, engine  # noqa: E402
from quickserve.deps import get_event_bus, get_notifier, get_payment_provider, get_redis  # noqa: E402
from quickserve.lifecycle import BookingLifecycleManager  # noqa: E402
from quickserve.main import app  # noqa: E402
from quickserve.models import (  # noqa: E402
    Booking,
    BookingStatus,
    ServiceCategory,
    User,
    UserRole,
    VerificationStatus,
    Worker,
    WorkerService,
)
from quickserve.momo import MomoClient  # noqa: E402
from quickserve.security import Actor, create_access_token  # noqa: E402
from quickserve.workers import directory  # noqa: E402

ACCRA = (5.6037, -0.1870)


@dataclass
class SentNotification:
    user_id: str
    type: str
    title: str
    body: str
    data: dict | None


class RecordingBus:
    def __init__(self):
        self.events = []

    async def publish(self, topic, event_name, payload):
        self.events.append((topic, event_name, payload))

    def named(self, event_name):
        return [e for e in self.events if e[1] == event_name]


class RecordingNotifier:
    def __init__(self):
        self.sent: list[SentNotification] = []

    async def create(self, user_id, type, title, body, data=None):
        self.sent.append(SentNotification(user_id, type, title, body, data))

    def types_for(self, user_id):
        return [n.type for n in self.sent if n.user_id == user_id]


class ExplodingBus:
    async def publish(self, topic, event_name, payload):
        raise ConnectionError("broker down")


class ExplodingNotifier:
    async def create(self, user_id, type, title, body, data=None):
        raise RuntimeError("notification store down")


class Factory:
    """Seeds rows through their own sessions, like separate API calls would."""

    def __init__(self):
        self._seq = itertools.count(1)

    async def _save(self, *objs):
        async with SessionLocal() as db:
            db.add_all(objs)
            await db.commit()
        return objs[0]

    async def user(self, role=UserRole.CUSTOMER, first_name="Ama", **kwargs) -> User:
        n = next(self._seq)
        return await self._save(
            User(phone=f"+23320000{n:04d}", first_name=first_name, last_name=f"Test{n}", role=role.value, **kwargs)
        )

    async def category(self, name=None) -> ServiceCategory:
        return await self._save(ServiceCategory(name=name or f"Category {next(self._seq)}"))

    async def worker(
        self,
        categories=(),
        price=100.0,
        verified=True,
        online=True,
        location=ACCRA,
        user=None,
    ) -> Worker:
        user = user or await self.user(role=UserRole.WORKER, first_name="Kofi")
        worker = Worker(
            user_id=user.id,
            verification_status=(VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING).value,
            is_online=online,
            current_latitude=location[0] if location else None,
            current_longitude=location[1] if location else None,
        )
        await self._save(worker)
        for category in categories:
            await self._save(WorkerService(worker_id=worker.id, category_id=category.id, base_price=price))
        return worker

    async def booking(self, customer, category, worker=None, status=BookingStatus.PENDING, **kwargs) -> Booking:
        values = {
            "description": "Kitchen sink is leaking badly",
            "latitude": ACCRA[0],
            "longitude": ACCRA[1],
            "address": "12 Oxford Street, Osu",
        }
        values.update(kwargs)
        return await self._save(
            Booking(
                customer_id=customer.id,
                category_id=category.id,
                worker_id=worker.id if worker else None,
                status=status.value,
                **values,
            )
        )


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role)


def worker_actor(worker: Worker) -> Actor:
    return Actor(user_id=worker.user_id, role=UserRole.WORKER.value)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # pooled aiosqlite connections belong to this test's event loop
    await engine.dispose()


@pytest.fixture
async def db():
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def factory():
    return Factory()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lifecycle(notifier, bus):
    return BookingLifecycleManager(notifier, bus, directory)


@pytest.fixture
def payment_provider():
    # unconfigured: issues local references without calling out
    return MomoClient(None)


@pytest.fixture
def redis_client():
    return None


@pytest.fixture
async def client(bus, notifier, payment_provider, redis_client):
    app.dependency_overrides[get_event_bus] = lambda: bus
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_redis] = lambda: redis_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
