"""Shared fixtures: a throwaway database, a controllable clock and wired services."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from pairhub.config import Settings
from pairhub.database.engine import init_db
from pairhub.database.repository import SessionRepository
from pairhub.database.store import RecordStore
from pairhub.mock_protocol.client import SimulatedProtocolClient
from pairhub.models.session import SessionMeta, SessionStatus
from pairhub.models.user import User
from pairhub.services.accounts import AccountService
from pairhub.services.admission import AdmissionGate
from pairhub.services.container import Services
from pairhub.services.dispatcher import CommandDispatcher
from pairhub.services.events import PAIRING_CODE, EventHub
from pairhub.services.metering import MeteringScheduler
from pairhub.services.orchestrator import PairingOrchestrator
from pairhub.services.registry import LiveHandle, SessionRegistry


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


async def wait_for(predicate, timeout: float = 2.0):
    """Poll *predicate* (sync or async) until it returns something truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if asyncio.iscoroutine(value):
            value = await value
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def event_names(services: Services, session_id: str) -> list[str]:
    return [event.name for event in services.events.history(session_id)]


def pairing_code(services: Services, session_id: str) -> str:
    for event in services.events.history(session_id):
        if event.name == PAIRING_CODE:
            return event.data["code"]
    raise AssertionError("no pairing code published")


async def assert_consistent(services: Services) -> None:
    """No connected record without a handle, no handle on a terminal record."""
    async with services.store.read() as session:
        records = await SessionRepository(session).list_by_status(*SessionStatus)
    live = services.registry.live_ids()
    by_id = {meta.id: meta for meta in records}
    for meta in records:
        if meta.status is SessionStatus.CONNECTED:
            assert meta.id in live, f"{meta.id} connected without a live handle"
        if meta.status.is_terminal:
            assert meta.id not in live, f"{meta.id} is {meta.status.value} but still live"
    for session_id in live:
        assert by_id[session_id].status.is_active


def make_services(
    store: RecordStore,
    protocol: SimulatedProtocolClient,
    clock: FakeClock,
    tmp_path,
    *,
    max_active_sessions: int = 40,
    pairing_cost: int = 5,
    coins_per_minute: int = 1,
) -> Services:
    config = Settings(
        _env_file=None,
        sessions_dir=str(tmp_path / "sessions"),
        max_active_sessions=max_active_sessions,
        pairing_cost=pairing_cost,
        coins_per_minute=coins_per_minute,
    )
    events = EventHub()
    registry = SessionRegistry(store, clock=clock)
    dispatcher = CommandDispatcher(prefix=".")
    orchestrator = PairingOrchestrator(registry, events, protocol, dispatcher)
    return Services(
        settings=config,
        store=store,
        protocol=protocol,
        events=events,
        accounts=AccountService(store, signup_coins=100),
        registry=registry,
        gate=AdmissionGate(
            store,
            sessions_dir=config.sessions_dir,
            max_active_sessions=max_active_sessions,
            pairing_cost=pairing_cost,
            cooldown_seconds=30,
            clock=clock,
        ),
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        metering=MeteringScheduler(
            store, registry, orchestrator, coins_per_minute=coins_per_minute, clock=clock
        ),
    )


# ── Fixtures ─────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def protocol() -> SimulatedProtocolClient:
    return SimulatedProtocolClient()


@pytest_asyncio.fixture
async def store(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)
    yield RecordStore(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def services(store, protocol, clock, tmp_path):
    services = make_services(store, protocol, clock, tmp_path)
    yield services
    await services.orchestrator.shutdown()


@pytest.fixture
def make_user(store):
    """Insert a user directly (skips bcrypt)."""

    async def _make(coins: int = 100, email: str | None = None) -> User:
        async with store.transaction() as tx:
            user = User(email=email or f"{uuid.uuid4().hex}@example.com", password_hash="x", coins=coins)
            tx.session.add(user)
        return user

    return _make


@pytest.fixture
def get_user(store):
    async def _get(user_id: str) -> User:
        async with store.read() as session:
            return await session.get(User, user_id)

    return _get


@pytest.fixture
def get_meta(store):
    async def _get(session_id: str) -> SessionMeta:
        async with store.read() as session:
            return await session.get(SessionMeta, session_id)

    return _get


@pytest.fixture
def open_session(services, protocol, get_meta):
    """Admit, start pairing and confirm the code: returns a connected handle."""

    async def _open(user_id: str, phone_number: str = "15551234567") -> LiveHandle:
        meta = await services.gate.admit(user_id, phone_number)
        handle = await services.orchestrator.start_pairing(
            meta.id, meta.folder, meta.phone_number, meta.owner_user_id
        )
        await wait_for(lambda: PAIRING_CODE in event_names(services, meta.id))
        code = pairing_code(services, meta.id)
        assert protocol.confirm_code(meta.id, code)

        async def connected():
            return (await get_meta(meta.id)).status is SessionStatus.CONNECTED

        await wait_for(connected)
        return handle

    return _open
