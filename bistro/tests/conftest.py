import pathlib
import sys
from collections import defaultdict
from datetime import timedelta

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from config import Settings  # noqa: E402
from bistro.app.db import create_test_engine, init_models, session_factory  # noqa: E402
from bistro.app.events import EventBus, EventType  # noqa: E402
from bistro.app.repos_sqlalchemy import (  # noqa: E402
    SqlIdentityRepo,
    SqlInventoryRepo,
    SqlKitchenRepo,
    SqlOrdersRepo,
)
from bistro.app.security.passwords import PasswordService  # noqa: E402
from bistro.app.security.tokens import TokenService  # noqa: E402
from bistro.app.services import (  # noqa: E402
    IdentityService,
    InventoryService,
    KitchenService,
    OrderService,
    register_order_handlers,
)

SECRET = "test-secret-that-is-long-enough-for-hs256"


def fast_settings(**overrides) -> Settings:
    """Settings with a cheap argon2 cost so hashing does not dominate the run."""

    values = dict(
        env="test",
        database_url="sqlite+aiosqlite://",
        jwt_secret=SECRET,
        password_time_cost=1,
        password_memory_cost=8192,
    )
    values.update(overrides)
    return Settings(**values)


class Recorder:
    """Collects every event published on a bus, grouped by type."""

    def __init__(self, bus: EventBus) -> None:
        self.events = []
        self.by_type = defaultdict(list)
        for event_type in EventType:
            bus.subscribe(event_type, self._record)

    async def _record(self, event) -> None:
        self.events.append(event)
        self.by_type[event.type].append(event)

    def of(self, event_type: EventType) -> list:
        return list(self.by_type[event_type])

    def clear(self) -> None:
        self.events.clear()
        self.by_type.clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return fast_settings()


@pytest.fixture
async def engine():
    engine = create_test_engine()
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return session_factory(engine)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def inventory(sessions, bus) -> InventoryService:
    return InventoryService(SqlInventoryRepo(sessions), bus)


@pytest.fixture
def kitchen(sessions, bus) -> KitchenService:
    return KitchenService(SqlKitchenRepo(sessions), bus)


@pytest.fixture
def orders(sessions, bus, kitchen) -> OrderService:
    register_order_handlers(bus, kitchen)
    return OrderService(SqlOrdersRepo(sessions), bus)


@pytest.fixture
def recorder(bus) -> Recorder:
    # subscribed after any fixture handlers so it sees events in publish order
    return Recorder(bus)


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(
        SECRET,
        "bistro-core",
        "restaurant-platform",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(hours=24),
    )


@pytest.fixture
async def identity(sessions, tokens) -> IdentityService:
    service = IdentityService(
        SqlIdentityRepo(sessions), PasswordService(time_cost=1, memory_cost=8192), tokens
    )
    await service.seed_default_roles()
    return service
