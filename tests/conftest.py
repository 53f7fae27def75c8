import fakeredis
import pytest

from config import Settings
from context import build_context
from database import create_ledger_engine
from models import Location


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    yield client
    client.flushall()


def _build(redis_client, **overrides):
    settings = Settings(
        database_url="sqlite://",
        write_worker_interval=0.05,
        autopilot_interval=0.05,
        **overrides,
    )
    return build_context(settings, redis_client=redis_client, engine=create_ledger_engine("sqlite://"))


@pytest.fixture
def context(redis_client):
    ctx = _build(redis_client)
    yield ctx
    ctx.close()


@pytest.fixture
def deferred_context(redis_client):
    """Same wiring, with serve/leave writes going through the write-behind queue."""
    ctx = _build(redis_client, write_behind_enabled=True)
    yield ctx
    ctx.close()


@pytest.fixture
def service(context):
    return context.service


@pytest.fixture
def make_location(context):
    def _make(name="Downtown Clinic", prefix="A", capacity=100, service_minutes=5, ctx=None):
        target = ctx or context
        return target.locations.add(
            Location(
                name=name,
                queue_prefix=prefix,
                max_queue_capacity=capacity,
                service_time_minutes=service_minutes,
            )
        )

    return _make


@pytest.fixture
def location(make_location):
    return make_location(capacity=2)
