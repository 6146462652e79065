"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from waterfall.database import Base
from waterfall.engine.clock import OfferClock
from waterfall.engine.models import Carrier, CustomTier, WaterfallEntry


T0 = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced time source. Pass as OfferClock(now_fn=fake)."""

    def __init__(self, start=T0):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, minutes=0, seconds=0):
        self.current = self.current + timedelta(minutes=minutes, seconds=seconds)
        return self.current


class FakeRedis:
    """Minimal in-memory Redis fake for snapshot tests."""

    def __init__(self):
        self.store = {}
        self.sets = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        for k in keys:
            self.store.pop(k, None)
            self.sets.pop(k, None)

    def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(members)

    def srem(self, key, *members):
        self.sets.setdefault(key, set()).difference_update(members)

    def smembers(self, key):
        return set(self.sets.get(key, set()))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def clock(fake_clock):
    return OfferClock(now_fn=fake_clock)


@pytest.fixture
def make_entry():
    """Factory — WaterfallEntry with a carrier; rate in dollars."""
    def _make(carrier_id, rate=None, window=30, name=None, email='', capacity=()):
        carrier = Carrier(
            id=carrier_id,
            name=name or f'Carrier {carrier_id}',
            mc_number=f'MC-{carrier_id}',
            rate_cents=round(rate * 100) if rate is not None else None,
            contact_email=email or f'{carrier_id.lower()}@example.com',
            capacity=tuple(capacity),
        )
        return WaterfallEntry(carrier=carrier, response_window=window)
    return _make


@pytest.fixture
def make_tier():
    def _make(tier_id, carrier_ids, order=1, name=None):
        return CustomTier(id=tier_id, name=name or tier_id, carrier_ids=list(carrier_ids), order=order)
    return _make


@pytest.fixture
def lane_payload():
    """Lane JSON as the dashboard saves it (rates in dollars)."""
    return {
        'id': 'lane-1',
        'originZip': '60601',
        'destinationZip': '75201',
        'equipment': 'Dry Van',
        'waterfall': {
            'id': 'wf-1',
            'status': 'Active',
            'autoTierEnabled': False,
            'customTiers': [
                {'id': 'tier-1', 'name': 'Preferred Carriers', 'carrierIds': ['carrier_001', 'carrier_002'], 'order': 1},
            ],
            'items': [
                {'id': 'item-1', 'responseWindow': 20, 'carrier': {
                    'id': 'carrier_001', 'name': 'Swift Transportation', 'mcNumber': 'MC-123456',
                    'contactEmail': 'john.smith@swift.com', 'rate': 2500}},
                {'id': 'item-2', 'responseWindow': 20, 'carrier': {
                    'id': 'carrier_002', 'name': 'Regional Express', 'mcNumber': 'MC-654321',
                    'contactEmail': 'sarah.johnson@regional.com', 'rate': 2500}},
                {'id': 'item-3', 'responseWindow': 30, 'carrier': {
                    'id': 'carrier_003', 'name': 'Heartland Express', 'mcNumber': 'MC-111222',
                    'contactEmail': 'dispatch@heartland.com', 'rate': 2850}},
            ],
        },
    }


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import waterfall.models.db_run  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def dispatcher(clock, fake_redis):
    """Dispatcher on a fake clock with a fake-Redis snapshot store and a mock archive."""
    from waterfall.dispatcher import Dispatcher
    from waterfall.services.snapshots import SnapshotStore
    return Dispatcher(store=SnapshotStore(fake_redis), archive=MagicMock(), clock=clock)


@pytest.fixture
def app(dispatcher):
    """Flask test app."""
    from waterfall import create_app
    app = create_app(dispatcher=dispatcher)
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def mock_post():
    """Patch requests.post inside the notifications module."""
    with patch('waterfall.services.notifications.requests.post') as post:
        post.return_value = MagicMock(status_code=200)
        yield post
