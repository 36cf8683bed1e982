"""Shared test fixtures."""
import threading
from datetime import datetime, timezone, timedelta

import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lead_insights.database import Base


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
ORG = 'org-acme'
OTHER_ORG = 'org-globex'


def _import_models():
    import lead_insights.models.lead
    import lead_insights.models.activity
    import lead_insights.models.lead_score
    import lead_insights.models.scoring_config
    import lead_insights.models.dead_letter


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    _import_models()
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


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that code calling session.close() in its finally
    blocks doesn't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('lead_insights.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite DB, for tests that use real threads."""
    engine = create_engine(f'sqlite:///{tmp_path / "scores.db"}', connect_args={'check_same_thread': False})
    _import_models()
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


# ── Redis fake ────────────────────────────────────────────────────────────────

class FakeLock:
    """Blocking lock with redis-py's acquire/release surface, backed by threading.Lock."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None):
        self._redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._owned = False

    def acquire(self):
        lock = self._redis._locks.setdefault(self.name, threading.Lock())
        wait = -1 if self.blocking_timeout is None else self.blocking_timeout
        self._owned = lock.acquire(timeout=wait)
        if self._owned:
            self._redis.lock_events.append(('acquire', self.name))
        return self._owned

    def release(self):
        from redis.exceptions import LockNotOwnedError
        if not self._owned:
            raise LockNotOwnedError('Cannot release a lock that is not owned')
        self._owned = False
        self._redis.lock_events.append(('release', self.name))
        self._redis._locks[self.name].release()


class FakeRedis:
    """Minimal in-memory Redis fake: strings, hashes, lists, sets, locks."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}
        self.lists = {}
        self.sets = {}
        self.expiries = {}
        self.lock_events = []
        self._locks = {}

    # strings
    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.get_store:
            return None
        self.get_store[key] = str(value)
        if ex is not None:
            self.expiries[key] = ex
        return True

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)
            self.lists.pop(k, None)
            self.sets.pop(k, None)

    def expire(self, key, seconds):
        self.expiries[key] = seconds
        return True

    # hashes
    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = str(value)

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    # lists
    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def lpush(self, key, *values):
        for v in values:
            self.lists.setdefault(key, []).insert(0, v)
        return len(self.lists[key])

    def lpop(self, key):
        items = self.lists.get(key) or []
        return items.pop(0) if items else None

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    def llen(self, key):
        return len(self.lists.get(key, []))

    # sets
    def sadd(self, key, *members):
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    def srem(self, key, *members):
        s = self.sets.get(key, set())
        removed = len(s & set(members))
        s.difference_update(members)
        return removed

    def scard(self, key):
        return len(self.sets.get(key, set()))

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    # misc
    def ping(self):
        return True

    def lock(self, name, timeout=None, blocking_timeout=None):
        return FakeLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that replays queued calls on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        def queue(*args):
            self._ops.append((name, args))
            return self
        return queue

    def execute(self):
        results = [getattr(self._redis, name)(*args) for name, args in self._ops]
        self._ops = []
        return results


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


@pytest.fixture
def mock_redis(fake_redis):
    """Swap the shared Redis client for the in-memory fake."""
    with patch('lead_insights.extensions.redis_client', fake_redis):
        yield fake_redis


@pytest.fixture
def app(mock_redis):
    """Flask test app."""
    from lead_insights import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Domain factories ─────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    """Scoring settings from the built-in defaults."""
    from lead_insights.scoring.settings import build_settings, _default_config
    return build_settings(None, base=_default_config())


@pytest.fixture
def make_lead(db_session):
    """Factory fixture — inserts a Lead and returns it."""
    from lead_insights.models.lead import Lead

    def _make(session=None, **overrides):
        session = session or db_session
        fields = dict(organization_id=ORG, name='Test Lead')
        fields.update(overrides)
        lead = Lead(**fields)
        session.add(lead)
        session.commit()
        return lead
    return _make


@pytest.fixture
def make_activity(db_session):
    """Factory fixture — inserts an Activity `days_ago` days before NOW."""
    from lead_insights.models.activity import Activity

    def _make(lead, session=None, days_ago=1.0, **overrides):
        session = session or db_session
        fields = dict(
            lead_id=lead.id,
            organization_id=lead.organization_id,
            type='message',
            direction='inbound',
            occurred_at=NOW - timedelta(days=days_ago),
            payload={},
        )
        fields.update(overrides)
        activity = Activity(**fields)
        session.add(activity)
        session.commit()
        return activity
    return _make


@pytest.fixture
def snapshot_window():
    """Factory fixture — builds an ActivityWindow from (type, direction, days_ago, payload) tuples."""
    from lead_insights.scoring.base import ActivitySnapshot, ActivityWindow

    def _make(*rows, now=NOW):
        activities = []
        for i, row in enumerate(rows):
            activity_type, direction, days_ago = row[:3]
            payload = row[3] if len(row) > 3 else {}
            activities.append(ActivitySnapshot(
                id=f'act-{i}',
                type=activity_type,
                direction=direction,
                occurred_at=now - timedelta(days=days_ago),
                payload=payload,
            ))
        activities.sort(key=lambda a: a.occurred_at)
        return ActivityWindow(activities=activities, now=now)
    return _make
