"""
Shared fixtures for unit and BDD tests.

- FakeClient: in-memory stand-in for the remote API. Collections are plain
  dicts; any operation can be told to raise a given SyncError.
- dispatcher: ManualDispatcher, so each test decides when (and in which
  order) network calls complete.
"""

import itertools

import pytest

from homecare.bus.events import EventBus
from homecare.net.dispatch import ManualDispatcher


class FakeClient:

    def __init__(self, collections=None):
        self.collections = {k: [dict(r) for r in v] for k, v in (collections or {}).items()}
        self.failures = {}
        self.calls = []
        self._ids = itertools.count(100)

    def fail(self, op, exc):
        """Make every later call to `op` raise exc ('fetch', 'create', 'update', 'remove')."""
        self.failures[op] = exc

    def recover(self, op=None):
        if op is None:
            self.failures.clear()
        else:
            self.failures.pop(op, None)

    def _check(self, op):
        if op in self.failures:
            raise self.failures[op]

    def fetch_collection(self, resource_type, params=None):
        self.calls.append(('fetch', resource_type, params))
        self._check('fetch')
        return [dict(r) for r in self.collections.get(resource_type, [])]

    def create(self, resource_type, draft):
        self.calls.append(('create', resource_type, draft))
        self._check('create')
        record = dict(draft, id=f"srv-{next(self._ids)}")
        self.collections.setdefault(resource_type, []).append(record)
        return dict(record)

    def update(self, resource_type, record_id, patch):
        self.calls.append(('update', resource_type, record_id, patch))
        self._check('update')
        rows = self.collections.setdefault(resource_type, [])
        row = next((r for r in rows if r['id'] == record_id), None)
        if row is None:
            row = {'id': record_id}
            rows.append(row)
        row.update(patch)
        return dict(row)

    def remove(self, resource_type, record_id):
        self.calls.append(('remove', resource_type, record_id))
        self._check('remove')
        rows = self.collections.get(resource_type, [])
        self.collections[resource_type] = [r for r in rows if r['id'] != record_id]

    def ops(self, op):
        return [c for c in self.calls if c[0] == op]


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def make_client():
    """Factory for a FakeClient pre-filled with server-side collections."""
    return FakeClient


@pytest.fixture
def dispatcher():
    return ManualDispatcher()


@pytest.fixture
def bus():
    """Fresh EventBus for each test. Never share state between tests."""
    return EventBus()


@pytest.fixture
def events(bus):
    """Every event emitted on the bus, as (name, data) tuples."""
    from homecare.bus import events as ev

    seen = []
    names = [v for k, v in vars(ev).items() if k.startswith('EVENT_')]
    for name in names:
        bus.on(name, lambda data, name=name: seen.append((name, data)))
    return seen
