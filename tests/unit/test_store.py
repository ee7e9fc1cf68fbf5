"""
Unit tests for the generic resource store (homecare/engine/store.py).

Strategy: a FakeClient plays the server and a ManualDispatcher holds every
network call until the test runs it, so each test sees the optimistic state
first and can deliver responses in any order it likes.
"""

import pytest

from homecare.bus.events import (
    EVENT_RECORD_CREATED, EVENT_RECORD_SYNCED, EVENT_SYNC_FAILED,
    EVENT_RESOURCE_DEGRADED, EVENT_RESOURCE_LOADED, EVENT_DEFAULT_CHANGED,
)
from homecare.engine.seed import seed_payment_methods, seed_services
from homecare.engine.store import ResourceStore, is_temporary
from homecare.models import (
    PaymentMethod, Service,
    LOAD_IDLE, LOAD_LOADING, LOAD_READY, LOAD_DEGRADED,
    STATUS_OPTIMISTIC, STATUS_SYNCED, STATUS_FAILED, STATUS_STALE,
)
from homecare.net.errors import (
    DecodeFailure, NetworkUnavailable, ServerFault, ServerRejected,
)


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

SERVER_CARDS = [
    {'id': 'a', 'type': 'Visa', 'last4': '1111', 'expiry': '01/30', 'is_default': True},
    {'id': 'b', 'type': 'Amex', 'last4': '2222', 'expiry': '02/30', 'is_default': False},
]

SERVER_SERVICES = [
    {'id': 's1', 'name': 'Home Cleaning', 'frequency': 'Weekly'},
    {'id': 's2', 'name': 'Plumbing', 'frequency': 'As needed'},
]


@pytest.fixture
def cards(make_client, dispatcher, bus):
    """Payment-method store loaded from the server with cards a (default) and b."""
    client = make_client({'payment-methods': SERVER_CARDS})
    store = ResourceStore('payment-methods', PaymentMethod, client, dispatcher,
                          seed_payment_methods, exclusive_flag='is_default', bus=bus)
    store.load()
    dispatcher.run_all()
    return store


@pytest.fixture
def services(make_client, dispatcher, bus):
    client = make_client({'services': SERVER_SERVICES})
    store = ResourceStore('services', Service, client, dispatcher, seed_services, bus=bus)
    store.load()
    dispatcher.run_all()
    return store


def defaults(store):
    return [r.id for r in store.data if r.is_default]


def event_names(events):
    return [name for name, _ in events]


# ---------------------------------------------------------------------------
# load / refresh
# ---------------------------------------------------------------------------

class TestLoad:

    def test_starts_idle(self, client, dispatcher):
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        assert store.load_state == LOAD_IDLE
        assert store.data == ()

    def test_loading_until_response(self, client, dispatcher):
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()
        assert store.load_state == LOAD_LOADING
        assert store.pending == 1

    def test_success_replaces_data_and_is_ready(self, services):
        assert services.load_state == LOAD_READY
        assert [s.id for s in services.data] == ['s1', 's2']
        assert services.error is None
        assert services.pending == 0

    def test_failure_uses_seed_exactly(self, client, dispatcher):
        client.fail('fetch', NetworkUnavailable('no route'))
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()
        dispatcher.run_all()
        assert store.load_state == LOAD_DEGRADED
        assert list(store.data) == seed_services()
        assert isinstance(store.error, NetworkUnavailable)
        assert store.error_message == NetworkUnavailable.user_message

    def test_failure_emits_degraded(self, client, dispatcher, bus, events):
        client.fail('fetch', ServerFault('500'))
        store = ResourceStore('services', Service, client, dispatcher, seed_services, bus=bus)
        store.load()
        dispatcher.run_all()
        assert EVENT_RESOURCE_DEGRADED in event_names(events)
        degraded = dict(events)[EVENT_RESOURCE_DEGRADED]
        assert degraded['kind'] == 'http5xx'
        assert degraded['resource_type'] == 'services'

    def test_refresh_after_failure_replaces_seed_entirely(self, make_client, dispatcher):
        client = make_client({'services': SERVER_SERVICES})
        client.fail('fetch', NetworkUnavailable())
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()
        dispatcher.run_all()
        assert store.load_state == LOAD_DEGRADED

        client.recover()
        store.refresh()
        dispatcher.run_all()
        assert store.load_state == LOAD_READY
        assert [s.id for s in store.data] == ['s1', 's2']
        assert store.error is None

    def test_undecodable_payload_degrades(self, make_client, dispatcher):
        client = make_client({'services': [{'name': 'no id here'}]})
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()
        dispatcher.run_all()
        assert store.load_state == LOAD_DEGRADED
        assert isinstance(store.error, DecodeFailure)

    def test_unclassified_client_error_still_degrades(self, client, dispatcher):
        client.fail('fetch', RuntimeError('boom'))
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()  # must not raise
        dispatcher.run_all()
        assert store.load_state == LOAD_DEGRADED
        assert isinstance(store.error, ServerFault)

    def test_older_load_response_is_ignored(self, make_client, dispatcher):
        client = make_client({'services': SERVER_SERVICES})
        store = ResourceStore('services', Service, client, dispatcher, seed_services)
        store.load()
        store.refresh()
        newer = dispatcher.pending[1]
        dispatcher.run(newer)
        client.collections['services'] = [{'id': 'zz', 'name': 'Old snapshot'}]
        dispatcher.run_all()
        assert [s.id for s in store.data] == ['s1', 's2']

    def test_multiple_server_defaults_are_repaired(self, make_client, dispatcher):
        rows = [dict(r, is_default=True) for r in SERVER_CARDS]
        client = make_client({'payment-methods': rows})
        store = ResourceStore('payment-methods', PaymentMethod, client, dispatcher,
                              seed_payment_methods, exclusive_flag='is_default')
        store.load()
        dispatcher.run_all()
        assert defaults(store) == ['a']

    def test_snapshot_shape(self, services):
        snap = services.snapshot()
        assert set(snap) == {'data', 'load_state', 'error'}
        assert snap['load_state'] == LOAD_READY


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

class TestCreate:

    def test_optimistic_record_available_immediately(self, services):
        result = services.create(Service(name='Pool Cleaning'))
        assert result.status == STATUS_OPTIMISTIC
        assert is_temporary(result.record_id)
        assert services.get_by_id(result.record_id) == result.record
        assert services.data[-1].name == 'Pool Cleaning'

    def test_server_id_replaces_temporary_id(self, services, dispatcher):
        result = services.create(Service(name='Pool Cleaning'))
        temp_id = result.record_id
        dispatcher.run_all()
        assert result.status == STATUS_SYNCED
        assert result.record_id == 'srv-100'
        assert services.get_by_id(temp_id) is None
        assert services.get_by_id('srv-100').name == 'Pool Cleaning'

    def test_id_swap_keeps_position(self, services, dispatcher):
        first = services.create(Service(name='Pool Cleaning'))
        second = services.create(Service(name='Electrical'))
        dispatcher.run(dispatcher.pending[0])
        assert [s.id for s in services.data] == ['s1', 's2', first.record_id, second.record_id]
        assert first.record_id == 'srv-100'
        assert is_temporary(second.record_id)

    def test_temporary_ids_are_unique(self, services):
        ids = {services.create(Service(name=f'x{i}')).record_id for i in range(20)}
        assert len(ids) == 20

    def test_draft_is_sent_without_id(self, services, dispatcher):
        services.create(Service(name='Pool Cleaning'))
        dispatcher.run_all()
        _, resource_type, payload = services.client.ops('create')[0]
        assert resource_type == 'services'
        assert 'id' not in payload
        assert payload['name'] == 'Pool Cleaning'

    def test_failure_keeps_record_and_flags_error(self, services, dispatcher, events):
        services.client.fail('create', ServerFault('down'))
        result = services.create(Service(name='Pool Cleaning'))
        dispatcher.run_all()
        assert result.status == STATUS_FAILED
        assert services.get_by_id(result.record_id) is not None
        assert isinstance(services.error, ServerFault)
        assert EVENT_SYNC_FAILED in event_names(events)

    def test_events_created_then_synced(self, services, dispatcher, events):
        services.create(Service(name='Pool Cleaning'))
        dispatcher.run_all()
        names = event_names(events)
        assert names.index(EVENT_RECORD_CREATED) < names.index(EVENT_RECORD_SYNCED)

    def test_edit_before_confirmation_survives_id_swap(self, services, dispatcher):
        result = services.create(Service(name='Pool'))
        services.update(result.record_id, {'name': 'Pool (weekly)'})
        dispatcher.run_all()
        record = services.get_by_id('srv-100')
        assert record.name == 'Pool (weekly)'

    def test_edit_before_confirmation_is_replayed_with_server_id(self, services, dispatcher):
        result = services.create(Service(name='Pool'))
        edit = services.update(result.record_id, {'name': 'Pool (weekly)'})
        assert edit.job is None
        dispatcher.run_all()
        updates = services.client.ops('update')
        assert len(updates) == 1
        assert updates[0][2] == 'srv-100'
        assert updates[0][3]['name'] == 'Pool (weekly)'
        assert edit.status == STATUS_SYNCED

    def test_remove_before_confirmation_is_replayed(self, services, dispatcher):
        result = services.create(Service(name='Pool'))
        removal = services.remove(result.record_id)
        assert services.get_by_id(result.record_id) is None
        dispatcher.run_all()
        assert services.client.ops('remove') == [('remove', 'services', 'srv-100')]
        assert removal.status == STATUS_SYNCED
        assert services.get_by_id('srv-100') is None

    def test_failed_create_fails_waiting_edits(self, services, dispatcher):
        services.client.fail('create', NetworkUnavailable())
        result = services.create(Service(name='Pool'))
        edit = services.update(result.record_id, {'name': 'Pool (weekly)'})
        dispatcher.run_all()
        assert edit.status == STATUS_FAILED
        assert services.get_by_id(result.record_id).name == 'Pool (weekly)'


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------

class TestUpdate:

    def test_patch_applies_before_network(self, cards):
        result = cards.update('b', {'expiry': '03/31'})
        assert result.status == STATUS_OPTIMISTIC
        assert cards.get_by_id('b').expiry == '03/31'

    def test_success_marks_synced(self, cards, dispatcher):
        result = cards.update('b', {'expiry': '03/31'})
        dispatcher.run_all()
        assert result.status == STATUS_SYNCED
        assert cards.client.ops('update') == [('update', 'payment-methods', 'b', {'expiry': '03/31'})]

    def test_failure_keeps_patch(self, cards, dispatcher):
        cards.client.fail('update', ServerRejected('Card expired', status_code=422))
        result = cards.update('b', {'expiry': '03/31'})
        dispatcher.run_all()
        assert result.status == STATUS_FAILED
        assert cards.get_by_id('b').expiry == '03/31'
        assert cards.error_message == 'Card expired'

    def test_stale_echo_is_discarded(self, cards, dispatcher):
        first = cards.update('b', {'expiry': '03/31'})
        second = cards.update('b', {'expiry': '04/32'})
        dispatcher.run(dispatcher.pending[1])
        dispatcher.run_all()
        assert second.status == STATUS_SYNCED
        assert first.status == STATUS_STALE
        assert cards.get_by_id('b').expiry == '04/32'

    def test_failure_already_resent_is_stale(self, cards, dispatcher):
        first = cards.update('b', {'expiry': '03/31'})
        second = cards.update('b', {'expiry': '04/32'})
        dispatcher.run(dispatcher.pending[1])
        cards.client.fail('update', ServerFault())
        dispatcher.run_all()
        assert second.status == STATUS_SYNCED
        assert first.status == STATUS_STALE
        assert cards.error is None
        assert cards.get_by_id('b').expiry == '04/32'

    def test_failure_of_field_not_resent_still_flags(self, cards, dispatcher):
        first = cards.update('b', {'expiry': '03/31'})
        cards.update('b', {'last4': '9999'})
        dispatcher.run(dispatcher.pending[1])
        cards.client.fail('update', ServerFault())
        dispatcher.run_all()
        assert first.status == STATUS_FAILED
        assert isinstance(cards.error, ServerFault)

    def test_unknown_id_fails_without_network(self, cards):
        result = cards.update('nope', {'expiry': '03/31'})
        assert result.status == STATUS_FAILED
        assert isinstance(result.error, KeyError)
        assert cards.pending == 0

    def test_unknown_field_raises(self, cards):
        with pytest.raises(ValueError, match='PaymentMethod'):
            cards.update('a', {'cvv': '123'})

    def test_default_flag_cannot_be_patched(self, cards):
        with pytest.raises(ValueError, match='set_default'):
            cards.update('b', {'is_default': True})
        assert defaults(cards) == ['a']


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------

class TestRemove:

    def test_removed_immediately(self, services):
        result = services.remove('s1')
        assert result.status == STATUS_OPTIMISTIC
        assert services.get_by_id('s1') is None

    def test_failure_does_not_restore(self, services, dispatcher):
        services.client.fail('remove', NetworkUnavailable())
        result = services.remove('s1')
        dispatcher.run_all()
        assert result.status == STATUS_FAILED
        assert services.get_by_id('s1') is None
        assert isinstance(services.error, NetworkUnavailable)

    def test_unknown_id(self, services):
        assert services.remove('missing').status == STATUS_FAILED

    def test_late_update_echo_after_remove_is_stale(self, services, dispatcher):
        edit = services.update('s1', {'name': 'Deep Cleaning'})
        services.remove('s1')
        dispatcher.run_all()
        assert edit.status == STATUS_STALE
        assert services.get_by_id('s1') is None


# ---------------------------------------------------------------------------
# set_default
# ---------------------------------------------------------------------------

class TestSetDefault:

    def test_moves_default_and_preserves_order(self, cards):
        cards.set_default('b')
        assert [(c.id, c.is_default) for c in cards.data] == [('a', False), ('b', True)]

    def test_syncs_whole_batch(self, cards, dispatcher):
        result = cards.set_default('b')
        dispatcher.run_all()
        assert result.status == STATUS_SYNCED
        sent = {(c[2], c[3]['is_default']) for c in cards.client.ops('update')}
        assert sent == {('a', False), ('b', True)}

    def test_never_observed_with_two_defaults(self, cards, bus):
        seen = []
        bus.on(EVENT_DEFAULT_CHANGED, lambda data: seen.append(defaults(cards)))
        cards.set_default('b')
        assert seen == [['b']]

    def test_already_default_is_a_no_op(self, cards):
        result = cards.set_default('a')
        assert result.status == STATUS_SYNCED
        assert cards.pending == 0

    def test_failure_keeps_local_choice(self, cards, dispatcher):
        cards.client.fail('update', ServerFault())
        result = cards.set_default('b')
        dispatcher.run_all()
        assert result.status == STATUS_FAILED
        assert defaults(cards) == ['b']
        assert isinstance(cards.error, ServerFault)

    def test_double_tap_last_applied_wins(self, cards, dispatcher):
        first = cards.set_default('b')
        second = cards.set_default('a')
        dispatcher.run(dispatcher.pending[1])
        dispatcher.run_all()
        assert second.status == STATUS_SYNCED
        assert first.status == STATUS_STALE
        assert defaults(cards) == ['a']

    def test_failed_first_tap_after_second_synced_is_stale(self, cards, dispatcher):
        first = cards.set_default('b')
        second = cards.set_default('a')
        dispatcher.run(dispatcher.pending[1])
        cards.client.fail('update', ServerFault())
        dispatcher.run_all()
        assert second.status == STATUS_SYNCED
        assert first.status == STATUS_STALE
        assert cards.error is None
        assert defaults(cards) == ['a']

    def test_unknown_id_leaves_state_alone(self, cards):
        result = cards.set_default('zzz')
        assert result.status == STATUS_FAILED
        assert defaults(cards) == ['a']

    def test_store_without_flag_rejects(self, services):
        with pytest.raises(ValueError, match='exclusive flag'):
            services.set_default('s1')


class TestDefaultInvariant:

    def _empty_store(self, client, dispatcher):
        return ResourceStore('payment-methods', PaymentMethod, client, dispatcher,
                             lambda: [], exclusive_flag='is_default')

    def test_first_record_becomes_default(self, client, dispatcher):
        store = self._empty_store(client, dispatcher)
        result = store.create(PaymentMethod(type='Visa', last4='1111'))
        assert defaults(store) == [result.record_id]

    def test_new_default_clears_previous_in_one_step(self, client, dispatcher):
        store = self._empty_store(client, dispatcher)
        first = store.create(PaymentMethod(type='Visa'))
        second = store.create(PaymentMethod(type='Amex', is_default=True))
        assert defaults(store) == [second.record_id]
        assert not store.get_by_id(first.record_id).is_default

    def test_non_default_create_keeps_existing_default(self, cards):
        cards.create(PaymentMethod(type='Discover'))
        assert defaults(cards) == ['a']

    @pytest.mark.parametrize('fail_updates', [False, True])
    def test_exactly_one_default_through_any_sequence(self, client, dispatcher, fail_updates):
        if fail_updates:
            client.fail('update', NetworkUnavailable())
        store = self._empty_store(client, dispatcher)
        steps = [
            ('create', False), ('create', True), ('set', 0), ('create', False),
            ('run', None), ('set', 2), ('create', True), ('set', 1), ('run', None),
        ]
        for op, arg in steps:
            if op == 'create':
                store.create(PaymentMethod(type='Card', is_default=arg))
            elif op == 'set':
                # ids may have been swapped for server ids by an earlier run
                store.set_default(store.data[arg].id)
            else:
                dispatcher.run_all()
            assert len(defaults(store)) == 1
        dispatcher.run_all()
        assert len(defaults(store)) == 1
        assert defaults(store) == [store.data[1].id]


# ---------------------------------------------------------------------------
# reload racing a mutation
# ---------------------------------------------------------------------------

class TestReloadDuringMutation:
    """
    refresh() is submitted first, then the user edits; the fetch answers with
    the collection as it was before the edit reached the server.
    """

    def run_load_then_rest(self, dispatcher):
        dispatcher.run(dispatcher.pending[0])
        dispatcher.run_all()

    def server_row(self, store, record_id):
        return next(r for r in store.client.collections[store.resource_type] if r['id'] == record_id)

    def test_update_survives(self, cards, dispatcher):
        cards.refresh()
        result = cards.update('a', {'expiry': '12/35'})
        self.run_load_then_rest(dispatcher)
        assert cards.get_by_id('a').expiry == '12/35'
        assert result.status == STATUS_SYNCED
        assert self.server_row(cards, 'a')['expiry'] == '12/35'

    def test_untouched_records_still_refresh(self, cards, dispatcher):
        cards.refresh()
        cards.update('a', {'expiry': '12/35'})
        self.server_row(cards, 'b')['expiry'] = '09/39'
        self.run_load_then_rest(dispatcher)
        assert cards.get_by_id('b').expiry == '09/39'
        assert cards.get_by_id('a').expiry == '12/35'

    def test_set_default_survives(self, cards, dispatcher):
        cards.refresh()
        result = cards.set_default('b')
        dispatcher.run(dispatcher.pending[0])
        assert defaults(cards) == ['b']
        dispatcher.run_all()
        assert result.status == STATUS_SYNCED
        assert [(c.id, c.is_default) for c in cards.data] == [('a', False), ('b', True)]
        assert [r['is_default'] for r in cards.client.collections['payment-methods']] == [False, True]

    def test_pending_create_survives(self, cards, dispatcher):
        cards.refresh()
        result = cards.create(PaymentMethod(type='Discover', last4='3333'))
        dispatcher.run(dispatcher.pending[0])
        assert cards.get_by_id(result.record_id) is not None
        dispatcher.run_all()
        assert result.status == STATUS_SYNCED
        assert [c.id for c in cards.data] == ['a', 'b', 'srv-100']

    def test_create_confirmed_before_load_lands_is_not_duplicated(self, cards, dispatcher):
        cards.refresh()
        cards.create(PaymentMethod(type='Discover', last4='3333'))
        dispatcher.run(dispatcher.pending[1])
        dispatcher.run_all()
        assert [c.id for c in cards.data] == ['a', 'b', 'srv-100']

    def test_remove_stays_removed(self, services, dispatcher):
        services.refresh()
        result = services.remove('s2')
        self.run_load_then_rest(dispatcher)
        assert services.get_by_id('s2') is None
        assert result.status == STATUS_SYNCED

    def test_failed_create_survives_later_refresh(self, services, dispatcher):
        services.client.fail('create', NetworkUnavailable())
        result = services.create(Service(name='Pool'))
        dispatcher.run_all()
        services.refresh()
        dispatcher.run_all()
        assert services.get_by_id(result.record_id).name == 'Pool'
        assert [s.id for s in services.data][:2] == ['s1', 's2']

    def test_seed_fallback_keeps_edit_in_flight(self, cards, dispatcher):
        cards.client.fail('fetch', NetworkUnavailable())
        cards.refresh()
        cards.update('a', {'expiry': '12/35'})
        self.run_load_then_rest(dispatcher)
        assert cards.load_state == LOAD_DEGRADED
        assert cards.get_by_id('a').expiry == '12/35'
        assert len(defaults(cards)) == 1
