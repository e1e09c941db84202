import pytest

from chalicelib.constants.constants import PENDING, PREPARING, READY, DELIVERED, CANCELLED
from chalicelib.live_sync import OrderChangeHub, SubscriptionScope, VersionTracker, get_hub, COLLECTION_MENU_ITEMS
from chalicelib.orders import Order, lifecycle
from chalicelib.repository import EVENT_MODIFY
from chalicelib.utils import exceptions
from test.utils.fixtures import repository, menu, id_restaurant, id_other_restaurant, create_menu_item


def place_order(table_id='table-1') -> Order:
    return lifecycle.checkout(id_restaurant, table_id, [{'item_id': 'burger', 'quantity': 1}])


class Recorder:

    def __init__(self):
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)

    @property
    def types(self):
        return [message['type'] for message in self.messages]


def test_snapshot_reflects_previous_mutations(menu):
    first = place_order()
    second = place_order('table-2')
    lifecycle.transition(first, PREPARING)
    recorder = Recorder()

    get_hub().subscribe(SubscriptionScope(id_restaurant), recorder)

    assert recorder.types == ['snapshot']
    snapshot = recorder.messages[0]['data']
    assert [order['id'] for order in snapshot] == [second.id_, first.id_]
    assert {order['id']: order['status'] for order in snapshot} == {first.id_: PREPARING, second.id_: PENDING}
    assert all('access_token' not in order for order in snapshot)


def test_changes_are_delivered_once_in_commit_order(menu):
    recorder = Recorder()
    get_hub().subscribe(SubscriptionScope(id_restaurant), recorder)

    order = place_order()
    for status in (PREPARING, READY):
        lifecycle.transition(order, status)
    lifecycle.delete(order)

    assert recorder.types == ['snapshot', 'insert', 'modify', 'modify', 'remove']
    assert [message['data']['status'] for message in recorder.messages[1:]] == [PENDING, PREPARING, READY, READY]


def test_replayed_changes_are_dropped(menu, repository):
    recorder = Recorder()
    get_hub().subscribe(SubscriptionScope(id_restaurant), recorder)
    order = place_order()
    lifecycle.transition(order, PREPARING)
    record = repository.get_item(*order._get_pk_sk())

    repository.dispatch_change({}, record, 'replayed-event', EVENT_MODIFY)

    assert recorder.types == ['snapshot', 'insert', 'modify']


def test_single_order_scope(menu):
    watched, other = place_order(), place_order()
    recorder = Recorder()
    get_hub().subscribe(SubscriptionScope(id_restaurant, document_id=watched.id_), recorder)

    lifecycle.transition(other, PREPARING)
    lifecycle.transition(watched, CANCELLED)

    assert recorder.messages[0]['data']['id'] == watched.id_
    assert recorder.types == ['snapshot', 'modify']
    assert recorder.messages[1]['data']['status'] == CANCELLED


def test_other_restaurants_are_not_delivered(menu):
    recorder = Recorder()
    get_hub().subscribe(SubscriptionScope(id_other_restaurant), recorder)

    place_order()

    assert recorder.types == ['snapshot']
    assert recorder.messages[0]['data'] == []


def test_cancel_stops_only_that_subscription(menu):
    kept, cancelled = Recorder(), Recorder()
    hub = get_hub()
    hub.subscribe(SubscriptionScope(id_restaurant), kept)
    subscription = hub.subscribe(SubscriptionScope(id_restaurant), cancelled)

    subscription.cancel()
    subscription.cancel()
    place_order()

    assert kept.types == ['snapshot', 'insert']
    assert cancelled.types == ['snapshot']


def test_resume_delivers_fresh_snapshot(menu):
    recorder = Recorder()
    subscription = get_hub().subscribe(SubscriptionScope(id_restaurant), recorder)
    subscription.cancel()
    order = place_order()

    subscription.resume()
    lifecycle.transition(order, PREPARING)

    assert recorder.types == ['snapshot', 'snapshot', 'modify']
    assert [o['id'] for o in recorder.messages[1]['data']] == [order.id_]


def test_failing_subscriber_does_not_affect_others(menu):
    def broken(message):
        if message['type'] != 'snapshot':
            raise RuntimeError('subscriber crashed')

    recorder = Recorder()
    hub = get_hub()
    hub.subscribe(SubscriptionScope(id_restaurant), broken)
    hub.subscribe(SubscriptionScope(id_restaurant), recorder)

    order = place_order()

    assert recorder.types == ['snapshot', 'insert']
    assert Order.init_get_by_id(id_restaurant, order.id_).status == PENDING



def test_commits_made_by_a_subscriber_keep_commit_order(menu):
    def start_preparing(message):
        if message['type'] == 'insert':
            order = Order.init_get_by_id(id_restaurant, message['data']['id'])
            lifecycle.transition(order, PREPARING)

    recorder = Recorder()
    hub = get_hub()
    hub.subscribe(SubscriptionScope(id_restaurant), start_preparing)
    hub.subscribe(SubscriptionScope(id_restaurant), recorder)

    order = place_order()

    assert recorder.types == ['snapshot', 'insert', 'modify']
    assert [message['data']['status'] for message in recorder.messages[1:]] == [PENDING, PREPARING]
    assert Order.init_get_by_id(id_restaurant, order.id_).status == PREPARING

def test_reconnect_redelivers_snapshot(menu):
    recorder = Recorder()
    hub = get_hub()
    hub.subscribe(SubscriptionScope(id_restaurant), recorder)

    hub.connection_lost()
    order = place_order()
    assert recorder.types == ['snapshot']

    hub.reconnect()
    lifecycle.transition(order, PREPARING)

    assert recorder.types == ['snapshot', 'snapshot', 'modify']
    assert recorder.messages[1]['data'][0]['id'] == order.id_


def test_snapshot_retries_transient_errors(menu, monkeypatch):
    calls = []
    from chalicelib import live_sync
    original = live_sync.load_snapshot

    def flaky(scope):
        calls.append(scope)
        if len(calls) < 3:
            raise exceptions.PersistenceError('throttled')
        return original(scope)

    monkeypatch.setattr(live_sync, 'load_snapshot', flaky)
    recorder = Recorder()

    OrderChangeHub(get_hub().repository, retry_delay=0).subscribe(SubscriptionScope(id_restaurant), recorder)

    assert len(calls) == 3
    assert recorder.types == ['snapshot']


def test_snapshot_gives_up_after_retries(menu, monkeypatch):
    from chalicelib import live_sync

    def failing(scope):
        raise exceptions.PersistenceError('down')

    monkeypatch.setattr(live_sync, 'load_snapshot', failing)

    with pytest.raises(exceptions.PersistenceError):
        OrderChangeHub(get_hub().repository, retry_delay=0).subscribe(SubscriptionScope(id_restaurant), Recorder())


def test_menu_items_scope(menu):
    recorder = Recorder()
    get_hub().subscribe(SubscriptionScope(id_restaurant, collection=COLLECTION_MENU_ITEMS), recorder)

    create_menu_item(name='Soup', price='6.00')

    assert [item['id'] for item in recorder.messages[0]['data']] == ['burger', 'fries', 'salad']
    assert recorder.types == ['snapshot', 'insert']
    assert recorder.messages[1]['data']['name'] == 'Soup'


def test_unknown_collection_is_rejected():
    with pytest.raises(exceptions.ValidationException):
        SubscriptionScope(id_restaurant, collection='users')


def test_version_tracker():
    tracker = VersionTracker()

    assert tracker.accept('1', 1, removed=False, inserted=True)
    assert not tracker.accept('1', 1, removed=False)
    assert tracker.accept('1', 2, removed=False)
    assert tracker.accept('1', 2, removed=True)
    assert not tracker.accept('1', 2, removed=True)
    assert not tracker.accept('1', 2, removed=False)
    assert tracker.accept('1', 1, removed=False, inserted=True)


def test_version_tracker_forgets_oldest_settled_documents():
    tracker = VersionTracker(max_settled=2)
    for document_id in ('1', '2', '3', '4'):
        tracker.accept(document_id, 1, removed=False, inserted=True)

    tracker.accept('2', 2, removed=False, settled=True)
    tracker.accept('3', 2, removed=True)
    tracker.accept('4', 2, removed=False, settled=True)

    assert sorted(tracker.to_dict()) == ['1', '3', '4']
    assert not tracker.accept('3', 2, removed=True)
    assert not tracker.accept('4', 2, removed=False)
    # a forgotten document is accepted again
    assert tracker.accept('2', 2, removed=True)


def test_version_tracker_settles_terminal_snapshot_documents():
    tracker = VersionTracker(max_settled=1)

    tracker.reset([
        {'id': 1, 'version': 1, 'status': PENDING},
        {'id': 2, 'version': 4, 'status': DELIVERED, 'updated_at': '2026-01-01T10:00:00.000+00:00'},
        {'id': 3, 'version': 2, 'status': CANCELLED, 'updated_at': '2026-01-02T10:00:00.000+00:00'},
    ])

    assert tracker.to_dict() == {
        '1': {'version': 1, 'removed': False},
        '3': {'version': 2, 'removed': False, 'settled_at': '2026-01-02T10:00:00.000+00:00'},
    }


def test_subscription_keeps_open_orders_only_plus_recent_settled(menu):
    subscription = get_hub().subscribe(SubscriptionScope(id_restaurant), Recorder())
    subscription.tracker.max_settled = 1

    first, second, third = place_order(), place_order('table-2'), place_order()
    lifecycle.cancel(first)
    lifecycle.cancel(second)

    assert sorted(subscription.tracker.to_dict()) == sorted([str(second.id_), str(third.id_)])
