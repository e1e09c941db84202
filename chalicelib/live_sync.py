"""
Live Sync Layer: pushes committed order and menu changes to subscribers.

A subscriber gets a snapshot of its scope as soon as it subscribes, then one message per
committed change inside the scope, in commit order. Stream redeliveries are dropped by
remembering the last delivered version of every document.
"""
import threading
from collections import deque
import time
from typing import Callable, Dict, List, Optional

from chalicelib.constants import keys_structure
from chalicelib.constants.constants import RECORD_TYPE_ORDER, RECORD_TYPE_MENU_ITEM, TERMINAL_STATUSES
from chalicelib.repository import get_repository, Repository, EVENT_INSERT, EVENT_MODIFY, EVENT_REMOVE
from chalicelib.utils import exceptions
from chalicelib.utils.data import utc_now_iso
from chalicelib.utils.logger import logger, log_exception

COLLECTION_ORDERS = 'orders'
COLLECTION_MENU_ITEMS = 'menu_items'

COLLECTIONS = {
    COLLECTION_ORDERS: (keys_structure.orders_pk, RECORD_TYPE_ORDER),
    COLLECTION_MENU_ITEMS: (keys_structure.menu_items_pk, RECORD_TYPE_MENU_ITEM),
}

MESSAGE_SNAPSHOT = 'snapshot'
EVENT_TO_MESSAGE = {
    EVENT_INSERT: 'insert',
    EVENT_MODIFY: 'modify',
    EVENT_REMOVE: 'remove',
}

OnChange = Callable[[dict], None]

# settled documents remembered per subscription for replay detection
MAX_SETTLED_DOCUMENTS = 50


class SubscriptionScope:

    def __init__(self, restaurant_id: str, collection: str = COLLECTION_ORDERS, document_id=None):
        if collection not in COLLECTIONS:
            raise exceptions.ValidationException(f'Unknown collection {collection}')
        if not restaurant_id:
            raise exceptions.ValidationException('restaurant_id must be provided')
        self.restaurant_id = restaurant_id
        self.collection = collection
        self.document_id = None if document_id is None else str(document_id)

    @classmethod
    def from_dict(cls, data: dict) -> 'SubscriptionScope':
        return cls(data.get('restaurant_id'), data.get('collection') or COLLECTION_ORDERS, data.get('document_id'))

    @property
    def partkey(self) -> str:
        return COLLECTIONS[self.collection][0].format(restaurant_id=self.restaurant_id)

    def matches(self, record: dict) -> bool:
        if not record or record.get('partkey') != self.partkey:
            return False
        return self.document_id is None or document_id_of(record) == self.document_id

    def to_dict(self) -> dict:
        return {'restaurant_id': self.restaurant_id, 'collection': self.collection, 'document_id': self.document_id}

    def __eq__(self, other):
        return isinstance(other, SubscriptionScope) and self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.restaurant_id, self.collection, self.document_id))

    def __repr__(self):
        return f'SubscriptionScope({self.restaurant_id!r}, {self.collection!r}, {self.document_id!r})'


def document_id_of(record: dict) -> Optional[str]:
    value = record.get('id_', record.get('id'))
    return None if value is None else str(value)


def record_to_ui(record: dict) -> dict:
    """
    Raw stored record -> the same shape the HTTP endpoints return
    """
    from chalicelib.menu_items import MenuItem
    from chalicelib.orders import Order
    if record.get('record_type') == RECORD_TYPE_ORDER:
        return Order.from_record(record).to_ui()
    return MenuItem.from_record(record).to_ui()


def load_snapshot(scope: SubscriptionScope):
    from chalicelib.menu_items import MenuItem
    from chalicelib.orders import Order
    if scope.collection == COLLECTION_ORDERS:
        if scope.document_id is None:
            return [order.to_ui() for order in Order.list_orders(scope.restaurant_id)]
        try:
            return Order.init_get_by_id(scope.restaurant_id, scope.document_id).to_ui()
        except exceptions.RecordNotFound:
            return None
    if scope.document_id is None:
        return [item.to_ui() for item in MenuItem.get_all(scope.restaurant_id)]
    try:
        return MenuItem.init_get_by_id(scope.restaurant_id, scope.document_id).to_ui()
    except exceptions.RecordNotFound:
        return None


class VersionTracker:
    """
    Last delivered version per document. A change is delivered at most once.

    Removed documents and orders in a terminal status are settled: they never change again
    except by removal. Only the most recently settled ones are remembered, so the map stays
    bounded by the number of open orders.
    """

    def __init__(self, seen: Optional[Dict[str, dict]] = None, max_settled: int = MAX_SETTLED_DOCUMENTS):
        self.seen: Dict[str, dict] = {document_id: dict(entry) for document_id, entry in (seen or {}).items()}
        self.max_settled = max_settled

    def accept(self, document_id: str, version: int, removed: bool, inserted: bool = False,
               settled: bool = False) -> bool:
        previous = self.seen.get(document_id)
        if previous is None or version > previous['version']:
            accepted = True
        elif removed:
            accepted = not previous['removed']
        else:
            # a fresh insert may reuse the id of a removed document
            accepted = previous['removed'] and inserted
        if accepted:
            entry = {'version': version, 'removed': removed}
            if removed or settled:
                entry['settled_at'] = utc_now_iso()
            self.seen[document_id] = entry
            self._prune()
        return accepted

    def reset(self, snapshot_data) -> None:
        self.seen = {}
        if snapshot_data is None:
            return
        documents = snapshot_data if isinstance(snapshot_data, list) else [snapshot_data]
        for document in documents:
            entry = {'version': int(document.get('version', 0)), 'removed': False}
            if document.get('status') in TERMINAL_STATUSES:
                entry['settled_at'] = document.get('updated_at') or ''
            self.seen[str(document['id'])] = entry
        self._prune()

    def _prune(self) -> None:
        settled = sorted((entry['settled_at'], document_id) for document_id, entry in self.seen.items()
                         if 'settled_at' in entry)
        for _, document_id in settled[:max(len(settled) - self.max_settled, 0)]:
            del self.seen[document_id]

    def to_dict(self) -> dict:
        return {document_id: dict(entry) for document_id, entry in self.seen.items()}


def snapshot_message(scope: SubscriptionScope, data) -> dict:
    return {'type': MESSAGE_SNAPSHOT, 'scope': scope.to_dict(), 'data': data}


def change_message(scope: SubscriptionScope, tracker: VersionTracker, record_old: dict, record_new: dict,
                   event_name: str) -> Optional[dict]:
    """
    Message for one committed change, or None when it is out of scope or was already delivered
    """
    record = record_new or record_old
    if not scope.matches(record) or event_name not in EVENT_TO_MESSAGE:
        return None
    removed = event_name == EVENT_REMOVE
    settled = record.get('status_', record.get('status')) in TERMINAL_STATUSES
    if not tracker.accept(document_id_of(record), int(record.get('version', 0)), removed,
                          inserted=event_name == EVENT_INSERT, settled=settled):
        logger.debug(f'change_message ::: dropping replayed {event_name} of {document_id_of(record)}')
        return None
    return {'type': EVENT_TO_MESSAGE[event_name], 'scope': scope.to_dict(), 'data': record_to_ui(record)}


class Subscription:

    def __init__(self, hub: 'OrderChangeHub', scope: SubscriptionScope, on_change: OnChange):
        self.hub = hub
        self.scope = scope
        self.on_change = on_change
        self.active = True
        self.tracker = VersionTracker()

    def cancel(self) -> None:
        """
        Stops delivery for this handle only, safe to call more than once
        """
        self.active = False
        self.hub._detach(self)

    def resume(self) -> None:
        self.active = True
        self.hub._attach(self)

    def deliver_snapshot(self, data) -> None:
        self.tracker.reset(data)
        self.on_change(snapshot_message(self.scope, data))

    def deliver_change(self, record_old, record_new, event_name) -> None:
        if not self.active:
            return
        message = change_message(self.scope, self.tracker, record_old, record_new, event_name)
        if message is not None:
            self.on_change(message)


class OrderChangeHub:
    """
    In-process fan-out attached to the repository's change listeners
    """

    def __init__(self, repository: Repository, max_retries: int = 3, retry_delay: float = 0.05):
        self.repository = repository
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()
        self._pending = deque()
        self._dispatching = False
        self.connected = False
        self._connect()

    def _connect(self):
        self.repository.add_change_listener(self.dispatch)
        self.connected = True

    def subscribe(self, scope: SubscriptionScope, on_change: OnChange) -> Subscription:
        subscription = Subscription(self, scope, on_change)
        self._attach(subscription)
        logger.info(f'subscribe ::: {scope} subscribed, total={len(self._subscriptions)}')
        return subscription

    def _attach(self, subscription: Subscription):
        with self.repository.consistent_view(), self._lock:
            if subscription not in self._subscriptions:
                self._subscriptions.append(subscription)
            subscription.deliver_snapshot(self.snapshot(subscription.scope))

    def _detach(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                logger.info(f'_detach ::: {subscription.scope} unsubscribed, total={len(self._subscriptions)}')

    def snapshot(self, scope: SubscriptionScope):
        """
        Current state of the scope, transient persistence errors are retried with backoff
        """
        for attempt in range(self.max_retries):
            try:
                return load_snapshot(scope)
            except exceptions.PersistenceError as e:
                if attempt == self.max_retries - 1:
                    raise
                logger.warning(f'snapshot ::: attempt {attempt + 1} failed for {scope}: {e}')
                time.sleep(self.retry_delay * 2 ** attempt)

    def dispatch(self, record_old: dict, record_new: dict, event_id: str, event_name: str) -> None:
        """
        Commits made by a subscriber from its own callback are queued and delivered to everyone
        after the change being delivered now
        """
        with self._lock:
            self._pending.append((record_old, record_new, event_id, event_name))
            if self._dispatching:
                return
            self._dispatching = True
            try:
                while self._pending:
                    self._deliver(*self._pending.popleft())
            finally:
                self._dispatching = False

    def _deliver(self, record_old: dict, record_new: dict, event_id: str, event_name: str) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription.deliver_change(record_old, record_new, event_name)
            except Exception as e:
                log_exception(e, msg=f'dispatch ::: subscriber of {subscription.scope} failed on {event_id=}')

    def connection_lost(self) -> None:
        self.repository.remove_change_listener(self.dispatch)
        self.connected = False
        logger.warning('connection_lost ::: detached from the change feed')

    def reconnect(self) -> None:
        """
        Re-attaches to the change feed and redelivers a fresh snapshot to every live subscription
        """
        with self.repository.consistent_view(), self._lock:
            if not self.connected:
                self._connect()
            for subscription in list(self._subscriptions):
                try:
                    subscription.deliver_snapshot(self.snapshot(subscription.scope))
                except exceptions.PersistenceError:
                    raise
                except Exception as e:
                    log_exception(e, msg=f'reconnect ::: subscriber of {subscription.scope} failed')
        logger.info(f'reconnect ::: re-attached {len(self._subscriptions)} subscription(s)')

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)


_HUB: Optional[OrderChangeHub] = None


def get_hub() -> OrderChangeHub:
    global _HUB
    repository = get_repository()
    if _HUB is None or _HUB.repository is not repository:
        _HUB = OrderChangeHub(repository)
    return _HUB
