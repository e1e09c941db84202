"""
Remote live-sync subscribers connected over the API Gateway WebSocket API.

A connection registers one scope per restaurant with a `subscribe` message and gets the
snapshot right away. Changes arrive from the table stream (see triggers.py) and are pushed
with the same messages in-process subscribers receive.
"""
import json
from typing import Callable, Dict, List, Optional, Tuple

from chalice import WebsocketDisconnectedError

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import RECORD_TYPE_ORDER, RECORD_TYPE_MENU_ITEM
from chalicelib.constants.substitute_keys import from_db
from chalicelib.live_sync import SubscriptionScope, VersionTracker, COLLECTION_ORDERS, change_message, \
    snapshot_message, load_snapshot
from chalicelib.repository import get_repository
from chalicelib.utils import auth as utils_auth, exceptions
from chalicelib.utils.data import substitute_records
from chalicelib.utils.logger import logger, log_exception, CustomJSONEncoder

ACTION_SUBSCRIBE = 'subscribe'
ACTION_UNSUBSCRIBE = 'unsubscribe'

Sender = Callable[[str, str], None]


def encode(message: dict) -> str:
    return json.dumps(message, cls=CustomJSONEncoder)


class WsConnection(EntityBase):
    pk = keys_structure.ws_connections_pk
    sk = keys_structure.ws_connections_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str) and len(x) > 0,
        'restaurant_id': lambda x: isinstance(x, str) and len(x) > 0,
        'collection': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'seen_versions': lambda x: isinstance(x, dict)
    }

    optional_fields_validation = {
        'document_id': lambda x: isinstance(x, str)
    }

    def __init__(self, restaurant_id, id_, **kwargs):
        EntityBase.__init__(self, restaurant_id, id_)
        self.collection: str = kwargs.get('collection', COLLECTION_ORDERS)
        self.document_id: Optional[str] = kwargs.get('document_id')
        self.tracker = VersionTracker({
            document_id: self._seen_entry(seen) for document_id, seen in (kwargs.get('seen_versions') or {}).items()
        })
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = 'ws_connection'

    @staticmethod
    def _seen_entry(seen: dict) -> dict:
        entry = {'version': int(seen['version']), 'removed': bool(seen['removed'])}
        if seen.get('settled_at') is not None:
            entry['settled_at'] = seen['settled_at']
        return entry

    @property
    def connection_id(self) -> str:
        return self.id_

    @property
    def scope(self) -> SubscriptionScope:
        return SubscriptionScope(self.restaurant_id, self.collection, self.document_id)

    @staticmethod
    def get_all(restaurant_id) -> List['WsConnection']:
        records = get_repository().query(keys_structure.ws_connections_pk.format(restaurant_id=restaurant_id))
        substitute_records(records, from_db)
        return [WsConnection(record.pop('restaurant_id'), record.pop('id'), **record) for record in records]

    def save(self):
        try:
            self._update_db_record()
        except exceptions.RecordNotFound:
            self._create_db_record()

    def remove(self):
        try:
            self._delete_db_record()
        except exceptions.RecordNotFound:
            logger.info(f'remove ::: connection {self.connection_id} was already removed')

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(restaurant_id=self.restaurant_id), self.sk.format(connection_id=self.id_)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'collection': self.collection,
            'document_id': self.document_id,
            'seen_versions': self.tracker.to_dict()
        }


def _index_key(connection_id) -> Tuple[str, str]:
    return keys_structure.ws_connections_index_pk, keys_structure.ws_connections_index_sk.format(
        connection_id=connection_id)


def _get_indexed_restaurants(connection_id) -> List[str]:
    try:
        return list(get_repository().get_item(*_index_key(connection_id)).get('restaurant_ids') or [])
    except exceptions.RecordNotFound:
        return []


def _set_indexed_restaurants(connection_id, restaurant_ids: List[str]):
    pk, sk = _index_key(connection_id)
    if not restaurant_ids:
        try:
            get_repository().delete_item(pk, sk)
        except exceptions.RecordNotFound:
            logger.debug(f'_set_indexed_restaurants ::: no index for {connection_id}')
        return
    get_repository().put_item({
        'partkey': pk,
        'sortkey': sk,
        'record_type': 'ws_connection_index',
        'connection_id': connection_id,
        'restaurant_ids': sorted(set(restaurant_ids))
    })


def authorize_scope(scope: SubscriptionScope, token: Optional[str]) -> None:
    """
    Menus are public, a single order needs its access token, anything else needs staff
    """
    if scope.collection != COLLECTION_ORDERS:
        return
    if scope.document_id is not None:
        from chalicelib.orders import Order
        try:
            Order.init_for_customer(scope.restaurant_id, scope.document_id, token)
            return
        except exceptions.OrderNotFound:
            logger.info(f'authorize_scope ::: not a customer token for order {scope.document_id}')
    principal_id = utils_auth.decode_principal(token)
    utils_auth.check_restaurant_access(principal_id, scope.restaurant_id)


def subscribe(connection_id: str, body: dict, sender: Sender) -> None:
    scope = SubscriptionScope.from_dict(body)
    authorize_scope(scope, body.get('token'))
    connection = WsConnection(scope.restaurant_id, connection_id, collection=scope.collection,
                              document_id=scope.document_id)
    data = load_snapshot(scope)
    connection.tracker.reset(data)
    # a new subscribe replaces the previous scope of this connection
    connection.remove()
    connection._create_db_record()
    _set_indexed_restaurants(connection_id, [*_get_indexed_restaurants(connection_id), scope.restaurant_id])
    sender(connection_id, encode(snapshot_message(scope, data)))
    logger.info(f'subscribe ::: connection {connection_id} subscribed to {scope}')


def unsubscribe(connection_id: str, restaurant_id: str) -> None:
    WsConnection(restaurant_id, connection_id).remove()
    _set_indexed_restaurants(connection_id, [rid for rid in _get_indexed_restaurants(connection_id)
                                             if rid != restaurant_id])


def disconnect(connection_id: str) -> None:
    for restaurant_id in _get_indexed_restaurants(connection_id):
        WsConnection(restaurant_id, connection_id).remove()
    _set_indexed_restaurants(connection_id, [])
    logger.info(f'disconnect ::: connection {connection_id} cleaned up')


def handle_message(connection_id: str, raw_body: str, sender: Sender) -> None:
    """
    Failures are reported back to the connection instead of failing the handler
    """
    try:
        body = json.loads(raw_body or '{}')
        if not isinstance(body, dict):
            raise exceptions.ValidationException('message must be a JSON object')
        action = body.get('action')
        if action == ACTION_SUBSCRIBE:
            subscribe(connection_id, body, sender)
        elif action == ACTION_UNSUBSCRIBE:
            unsubscribe(connection_id, body.get('restaurant_id'))
        else:
            raise exceptions.ValidationException(f'Unknown action {action}')
    except (exceptions.TableTapException, ValueError) as error:
        log_exception(error, status_code=getattr(error, 'STATUS_CODE', 400),
                      msg=f'handle_message ::: connection {connection_id}')
        sender(connection_id, encode({
            'type': 'error',
            'error': str(error),
            'exception': error.__class__.__name__,
            'recovery': getattr(error, 'RECOVERY', None)
        }))


def fan_out(record_old: dict, record_new: dict, event_id: str, event_name: str, sender: Sender) -> None:
    """
    Pushes one committed change to every connection whose scope contains it.
    A failing connection is logged and skipped, the others still get the change.
    """
    record = record_new or record_old
    if record.get('record_type') not in (RECORD_TYPE_ORDER, RECORD_TYPE_MENU_ITEM):
        return
    for connection in WsConnection.get_all(record.get('restaurant_id')):
        message = change_message(connection.scope, connection.tracker, record_old, record_new, event_name)
        if message is None:
            continue
        try:
            sender(connection.connection_id, encode(message))
            connection.save()
        except WebsocketDisconnectedError:
            logger.info(f'fan_out ::: connection {connection.connection_id} is gone, removing it')
            disconnect(connection.connection_id)
        except Exception as e:
            log_exception(e, msg=f'fan_out ::: connection {connection.connection_id} failed on {event_id=}')
    logger.debug(f'fan_out ::: {event_name} {event_id=} processed')
