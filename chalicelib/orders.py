import secrets
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chalice import Response

from chalicelib import pricing
from chalicelib.base_class_entity import EntityBase
from chalicelib.carts import Cart, DbSessionStorage
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import PENDING, PREPARING, READY, DELIVERED, CANCELLED, ORDER_STATUSES, \
    ACTOR_STAFF, ACTOR_CUSTOMER, ORDERS_COUNTER, RECORD_TYPE_ORDER, POPULAR_ITEMS_DEFAULT_TOP, ORDER_TOKEN_HEADER
from chalicelib.constants.status_codes import http200, http201
from chalicelib.constants.substitute_keys import from_db, from_db_public
from chalicelib.menu_items import MenuItem
from chalicelib.repository import get_repository
from chalicelib.restaurants import Restaurant
from chalicelib.tables import Table
from chalicelib.utils import auth as utils_auth, data as utils_data, app as utils_app, exceptions
from chalicelib.utils.data import substitute_records, substitute_keys, to_decimal, utc_now_iso, parse_timestamp
from chalicelib.utils.logger import logger

# current status -> statuses reachable by a regular transition
TRANSITIONS = {
    PENDING: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({READY, CANCELLED}),
    READY: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}

# one step back, staff only and only when explicitly requested as a correction
CORRECTIONS = {
    PREPARING: frozenset({PENDING}),
    READY: frozenset({PREPARING}),
}


def legal_next_states(status: str, correction: bool = False) -> frozenset:
    allowed = TRANSITIONS.get(status, frozenset())
    if correction:
        allowed = allowed | CORRECTIONS.get(status, frozenset())
    return allowed


def _is_money(value):
    return isinstance(value, Decimal) and value >= 0


def _is_line_items(value):
    return isinstance(value, list) and len(value) > 0 and all(
        isinstance(line, dict) and isinstance(line.get('menu_item'), dict) and int(line.get('quantity', 0)) >= 1
        for line in value
    )


def parse_order_id(order_id) -> int:
    try:
        return int(order_id)
    except (TypeError, ValueError):
        raise exceptions.OrderNotFound(f'Order {order_id} not found')


class Order(EntityBase):
    pk = keys_structure.orders_pk
    sk = keys_structure.orders_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, int) and x > 0,
        'restaurant_id': lambda x: isinstance(x, str) and len(x) > 0,
        'table_id': lambda x: isinstance(x, str) and len(x) > 0,
        'items': _is_line_items,
        'subtotal': _is_money,
        'tax': _is_money,
        'tip': _is_money,
        'total_amount': _is_money,
        'created_at': lambda x: isinstance(x, str),
        'access_token': lambda x: isinstance(x, str) and len(x) > 0
    }

    required_mutable_fields_validation = {
        'status_': lambda x: x in ORDER_STATUSES,
        'history': lambda x: isinstance(x, list)
    }

    optional_fields_validation = {
        'special_requests': lambda x: isinstance(x, str)
    }

    def __init__(self, restaurant_id, id_, **kwargs):
        EntityBase.__init__(self, restaurant_id, int(id_) if id_ is not None else None)

        self.table_id: str = kwargs.get('table_id')
        self.items: List[Dict] = [self._normalize_line(line) for line in kwargs.get('items') or []]
        self.status: str = kwargs.get('status', PENDING)
        self.subtotal: Decimal = to_decimal(kwargs.get('subtotal'), Decimal('0'))
        self.tax: Decimal = to_decimal(kwargs.get('tax'), Decimal('0'))
        self.tip: Decimal = to_decimal(kwargs.get('tip'), Decimal('0'))
        self.total_amount: Decimal = to_decimal(kwargs.get('total_amount'), Decimal('0'))
        self.special_requests: Optional[str] = kwargs.get('special_requests')
        self.history: List[Dict] = list(kwargs.get('history') or [])
        self.access_token: Optional[str] = kwargs.get('access_token')
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = RECORD_TYPE_ORDER

    @staticmethod
    def _normalize_line(line: Dict) -> Dict:
        line = dict(line)
        if 'quantity' in line:
            line['quantity'] = int(line['quantity'])
        return line

    @classmethod
    def from_record(cls, record: Dict) -> 'Order':
        record = dict(record)
        substitute_records([record], from_db)
        return cls(record.pop('restaurant_id'), record.pop('id'), **record)

    @classmethod
    def init_get_by_id(cls, restaurant_id, order_id) -> 'Order':
        order_id = parse_order_id(order_id)
        c = cls(restaurant_id, order_id)
        try:
            record = c._get_db_item()
        except exceptions.RecordNotFound:
            raise exceptions.OrderNotFound(f'Order {order_id} not found')
        record.pop('id', None)
        record.pop('restaurant_id', None)
        c.__init__(restaurant_id, order_id, **record)
        return c

    @classmethod
    def init_for_customer(cls, restaurant_id, order_id, access_token) -> 'Order':
        """
        Customers prove ownership with the capability token issued at checkout
        """
        order = cls.init_get_by_id(restaurant_id, order_id)
        if not utils_auth.tokens_match(order.access_token, access_token):
            logger.warning(f'init_for_customer ::: wrong access token for order {order_id}')
            raise exceptions.OrderNotFound(f'Order {order_id} not found')
        return order

    @staticmethod
    def list_orders(restaurant_id, status: Optional[str] = None) -> List['Order']:
        """
        Most recent first
        """
        if status is not None and status not in ORDER_STATUSES:
            raise exceptions.ValidationException(f'Unknown order status {status}')
        filters = {'status_': status} if status else None
        records = get_repository().query(keys_structure.orders_pk.format(restaurant_id=restaurant_id), filters)
        orders = [Order.from_record(record) for record in records]
        return sorted(orders, key=lambda order: (parse_timestamp(order.created_at), order.id_), reverse=True)

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS.get(self.status)

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(restaurant_id=self.restaurant_id), self.sk.format(order_id=self.id_)

    def _validate_mandatory_fields(self):
        super()._validate_mandatory_fields()
        # stored totals must match the line snapshots they were computed from
        record = self.db_record
        if pricing.subtotal(record['items']) != record['subtotal']:
            raise exceptions.ValidationException('Order subtotal does not match its line items')
        if pricing.total(record['subtotal'], record['tax'], record['tip']) != record['total_amount']:
            raise exceptions.ValidationException('Order total does not match subtotal, tax and tip')

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'table_id': self.table_id,
            'items': self.items,
            'status': self.status,
            'subtotal': self.subtotal,
            'tax': self.tax,
            'tip': self.tip,
            'total_amount': self.total_amount,
            'special_requests': self.special_requests,
            'history': self.history,
            'access_token': self.access_token
        }

    def to_ui(self, include_token: bool = False) -> Dict:
        item = self._to_ui()
        if not include_token:
            substitute_keys(dict_to_process=item, base_keys=from_db_public)
        return item


class OrderLifecycle:
    """
    Creates orders at checkout and guards every status change with the transition table
    """

    @staticmethod
    def _history_entry(status, actor):
        return {'status': status, 'at': utc_now_iso(), 'by': actor}

    def checkout(self, restaurant_id, table_id, lines: List[Dict], tip_percentage=None, tip_amount=None,
                 special_requests: Optional[str] = None) -> Order:
        if not restaurant_id or not table_id:
            raise exceptions.MissingCheckoutContext('Restaurant and table are required to place an order, '
                                                    'please scan the table QR code again')
        Table.init_get_by_id(restaurant_id, table_id)
        if not lines:
            raise exceptions.ValidationException('Cannot place an order with an empty cart')

        items, unavailable = [], []
        for line in lines:
            item_id = line.get('item_id') or line.get('menu_item_id')
            quantity = int(line.get('quantity') or 0)
            if not item_id or quantity < 1:
                raise exceptions.ValidationException(f'Malformed order line {line}')
            try:
                menu_item = MenuItem.init_get_by_id(restaurant_id, item_id)
            except exceptions.MenuItemNotFound:
                unavailable.append(str(item_id))
                continue
            if not menu_item.is_available_right_now():
                unavailable.append(str(item_id))
                continue
            # name and price come from the menu, never from the client
            items.append({
                'menu_item': menu_item.snapshot(),
                'quantity': quantity,
                'selected_size': line.get('selected_size'),
                'selected_options': list(line.get('selected_options') or []),
                'special_instructions': line.get('special_instructions')
            })
        if unavailable:
            raise exceptions.SomeItemsAreNotAvailable(
                f'Some items are currently unavailable: {", ".join(unavailable)}, '
                f'please remove them from the cart and place the order again')

        totals = pricing.order_totals(items, Restaurant.get_tax_rate(restaurant_id),
                                      tip_percentage=tip_percentage, tip_amount=tip_amount)
        order_id = get_repository().next_sequence(
            keys_structure.counters_pk.format(restaurant_id=restaurant_id),
            keys_structure.counters_sk.format(counter_name=ORDERS_COUNTER)
        )
        order = Order(
            restaurant_id, order_id,
            table_id=table_id,
            items=items,
            status=PENDING,
            special_requests=special_requests,
            history=[self._history_entry(PENDING, ACTOR_CUSTOMER)],
            access_token=secrets.token_urlsafe(24),
            **totals
        )
        order._create_db_record()
        logger.info(f'checkout ::: order {order_id} placed for table {table_id}, total={order.total_amount}')
        return order

    def transition(self, order: Order, target_status: str, actor: str = ACTOR_STAFF,
                   expected_version: Optional[int] = None, correction: bool = False) -> Order:
        if target_status not in ORDER_STATUSES:
            raise exceptions.ValidationException(f'Unknown order status {target_status}')
        if expected_version is not None and int(expected_version) != order.version:
            raise exceptions.ConcurrentModification(
                f'Order {order.id_} was changed by someone else, reload it and try again',
                expected_version=int(expected_version), actual_version=order.version)
        if actor == ACTOR_CUSTOMER and target_status != CANCELLED:
            raise exceptions.IllegalStatusTransition(
                order.status, target_status, message='Customers can only cancel their orders')
        if order.is_terminal:
            raise exceptions.IllegalStatusTransition(
                order.status, target_status, message=f'Order {order.id_} is already {order.status}')

        allowed = legal_next_states(order.status, correction=correction and actor == ACTOR_STAFF)
        if target_status not in allowed:
            raise exceptions.IllegalStatusTransition(order.status, target_status)

        observed_version = order.version
        previous_status, previous_history = order.status, list(order.history)
        order.status = target_status
        order.history = [*order.history, self._history_entry(target_status, actor)]
        try:
            order._update_db_record(expected_version=observed_version)
        except Exception:
            order.status, order.history = previous_status, previous_history
            raise
        logger.info(f'transition ::: order {order.id_} {previous_status} -> {target_status} by {actor}, '
                    f'version={order.version}')
        return order

    def cancel(self, order: Order, actor: str = ACTOR_STAFF, expected_version: Optional[int] = None) -> Order:
        return self.transition(order, CANCELLED, actor=actor, expected_version=expected_version)

    def delete(self, order: Order) -> None:
        order._delete_db_record()
        logger.info(f'delete ::: order {order.id_} permanently removed (status was {order.status})')


lifecycle = OrderLifecycle()


def _get_order_token(request):
    headers = request.headers or {}
    qp = request.query_params or {}
    return headers.get(ORDER_TOKEN_HEADER) or qp.get('token')


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_orders(request, restaurant_id):
    qp = request.query_params or {}
    orders = Order.list_orders(restaurant_id, status=qp.get('status'))
    return Response(status_code=http200, body={'orders': [order.to_ui() for order in orders]})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_order(request, restaurant_id, order_id):
    return Response(status_code=http200, body=Order.init_get_by_id(restaurant_id, order_id).to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_create_order(request, restaurant_id):
    request_body = utils_data.parse_raw_body(request)
    cart = None
    if request_body.get('cart_session_id'):
        cart = Cart(DbSessionStorage(request_body['cart_session_id']))
        lines = [line.to_dict() for line in cart.lines]
    else:
        lines = request_body.get('items') or []
    order = lifecycle.checkout(
        restaurant_id=restaurant_id,
        table_id=request_body.get('table_id'),
        lines=lines,
        tip_percentage=request_body.get('tip_percentage'),
        tip_amount=request_body.get('tip_amount'),
        special_requests=request_body.get('special_requests')
    )
    if cart is not None:
        cart.clear()
    return Response(status_code=http201, body=order.to_ui(include_token=True))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_update_order_status(request, restaurant_id, order_id):
    request_body = utils_data.parse_raw_body(request)
    status = request_body.get('status')
    if not status:
        raise exceptions.ValidationException('status must be provided')
    order = Order.init_get_by_id(restaurant_id, order_id)
    lifecycle.transition(
        order, status,
        actor=ACTOR_STAFF,
        expected_version=request_body.get('version'),
        correction=request_body.get('correction') is True
    )
    return Response(status_code=http200, body=order.to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_delete_order(request, restaurant_id, order_id):
    order = Order.init_get_by_id(restaurant_id, order_id)
    lifecycle.delete(order)
    return Response(status_code=http200, body={'message': 'Order was successfully deleted', 'id': order.id_})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_track_order(request, restaurant_id, order_id):
    order = Order.init_for_customer(restaurant_id, order_id, _get_order_token(request))
    return Response(status_code=http200, body=order.to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_cancel_order(request, restaurant_id, order_id):
    order = Order.init_for_customer(restaurant_id, order_id, _get_order_token(request))
    lifecycle.cancel(order, actor=ACTOR_CUSTOMER)
    return Response(status_code=http200, body=order.to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_dashboard(request, restaurant_id):
    qp = request.query_params or {}
    try:
        tz = ZoneInfo(qp.get('tz') or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        raise exceptions.ValidationException(f"Unknown time zone {qp.get('tz')}")
    try:
        top_n = int(qp.get('top') or POPULAR_ITEMS_DEFAULT_TOP)
    except (ValueError, TypeError):
        raise exceptions.ValidationException(f"top must be a whole number, got {qp.get('top')}")
    if top_n < 0:
        raise exceptions.ValidationException(f'top must not be negative, got {top_n}')
    orders = [order.to_ui() for order in Order.list_orders(restaurant_id)]
    summary = pricing.dashboard_summary(orders, datetime.now(tz), top_n=top_n)
    logger.info(f"endpoint_get_dashboard ::: {summary['todays_orders']} orders today, "
                f"revenue={summary['todays_revenue']}")
    return Response(status_code=http200, body=summary)
