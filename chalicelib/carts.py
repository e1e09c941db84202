import json
from decimal import Decimal
from typing import Dict, List, Optional

from chalice import Response

from chalicelib.constants import keys_structure
from chalicelib.constants.constants import CART_STORAGE_KEY
from chalicelib.constants.status_codes import http200
from chalicelib.menu_items import MenuItem
from chalicelib.pricing import quantize, subtotal
from chalicelib.repository import get_repository
from chalicelib.utils import app as utils_app, data as utils_data, exceptions
from chalicelib.utils.data import to_decimal, utc_now_iso
from chalicelib.utils.logger import logger, CustomJSONEncoder


class MemoryStorage:
    """
    Key-value string storage, the same contract as a browser's localStorage
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class DbSessionStorage:
    """
    localStorage contract persisted per cart session in the general table
    """

    def __init__(self, session_id: str):
        self.session_id = session_id

    def _get_pk_sk(self, key):
        return keys_structure.carts_pk, keys_structure.carts_sk.format(session_id=self.session_id, storage_key=key)

    def get_item(self, key):
        try:
            return get_repository().get_item(*self._get_pk_sk(key)).get('value')
        except exceptions.RecordNotFound:
            return None

    def set_item(self, key, value):
        pk, sk = self._get_pk_sk(key)
        get_repository().put_item({
            'partkey': pk,
            'sortkey': sk,
            'record_type': 'cart',
            'session_id': self.session_id,
            'value': value,
            'updated_at': utc_now_iso()
        })

    def remove_item(self, key):
        try:
            get_repository().delete_item(*self._get_pk_sk(key))
        except exceptions.RecordNotFound:
            pass


class CartLine:

    def __init__(self, item_id, name, unit_price, quantity, selected_size=None, selected_options=None,
                 special_instructions=None):
        self.item_id: str = str(item_id)
        self.name: str = name or ''
        self.unit_price: Decimal = quantize(to_decimal(unit_price, Decimal('0')))
        self.quantity: int = int(quantity)
        self.selected_size: Optional[str] = selected_size
        self.selected_options: List[str] = list(dict.fromkeys(selected_options or []))
        self.special_instructions: Optional[str] = special_instructions

    @classmethod
    def from_dict(cls, data: dict) -> 'CartLine':
        if not isinstance(data, dict) or data.get('item_id') is None:
            raise ValueError(f'Malformed cart line {data!r}')
        if to_decimal(data.get('unit_price')) is None or int(data.get('quantity', 0)) < 1:
            raise ValueError(f'Malformed cart line {data!r}')
        return cls(
            item_id=data['item_id'],
            name=data.get('name'),
            unit_price=data['unit_price'],
            quantity=data['quantity'],
            selected_size=data.get('selected_size'),
            selected_options=data.get('selected_options'),
            special_instructions=data.get('special_instructions')
        )

    def to_dict(self) -> dict:
        return {
            'item_id': self.item_id,
            'name': self.name,
            'unit_price': self.unit_price,
            'quantity': self.quantity,
            'selected_size': self.selected_size,
            'selected_options': self.selected_options,
            'special_instructions': self.special_instructions
        }


class Cart:
    """
    Customer's in-progress selection, persisted to a localStorage-like collaborator on every change.

    Keying policy: one line per menu item id. Adding an item that is already in the cart
    replaces the line, customizations included.
    """

    def __init__(self, storage, storage_key: str = CART_STORAGE_KEY):
        self.storage = storage
        self.storage_key = storage_key
        self._lines: Dict[str, CartLine] = self._load()

    @staticmethod
    def line_key(item_id) -> str:
        return str(item_id)

    def _load(self) -> Dict[str, CartLine]:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise ValueError(f'cart payload is {type(payload).__name__}, expected list')
            lines = [CartLine.from_dict(line) for line in payload]
        except (ValueError, TypeError, ArithmeticError) as error:
            logger.warning(f'Cart._load ::: stored cart under {self.storage_key=} is malformed, '
                           f'starting with an empty cart: {error}')
            return {}
        return {self.line_key(line.item_id): line for line in lines}

    def _persist(self):
        if not self._lines:
            self.storage.remove_item(self.storage_key)
            return
        self.storage.set_item(
            self.storage_key,
            json.dumps([line.to_dict() for line in self._lines.values()], cls=CustomJSONEncoder)
        )

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def get_line(self, item_id) -> Optional[CartLine]:
        return self._lines.get(self.line_key(item_id))

    def __len__(self):
        return len(self._lines)

    def add_or_update(self, item: dict, quantity: int, customizations: Optional[dict] = None) -> Optional[CartLine]:
        if int(quantity) < 1:
            self.remove(item['id'])
            return None
        customizations = customizations or {}
        line = CartLine(
            item_id=item['id'],
            name=item.get('name'),
            unit_price=item['price'],
            quantity=quantity,
            selected_size=customizations.get('selected_size'),
            selected_options=customizations.get('selected_options'),
            special_instructions=customizations.get('special_instructions')
        )
        self._lines[self.line_key(line.item_id)] = line
        self._persist()
        return line

    def set_quantity(self, item_id, new_quantity: int) -> None:
        key = self.line_key(item_id)
        if new_quantity < 1:
            self._lines.pop(key, None)
        elif key in self._lines:
            self._lines[key].quantity = int(new_quantity)
        self._persist()

    def remove(self, item_id) -> None:
        self._lines.pop(self.line_key(item_id), None)
        self._persist()

    def compute_subtotal(self) -> Decimal:
        return subtotal([line.to_dict() for line in self._lines.values()])

    def clear(self) -> None:
        self._lines = {}
        self._persist()

    def to_ui(self) -> dict:
        return {
            'items': [line.to_dict() for line in self._lines.values()],
            'subtotal': self.compute_subtotal()
        }


class CartSession:
    """
    HTTP endpoints around a Cart stored per session id
    """

    def __init__(self, session_id: str, request_body: Optional[dict] = None):
        self.session_id = session_id
        self.request_body = request_body or {}
        self.cart = Cart(DbSessionStorage(session_id))

    @classmethod
    def init_endpoint(cls, request, session_id):
        logger.info("init_endpoint ::: started")
        return cls(session_id=session_id, request_body=utils_data.parse_raw_body(request))

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_get_cart(self):
        return Response(status_code=http200, body={'cart': self.cart.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_add_item_to_cart(self, item_id):
        restaurant_id = self.request_body.get('restaurant_id')
        if not restaurant_id:
            raise exceptions.MissingCheckoutContext('restaurant_id must be provided')
        menu_item = MenuItem.init_get_by_id(restaurant_id, item_id)
        if not menu_item.available:
            raise exceptions.SomeItemsAreNotAvailable(f'Menu item {item_id} is not available right now')
        quantity = max(1, int(self.request_body.get('quantity', 1)))
        self.cart.add_or_update(menu_item.to_ui(), quantity, {
            'selected_size': self.request_body.get('selected_size'),
            'selected_options': self.request_body.get('selected_options'),
            'special_instructions': self.request_body.get('special_instructions')
        })
        return Response(status_code=http200, body={'cart': self.cart.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_set_quantity(self, item_id):
        quantity = self.request_body.get('quantity')
        if quantity is None:
            raise exceptions.ValidationException('quantity must be provided')
        self.cart.set_quantity(item_id, int(quantity))
        return Response(status_code=http200, body={'cart': self.cart.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_remove_item_from_cart(self, item_id):
        self.cart.remove(item_id)
        return Response(status_code=http200, body={'cart': self.cart.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_clear_cart(self):
        self.cart.clear()
        return Response(status_code=http200, body={'message': 'Cart was successfully cleared'})
