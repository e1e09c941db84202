from decimal import Decimal
from typing import List, Dict, Tuple
from uuid import uuid4

from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import RECORD_TYPE_MENU_ITEM
from chalicelib.constants.status_codes import http200, http201
from chalicelib.constants.substitute_keys import from_db
from chalicelib.pricing import quantize
from chalicelib.repository import get_repository
from chalicelib.utils import data as utils_data, exceptions, app as utils_app
from chalicelib.utils.data import substitute_records, to_decimal
from chalicelib.utils.logger import logger


def _is_tag_list(value):
    return isinstance(value, list) and all(isinstance(tag, str) for tag in value)


class MenuItem(EntityBase):
    pk = keys_structure.menu_items_pk
    sk = keys_structure.menu_items_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'restaurant_id': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'name_': lambda x: isinstance(x, str) and len(x.strip()) > 0,
        'description': lambda x: isinstance(x, str),
        'price': lambda x: isinstance(x, Decimal) and x >= 0,
        'category_id': lambda x: isinstance(x, str) and len(x) > 0,
        'tags': _is_tag_list,
        'available': lambda x: isinstance(x, bool)
    }

    optional_fields_validation = {
        'image_src': lambda x: isinstance(x, str)
    }

    def __init__(self, restaurant_id, id_, **kwargs):
        EntityBase.__init__(self, restaurant_id, id_)

        price = to_decimal(kwargs.get('price'))
        self.name: str = kwargs.get('name')
        self.description: str = kwargs.get('description', '')
        self.price: Decimal = quantize(price) if price is not None and price >= 0 else price
        self.category_id: str = kwargs.get('category_id')
        tags = kwargs.get('tags') or []
        self.tags: list = list(dict.fromkeys(tags)) if _is_tag_list(tags) else tags
        self.available: bool = kwargs.get('available', True)
        self.image_src: str = kwargs.get('image_src')
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = RECORD_TYPE_MENU_ITEM

    @classmethod
    def init_request_create_update(cls, request, restaurant_id, menu_item_id=None):
        logger.info("init_request_create_update ::: started")
        request_body = utils_data.parse_raw_body(request)
        request_body.pop('id', None)
        request_body.pop('restaurant_id', None)
        if menu_item_id is None:
            return cls(restaurant_id=restaurant_id, id_=str(uuid4()), **request_body)
        c = cls.init_get_by_id(restaurant_id, menu_item_id)
        for field in ('name', 'description', 'price', 'category_id', 'tags', 'available', 'image_src'):
            if field in request_body:
                setattr(c, field, request_body[field])
        price = to_decimal(c.price, c.price)
        c.price = quantize(price) if isinstance(price, Decimal) and price >= 0 else price
        if _is_tag_list(c.tags):
            c.tags = list(dict.fromkeys(c.tags))
        return c

    @classmethod
    def from_record(cls, record: Dict) -> 'MenuItem':
        record = dict(record)
        substitute_records([record], from_db)
        return cls(record.pop('restaurant_id'), record.pop('id'), **record)

    @classmethod
    def init_get_by_id(cls, restaurant_id, menu_item_id) -> 'MenuItem':
        logger.info("init_get_by_id ::: started")
        c = cls(restaurant_id=restaurant_id, id_=menu_item_id)
        try:
            record = c._get_db_item()
        except exceptions.RecordNotFound:
            raise exceptions.MenuItemNotFound(f'Menu item {menu_item_id} not found')
        record.pop('id', None)
        record.pop('restaurant_id', None)
        c.__init__(restaurant_id, menu_item_id, **record)
        return c

    @staticmethod
    def get_all(restaurant_id, category_id=None) -> List['MenuItem']:
        filters = {'category_id': category_id} if category_id else None
        records = get_repository().query(keys_structure.menu_items_pk.format(restaurant_id=restaurant_id), filters)
        return sorted((MenuItem.from_record(record) for record in records), key=lambda item: (item.name, item.id_))

    @staticmethod
    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_get_menu_items(request, restaurant_id) -> Response:
        qp = request.query_params or {}
        menu_items = [item.to_ui() for item in MenuItem.get_all(restaurant_id, qp.get('category_id'))]
        if qp.get('available_only') in ('1', 'true'):
            menu_items = [item for item in menu_items if item['available']]
        logger.info(f"endpoint_get_menu_items ::: returning menu items={[item['id'] for item in menu_items]}")
        return Response(status_code=http200, body=menu_items)

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_create_menu_item(self) -> Response:
        self._check_category_exists()
        self._create_db_record()
        return Response(status_code=http201, body={'message': 'Menu item successfully created', 'id': self.id_,
                                                   'menu_item': self.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_update_menu_item(self) -> Response:
        self._check_category_exists()
        self._update_db_record()
        return Response(status_code=http200, body={'message': 'Menu item was successfully updated', 'id': self.id_,
                                                   'menu_item': self.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_delete_menu_item(self) -> Response:
        self._delete_db_record()
        return Response(status_code=http200, body={'message': 'Menu item was successfully deleted', 'id': self.id_})

    def _check_category_exists(self):
        from chalicelib.menu_categories import MenuCategory
        if not isinstance(self.category_id, str) or not MenuCategory.exists(self.restaurant_id, self.category_id):
            raise exceptions.ValidationException(f'Menu category {self.category_id} does not exist')

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(restaurant_id=self.restaurant_id), self.sk.format(menu_item_id=self.id_)

    def is_available_right_now(self) -> bool:
        return self.available is True

    def snapshot(self) -> Dict:
        """
        Name/price copy stored inside order line items
        """
        return {
            'id': self.id_,
            'name': self.name,
            'price': self.price,
            'category_id': self.category_id
        }

    def _to_dict(self):
        return {
            'id_': self.id_,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'category_id': self.category_id,
            'tags': self.tags,
            'available': self.available,
            'image_src': self.image_src
        }
