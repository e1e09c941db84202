import re
from typing import Dict, List, Tuple

from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200, http201
from chalicelib.constants.substitute_keys import from_db
from chalicelib.menu_items import MenuItem
from chalicelib.repository import get_repository
from chalicelib.utils import data as utils_data, exceptions, app as utils_app
from chalicelib.utils.data import substitute_records
from chalicelib.utils.logger import logger


def category_id_from_name(name: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", (name or '').strip().lower()).strip("-")
    return slug or "category"


class MenuCategory(EntityBase):
    pk = keys_structure.menu_categories_pk
    sk = keys_structure.menu_categories_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str) and len(x) > 0,
        'restaurant_id': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'name_': lambda x: isinstance(x, str) and len(x.strip()) > 0
    }

    optional_fields_validation = {
        'description': lambda x: isinstance(x, str)
    }

    def __init__(self, restaurant_id, id_, **kwargs):
        EntityBase.__init__(self, restaurant_id, id_)
        self.name: str = kwargs.get('name')
        self.description: str = kwargs.get('description')
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = 'menu_category'

    @classmethod
    def init_request_create(cls, request, restaurant_id):
        logger.info("init_request_create ::: started")
        request_body = utils_data.parse_raw_body(request)
        name = request_body.get('name')
        if not isinstance(name, str) or not name.strip():
            raise exceptions.ValidationException('Category name must be provided')
        return cls(restaurant_id, category_id_from_name(name), name=name.strip(),
                   description=request_body.get('description'))

    @classmethod
    def init_request_update(cls, request, restaurant_id, category_id):
        logger.info("init_request_update ::: started")
        request_body = utils_data.parse_raw_body(request)
        c = cls.init_get_by_id(restaurant_id, category_id)
        c.name = request_body.get('name', c.name)
        c.description = request_body.get('description', c.description)
        return c

    @classmethod
    def init_get_by_id(cls, restaurant_id, category_id) -> 'MenuCategory':
        c = cls(restaurant_id, category_id)
        record = c._get_db_item()
        record.pop('id', None)
        record.pop('restaurant_id', None)
        c.__init__(restaurant_id, category_id, **record)
        return c

    @classmethod
    def exists(cls, restaurant_id, category_id) -> bool:
        try:
            cls.init_get_by_id(restaurant_id, category_id)
        except exceptions.RecordNotFound:
            return False
        return True

    @staticmethod
    def get_all(restaurant_id) -> List['MenuCategory']:
        records = get_repository().query(keys_structure.menu_categories_pk.format(restaurant_id=restaurant_id))
        substitute_records(records, from_db)
        categories = [MenuCategory(record.pop('restaurant_id'), record.pop('id'), **record) for record in records]
        return sorted(categories, key=lambda category: (category.name or '', category.id_))

    @staticmethod
    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_get_categories(request, restaurant_id) -> Response:
        return Response(status_code=http200, body=[c.to_ui() for c in MenuCategory.get_all(restaurant_id)])

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_create_category(self) -> Response:
        if MenuCategory.exists(self.restaurant_id, self.id_):
            raise exceptions.ValidationException(f'Menu category {self.id_} already exists')
        self._create_db_record()
        return Response(status_code=http201, body={'message': 'Menu category successfully created',
                                                   'id': self.id_, 'category': self.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_update_category(self) -> Response:
        self._update_db_record()
        return Response(status_code=http200, body={'message': 'Menu category was successfully updated',
                                                   'id': self.id_, 'category': self.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_delete_category(self) -> Response:
        """
        A category that still groups menu items cannot be removed
        """
        items_in_use = MenuItem.get_all(self.restaurant_id, category_id=self.id_)
        if items_in_use:
            raise exceptions.CategoryNotEmpty(
                f'Menu category {self.id_} still has {len(items_in_use)} menu item(s), '
                f'move or delete them first')
        self._delete_db_record()
        return Response(status_code=http200, body={'message': 'Menu category was successfully deleted',
                                                   'id': self.id_})

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(restaurant_id=self.restaurant_id), self.sk.format(category_id=self.id_)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'name': self.name,
            'description': self.description
        }
