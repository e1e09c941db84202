from decimal import Decimal
from typing import Tuple

from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200
from chalicelib.utils import config, data as utils_data, exceptions, app as utils_app
from chalicelib.utils.data import to_decimal
from chalicelib.utils.logger import logger

WEEK_DAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def _is_opening_hours(value):
    return isinstance(value, dict) and all(day in WEEK_DAYS and isinstance(hours, str)
                                           for day, hours in value.items())


class Restaurant(EntityBase):
    pk = keys_structure.restaurants_pk
    sk = keys_structure.restaurants_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'name_': lambda x: isinstance(x, str),
        'tax_rate': lambda x: isinstance(x, Decimal) and Decimal('0') <= x <= Decimal('100')
    }

    optional_fields_validation = {
        'address': lambda x: isinstance(x, str),
        'phone': lambda x: isinstance(x, str),
        'email': lambda x: isinstance(x, str),
        'description': lambda x: isinstance(x, str),
        'opening_hours': _is_opening_hours
    }

    editable_fields = ('name', 'address', 'phone', 'email', 'description', 'opening_hours', 'tax_rate')

    def __init__(self, restaurant_id, **kwargs):
        EntityBase.__init__(self, restaurant_id, restaurant_id)

        self.name: str = kwargs.get('name') or f'Restaurant {restaurant_id[:6]}'
        self.address: str = kwargs.get('address')
        self.phone: str = kwargs.get('phone')
        self.email: str = kwargs.get('email')
        self.description: str = kwargs.get('description')
        self.opening_hours: dict = kwargs.get('opening_hours')
        tax_rate = kwargs.get('tax_rate')
        self.tax_rate: Decimal = config.default_tax_rate() if tax_rate is None else to_decimal(tax_rate, tax_rate)
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = 'restaurant'

    @classmethod
    def init_get_by_id(cls, restaurant_id) -> 'Restaurant':
        logger.info("init_get_by_id ::: started")
        c = cls(restaurant_id)
        record = c._get_db_item()
        record.pop('id', None)
        record.pop('restaurant_id', None)
        c.__init__(restaurant_id, **record)
        return c

    @classmethod
    def init_or_default(cls, restaurant_id) -> 'Restaurant':
        """
        Restaurants that never saved settings still get a name and the default tax rate
        """
        try:
            return cls.init_get_by_id(restaurant_id)
        except exceptions.RecordNotFound:
            return cls(restaurant_id)

    @classmethod
    def init_request_update(cls, request, restaurant_id) -> 'Restaurant':
        logger.info("init_request_update ::: started")
        request_body = utils_data.parse_raw_body(request)
        c = cls.init_or_default(restaurant_id)
        for field in cls.editable_fields:
            if field in request_body:
                setattr(c, field, request_body[field])
        c.tax_rate = to_decimal(c.tax_rate, c.tax_rate)
        return c

    @staticmethod
    def get_tax_rate(restaurant_id) -> Decimal:
        return Restaurant.init_or_default(restaurant_id).tax_rate

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_get_by_id(self) -> Response:
        restaurant = self.to_ui()
        logger.info(f"endpoint_get_by_id ::: returning restaurant={restaurant['id']}")
        return Response(status_code=http200, body=restaurant)

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_update(self) -> Response:
        try:
            self._get_db_item()
        except exceptions.RecordNotFound:
            self._create_db_record()
        else:
            self._update_db_record()
        return Response(status_code=http200, body={'message': 'Restaurant settings were successfully saved',
                                                   'restaurant': self.to_ui()})

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk.format(restaurant_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'name': self.name,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'description': self.description,
            'opening_hours': self.opening_hours,
            'tax_rate': self.tax_rate
        }
