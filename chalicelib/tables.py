from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode
from uuid import uuid4

from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200, http201
from chalicelib.constants.substitute_keys import from_db
from chalicelib.repository import get_repository
from chalicelib.utils import config, data as utils_data, exceptions, app as utils_app
from chalicelib.utils.data import substitute_records
from chalicelib.utils.logger import logger


def build_table_url(restaurant_id: str, table_number: int) -> str:
    """
    Customer-facing URL encoded into the table's QR code
    """
    query = urlencode({'table': table_number, 'restaurant': restaurant_id})
    return f'{config.public_base_url()}/customer/scan?{query}'


def parse_table_number(value) -> int:
    if isinstance(value, bool):
        raise exceptions.ValidationException('Table number must be a positive integer')
    try:
        number = int(value)
    except (TypeError, ValueError, ArithmeticError):
        raise exceptions.ValidationException(f'Table number must be a positive integer, got {value!r}')
    if number != value and str(number) != str(value):
        raise exceptions.ValidationException(f'Table number must be a positive integer, got {value!r}')
    if number < 1:
        raise exceptions.ValidationException(f'Table number must be a positive integer, got {value!r}')
    return number


class Table(EntityBase):
    pk = keys_structure.tables_pk
    sk = keys_structure.tables_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'restaurant_id': lambda x: isinstance(x, str),
        'number_': lambda x: isinstance(x, int) and not isinstance(x, bool) and x > 0
    }

    def __init__(self, restaurant_id, id_, **kwargs):
        EntityBase.__init__(self, restaurant_id, id_)
        number = kwargs.get('number')
        self.number: Optional[int] = int(number) if number is not None else None
        self.version = int(kwargs.get('version', 1))
        self.created_at = kwargs.get('created_at')
        self.updated_at = kwargs.get('updated_at')
        self.record_type = 'table'

    @classmethod
    def init_request_create(cls, request, restaurant_id):
        logger.info("init_request_create ::: started")
        request_body = utils_data.parse_raw_body(request)
        return cls(restaurant_id, str(uuid4()), number=parse_table_number(request_body.get('number')))

    @classmethod
    def init_get_by_id(cls, restaurant_id, table_id) -> 'Table':
        c = cls(restaurant_id, table_id)
        try:
            record = c._get_db_item()
        except exceptions.RecordNotFound:
            raise exceptions.TableNotFound(f'Table {table_id} not found')
        record.pop('id', None)
        record.pop('restaurant_id', None)
        c.__init__(restaurant_id, table_id, **record)
        return c

    @staticmethod
    def get_all(restaurant_id) -> List['Table']:
        records = get_repository().query(keys_structure.tables_pk.format(restaurant_id=restaurant_id))
        substitute_records(records, from_db)
        tables = [Table(record.pop('restaurant_id'), record.pop('id'), **record) for record in records]
        return sorted(tables, key=lambda table: table.number)

    @staticmethod
    def get_by_number(restaurant_id, table_number) -> Optional['Table']:
        records = get_repository().query(keys_structure.tables_pk.format(restaurant_id=restaurant_id),
                                         {'number_': table_number})
        if not records:
            return None
        record = records[0]
        substitute_records([record], from_db)
        return Table(record.pop('restaurant_id'), record.pop('id'), **record)

    @staticmethod
    def validate_qr_code(restaurant_id, table_number) -> Dict:
        table = Table.get_by_number(restaurant_id, parse_table_number(table_number))
        if table is None:
            raise exceptions.TableNotFound(f'Table {table_number} does not exist in restaurant {restaurant_id}')
        return {'is_valid': True, 'restaurant_id': restaurant_id, 'table_id': table.id_, 'number': table.number}

    @staticmethod
    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_get_tables(request, restaurant_id) -> Response:
        return Response(status_code=http200, body=[table.to_ui() for table in Table.get_all(restaurant_id)])

    @staticmethod
    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_validate_qr_code(request, restaurant_id, table_number) -> Response:
        return Response(status_code=http200, body=Table.validate_qr_code(restaurant_id, table_number))

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_create_table(self) -> Response:
        if Table.get_by_number(self.restaurant_id, self.number) is not None:
            raise exceptions.ValidationException(f'Table number {self.number} already exists')
        self._create_db_record()
        return Response(status_code=http201, body={'message': 'Table successfully created', 'id': self.id_,
                                                   'table': self.to_ui()})

    @utils_app.request_exception_handler
    @utils_app.log_start_finish
    def endpoint_delete_table(self) -> Response:
        # historical orders keep their table_id
        self._delete_db_record()
        return Response(status_code=http200, body={'message': 'Table was successfully deleted', 'id': self.id_})

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(restaurant_id=self.restaurant_id), self.sk.format(table_id=self.id_)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'number': self.number
        }

    def _to_ui(self) -> Dict:
        item = super()._to_ui()
        item['qr_url'] = build_table_url(self.restaurant_id, self.number)
        return item
