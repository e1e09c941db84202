import os
from decimal import Decimal

from chalicelib.constants.constants import DEFAULT_TAX_RATE


def gen_table_name():
    return os.environ.get('GEN_TABLE_NAME', 'tabletap-gen-table')


def gen_table_stream_arn():
    return os.environ.get(
        'GEN_TABLE_STREAM_ARN',
        'arn:aws:dynamodb:eu-central-1:000000000000:table/tabletap-gen-table/stream/local'
    )


def dynamodb_endpoint_url():
    return os.environ.get('ENDPOINT_URL')


def aws_region():
    return os.environ.get('AWS_REGION', 'eu-central-1')


def repository_backend():
    return os.environ.get('REPOSITORY_BACKEND', 'dynamodb').lower()


def auth_jwt_secret():
    return os.environ.get('AUTH_JWT_SECRET', '')


def auth_jwt_audience():
    return os.environ.get('AUTH_JWT_AUDIENCE') or None


def public_base_url():
    return os.environ.get('PUBLIC_BASE_URL', 'http://localhost:3000').rstrip('/')


def default_tax_rate() -> Decimal:
    return Decimal(os.environ.get('DEFAULT_TAX_RATE', str(DEFAULT_TAX_RATE)))


def db_connect_timeout() -> float:
    return float(os.environ.get('DB_CONNECT_TIMEOUT', '3'))


def db_read_timeout() -> float:
    return float(os.environ.get('DB_READ_TIMEOUT', '10'))


def websocket_domain():
    return os.environ.get('WEBSOCKET_DOMAIN')


def websocket_stage():
    return os.environ.get('WEBSOCKET_STAGE', 'api')


def log_level():
    return os.environ.get('LOG_LEVEL', 'DEBUG').upper()
