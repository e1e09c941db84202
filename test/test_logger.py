import json
from decimal import Decimal

from chalicelib.utils.logger import CustomJSONEncoder, redact_request


class FakeRequest:
    raw_body = b''

    def __init__(self, headers, query_params=None):
        self.headers = headers
        self.query_params = query_params

    def to_dict(self):
        return {'headers': dict(self.headers), 'query_params': self.query_params, 'method': 'POST'}


def test_credentials_are_redacted():
    request = FakeRequest({'authorization': 'Bearer secret', 'x-order-token': 'abc', 'host': 'tabletap.test'},
                          {'token': 'abc', 'tz': 'UTC'})

    redacted = redact_request(request)

    assert redacted['headers'] == {'host': 'tabletap.test'}
    assert redacted['query_params'] == {'token': '***', 'tz': 'UTC'}
    assert request.headers['authorization'] == 'Bearer secret'


def test_redact_request_without_query_params():
    assert redact_request(FakeRequest({}))['query_params'] is None


def test_json_encoder():
    assert json.loads(json.dumps({'total': Decimal('12.50'), 'tags': {'b', 'a'}}, cls=CustomJSONEncoder)) == \
        {'total': 12.5, 'tags': ['a', 'b']}
