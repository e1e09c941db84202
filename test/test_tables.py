import pytest

from chalicelib.constants.status_codes import http200, http201, http400, http401, http404
from chalicelib.tables import Table, build_table_url, parse_table_number
from chalicelib.utils.exceptions import ValidationException
from test.utils.fixtures import chalice_gateway, repository, menu, staff_token, id_restaurant
from test.utils.request_utils import make_request, response_body

tables_endpoint = f'/restaurants/{id_restaurant}/tables'


def test_build_table_url(repository):
    assert build_table_url(id_restaurant, 3) == \
        f'https://tabletap.test/customer/scan?table=3&restaurant={id_restaurant}'


@pytest.mark.parametrize('value,expected', [(3, 3), ('12', 12)])
def test_parse_table_number(value, expected):
    assert parse_table_number(value) == expected


@pytest.mark.parametrize('value', [0, -1, 'abc', '', None, True, 2.5])
def test_parse_table_number_rejects(value):
    with pytest.raises(ValidationException):
        parse_table_number(value)


def test_create_table(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=tables_endpoint, method='POST',
                            json_body={'number': 3}, token=staff_token())

    assert response['statusCode'] == http201
    table = response_body(response)['table']
    assert table['number'] == 3
    assert table['qr_url'] == build_table_url(id_restaurant, 3)


def test_table_numbers_are_unique(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=tables_endpoint, method='POST',
                            json_body={'number': 1}, token=staff_token())

    assert response['statusCode'] == http400
    assert len(Table.get_all(id_restaurant)) == 2


def test_get_tables_needs_staff(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=tables_endpoint)
    assert response['statusCode'] == http401

    response = make_request(chalice_gateway, endpoint=tables_endpoint, token=staff_token())
    assert response['statusCode'] == http200
    assert [table['number'] for table in response_body(response)] == [1, 2]


def test_validate_table_qr_code(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'/restaurants/{id_restaurant}/validate-table/2')

    assert response['statusCode'] == http200
    assert response_body(response) == {'is_valid': True, 'restaurant_id': id_restaurant, 'table_id': 'table-2',
                                       'number': 2}


def test_validate_unknown_table_asks_to_rescan(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'/restaurants/{id_restaurant}/validate-table/9')

    assert response['statusCode'] == http404
    assert response_body(response)['exception'] == 'TableNotFound'
    assert response_body(response)['recovery'] == 'rescan_qr'

    response = make_request(chalice_gateway, endpoint=f'/restaurants/{id_restaurant}/validate-table/abc')
    assert response['statusCode'] == http400


def test_delete_table(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'{tables_endpoint}/table-2', method='DELETE',
                            token=staff_token())
    assert response['statusCode'] == http200

    response = make_request(chalice_gateway, endpoint=f'/restaurants/{id_restaurant}/validate-table/2')
    assert response['statusCode'] == http404

    response = make_request(chalice_gateway, endpoint=f'{tables_endpoint}/table-2', method='DELETE',
                            token=staff_token())
    assert response['statusCode'] == http404
