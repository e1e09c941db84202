from decimal import Decimal

from chalicelib.constants.status_codes import http200, http400, http401, http403
from chalicelib.restaurants import Restaurant
from test.utils.fixtures import chalice_gateway, repository, staff_token, id_restaurant, id_other_restaurant
from test.utils.request_utils import make_request, response_body

restaurant_endpoint = f'/restaurants/{id_restaurant}'


def test_get_restaurant_defaults(chalice_gateway, repository):
    response = make_request(chalice_gateway, endpoint=restaurant_endpoint)

    assert response['statusCode'] == http200
    restaurant = response_body(response)
    assert restaurant['id'] == id_restaurant
    assert restaurant['name'] == f'Restaurant {id_restaurant[:6]}'
    assert restaurant['tax_rate'] == 7.0


def test_update_restaurant_settings(chalice_gateway, repository):
    restaurant_settings = {
        'name': 'Chez Nous',
        'address': '1 Main Street',
        'tax_rate': 8.25,
        'opening_hours': {'monday': '09:00-22:00', 'sunday': 'closed'}
    }

    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body=restaurant_settings, token=staff_token())
    assert response['statusCode'] == http200

    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'phone': '+1 555 0100'}, token=staff_token())
    assert response['statusCode'] == http200

    stored = Restaurant.init_get_by_id(id_restaurant)
    assert stored.name == 'Chez Nous'
    assert stored.phone == '+1 555 0100'
    assert stored.tax_rate == Decimal('8.25')
    assert stored.version == 2
    assert Restaurant.get_tax_rate(id_restaurant) == Decimal('8.25')


def test_update_restaurant_validation(chalice_gateway, repository):
    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'tax_rate': 150}, token=staff_token())
    assert response['statusCode'] == http400

    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'opening_hours': {'funday': 'always'}}, token=staff_token())
    assert response['statusCode'] == http400

    assert Restaurant.get_tax_rate(id_restaurant) == Decimal('7')


def test_update_restaurant_needs_its_staff(chalice_gateway, repository):
    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'name': 'Hijacked'})
    assert response['statusCode'] == http401

    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'name': 'Hijacked'}, token=staff_token(secret='wrong-secret'))
    assert response['statusCode'] == http401

    response = make_request(chalice_gateway, endpoint=restaurant_endpoint, method='PUT',
                            json_body={'name': 'Hijacked'}, token=staff_token(id_other_restaurant))
    assert response['statusCode'] == http403
    assert response_body(response)['exception'] == 'AccessDenied'
