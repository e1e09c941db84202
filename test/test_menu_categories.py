from chalicelib.constants.status_codes import http200, http201, http400, http404, http409
from chalicelib.menu_categories import MenuCategory, category_id_from_name
from test.utils.fixtures import chalice_gateway, repository, menu, staff_token, id_restaurant
from test.utils.request_utils import make_request, response_body

categories_endpoint = f'/restaurants/{id_restaurant}/menu-categories'


def test_category_id_from_name():
    assert category_id_from_name('Hot Drinks') == 'hot-drinks'
    assert category_id_from_name('  Soups & Stews! ') == 'soups-stews'
    assert category_id_from_name('!!!') == 'category'


def test_create_category(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=categories_endpoint, method='POST',
                            json_body={'name': 'Hot Drinks', 'description': 'Coffee and tea'}, token=staff_token())

    assert response['statusCode'] == http201
    assert response_body(response)['id'] == 'hot-drinks'

    response = make_request(chalice_gateway, endpoint=categories_endpoint)
    assert [category['name'] for category in response_body(response)] == ['Hot Drinks', 'Mains']


def test_create_category_validation(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=categories_endpoint, method='POST',
                            json_body={'name': 'Mains'}, token=staff_token())
    assert response['statusCode'] == http400

    response = make_request(chalice_gateway, endpoint=categories_endpoint, method='POST',
                            json_body={'description': 'no name'}, token=staff_token())
    assert response['statusCode'] == http400


def test_update_category(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'{categories_endpoint}/mains', method='PUT',
                            json_body={'name': 'Main Courses'}, token=staff_token())

    assert response['statusCode'] == http200
    stored = MenuCategory.init_get_by_id(id_restaurant, 'mains')
    assert stored.name == 'Main Courses'
    assert stored.version == 2


def test_delete_category_in_use_is_blocked(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'{categories_endpoint}/mains', method='DELETE',
                            token=staff_token())

    assert response['statusCode'] == http409
    assert response_body(response)['exception'] == 'CategoryNotEmpty'
    assert MenuCategory.exists(id_restaurant, 'mains')


def test_delete_empty_category(chalice_gateway, menu):
    for item_id in ('burger', 'fries', 'salad'):
        menu['items'][item_id]._delete_db_record()

    response = make_request(chalice_gateway, endpoint=f'{categories_endpoint}/mains', method='DELETE',
                            token=staff_token())

    assert response['statusCode'] == http200
    assert not MenuCategory.exists(id_restaurant, 'mains')


def test_delete_unknown_category(chalice_gateway, menu):
    response = make_request(chalice_gateway, endpoint=f'{categories_endpoint}/desserts', method='DELETE',
                            token=staff_token())

    assert response['statusCode'] == http404
