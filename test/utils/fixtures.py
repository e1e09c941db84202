import os
import time
from decimal import Decimal

import jwt
import pytest
from chalice.cli import factory
from chalice.local import LocalGateway

from chalicelib.menu_categories import MenuCategory
from chalicelib.menu_items import MenuItem
from chalicelib.repository import InMemoryRepository, set_repository
from chalicelib.restaurants import Restaurant
from chalicelib.tables import Table
from chalicelib.utils.logger import log_message

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

JWT_SECRET = 'test-secret'

id_restaurant = 'f770d5f7-6dd2-4cdf-842b-5fd0dd84a52a'
id_other_restaurant = '8178f948-cdc2-4e8c-b013-07a956e7e72a'


def staff_token(restaurant_id: str = id_restaurant, secret: str = JWT_SECRET, expires_in: int = 3600) -> str:
    return jwt.encode({'sub': restaurant_id, 'exp': int(time.time()) + expires_in}, secret, algorithm='HS256')


def local_gateway() -> LocalGateway:
    config = factory.CLIFactory(
        project_dir=PROJECT_DIR, environ=os.environ).create_config_obj(chalice_stage_name=os.environ.get('stage', 'test'))
    log_message(f'local_gateway os.environ = {os.environ.get("stage", "test")}')
    return LocalGateway(config.chalice_app, config)


@pytest.fixture(scope='session')
def chalice_gateway() -> LocalGateway:
    yield local_gateway()


@pytest.fixture
def repository(monkeypatch) -> InMemoryRepository:
    """
    Every test starts with an empty store
    """
    monkeypatch.setenv('AUTH_JWT_SECRET', JWT_SECRET)
    monkeypatch.setenv('PUBLIC_BASE_URL', 'https://tabletap.test')
    monkeypatch.delenv('DEFAULT_TAX_RATE', raising=False)
    monkeypatch.delenv('AUTH_JWT_AUDIENCE', raising=False)
    repository_ = InMemoryRepository()
    set_repository(repository_)
    yield repository_
    set_repository(None)


def create_category(restaurant_id=id_restaurant, name='Mains') -> MenuCategory:
    category = MenuCategory(restaurant_id, name.lower(), name=name)
    category._create_db_record()
    return category


def create_menu_item(restaurant_id=id_restaurant, name='Burger', price='12.50', category_id='mains',
                     available=True, id_=None) -> MenuItem:
    menu_item = MenuItem(restaurant_id, id_ or name.lower().replace(' ', '-'), name=name, price=Decimal(price),
                         category_id=category_id, description=f'{name} description', tags=[], available=available)
    menu_item._create_db_record()
    return menu_item


def create_table(restaurant_id=id_restaurant, number=1, id_=None) -> Table:
    table = Table(restaurant_id, id_ or f'table-{number}', number=number)
    table._create_db_record()
    return table


def create_restaurant(restaurant_id=id_restaurant, tax_rate='7') -> Restaurant:
    restaurant = Restaurant(restaurant_id, name='Test Bistro', tax_rate=Decimal(tax_rate))
    restaurant._create_db_record()
    return restaurant


@pytest.fixture
def menu(repository):
    """
    Restaurant with one category, three menu items and two tables
    """
    create_restaurant()
    create_category()
    items = {
        'burger': create_menu_item(name='Burger', price='12.50'),
        'fries': create_menu_item(name='Fries', price='4.00'),
        'salad': create_menu_item(name='Salad', price='9.99')
    }
    tables = {1: create_table(number=1), 2: create_table(number=2)}
    return {'items': items, 'tables': tables}
