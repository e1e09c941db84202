from datetime import datetime, timezone, timedelta
from decimal import Decimal

import pytest

from chalicelib import pricing
from chalicelib.utils.exceptions import ValidationException


def line(item_id, name, price, quantity):
    return {'menu_item': {'id': item_id, 'name': name, 'price': Decimal(price)}, 'quantity': quantity}


def order(order_id, created_at, total_amount, items=None, status='pending', table_id='table-1'):
    return {
        'id': order_id,
        'created_at': created_at,
        'total_amount': Decimal(total_amount),
        'items': items or [],
        'status': status,
        'table_id': table_id
    }


def test_order_totals_with_default_tax():
    lines = [line('burger', 'Burger', '12.50', 2), line('fries', 'Fries', '4.00', 1)]

    totals = pricing.order_totals(lines)

    assert totals == {
        'subtotal': Decimal('29.00'),
        'tax': Decimal('2.03'),
        'tip': Decimal('0.00'),
        'total_amount': Decimal('31.03')
    }


def test_subtotal_accepts_order_or_lines():
    lines = [line('burger', 'Burger', '12.50', 2)]
    assert pricing.subtotal(lines) == pricing.subtotal({'items': lines}) == Decimal('25.00')
    assert pricing.subtotal([]) == Decimal('0.00')


def test_cart_lines_use_unit_price():
    assert pricing.subtotal([{'item_id': 'x', 'unit_price': Decimal('3.33'), 'quantity': 3}]) == Decimal('9.99')


def test_tax_rounds_half_up():
    assert pricing.tax(Decimal('0.50'), 7) == Decimal('0.04')
    assert pricing.tax(Decimal('10.00'), Decimal('8.25')) == Decimal('0.83')


def test_tax_rejects_negative_rate():
    with pytest.raises(ValidationException):
        pricing.tax(Decimal('10'), -1)


def test_tip_percentage_or_amount():
    assert pricing.tip(Decimal('40.00'), percentage=15) == Decimal('6.00')
    assert pricing.tip(Decimal('40.00'), amount='5') == Decimal('5.00')
    assert pricing.tip(Decimal('40.00')) == Decimal('0.00')
    with pytest.raises(ValidationException):
        pricing.tip(Decimal('40.00'), percentage=10, amount=5)
    with pytest.raises(ValidationException):
        pricing.tip(Decimal('40.00'), amount=-1)


def test_order_totals_with_tip_and_custom_tax():
    totals = pricing.order_totals([line('salad', 'Salad', '9.99', 1)], tax_rate=10, tip_percentage=20)

    assert totals['subtotal'] == Decimal('9.99')
    assert totals['tax'] == Decimal('1.00')
    assert totals['tip'] == Decimal('2.00')
    assert totals['total_amount'] == Decimal('12.99')


def test_todays_revenue_only_counts_today():
    now = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
    orders = [
        order(1, '2024-05-10T09:15:00.000+00:00', '20.00'),
        order(2, '2024-05-10T11:40:00.000+00:00', '15.50'),
        order(3, '2024-05-09T23:59:00.000+00:00', '100.00'),
    ]

    assert pricing.todays_revenue(orders, now) == Decimal('35.50')
    assert [o['id'] for o in pricing.todays_orders(orders, now)] == [1, 2]


def test_today_boundary_follows_local_timezone():
    local_tz = timezone(timedelta(hours=2))
    now = datetime(2024, 5, 10, 0, 30, tzinfo=local_tz)
    orders = [
        # 23:59 local on the 9th
        order(1, '2024-05-09T21:59:00.000+00:00', '10.00'),
        # 00:00 local on the 10th
        order(2, '2024-05-09T22:00:00.000+00:00', '12.00'),
    ]

    assert [o['id'] for o in pricing.todays_orders(orders, now)] == [2]
    assert pricing.todays_revenue(orders, now) == Decimal('12.00')


def test_average_order_value():
    orders = [order(1, '2024-05-10T09:00:00+00:00', '10.00'), order(2, '2024-05-10T10:00:00+00:00', '15.01')]
    assert pricing.average_order_value(orders) == Decimal('12.51')
    assert pricing.average_order_value([]) == Decimal('0.00')


def test_popular_items_ranked_by_quantity():
    orders = [
        order(1, '2024-05-10T09:00:00+00:00', '0', items=[line('a', 'Pasta', '10', 2), line('b', 'Soup', '5', 3)]),
        order(2, '2024-05-10T10:00:00+00:00', '0', items=[line('a', 'Pasta', '10', 2)]),
    ]

    popular = pricing.popular_items(orders)

    assert [(item['id'], item['count']) for item in popular] == [('a', 4), ('b', 3)]
    assert popular[0]['name'] == 'Pasta'


def test_popular_items_ties_break_by_name_then_id():
    orders = [order(1, '2024-05-10T09:00:00+00:00', '0', items=[
        line('z', 'Bread', '1', 1), line('y', 'Apple', '1', 1), line('x', 'Apple', '1', 1)
    ])]

    assert [item['id'] for item in pricing.popular_items(orders)] == ['x', 'y', 'z']
    assert [item['id'] for item in pricing.popular_items(orders, top_n=2)] == ['x', 'y']


def test_active_tables_ignore_terminal_orders():
    orders = [
        order(1, '2024-05-10T09:00:00+00:00', '0', status='pending', table_id='t1'),
        order(2, '2024-05-10T09:00:00+00:00', '0', status='ready', table_id='t1'),
        order(3, '2024-05-10T09:00:00+00:00', '0', status='preparing', table_id='t2'),
        order(4, '2024-05-10T09:00:00+00:00', '0', status='delivered', table_id='t3'),
        order(5, '2024-05-10T09:00:00+00:00', '0', status='cancelled', table_id='t4'),
    ]

    assert pricing.active_tables(orders) == 2


def test_dashboard_summary():
    now = datetime(2024, 5, 10, 18, 0, tzinfo=timezone.utc)
    orders = [
        order(1, '2024-05-10T09:00:00.000+00:00', '20.00', items=[line('a', 'Pasta', '10', 2)], status='delivered'),
        order(2, '2024-05-10T10:00:00.000+00:00', '10.00', items=[line('b', 'Soup', '5', 2)]),
        order(3, '2024-05-10T11:00:00.000+00:00', '5.00', items=[line('b', 'Soup', '5', 1)]),
        order(4, '2024-05-09T11:00:00.000+00:00', '50.00', items=[line('b', 'Soup', '5', 10)]),
    ]

    summary = pricing.dashboard_summary(orders, now)

    assert summary['todays_revenue'] == Decimal('35.00')
    assert summary['todays_orders'] == 3
    assert summary['average_order_value'] == Decimal('11.67')
    assert summary['active_tables'] == 1
    assert summary['popular_items'][0]['id'] == 'b'
    assert [o['id'] for o in summary['recent_orders']] == [3, 2, 1]
