"""
Stateless pricing and dashboard aggregation over order snapshots.

Orders are plain dicts as returned by Order.to_ui() (or stored records):
items are {'menu_item': {'id', 'name', 'price'}, 'quantity'}, money values are Decimal.
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from chalicelib.constants.constants import MONEY, TERMINAL_STATUSES, DEFAULT_TAX_RATE, \
    POPULAR_ITEMS_DEFAULT_TOP, RECENT_ORDERS_COUNT
from chalicelib.utils.data import to_decimal, parse_timestamp
from chalicelib.utils.exceptions import ValidationException

HUNDRED = Decimal('100')
ZERO = Decimal('0')


def quantize(value) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def line_price(line: dict) -> Decimal:
    menu_item = line.get('menu_item') or {}
    price = line.get('unit_price', menu_item.get('price'))
    return to_decimal(price, ZERO)


def subtotal(order_or_lines) -> Decimal:
    lines = order_or_lines.get('items', []) if isinstance(order_or_lines, dict) else order_or_lines
    return quantize(sum((line_price(line) * int(line.get('quantity', 0)) for line in lines), ZERO))


def tax(subtotal_amount, rate=DEFAULT_TAX_RATE) -> Decimal:
    """
    rate is a percentage, 7 means 7%
    """
    rate = to_decimal(rate)
    if rate is None or rate < 0:
        raise ValidationException(f'Tax rate must be a non-negative percentage, got {rate}')
    return quantize(to_decimal(subtotal_amount, ZERO) * rate / HUNDRED)


def tip(subtotal_amount, percentage=None, amount=None) -> Decimal:
    if percentage is not None and amount is not None:
        raise ValidationException('Tip can be a percentage or an amount, not both')
    if amount is not None:
        amount = to_decimal(amount)
        if amount is None or amount < 0:
            raise ValidationException('Tip amount must be a non-negative number')
        return quantize(amount)
    if percentage is not None:
        percentage = to_decimal(percentage)
        if percentage is None or percentage < 0:
            raise ValidationException('Tip percentage must be a non-negative number')
        return quantize(to_decimal(subtotal_amount, ZERO) * percentage / HUNDRED)
    return quantize(ZERO)


def total(subtotal_amount, tax_amount=ZERO, tip_amount=ZERO) -> Decimal:
    return quantize(to_decimal(subtotal_amount, ZERO) + to_decimal(tax_amount, ZERO) + to_decimal(tip_amount, ZERO))


def order_totals(lines: list, tax_rate=DEFAULT_TAX_RATE, tip_percentage=None, tip_amount=None) -> dict:
    subtotal_amount = subtotal(lines)
    tax_amount = tax(subtotal_amount, tax_rate)
    tip_value = tip(subtotal_amount, percentage=tip_percentage, amount=tip_amount)
    return {
        'subtotal': subtotal_amount,
        'tax': tax_amount,
        'tip': tip_value,
        'total_amount': total(subtotal_amount, tax_amount, tip_value)
    }


def _local_day_bounds(now: datetime):
    if now.tzinfo is None:
        now = now.astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight, midnight + timedelta(days=1)


def todays_orders(orders: Iterable[dict], now: datetime) -> List[dict]:
    """
    Orders created within [local midnight, next local midnight) of `now`'s timezone
    """
    start, end = _local_day_bounds(now)
    return [order for order in orders if start <= parse_timestamp(order['created_at']) < end]


def todays_revenue(orders: Iterable[dict], now: datetime) -> Decimal:
    return quantize(sum((to_decimal(order.get('total_amount'), ZERO) for order in todays_orders(orders, now)),
                        ZERO))


def average_order_value(orders: Iterable[dict]) -> Decimal:
    orders = list(orders)
    if not orders:
        return quantize(ZERO)
    return quantize(sum((to_decimal(order.get('total_amount'), ZERO) for order in orders), ZERO) / len(orders))


def popular_items(orders: Iterable[dict], top_n: Optional[int] = POPULAR_ITEMS_DEFAULT_TOP) -> List[dict]:
    """
    Items ranked by summed quantity across all orders, ties broken by name then id
    """
    counts = OrderedDict()
    for order in orders:
        for line in order.get('items', []):
            menu_item = line.get('menu_item') or {}
            item_id = str(menu_item.get('id'))
            entry = counts.setdefault(item_id, {
                'id': item_id,
                'name': menu_item.get('name') or '',
                'price': to_decimal(menu_item.get('price'), ZERO),
                'category_id': menu_item.get('category_id'),
                'count': 0
            })
            entry['count'] += int(line.get('quantity', 0))

    ranked = sorted(counts.values(), key=lambda entry: (-entry['count'], entry['name'], entry['id']))
    return ranked if top_n is None else ranked[:top_n]


def active_tables(orders: Iterable[dict]) -> int:
    return len({order.get('table_id') for order in orders if order.get('status') not in TERMINAL_STATUSES})


def recent_orders(orders: Iterable[dict], count: int = RECENT_ORDERS_COUNT) -> List[dict]:
    ordered = sorted(orders, key=lambda order: (parse_timestamp(order['created_at']), order.get('id', 0)),
                     reverse=True)
    return ordered[:count]


def dashboard_summary(orders: Iterable[dict], now: datetime, top_n: int = POPULAR_ITEMS_DEFAULT_TOP) -> dict:
    orders = list(orders)
    today = todays_orders(orders, now)
    return {
        'todays_revenue': todays_revenue(today, now),
        'todays_orders': len(today),
        'average_order_value': average_order_value(today),
        'active_tables': active_tables(orders),
        'popular_items': popular_items(orders, top_n),
        'recent_orders': recent_orders(orders)
    }
