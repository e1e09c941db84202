from decimal import Decimal

PENDING = 'pending'
PREPARING = 'preparing'
READY = 'ready'
DELIVERED = 'delivered'
CANCELLED = 'cancelled'

ORDER_STATUSES = (PENDING, PREPARING, READY, DELIVERED, CANCELLED)
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

ACTOR_STAFF = 'staff'
ACTOR_CUSTOMER = 'customer'

DEFAULT_TAX_RATE = Decimal('7')
MONEY = Decimal('0.01')

CART_STORAGE_KEY = 'cartItems'
ORDER_TOKEN_HEADER = 'x-order-token'
ORDERS_COUNTER = 'orders'

RECORD_TYPE_ORDER = 'order'
RECORD_TYPE_MENU_ITEM = 'menu_item'

POPULAR_ITEMS_DEFAULT_TOP = 5
RECENT_ORDERS_COUNT = 3
