import boto3
from chalice import Chalice, Response

from chalicelib import orders, carts, menu_items, menu_categories, restaurants, tables, triggers, websockets
from chalicelib.constants.status_codes import http200
from chalicelib.utils import auth as utils_auth, app as utils_app, config
from chalicelib.utils.logger import logger

app = Chalice(app_name='tabletap')

app.experimental_feature_flags.update(['WEBSOCKETS'])
app.websocket_api.session = boto3.session.Session()
app.debug = True


def send_to_connection(connection_id, message):
    return app.websocket_api.send(connection_id, message)


@app.route('/health-check', methods=['GET'], cors=True)
def health_check():
    return Response(status_code=http200, body={'health': 'check'})


@app.on_dynamodb_record(stream_arn=config.gen_table_stream_arn())
def db_gen_table_stream_trigger(event):
    if config.websocket_domain():
        app.websocket_api.configure(config.websocket_domain(), config.websocket_stage())
    return triggers.db_gen_table_stream_trigger(event, send_to_connection)


# WEBSOCKETS
@app.on_ws_connect()
def ws_connect(event):
    logger.info(f'ws_connect ::: connection {event.connection_id} opened')


@app.on_ws_message()
def ws_message(event):
    websockets.handle_message(event.connection_id, event.body, send_to_connection)


@app.on_ws_disconnect()
def ws_disconnect(event):
    websockets.disconnect(event.connection_id)


# RESTAURANTS
@app.route('/restaurants/{restaurant_id}', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_restaurant(restaurant_id):
    utils_auth.public_request(app.current_request)
    return restaurants.Restaurant.init_or_default(restaurant_id).endpoint_get_by_id()


@app.route('/restaurants/{restaurant_id}', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def update_restaurant(restaurant_id):
    """
    restaurant staff operation
    """
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return restaurants.Restaurant.init_request_update(request, restaurant_id).endpoint_update()


# MENU ITEMS
@app.route('/restaurants/{restaurant_id}/menu-items', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_menu_items(restaurant_id):
    request = utils_auth.public_request(app.current_request)
    return menu_items.MenuItem.endpoint_get_menu_items(request, restaurant_id)


@app.route('/restaurants/{restaurant_id}/menu-items', methods=['POST'], cors=True)
@utils_app.request_exception_handler
def create_menu_item(restaurant_id):
    """
    restaurant staff operation
    """
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_items.MenuItem.init_request_create_update(request, restaurant_id).endpoint_create_menu_item()


@app.route('/restaurants/{restaurant_id}/menu-items/{menu_item_id}', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def update_menu_item(restaurant_id, menu_item_id):
    """
    restaurant staff operation
    """
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_items.MenuItem.init_request_create_update(request, restaurant_id, menu_item_id).\
        endpoint_update_menu_item()


@app.route('/restaurants/{restaurant_id}/menu-items/{menu_item_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def delete_menu_item(restaurant_id, menu_item_id):
    """
    restaurant staff operation, orders keep their own copy of the item
    """
    utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_items.MenuItem.init_get_by_id(restaurant_id, menu_item_id).endpoint_delete_menu_item()


# MENU CATEGORIES
@app.route('/restaurants/{restaurant_id}/menu-categories', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_menu_categories(restaurant_id):
    request = utils_auth.public_request(app.current_request)
    return menu_categories.MenuCategory.endpoint_get_categories(request, restaurant_id)


@app.route('/restaurants/{restaurant_id}/menu-categories', methods=['POST'], cors=True)
@utils_app.request_exception_handler
def create_menu_category(restaurant_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_categories.MenuCategory.init_request_create(request, restaurant_id).endpoint_create_category()


@app.route('/restaurants/{restaurant_id}/menu-categories/{category_id}', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def update_menu_category(restaurant_id, category_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_categories.MenuCategory.init_request_update(request, restaurant_id, category_id).\
        endpoint_update_category()


@app.route('/restaurants/{restaurant_id}/menu-categories/{category_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def delete_menu_category(restaurant_id, category_id):
    utils_auth.authorize_staff(app.current_request, restaurant_id)
    return menu_categories.MenuCategory.init_get_by_id(restaurant_id, category_id).endpoint_delete_category()


# TABLES
@app.route('/restaurants/{restaurant_id}/tables', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_tables(restaurant_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return tables.Table.endpoint_get_tables(request, restaurant_id)


@app.route('/restaurants/{restaurant_id}/tables', methods=['POST'], cors=True)
@utils_app.request_exception_handler
def create_table(restaurant_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return tables.Table.init_request_create(request, restaurant_id).endpoint_create_table()


@app.route('/restaurants/{restaurant_id}/tables/{table_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def delete_table(restaurant_id, table_id):
    utils_auth.authorize_staff(app.current_request, restaurant_id)
    return tables.Table.init_get_by_id(restaurant_id, table_id).endpoint_delete_table()


@app.route('/restaurants/{restaurant_id}/validate-table/{table_number}', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def validate_table_qr_code(restaurant_id, table_number):
    """
    Called by the customer right after scanning the table's QR code
    """
    request = utils_auth.public_request(app.current_request)
    return tables.Table.endpoint_validate_qr_code(request, restaurant_id, table_number)


# CARTS
@app.route('/carts/{session_id}', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_cart(session_id):
    request = utils_auth.public_request(app.current_request)
    return carts.CartSession.init_endpoint(request, session_id).endpoint_get_cart()


@app.route('/carts/{session_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def clear_cart(session_id):
    request = utils_auth.public_request(app.current_request)
    return carts.CartSession.init_endpoint(request, session_id).endpoint_clear_cart()


@app.route('/carts/{session_id}/items/{item_id}', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def add_item_to_cart(session_id, item_id):
    request = utils_auth.public_request(app.current_request)
    return carts.CartSession.init_endpoint(request, session_id).endpoint_add_item_to_cart(item_id)


@app.route('/carts/{session_id}/items/{item_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def remove_item_from_cart(session_id, item_id):
    request = utils_auth.public_request(app.current_request)
    return carts.CartSession.init_endpoint(request, session_id).endpoint_remove_item_from_cart(item_id)


@app.route('/carts/{session_id}/items/{item_id}/quantity', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def set_cart_item_quantity(session_id, item_id):
    request = utils_auth.public_request(app.current_request)
    return carts.CartSession.init_endpoint(request, session_id).endpoint_set_quantity(item_id)


# ORDERS
@app.route('/restaurants/{restaurant_id}/orders', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_orders(restaurant_id):
    """
    restaurant staff operation, optional ?status= filter
    """
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return orders.endpoint_get_orders(request, restaurant_id)


@app.route('/restaurants/{restaurant_id}/orders', methods=['POST'], cors=True)
@utils_app.request_exception_handler
def create_order(restaurant_id):
    """
    Customer checkout, the response carries the order's access token
    """
    request = utils_auth.public_request(app.current_request)
    return orders.endpoint_create_order(request, restaurant_id)


@app.route('/restaurants/{restaurant_id}/orders/{order_id}', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_order(restaurant_id, order_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return orders.endpoint_get_order(request, restaurant_id, order_id)


@app.route('/restaurants/{restaurant_id}/orders/{order_id}', methods=['DELETE'], cors=True)
@utils_app.request_exception_handler
def delete_order(restaurant_id, order_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return orders.endpoint_delete_order(request, restaurant_id, order_id)


@app.route('/restaurants/{restaurant_id}/orders/{order_id}/status', methods=['PUT'], cors=True)
@utils_app.request_exception_handler
def update_order_status(restaurant_id, order_id):
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return orders.endpoint_update_order_status(request, restaurant_id, order_id)


@app.route('/restaurants/{restaurant_id}/orders/{order_id}/track', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def track_order(restaurant_id, order_id):
    """
    Customer order tracking, requires the X-Order-Token header
    """
    request = utils_auth.public_request(app.current_request)
    return orders.endpoint_track_order(request, restaurant_id, order_id)


@app.route('/restaurants/{restaurant_id}/orders/{order_id}/cancel', methods=['POST'], cors=True)
@utils_app.request_exception_handler
def cancel_order(restaurant_id, order_id):
    request = utils_auth.public_request(app.current_request)
    return orders.endpoint_cancel_order(request, restaurant_id, order_id)


# DASHBOARD
@app.route('/restaurants/{restaurant_id}/dashboard', methods=['GET'], cors=True)
@utils_app.request_exception_handler
def get_dashboard(restaurant_id):
    """
    restaurant staff operation, optional ?tz= and ?top=
    """
    request = utils_auth.authorize_staff(app.current_request, restaurant_id)
    return orders.endpoint_get_dashboard(request, restaurant_id)
