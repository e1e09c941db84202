restaurants_pk = 'restaurants'
restaurants_sk = '{restaurant_id}'

menu_items_pk = 'menu_items_{restaurant_id}'
menu_items_sk = '{menu_item_id}'

menu_categories_pk = 'menu_categories_{restaurant_id}'
menu_categories_sk = '{category_id}'

tables_pk = 'tables_{restaurant_id}'
tables_sk = '{table_id}'

orders_pk = 'orders_{restaurant_id}'
orders_sk = '{order_id}'

counters_pk = 'counters_{restaurant_id}'
counters_sk = '{counter_name}'

carts_pk = 'carts'
carts_sk = '{session_id}_{storage_key}'

ws_connections_pk = 'ws_connections_{restaurant_id}'
ws_connections_sk = '{connection_id}'

ws_connections_index_pk = 'ws_connections_index'
ws_connections_index_sk = '{connection_id}'
