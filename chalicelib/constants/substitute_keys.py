# DynamoDB reserved words are stored with a trailing underscore
to_db = {
    'id': 'id_',
    'name': 'name_',
    'status': 'status_',
    'number': 'number_',
}

from_db = {
    'partkey': None,
    'sortkey': None,
    'id_': 'id',
    'name_': 'name',
    'status_': 'status',
    'number_': 'number',
}

# never leaves the service in list views
from_db_public = {
    **from_db,
    'access_token': None,
}
