from boto3.dynamodb.types import TypeDeserializer
from chalice.app import DynamoDBEvent

from chalicelib import websockets
from chalicelib.constants.constants import RECORD_TYPE_ORDER, RECORD_TYPE_MENU_ITEM
from chalicelib.repository import get_repository
from chalicelib.utils.logger import logger, log_exception


deserializer = TypeDeserializer()

gen_table_trigger_record_types = (RECORD_TYPE_ORDER, RECORD_TYPE_MENU_ITEM)


def deserialize_ddb_rec(record=None):
    if record is None:
        record = {}
    return {key: deserializer.deserialize(value) for key, value in record.items()}


def db_gen_table_stream_trigger(ddb_event: DynamoDBEvent, sender):
    """
    Feeds committed table changes to in-process listeners and WebSocket subscribers
    """
    logger.debug(f'db_gen_table_stream_trigger ::: function triggered ddb_event={ddb_event.to_dict()}')
    for record in ddb_event:
        try:
            normalized_new = deserialize_ddb_rec(record.new_image)
            normalized_old = deserialize_ddb_rec(record.old_image)
            record_type = normalized_new.get('record_type') or normalized_old.get('record_type')
            if record_type not in gen_table_trigger_record_types:
                continue
            get_repository().dispatch_change(normalized_old, normalized_new, record.event_id, record.event_name)
            websockets.fan_out(normalized_old, normalized_new, record.event_id, record.event_name, sender)
        except Exception as e:
            log_exception(e, msg=f'db_gen_table_stream_trigger ::: failed on event_id={record.event_id}')
