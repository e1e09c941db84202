import functools
import time
from random import uniform

import boto3 as boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError, BotoCoreError

from chalicelib.utils import config
from chalicelib.utils import exceptions
from chalicelib.utils.boto_clients import aws_config_ddb
from chalicelib.utils.logger import logger, log_exception

# For safe db operations
RETRY_EXCEPTIONS = ('ProvisionedThroughputExceededException', 'ThrottlingException')
need_return_capacity = ('put_item', 'get_item', 'update_item', 'delete_item')
MAX_RETRIES = 5

_DB = None


def exp_db_backoff(func):
    """
        should be used for any atomic
        get/put/update/delete item in the code
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f'{func.__name__}:: args={args}, kwargs={kwargs}')
        if func.__name__ not in need_return_capacity:
            raise RuntimeError("This decorator only for DynamoDB methods")
        kwargs.update({'ReturnConsumedCapacity': 'TOTAL'})

        for retries in range(MAX_RETRIES):
            try:
                result = func(*args, **kwargs)
                logger.info(f'{func.__name__}:: SUCCESS')
                return result
            except ClientError as e:
                if e.response.get('Error', {}).get('Code') not in RETRY_EXCEPTIONS:
                    raise
                delay = (2 ** retries) * uniform(0.05, 0.2)
                logger.warning(f'{func.__name__}:: throttled, retry {retries + 1}/{MAX_RETRIES} in {delay:.2f}s')
                time.sleep(delay)

        raise exceptions.NumberOfRetriesExceeded(
            f"MaxNumber={MAX_RETRIES} of DB retries has exceeded"
        )

    return wrapper


def translate_client_errors(func):
    """
    Maps botocore errors to the service exception taxonomy
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code == 'ConditionalCheckFailedException':
                raise exceptions.ConcurrentModification(
                    f'{func.__name__} ::: record was changed or removed concurrently') from e
            log_exception(e, msg=f'Got exception while trying to {func.__name__}: ')
            raise exceptions.PersistenceError(f'{func.__name__} ::: {code}') from e
        except BotoCoreError as e:
            log_exception(e, msg=f'Got exception while trying to {func.__name__}: ')
            raise exceptions.PersistenceError(f'{func.__name__} ::: {e}') from e

    return wrapper


def get_table(gl_table, table_name: str):
    if gl_table is None:
        if config.dynamodb_endpoint_url():
            gl_table = boto3.resource('dynamodb', endpoint_url=config.dynamodb_endpoint_url(),
                                      config=aws_config_ddb).Table(table_name)
        else:
            gl_table = boto3.resource('dynamodb', config=aws_config_ddb).Table(table_name)

        gl_table.put_item = exp_db_backoff(gl_table.put_item)
        gl_table.get_item = exp_db_backoff(gl_table.get_item)
        gl_table.update_item = exp_db_backoff(gl_table.update_item)
        gl_table.delete_item = exp_db_backoff(gl_table.delete_item)

    return gl_table


def get_gen_table():
    global _DB
    _DB = get_table(_DB, config.gen_table_name())
    return _DB


@translate_client_errors
def put_db_record(item: dict, only_if_new: bool = False, table=get_gen_table):
    kwargs = {'Item': item}
    if only_if_new:
        kwargs['ConditionExpression'] = Attr('partkey').not_exists()
    table().put_item(**kwargs)


@translate_client_errors
def update_db_record(key: dict, update_body: dict, allowed_attrs_to_update: list,
                     expected_version=None, table=get_gen_table) -> dict:
    set_expr, expr_attr_values, expr_attr_names = generate_update_expression(
        update_body=update_body,
        allowed_attrs_to_update=allowed_attrs_to_update
    )
    if not set_expr:
        return get_db_item(key['partkey'], key['sortkey'], table=table)

    condition = Attr('partkey').exists()
    if expected_version is not None:
        condition = condition & Attr('version').eq(expected_version)

    response = table().update_item(
        Key=key,
        UpdateExpression=set_expr,
        ExpressionAttributeValues=expr_attr_values,
        ExpressionAttributeNames=expr_attr_names,
        ConditionExpression=condition,
        ReturnValues='ALL_NEW'
    )
    return response.get('Attributes', {})


def generate_update_expression(update_body: dict, allowed_attrs_to_update: list):
    """
    Generate SET expression for the whitelisted attributes present in update_body.
    Attribute names go through placeholders so reserved words are safe.
    """
    expr_attr_values = {}
    expr_attr_names = {}
    assignments = []
    for field in allowed_attrs_to_update:
        if field not in update_body or update_body[field] is None:
            continue
        expr_attr_names[f'#{field}'] = field
        expr_attr_values[f':{field}'] = update_body[field]
        assignments.append(f'#{field}=:{field}')

    if not assignments:
        return None, None, None
    return 'SET ' + ', '.join(assignments), expr_attr_values, expr_attr_names


@translate_client_errors
def get_db_item(partkey, sortkey, table=get_gen_table):
    result = table().get_item(
        Key={
            'partkey': partkey,
            'sortkey': sortkey
        }
    )

    if 'Item' in result:
        return result['Item']
    else:
        logger.warning(f"get_db_item ::: record partkey={partkey} sortkey={sortkey} not found")
        raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')


@translate_client_errors
def delete_db_record(partkey, sortkey, table=get_gen_table) -> dict:
    response = table().delete_item(
        Key={'partkey': partkey, 'sortkey': sortkey},
        ReturnValues='ALL_OLD'
    )
    return response.get('Attributes', {})


@translate_client_errors
def increment_counter(partkey, sortkey, table=get_gen_table) -> int:
    response = table().update_item(
        Key={'partkey': partkey, 'sortkey': sortkey},
        UpdateExpression='ADD #value :one',
        ExpressionAttributeNames={'#value': 'value'},
        ExpressionAttributeValues={':one': 1},
        ReturnValues='UPDATED_NEW'
    )
    return int(response['Attributes']['value'])


@translate_client_errors
def query_items_paginated(
        key_condition_expression,
        filter_expression=None,
        projection_expression=None,
        table=get_gen_table,
        index_name=None,
        expr_attr_names=None,
        limit=None,
        start_key=None
):
    kwargs = {'KeyConditionExpression': key_condition_expression}
    if filter_expression:
        kwargs.update({'FilterExpression': filter_expression})

    if projection_expression:
        kwargs.update({'ProjectionExpression': projection_expression})

    if expr_attr_names:
        kwargs.update({'ExpressionAttributeNames': expr_attr_names})

    if limit:
        kwargs.update({'Limit': int(limit)})

    if index_name:
        kwargs.update({'IndexName': index_name})

    if start_key:
        kwargs.update({'ExclusiveStartKey': start_key})

    resp = table().query(**kwargs)
    return resp['Items'], resp.get('LastEvaluatedKey')


def query_items_paged(key_condition_expression, filter_expression=None, projection_expression=None,
                      table=get_gen_table, index_name=None, expr_attr_names=None):
    """ This method shall be used whenever you think the query will
        return more than 1mb of data at once"""
    all_items = []
    items, last_evaluated_key = query_items_paginated(
        key_condition_expression,
        filter_expression=filter_expression,
        projection_expression=projection_expression,
        table=table,
        index_name=index_name,
        expr_attr_names=expr_attr_names
    )
    all_items.extend(items)

    while last_evaluated_key is not None:
        items, last_evaluated_key = query_items_paginated(
            key_condition_expression,
            filter_expression=filter_expression,
            projection_expression=projection_expression,
            table=table,
            index_name=index_name,
            expr_attr_names=expr_attr_names,
            start_key=last_evaluated_key
        )
        all_items.extend(items)

    return all_items
