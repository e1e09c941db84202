"""
Document store used by every entity.

Two backends share one interface: DynamoDBRepository (single table, partkey/sortkey) and
InMemoryRepository (local runs and tests). Both notify change listeners with the same
(record_old, record_new, event_id, event_name) signature the DynamoDB stream trigger uses.
"""
import contextlib
import threading
from copy import deepcopy
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from boto3.dynamodb.conditions import Attr, Key

from chalicelib.utils import config, db as utils_db, exceptions
from chalicelib.utils.logger import logger, log_exception

EVENT_INSERT = 'INSERT'
EVENT_MODIFY = 'MODIFY'
EVENT_REMOVE = 'REMOVE'

ChangeListener = Callable[[dict, dict, str, str], None]


class Repository:

    def __init__(self):
        self._listeners: List[ChangeListener] = []

    def get_item(self, partkey: str, sortkey: str) -> dict:
        raise NotImplementedError

    def put_item(self, record: dict, only_if_new: bool = False) -> dict:
        raise NotImplementedError

    def update_item(self, partkey: str, sortkey: str, fields: dict, allowed_fields: list,
                    expected_version: Optional[int] = None) -> dict:
        """
        Applies fields, bumps `version` and returns the new record.
        When expected_version is given the write only succeeds if the stored version matches.
        """
        raise NotImplementedError

    def delete_item(self, partkey: str, sortkey: str) -> dict:
        raise NotImplementedError

    def query(self, partkey: str, filters: Optional[Dict] = None) -> List[dict]:
        raise NotImplementedError

    def next_sequence(self, partkey: str, sortkey: str) -> int:
        raise NotImplementedError

    def consistent_view(self):
        """
        Context in which no commit interleaves, where the backend can offer one
        """
        return contextlib.nullcontext()

    def add_change_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch_change(self, record_old: dict, record_new: dict, event_id: str, event_name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(record_old or {}, record_new or {}, event_id, event_name)
            except Exception as e:
                log_exception(e, msg=f'dispatch_change ::: listener failed for {event_id=}')


class DynamoDBRepository(Repository):
    """
    Change notifications arrive asynchronously through the table stream (see triggers.py)
    """

    def get_item(self, partkey, sortkey):
        return utils_db.get_db_item(partkey, sortkey)

    def put_item(self, record, only_if_new=False):
        try:
            utils_db.put_db_record(record, only_if_new=only_if_new)
        except exceptions.ConcurrentModification:
            raise exceptions.ValidationException(
                f'record partkey={record.get("partkey")} sortkey={record.get("sortkey")} already exists')
        return record

    def update_item(self, partkey, sortkey, fields, allowed_fields, expected_version=None):
        if expected_version is None:
            expected_version = self.get_item(partkey, sortkey).get('version', 0)
        update_body = {**fields, 'version': int(expected_version) + 1}
        try:
            return utils_db.update_db_record(
                key={'partkey': partkey, 'sortkey': sortkey},
                update_body=update_body,
                allowed_attrs_to_update=[*allowed_fields, 'version'],
                expected_version=expected_version
            )
        except exceptions.ConcurrentModification as e:
            actual = self.get_item(partkey, sortkey).get('version')
            raise exceptions.ConcurrentModification(
                f'record partkey={partkey} sortkey={sortkey} was modified concurrently',
                expected_version=expected_version, actual_version=actual) from e

    def delete_item(self, partkey, sortkey):
        old = utils_db.delete_db_record(partkey, sortkey)
        if not old:
            raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')
        return old

    def query(self, partkey, filters=None):
        filter_expression = None
        for field, value in (filters or {}).items():
            condition = Attr(field).eq(value)
            filter_expression = condition if filter_expression is None else filter_expression & condition
        return utils_db.query_items_paged(Key('partkey').eq(partkey), filter_expression=filter_expression)

    def next_sequence(self, partkey, sortkey):
        return utils_db.increment_counter(partkey, sortkey)


class InMemoryRepository(Repository):
    """
    Behaves like the DynamoDB table, but commits notify listeners synchronously
    """

    def __init__(self):
        super().__init__()
        self._items: Dict[Tuple[str, str], dict] = {}
        self._counters: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()

    def consistent_view(self):
        return self._lock

    def get_item(self, partkey, sortkey):
        with self._lock:
            item = self._items.get((partkey, sortkey))
            if item is None:
                logger.warning(f"get_item ::: record partkey={partkey} sortkey={sortkey} not found")
                raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')
            return deepcopy(item)

    def put_item(self, record, only_if_new=False):
        key = (record['partkey'], record['sortkey'])
        with self._lock:
            old = self._items.get(key)
            if only_if_new and old is not None:
                raise exceptions.ValidationException(
                    f'record partkey={key[0]} sortkey={key[1]} already exists')
            self._items[key] = deepcopy(record)
            self._commit(old, record, EVENT_MODIFY if old else EVENT_INSERT)
        return deepcopy(record)

    def update_item(self, partkey, sortkey, fields, allowed_fields, expected_version=None):
        key = (partkey, sortkey)
        with self._lock:
            old = self._items.get(key)
            if old is None:
                raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')
            current_version = old.get('version', 0)
            if expected_version is not None and current_version != expected_version:
                raise exceptions.ConcurrentModification(
                    f'record partkey={partkey} sortkey={sortkey} was modified concurrently',
                    expected_version=expected_version, actual_version=current_version)
            new = deepcopy(old)
            for field in allowed_fields:
                if field in fields and fields[field] is not None:
                    new[field] = deepcopy(fields[field])
            new['version'] = int(current_version) + 1
            self._items[key] = new
            self._commit(old, new, EVENT_MODIFY)
            return deepcopy(new)

    def delete_item(self, partkey, sortkey):
        with self._lock:
            old = self._items.pop((partkey, sortkey), None)
            if old is None:
                raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')
            self._commit(old, None, EVENT_REMOVE)
            return deepcopy(old)

    def query(self, partkey, filters=None):
        filters = filters or {}
        with self._lock:
            return [
                deepcopy(item) for (pk, _), item in sorted(self._items.items())
                if pk == partkey and all(item.get(field) == value for field, value in filters.items())
            ]

    def next_sequence(self, partkey, sortkey):
        with self._lock:
            value = self._counters.get((partkey, sortkey), 0) + 1
            self._counters[(partkey, sortkey)] = value
            return value

    def _commit(self, old, new, event_name):
        # listeners run under the lock so every observer sees commits in order
        self.dispatch_change(deepcopy(old) if old else {}, deepcopy(new) if new else {}, str(uuid4()), event_name)


_REPOSITORY: Optional[Repository] = None


def get_repository() -> Repository:
    global _REPOSITORY
    if _REPOSITORY is None:
        if config.repository_backend() == 'memory':
            _REPOSITORY = InMemoryRepository()
        else:
            _REPOSITORY = DynamoDBRepository()
        logger.info(f'get_repository ::: using {_REPOSITORY.__class__.__name__}')
    return _REPOSITORY


def set_repository(repository: Optional[Repository]) -> None:
    global _REPOSITORY
    _REPOSITORY = repository
