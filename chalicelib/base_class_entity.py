from typing import Tuple, Dict, List, Any, Optional

from chalicelib.constants.substitute_keys import from_db, to_db
from chalicelib.repository import get_repository
from chalicelib.utils import exceptions
from chalicelib.utils.data import substitute_keys, utc_now_iso
from chalicelib.utils.logger import logger


class EntityBase:
    pk = None
    sk = None

    required_immutable_fields_validation = {}
    required_mutable_fields_validation = {}
    optional_fields_validation = {}

    def __init__(self, restaurant_id, id_):
        self.restaurant_id = restaurant_id
        self.id_: Any = id_
        self.record_type: str = ''
        self.version: int = 1
        self.created_at: Optional[str] = None
        self.updated_at: Optional[str] = None
        self.db_record: Dict = {}

    @property
    def repository(self):
        return get_repository()

    def _get_pk_sk(self) -> Tuple[str, str]:
        """
        Should be re-implemented in each child class
        :return:
        partkey, sortkey of db item for child
        """
        return self.pk, self.sk

    def _get_db_item(self) -> Dict:
        record = self.repository.get_item(*self._get_pk_sk())
        substitute_keys(dict_to_process=record, base_keys=from_db)
        return record

    def _to_dict(self) -> Dict:
        """
        Should be re-implemented in each child class
        :return:
        dict of item's attributes
        """
        return {
            'id_': self.id_,
            'record_type': self.record_type
        }

    def _init_db_record(self) -> None:
        """
        New DB record initialization
        :return:
        None
        """
        pk, sk = self._get_pk_sk()
        now = utc_now_iso()
        self.created_at = self.created_at or now
        self.updated_at = self.updated_at or now
        self.db_record = {
            'partkey': pk,
            'sortkey': sk,
            'record_type': self.record_type,
            'restaurant_id': self.restaurant_id,
            **self._to_dict(),
            'version': self.version,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }
        substitute_keys(dict_to_process=self.db_record, base_keys=to_db)

    @staticmethod
    def raise_validation_error(key):
        message = f'Validation error occurred while validating the field={key}'
        logger.warning(f"raise_validation_error ::: {message}")
        raise exceptions.ValidationException(message)

    def _validate_mandatory_fields(self):
        """
        Validates mandatory fields if all fields have correct type to put to db
        Raise ValidationException in case if a field is not valid
        """
        for key, validator_func in {
            **self.required_immutable_fields_validation,
            **self.required_mutable_fields_validation
        }.items():
            if validator_func(self.db_record.get(key)) is False:
                self.raise_validation_error(key)

    def _validate_optional_fields(self):
        for key, validator_func in self.optional_fields_validation.items():
            if self.db_record.get(key) is not None and validator_func(self.db_record.get(key)) is False:
                self.raise_validation_error(key)

    def _get_validated_update_dict(self) -> Dict:
        """
        Validates fields for update
        :return:
        Clean dict for update
        Raise ValidationException if a mutable field has a wrong value
        """
        update_dict = self._to_dict()
        substitute_keys(dict_to_process=update_dict, base_keys=to_db)
        clean_dict = {}
        validation_dict = {**self.required_mutable_fields_validation, **self.optional_fields_validation}
        for key, value in update_dict.items():
            if key not in validation_dict:
                continue
            if value is None and key in self.optional_fields_validation:
                continue
            if validation_dict[key](value) is not True:
                self.raise_validation_error(key)
            clean_dict[key] = value
        return clean_dict

    def _create_db_record(self) -> None:
        """
        Creates entity db record
        """
        self._init_db_record()
        self._validate_mandatory_fields()
        self._validate_optional_fields()
        self.repository.put_item(self.db_record, only_if_new=True)
        logger.info(f"_create_db_record ::: {self.record_type=} {self.id_=} {self.db_record.get('partkey')=} "
                    f"{self.db_record.get('sortkey')=} successfully created")

    def _update_fields_whitelist(self) -> List:
        return [*self.required_mutable_fields_validation.keys(), *self.optional_fields_validation.keys(),
                'updated_at']

    def _update_db_record(self, expected_version: Optional[int] = None) -> Dict:
        """
        Updates entity db record, optionally only if it still has expected_version
        :return:
        new db record
        """
        pk, sk = self._get_pk_sk()
        self.updated_at = utc_now_iso()
        update_dict = self._get_validated_update_dict()
        update_dict['updated_at'] = self.updated_at
        record = self.repository.update_item(
            pk, sk,
            fields=update_dict,
            allowed_fields=self._update_fields_whitelist(),
            expected_version=expected_version
        )
        self.version = int(record.get('version', self.version))
        logger.info(f"_update_db_record ::: {self.record_type=} "
                    f"{self.id_=} {pk=} {sk=} version={self.version} successfully updated")
        return record

    def _delete_db_record(self) -> Dict:
        pk, sk = self._get_pk_sk()
        record = self.repository.delete_item(pk, sk)
        logger.info(f"_delete_db_record ::: {self.record_type=} {self.id_=} {pk=} {sk=} successfully deleted")
        return record

    def _to_ui(self) -> Dict:
        item = {
            **self._to_dict(),
            'restaurant_id': self.restaurant_id,
            'version': self.version,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }
        substitute_keys(dict_to_process=item, base_keys=from_db)
        return item

    def to_ui(self) -> Dict:
        return self._to_ui()
