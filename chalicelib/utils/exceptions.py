__all__ = ["TableTapException", "NotAuthorizedException", "AccessDenied", "RecordNotFound", "OrderNotFound",
           "TableNotFound", "MenuItemNotFound", "NumberOfRetriesExceeded", "PersistenceError",
           "ConcurrentModification", "ValidationException", "IllegalStatusTransition", "MissingCheckoutContext",
           "SomeItemsAreNotAvailable", "CategoryNotEmpty"]

RECOVERY_RESCAN_QR = 'rescan_qr'
RECOVERY_RETURN_TO_MENU = 'return_to_menu'
RECOVERY_RETRY = 'retry'


class TableTapException(Exception):
    STATUS_CODE = 500
    LEVEL = 'exception'
    RECOVERY = None

    def details(self) -> dict:
        return {}


# Access exceptions
class NotAuthorizedException(TableTapException):
    STATUS_CODE = 401
    LEVEL = 'warning'


class AccessDenied(TableTapException):
    STATUS_CODE = 403
    LEVEL = 'warning'


# DynamoDB exceptions
class RecordNotFound(TableTapException):
    STATUS_CODE = 404
    LEVEL = 'warning'
    RECOVERY = RECOVERY_RETURN_TO_MENU


class OrderNotFound(RecordNotFound):
    pass


class TableNotFound(RecordNotFound):
    RECOVERY = RECOVERY_RESCAN_QR


class MenuItemNotFound(RecordNotFound):
    pass


class PersistenceError(TableTapException):
    STATUS_CODE = 503
    LEVEL = 'error'
    RECOVERY = RECOVERY_RETRY


# DB Performance Exception
class NumberOfRetriesExceeded(PersistenceError):
    pass


class ConcurrentModification(PersistenceError):
    """
    Raised when a conditional write finds a version other than the one the caller observed
    """
    STATUS_CODE = 409
    LEVEL = 'warning'

    def __init__(self, message, expected_version=None, actual_version=None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version

    def details(self) -> dict:
        return {'expected_version': self.expected_version, 'actual_version': self.actual_version}


# Validations exceptions
class ValidationException(TableTapException):
    STATUS_CODE = 400
    LEVEL = 'warning'


class IllegalStatusTransition(ValidationException):

    def __init__(self, current_status, requested_status, message=None):
        super().__init__(message or f'Order status cannot change from {current_status} to {requested_status}')
        self.current_status = current_status
        self.requested_status = requested_status

    def details(self) -> dict:
        return {'current_status': self.current_status, 'requested_status': self.requested_status}


class MissingCheckoutContext(ValidationException):
    RECOVERY = RECOVERY_RESCAN_QR


class SomeItemsAreNotAvailable(ValidationException):
    RECOVERY = RECOVERY_RETURN_TO_MENU


class CategoryNotEmpty(ValidationException):
    STATUS_CODE = 409
