import functools
from typing import Callable

from chalice import Response

from chalicelib.utils.exceptions import TableTapException
from chalicelib.utils.logger import logger, log_exception


def error_response(error: Exception, msg: str = "", status_code: int = None, *args, **kwargs):
    if status_code is None:
        status_code = getattr(error, 'STATUS_CODE', 500)
    log_exception(error=error, msg=msg, status_code=status_code, *args, **kwargs)
    body = {
        'error': str(error),
        'exception': error.__class__.__name__,
        "message": str(msg),
        'error_id': getattr(logger, 'current_request_id'),
        'level': getattr(error, 'LEVEL', 'exception'),
        'recovery': getattr(error, 'RECOVERY', None)
    }
    if isinstance(error, TableTapException):
        body.update(error.details())
    return Response(
        body=body,
        status_code=status_code,
        headers={'Content-Type': 'application/json'}
    )


def request_exception_handler(func: Callable):
    """
    Every failure stays local to the request: known errors keep their status code,
    anything else becomes a 500 with the same body shape
    """
    @functools.wraps(func)
    def result(*args, **kwargs):
        try:
            logger.info(f'Calling function {func.__name__}')
            return func(*args, **kwargs)
        except TableTapException as known_error:
            return error_response(
                error=known_error,
                msg=f'function = {func.__name__} , error = {known_error}')
        except ValueError as value_error:
            return error_response(
                error=value_error,
                msg=f'function = {func.__name__} , error = {value_error}',
                status_code=400)
        except Exception as exception:
            return error_response(
                error=exception,
                msg=f'function = {func.__name__}, error = {exception}',
                status_code=500)
    return result


def log_start_finish(func: Callable):
    @functools.wraps(func)
    def result(*args, **kwargs):
        logger.info(f'{func.__name__} ::: started')
        response = func(*args, **kwargs)
        logger.info(f'{func.__name__} ::: finished')
        return response
    return result
