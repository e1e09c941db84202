import hmac
from uuid import uuid4

import jwt

from chalicelib.utils import config, exceptions as utils_exceptions
from chalicelib.utils.logger import log_request, logger

JWT_ALGORITHMS = ['HS256']


def init_request_id(request):
    lambda_context = getattr(request, 'lambda_context', None)
    aws_request_id = getattr(lambda_context, 'aws_request_id', None) or str(uuid4())
    logger.current_request_id = aws_request_id.split('-')[-1]


def get_bearer_token(request):
    header = (request.headers or {}).get('authorization') or ''
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return header.strip() or None


def decode_principal(token: str) -> str:
    """
    Returns the signed-in principal id (the restaurant the staff member manages)
    """
    if not token:
        raise utils_exceptions.NotAuthorizedException('Authorization token is missing')
    secret = config.auth_jwt_secret()
    if not secret:
        raise utils_exceptions.NotAuthorizedException('Authentication is not configured')
    audience = config.auth_jwt_audience()
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            audience=audience,
            options={'require': ['sub', 'exp'], 'verify_aud': audience is not None}
        )
    except jwt.PyJWTError as error:
        raise utils_exceptions.NotAuthorizedException(f'Invalid authorization token: {error}') from error
    return claims['sub']


def check_restaurant_access(principal_id: str, restaurant_id: str) -> None:
    if principal_id != restaurant_id:
        raise utils_exceptions.AccessDenied(f"You don't have permissions to manage restaurant {restaurant_id}")


def authorize_staff(request, restaurant_id):
    """
    Raises NotAuthorizedException or AccessDenied, returns the request with auth_result set
    """
    init_request_id(request)
    log_request(request)
    principal_id = decode_principal(get_bearer_token(request))
    check_restaurant_access(principal_id, restaurant_id)
    setattr(request, 'auth_result', {'principal_id': principal_id, 'restaurant_id': restaurant_id})
    return request


def public_request(request):
    init_request_id(request)
    log_request(request)
    return request


def tokens_match(expected: str, provided: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(str(expected), str(provided))
