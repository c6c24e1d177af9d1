import os
import re
import uuid
import logging
import datetime
from functools import wraps

import jwt
import redis
from flask import request, jsonify, current_app, g

from errors import AppError
from models import SuperAdmin, BranchAdmin, Employee, StockManager

logger = logging.getLogger(__name__)

# DB 2 for revoked tokens, separate from the response cache (DB 1)
redis_url = os.getenv('REDIS_AUTH_URL', 'redis://localhost:6379/2')
redis_client = None
redis_available = False

# Check Redis availability for token revocation
try:
    _temp_client = redis.from_url(redis_url, socket_connect_timeout=1)
    _temp_client.ping()
    redis_client = _temp_client
    redis_available = True
    logger.info("[Auth] Redis connected - Token revocation enabled")
except Exception as e:
    logger.warning(f"[Auth] Redis not available: {e}")
    logger.warning("[Auth] Running with stateless JWT (no revocation)")
    redis_available = False

COOKIE_NAME = 'jwt'
LOGGED_OUT_VALUE = 'loggedout'
DEFAULT_EXPIRES_IN = '90d'

# token `type` claim -> model holding that kind of user
USER_TYPES = {
    'super_admin': SuperAdmin,
    'branch_admin': BranchAdmin,
    'employee': Employee,
    'stock_manager': StockManager,
}
_TYPE_BY_MODEL = {model: name for name, model in USER_TYPES.items()}

_DURATION_RE = re.compile(r'^\s*(\d+)\s*([smhdw]?)\s*$')
_UNIT_SECONDS = {'': 1, 's': 1, 'm': 60, 'h': 3600, 'd': 86400, 'w': 604800}


def parse_expires_in(value):
    """'90d', '12h', '30m', '45s', '2w' or plain seconds -> timedelta (default 90 days)."""
    match = _DURATION_RE.match(str(value or ''))
    if not match:
        match = _DURATION_RE.match(DEFAULT_EXPIRES_IN)
    amount, unit = match.groups()
    return datetime.timedelta(seconds=int(amount) * _UNIT_SECONDS[unit.lower()])


def user_type(user):
    return _TYPE_BY_MODEL.get(type(user))


def create_token(user):
    """Sign an HS256 token for a user; returns (token, payload)."""
    now = datetime.datetime.now(datetime.timezone.utc)
    lifetime = parse_expires_in(current_app.config.get('JWT_EXPIRES_IN', DEFAULT_EXPIRES_IN))
    payload = {
        'sub': str(user.id),
        'role': user.role,
        'type': user_type(user),
        'jti': str(uuid.uuid4()),
        'iat': now,
        'exp': now + lifetime,
    }
    token = jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')
    return token, payload


def decode_token(token):
    """Decode and verify token; None when invalid, expired or revoked."""
    try:
        payload = jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if is_token_revoked(payload.get('jti')):
        return None
    return payload


def revoke_token(jti, expires_in):
    """Add token JTI to blocklist (only if Redis is available)"""
    if not redis_available or not jti:
        return
    try:
        redis_client.setex(f"revoked:{jti}", max(int(expires_in), 1), 'true')
        logger.info(f"[Auth] Token revoked: {jti}")
    except redis.RedisError as e:
        logger.error(f"[Auth] Token revocation failed: {e}")


def is_token_revoked(jti):
    """Check if token is in blocklist (only if Redis is available)"""
    if not redis_available or not jti:
        return False
    try:
        return bool(redis_client.exists(f"revoked:{jti}"))
    except redis.RedisError as e:
        logger.error(f"[Auth] Token revocation check failed: {e}")
        return False


def find_user_by_identifier(identifier):
    """Super admins match on username or email; everyone else on email."""
    identifier = (identifier or '').strip().lower()
    if not identifier:
        return None

    user = SuperAdmin.query.find({'$or': [{'username': identifier}, {'email': identifier}]}).first()
    if user:
        return user
    for model_cls in (BranchAdmin, Employee, StockManager):
        user = model_cls.query.filter_by(email=identifier).first()
        if user:
            return user
    return None


def load_user(payload):
    model_cls = USER_TYPES.get(payload.get('type'))
    if model_cls is None:
        return None
    return model_cls.query.get(payload.get('sub'))


def public_user(user):
    data = {
        'id': user.id,
        'name': getattr(user, 'name', None),
        'username': getattr(user, 'username', None),
        'email': getattr(user, 'email', None),
        'role': user.role,
    }
    if getattr(user, 'branchId', None) is not None:
        data['branchId'] = user.branchId
    return data


def _cookie_options():
    production = current_app.config.get('ENV_NAME') == 'production'
    return {
        'httponly': True,
        'secure': production,
        'samesite': 'None' if production else 'Lax',
    }


def send_token(user, status_code=200):
    """JSON response carrying a fresh token, also set as the `jwt` cookie."""
    token, _ = create_token(user)
    days = current_app.config.get('JWT_COOKIE_EXPIRE', 90)
    expires = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=days)

    response = jsonify({
        'status': 'success',
        'token': token,
        'data': {'user': public_user(user)},
    })
    response.status_code = status_code
    response.set_cookie(COOKIE_NAME, token, expires=expires, **_cookie_options())
    return response


def clear_token_cookie(response):
    expires = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=10)
    response.set_cookie(COOKIE_NAME, LOGGED_OUT_VALUE, expires=expires, **_cookie_options())
    return response


def get_request_token():
    """Bearer header first, then the `jwt` cookie."""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        token = auth_header[len('Bearer '):].strip()
        if token:
            return token
    token = request.cookies.get(COOKIE_NAME)
    if token and token != LOGGED_OUT_VALUE:
        return token
    return None


def protect(f):
    """Decorator requiring a valid token; sets g.user and g.token_payload."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_request_token()
        if not token:
            raise AppError('You are not logged in! Please log in to get access.', 401)

        payload = decode_token(token)
        if not payload:
            raise AppError('Invalid or expired token. Please log in again.', 401)

        user = load_user(payload)
        if user is None:
            raise AppError('The user belonging to this token no longer exists.', 401)

        g.user = user
        g.token_payload = payload
        return f(*args, **kwargs)
    return decorated


def restrict_to(*roles):
    """Decorator (after protect) allowing only the listed roles."""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, 'user', None)
            if user is None or user.role not in roles:
                raise AppError('You do not have permission to perform this action', 403)
            return f(*args, **kwargs)
        return decorated
    return decorator
