import os
import json
import hashlib
import logging
from functools import wraps
from flask import request, jsonify
import redis

logger = logging.getLogger(__name__)

# DB 1 holds cached responses; DB 2 is used by auth_jwt for revoked tokens
redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379/1')
redis_client = None
redis_available = False

# Check Redis availability
try:
    _temp_client = redis.from_url(redis_url, socket_connect_timeout=1)
    _temp_client.ping()
    redis_client = _temp_client
    redis_available = True
    logger.info("[Cache] Redis connected successfully")
except Exception as e:
    logger.warning(f"[Cache] Redis not available: {e}")
    logger.warning("[Cache] Running in no-cache mode")
    redis_available = False


def get_cache_version(prefix):
    """Get the current version for a cache prefix."""
    if not redis_available:
        return "1"
    try:
        v = redis_client.get(f"version:{prefix}")
        # Never invalidated yet; the first incr moves it to 1
        if not v:
            return "0"
        return v.decode('utf-8')
    except redis.RedisError:
        return "1"


def generate_cache_key(prefix, *args, **kwargs):
    """Generate a consistent cache key based on request path, args and version."""
    version = get_cache_version(prefix)
    key_parts = [prefix, version, request.path]

    if request.args:
        key_parts.append(json.dumps(request.args.to_dict(), sort_keys=True))

    for arg in args:
        key_parts.append(str(arg))
    if kwargs:
        key_parts.append(json.dumps(kwargs, sort_keys=True, default=str))

    key_str = "|".join(key_parts)
    return f"cache:{hashlib.sha256(key_str.encode()).hexdigest()}"


def invalidate_cache(prefix):
    """Invalidate all cache keys with a specific prefix by incrementing version."""
    if not redis_available:
        return
    try:
        redis_client.incr(f"version:{prefix}")
        logger.info(f"[Cache] Invalidated prefix: {prefix}")
    except redis.RedisError as e:
        logger.error(f"[Cache] Invalidation failed: {e}")


def cache_response(ttl=300, prefix='view'):
    """
    Decorator caching the JSON body of a successful GET endpoint.
    `prefix` may be a string or a callable receiving the view kwargs.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not redis_available or request.method != 'GET':
                return f(*args, **kwargs)

            key_prefix = prefix(**kwargs) if callable(prefix) else prefix
            cache_key = generate_cache_key(key_prefix, *args, **kwargs)

            try:
                cached_data = redis_client.get(cache_key)
                if cached_data:
                    return jsonify(json.loads(cached_data))
            except (redis.RedisError, ValueError) as e:
                logger.error(f"[Cache] Read error: {e}")

            response = f(*args, **kwargs)

            # Only plain 200 JSON responses are cached
            status = 200
            if isinstance(response, tuple):
                response, status = response[0], response[1]
            if status != 200 or not hasattr(response, 'get_json'):
                return response if status == 200 else (response, status)

            try:
                content = response.get_json(silent=True)
                if content is not None:
                    redis_client.setex(cache_key, ttl, json.dumps(content))
            except (redis.RedisError, TypeError) as e:
                logger.error(f"[Cache] Write error: {e}")

            return response
        return decorated_function
    return decorator
