import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_DAYS = 90


class MissingConfigError(RuntimeError):
    pass


def _int_env(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def get_cookie_expire_days():
    """Cookie lifetime in days (JWT_COOKIE_EXPIRE, JWT_COOKIE_EXPIRES_IN as alias)."""
    raw = os.getenv('JWT_COOKIE_EXPIRE') or os.getenv('JWT_COOKIE_EXPIRES_IN')
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_COOKIE_DAYS
    return days if days > 0 else DEFAULT_COOKIE_DAYS


def load_config():
    """Build the Flask config dict from the environment."""
    env = os.getenv('NODE_ENV') or os.getenv('APP_ENV') or 'development'
    return {
        'ENV_NAME': env,
        'MONGO_URI': os.getenv('MONGO_URI'),
        'MONGO_DBNAME': os.getenv('MONGO_DBNAME', 'bookstore_main_admin'),
        'SECRET_KEY': os.getenv('SECRET_KEY', 'fallback-secret-key'),
        'JWT_SECRET': os.getenv('JWT_SECRET') or os.getenv('SECRET_KEY', 'fallback-secret-key'),
        'JWT_EXPIRES_IN': os.getenv('JWT_EXPIRES_IN', '90d'),
        'JWT_COOKIE_EXPIRE': get_cookie_expire_days(),
        'FRONTEND_DEV_URL': os.getenv('FRONTEND_DEV_URL'),
        'FRONTEND_PROD_URL': os.getenv('FRONTEND_PROD_URL'),
        'PORT': _int_env('PORT', 5000),
        'JSON_MAX_MB': 50,
    }


def require_mongo_uri(config):
    """Raise MissingConfigError when MONGO_URI is not configured."""
    uri = (config.get('MONGO_URI') or '').strip()
    if not uri:
        raise MissingConfigError('MONGO_URI is not defined in your environment or .env file!')
    return uri


def is_production(config):
    return config.get('ENV_NAME') == 'production'


def allowed_origins(config):
    origins = []
    if is_production(config):
        if config.get('FRONTEND_PROD_URL'):
            origins.append(config['FRONTEND_PROD_URL'])
    else:
        if config.get('FRONTEND_DEV_URL'):
            origins.append(config['FRONTEND_DEV_URL'])
        # Common development URLs (React, Vite)
        origins.append('http://localhost:3000')
        origins.append('http://localhost:5173')
    return origins
