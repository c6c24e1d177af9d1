"""
Entry point.

    python server.py                                   # development server
    gunicorn -c gunicorn_config.py "server:build_app()"
"""
import sys
import logging

from pymongo.errors import PyMongoError

from app import create_app
from config import load_config, require_mongo_uri, MissingConfigError
from models import db

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


def build_app(config=None, mongo_client=None):
    """Create the app, exiting with status 1 when the central database is unusable."""
    config = config if config is not None else load_config()
    try:
        require_mongo_uri(config)
    except MissingConfigError as e:
        logger.critical(f"FATAL ERROR: {e}")
        sys.exit(1)

    app = create_app(config, mongo_client=mongo_client)
    try:
        db.ping()
    except PyMongoError as e:
        logger.critical(f"[Mongo] Central MongoDB connection failed: {e}")
        sys.exit(1)
    logger.info(f"[Mongo] Central MongoDB connected (DB: {db.name})")

    db.create_all()
    return app


if __name__ == '__main__':
    app = build_app()
    app.run(debug=not app.config['ENV_NAME'] == 'production', port=app.config['PORT'],
            use_reloader=False, threaded=True)
