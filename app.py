import time
import logging
from datetime import datetime

from flask import Flask, request, jsonify, g, make_response
from flask_cors import CORS
from pymongo.errors import PyMongoError
from pyinstrument import Profiler

from config import load_config, allowed_origins, is_production
from errors import register_error_handlers
from models import db
from routes import api

logger = logging.getLogger(__name__)

SERVICE_NAME = 'Bookstore ERP API'


def create_app(config_overrides=None, mongo_client=None):
    """
    Application factory.
    `mongo_client` lets tests inject an in-memory client (mongomock).
    """
    app = Flask(__name__)
    app.config.update(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config['MAX_CONTENT_LENGTH'] = app.config['JSON_MAX_MB'] * 1024 * 1024

    CORS(app, origins=allowed_origins(app.config), supports_credentials=True,
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    db.init_app(app, client=mongo_client)

    # Profiling Middleware
    @app.before_request
    def before_request():
        request._start_time = time.time()

        if 'profile' in request.args and not is_production(app.config):
            g.profiler = Profiler()
            g.profiler.start()

    @app.after_request
    def after_request(response):
        # Timing Log
        if hasattr(request, '_start_time'):
            elapsed = time.time() - request._start_time
            app.logger.info(f"[{request.remote_addr}] {request.method} {request.path} {elapsed:.3f}s")
            response.headers["X-Response-Time"] = f"{elapsed:.3f}s"

        # Profiler Report
        if hasattr(g, 'profiler'):
            g.profiler.stop()
            output_html = g.profiler.output_html()
            return make_response(output_html)

        return response

    register_error_handlers(app)
    app.register_blueprint(api)

    @app.route('/')
    def index():
        return jsonify({'status': 'success', 'message': f'{SERVICE_NAME} is running'})

    # Health Check Endpoint (for load balancers, Docker, monitoring)
    @app.route('/health')
    def health_check():
        try:
            db.ping()
            return jsonify({
                'status': 'healthy',
                'service': SERVICE_NAME,
                'database': 'connected',
                'timestamp': datetime.now().isoformat()
            }), 200
        except PyMongoError as e:
            return jsonify({
                'status': 'unhealthy',
                'service': SERVICE_NAME,
                'database': 'disconnected',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }), 503

    @app.route('/cors-check')
    def cors_check():
        return jsonify({
            'status': 'success',
            'origin': request.headers.get('Origin'),
            'allowedOrigins': allowed_origins(app.config),
        })

    @app.route('/favicon.ico')
    def favicon():
        return '', 204

    return app
