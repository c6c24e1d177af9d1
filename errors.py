"""
Error types and Flask error handlers for the API.
Every error response has the shape {success: false, status, error}.
"""
import logging
from flask import jsonify, request
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Operational error with an HTTP status code."""

    def __init__(self, message, status_code=500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = 'fail' if str(status_code).startswith('4') else 'error'
        self.is_operational = True


class ValidationError(AppError):
    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__('. '.join(self.messages), 400)


def error_response(message, status_code):
    status = 'fail' if str(status_code).startswith('4') else 'error'
    return jsonify({'success': False, 'status': status, 'error': message}), status_code


def _duplicate_fields(exc):
    details = getattr(exc, 'details', None) or {}
    key_value = details.get('keyValue') or details.get('keyPattern') or {}
    if key_value:
        return ', '.join(key_value.keys())
    return 'value'


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(exc):
        if exc.status_code >= 500:
            logger.error(f"[Error] {exc.message}")
        return error_response(exc.message, exc.status_code)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(exc):
        message = f"Duplicate field value entered: {_duplicate_fields(exc)} already exists."
        return error_response(message, 400)

    @app.errorhandler(404)
    def handle_not_found(exc):
        return error_response(f"Can't find {request.path} on this server!", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(exc):
        return error_response(f"Method {request.method} not allowed for {request.path}", 405)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return error_response(exc.description, exc.code)
        logger.exception(f"[Error] Unhandled error on {request.method} {request.path}")
        return error_response('Server Error', 500)
