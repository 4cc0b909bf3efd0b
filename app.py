"""
Startup backend - Flask application factory
Wires proxy handling, body limits, CORS, MongoDB sessions, Flask-Login,
uploaded files, the API blueprints and JSON error handling
"""

import logging
import os
from logging.handlers import RotatingFileHandler

import sentry_sdk
from flask import Flask, g, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_login import current_user
from pymongo.errors import PyMongoError
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config, OriginPolicy, resolve_deployment
from database import get_connection_manager
from errors import CorsRejected, DatabaseUnavailable
from extensions import limiter, login_manager
from migrations import IndexMigrator
from routes import register_blueprints
from sessions import MongoSessionInterface, MongoSessionStore

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def configure_logging(app, deployment):
    """Send app and module logs to stderr, plus a rotating file where the disk is writable."""
    root = logging.getLogger()
    root.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream_handler)

    log_dir = app.config.get('LOG_DIR')
    if deployment.file_logging and log_dir:
        os.makedirs(log_dir, exist_ok=True)
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)

    if app.config.get('SENTRY_DSN'):
        sentry_sdk.init(
            dsn=app.config.get('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
            environment=app.config.get('APP_ENV'),
        )


def create_app(deployment=None, config=None):
    """
    Build the application for one deployment mode.

    ``deployment`` is a DeploymentMode or its name and defaults to the
    DEPLOYMENT_MODE setting. ``config`` overrides values loaded from Config.

    In classic mode the database connection is opened here and a failure
    terminates the process. In serverless mode it is opened by the first request
    that needs it and reused by later invocations of the same process.
    """
    app = Flask(__name__, static_folder=None)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    mode = resolve_deployment(deployment or app.config.get('DEPLOYMENT_MODE'))
    app.config['DEPLOYMENT_MODE'] = mode.name
    configure_logging(app, mode)

    # ===== TRUST PROXY =====
    # Secure cookies behind a TLS-terminating proxy need X-Forwarded-Proto
    if mode.trust_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # ===== COOKIE POLICY =====
    policy = mode.cookie_policy(
        app.config['APP_ENV'],
        name=app.config['SESSION_COOKIE_NAME'],
        max_age=app.config['SESSION_COOKIE_MAX_AGE'],
    )
    app.config.update(
        SESSION_COOKIE_NAME=policy.name,
        SESSION_COOKIE_SECURE=policy.secure,
        SESSION_COOKIE_SAMESITE=policy.samesite,
        SESSION_COOKIE_HTTPONLY=policy.httponly,
    )

    # ===== DATABASE =====
    connection_options = {
        'db_name': app.config['MONGO_DB_NAME'],
        'retry_failed': app.config['MONGO_RETRY_FAILED_CONNECT'],
        'client_options': {
            'serverSelectionTimeoutMS': app.config['MONGO_SERVER_SELECTION_TIMEOUT_MS'],
            'connectTimeoutMS': app.config['MONGO_CONNECT_TIMEOUT_MS'],
            'socketTimeoutMS': app.config['MONGO_SOCKET_TIMEOUT_MS'],
        },
    }
    manager = get_connection_manager(
        app.config['MONGO_URI'],
        on_connect=[IndexMigrator()],
        **connection_options,
    )
    app.extensions['mongo'] = manager

    if not mode.lazy_connect:
        try:
            manager.connect()
        except PyMongoError as exc:
            app.logger.critical('Cannot start without MongoDB: %s', exc)
            raise SystemExit(1) from exc

    # ===== CORS =====
    origins = OriginPolicy.from_config(app.config)
    CORS(app, origins=list(origins.allowed), supports_credentials=True, methods=CORS_METHODS)

    @app.before_request
    def _reject_disallowed_origin():
        if not origins.allows(request.headers.get('Origin')):
            raise CorsRejected()

    if mode.lazy_connect:
        @app.before_request
        def _ensure_database():
            # Preflights never touch the database
            if request.method == 'OPTIONS':
                return
            try:
                manager.connect()
            except PyMongoError as exc:
                raise DatabaseUnavailable() from exc

    # ===== SESSIONS =====
    store_source = manager if mode.session_source == 'shared' else app.config['MONGO_URI']
    store = MongoSessionStore(
        store_source,
        collection_name=app.config['SESSION_COLLECTION'],
        ttl=app.config['SESSION_STORE_TTL'],
        connection_options=connection_options,
    )
    if manager.connected and store.manager is manager:
        store.ensure_indexes()
    app.extensions['session_store'] = store
    app.session_interface = MongoSessionInterface(
        store,
        max_age=policy.max_age,
        should_open=lambda req: origins.allows(req.headers.get('Origin')),
    )

    @app.before_request
    def _surface_session_store_error():
        error = g.pop('session_store_error', None)
        if error is not None:
            raise DatabaseUnavailable('Session store unavailable') from error

    login_manager.init_app(app)
    limiter.init_app(app)

    # ===== STATIC FILES =====
    @app.route('/uploads/<path:filename>', endpoint='uploads')
    @limiter.exempt
    def serve_upload(filename):
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename)

    # ===== ROUTES =====
    register_blueprints(app)

    # ===== HEALTH CHECK =====
    @app.route('/')
    @limiter.exempt
    def health():
        return jsonify({
            'status': 'OK',
            'message': f'Backend running ({mode.name})',
            'loggedIn': current_user.is_authenticated,
            'environment': app.config['APP_ENV'],
        }), 200

    # ===== ERROR HANDLERS =====
    @app.errorhandler(RequestEntityTooLarge)
    def request_too_large(error):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        return jsonify({
            'success': False,
            'message': f'Request body exceeds the {limit_mb} MB limit.',
        }), 413

    @app.errorhandler(Exception)
    def handle_error(error):
        if isinstance(error, HTTPException):
            status = error.code or 500
            message = error.description
        else:
            status = getattr(error, 'status_code', None) or 500
            message = str(error) or 'Internal Server Error'

        if status >= 500:
            app.logger.error('Server error: %s', error, exc_info=error)
        return jsonify({'success': False, 'message': message}), status

    app.logger.info('App created (mode=%s, environment=%s)', mode.name, app.config['APP_ENV'])
    return app
