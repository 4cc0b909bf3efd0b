"""Flask extensions shared by the app factory and the blueprints."""

from flask import current_app, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager

login_manager = LoginManager()

limiter = Limiter(
    key_func=get_remote_address,
    strategy='fixed-window',
    default_limits=["1000 per day", "200 per hour"],
)


@limiter.request_filter
def _rate_limit_exempt_for_tests():
    return current_app.config.get('TESTING', False)


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({'success': False, 'message': 'Authentication required'}), 401
