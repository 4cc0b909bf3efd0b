"""
Session-backed identity routes.

Signing in goes through the identity provider; these routes only expose and end
the session it produced.
"""

from bson import ObjectId
from bson.errors import InvalidId
from flask import Blueprint, current_app, jsonify, session
from flask_login import current_user, login_required, logout_user

from database import get_database
from extensions import login_manager
from models import USERS_COLLECTION, User

auth_bp = Blueprint('auth', __name__)


@login_manager.user_loader
def load_user(user_id):
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        return None
    document = get_database()[USERS_COLLECTION].find_one({'_id': oid})
    if document is None:
        return None
    return User(document)


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """End the session and remove its stored record."""
    if current_user.is_authenticated:
        current_app.logger.info('User %s signed out', current_user.id)
    logout_user()
    session.clear()
    return jsonify({'success': True, 'message': 'Signed out'})
