"""Feasibility entries owned by the signed-in user."""

from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from werkzeug.exceptions import BadRequest, NotFound

from database import get_database
from models import FEASIBILITY_COLLECTION

feasibility_bp = Blueprint('feasibility', __name__)

MAX_LISTED_ENTRIES = 100


def _serialize(document):
    created_at = document.get('created_at')
    return {
        'id': str(document['_id']),
        'data': document.get('data', {}),
        'createdAt': created_at.isoformat() if created_at else None,
    }


@feasibility_bp.route('', methods=['GET'], strict_slashes=False)
@login_required
def list_entries():
    documents = get_database()[FEASIBILITY_COLLECTION].find(
        {'user_id': current_user.id},
        sort=[('created_at', -1)],
        limit=MAX_LISTED_ENTRIES,
    )
    return jsonify({'success': True, 'entries': [_serialize(doc) for doc in documents]})


@feasibility_bp.route('', methods=['POST'], strict_slashes=False)
@login_required
def create_entry():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload:
        raise BadRequest('Request body must be a non-empty JSON object.')

    document = {
        'user_id': current_user.id,
        'data': payload,
        'created_at': datetime.now(timezone.utc),
    }
    result = get_database()[FEASIBILITY_COLLECTION].insert_one(document)
    document['_id'] = result.inserted_id
    return jsonify({'success': True, 'entry': _serialize(document)}), 201


@feasibility_bp.route('/<entry_id>', methods=['GET'])
@login_required
def get_entry(entry_id):
    try:
        oid = ObjectId(entry_id)
    except InvalidId:
        raise NotFound('Feasibility entry not found.') from None
    document = get_database()[FEASIBILITY_COLLECTION].find_one({'_id': oid, 'user_id': current_user.id})
    if document is None:
        raise NotFound('Feasibility entry not found.')
    return jsonify({'success': True, 'entry': _serialize(document)})
