"""File upload. Stored files are served back under /uploads."""

import os
import uuid

from flask import Blueprint, current_app, jsonify, request, url_for
from flask_login import current_user, login_required
from werkzeug.exceptions import BadRequest
from werkzeug.utils import secure_filename

from extensions import limiter

upload_bp = Blueprint('upload', __name__)


def allowed_file(filename):
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    return extension in current_app.config['ALLOWED_UPLOAD_EXTENSIONS']


@upload_bp.route('', methods=['POST'], strict_slashes=False)
@login_required
@limiter.limit('15 per hour')
def upload_file():
    if 'file' not in request.files:
        raise BadRequest('No file was found in the upload request.')

    file = request.files['file']
    filename = secure_filename(file.filename or '')
    if not filename:
        raise BadRequest('No file selected.')
    if not allowed_file(filename):
        raise BadRequest('Unsupported file type.')

    folder = current_app.config['UPLOAD_FOLDER']
    os.makedirs(folder, exist_ok=True)
    stored_name = f'{uuid.uuid4().hex}_{filename}'
    file.save(os.path.join(folder, stored_name))
    current_app.logger.info('User %s uploaded %s', current_user.id, stored_name)

    return jsonify({
        'success': True,
        'filename': stored_name,
        'url': url_for('uploads', filename=stored_name),
    }), 201
