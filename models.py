"""
Collection names, index definitions and the Flask-Login user for MongoDB documents.
"""

from flask_login import UserMixin
from pymongo import ASCENDING, IndexModel

USERS_COLLECTION = 'users'
FEASIBILITY_COLLECTION = 'feasibility'

# Reference to the external identity provider account. Absent or a unique
# string; never stored as null.
IDENTITY_FIELD = 'supabase_user_id'
LEGACY_IDENTITY_INDEX = f'{IDENTITY_FIELD}_1'

USER_INDEXES = [
    IndexModel(
        [(IDENTITY_FIELD, ASCENDING)],
        name=LEGACY_IDENTITY_INDEX,
        unique=True,
        partialFilterExpression={IDENTITY_FIELD: {'$type': 'string'}},
    ),
]


class User(UserMixin):
    """User loaded from the users collection."""

    def __init__(self, document):
        self.id = str(document['_id'])
        self.email = document.get('email')
        self.name = document.get('name')
        self.identity_id = document.get(IDENTITY_FIELD)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'identityId': self.identity_id,
        }
