"""
Server-side sessions kept in MongoDB.

The browser only holds a signed session id. Session data lives in the
``sessions`` collection with an ``expires`` timestamp covered by a TTL index, so
MongoDB removes stale records on its own.
"""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone

from flask import g
from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, Signer
from pymongo.errors import PyMongoError
from werkzeug.datastructures import CallbackDict

from database import ConnectionManager, get_connection_manager

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class MongoSession(CallbackDict, SessionMixin):
    def __init__(self, initial=None, sid=None, new=False):
        def on_update(self):
            self.modified = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.new = new
        self.modified = False


class MongoSessionStore:
    """
    Reads and writes session records.

    ``source`` is the app's ConnectionManager, or a connection string for which
    the store keeps its own process-wide manager built with ``connection_options``.
    """

    serializer = TaggedJSONSerializer()

    def __init__(self, source, collection_name='sessions', ttl=timedelta(days=14), connection_options=None):
        if isinstance(source, str):
            source = get_connection_manager(source, name='sessions', **(connection_options or {}))
        if not isinstance(source, ConnectionManager):
            raise TypeError('session store source must be a ConnectionManager or a MongoDB URI')
        self.manager = source
        self.collection_name = collection_name
        self.ttl = ttl
        self._indexed_generation = None
        self._index_lock = threading.Lock()

    def _collection(self):
        connection = self.manager.connect()
        collection = connection.database[self.collection_name]
        if self._indexed_generation != connection.generation:
            with self._index_lock:
                if self._indexed_generation != connection.generation:
                    collection.create_index('expires', expireAfterSeconds=0)
                    self._indexed_generation = connection.generation
        return collection

    def ensure_indexes(self):
        self._collection()

    def load(self, sid):
        document = self._collection().find_one({'_id': sid})
        if document is None:
            return None
        expires = document.get('expires')
        if expires is not None:
            # pymongo hands back naive UTC datetimes by default
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=timezone.utc)
            if expires <= _utcnow():
                return None
        return self.serializer.loads(document['session'])

    def save(self, sid, data):
        self._collection().replace_one(
            {'_id': sid},
            {
                '_id': sid,
                'session': self.serializer.dumps(dict(data)),
                'expires': _utcnow() + self.ttl,
            },
            upsert=True,
        )

    def destroy(self, sid):
        self._collection().delete_one({'_id': sid})


class MongoSessionInterface(SessionInterface):
    """
    Flask session interface backed by a MongoSessionStore.

    Sessions are only written when modified and never when empty, so anonymous
    traffic creates neither records nor cookies. ``should_open(request)`` can veto
    touching the store for a request (the gateway uses it for CORS rejections).
    """

    session_class = MongoSession
    salt = 'startup-session'

    def __init__(self, store, max_age=timedelta(days=1), should_open=None):
        self.store = store
        self.max_age = max_age
        self.should_open = should_open

    def _signer(self, app):
        return Signer(app.secret_key, salt=self.salt)

    def _unsign(self, app, value):
        if not value:
            return None
        try:
            return self._signer(app).unsign(value).decode('utf-8')
        except BadSignature:
            logger.info('Ignoring session cookie with a bad signature')
            return None

    def open_session(self, app, request):
        if self.should_open is not None and not self.should_open(request):
            return None

        sid = self._unsign(app, request.cookies.get(self.get_cookie_name(app)))
        if sid is not None:
            try:
                data = self.store.load(sid)
            except PyMongoError as exc:
                logger.error('Session store unavailable: %s', exc)
                g.session_store_error = exc
                return None
            if data is not None:
                return self.session_class(data, sid=sid)

        return self.session_class(sid=secrets.token_urlsafe(32), new=True)

    def save_session(self, app, session, response):
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)

        if not session:
            if session.modified and not session.new:
                self.store.destroy(session.sid)
                response.delete_cookie(
                    name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly
                )
                response.vary.add('Cookie')
            return

        response.vary.add('Cookie')
        if not self.should_set_cookie(app, session):
            return

        self.store.save(session.sid, session)
        response.set_cookie(
            name,
            self._signer(app).sign(session.sid).decode('utf-8'),
            max_age=self.max_age,
            httponly=httponly,
            domain=domain,
            path=path,
            secure=secure,
            samesite=samesite,
        )
