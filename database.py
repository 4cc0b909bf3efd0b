"""MongoDB connection handling shared by the gateway, the session store and the CLI."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

import certifi
from flask import current_app
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import InvalidURI

logger = logging.getLogger(__name__)

URI_SCHEMES = ('mongodb://', 'mongodb+srv://')


@dataclass(frozen=True)
class Connection:
    """An established client plus the database the app works in."""

    client: MongoClient
    database: Database
    generation: int


def _wants_tls(uri: str) -> bool:
    lowered = uri.lower()
    return lowered.startswith('mongodb+srv://') or 'tls=true' in lowered or 'ssl=true' in lowered


class ConnectionManager:
    """
    Owns one MongoClient for the life of the process.

    ``connect()`` is single-flight: the first caller establishes the connection
    while concurrent callers wait on the same attempt, and every later caller gets
    the cached result. ``on_connect`` hooks run once per established connection.

    When an attempt fails and ``retry_failed`` is true the attempt is forgotten so
    the next call tries again; otherwise the failure stays cached and is raised to
    every caller until ``close()``.
    """

    def __init__(
        self,
        uri: str,
        db_name: Optional[str] = None,
        *,
        retry_failed: bool = True,
        client_options: Optional[dict] = None,
        on_connect: Iterable[Callable[[Connection], object]] = (),
        client_factory: Optional[Callable[..., MongoClient]] = None,
    ):
        if not uri or not uri.startswith(URI_SCHEMES):
            raise InvalidURI("MongoDB URI must start with 'mongodb://' or 'mongodb+srv://'")
        self.uri = uri
        self.db_name = db_name
        self.retry_failed = retry_failed
        self.client_options = dict(client_options or {})
        if _wants_tls(uri):
            # certifi's bundle keeps TLS verification consistent across hosts
            self.client_options.setdefault('tlsCAFile', certifi.where())
        self.on_connect = list(on_connect)
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._attempt: Optional[Future] = None
        self._generation = 0

    @property
    def connected(self) -> bool:
        attempt = self._attempt
        return attempt is not None and attempt.done() and attempt.exception() is None

    def connect(self) -> Connection:
        with self._lock:
            attempt = self._attempt
            leader = attempt is None
            if leader:
                attempt = self._attempt = Future()

        if leader:
            try:
                attempt.set_result(self._establish())
            except BaseException as exc:
                # Followers block on the future, so it must resolve whatever escapes
                logger.error('MongoDB connection error: %s', exc)
                attempt.set_exception(exc)
                if self.retry_failed:
                    with self._lock:
                        if self._attempt is attempt:
                            self._attempt = None
                raise

        return attempt.result()

    def _establish(self) -> Connection:
        factory = self._client_factory or MongoClient
        client = factory(self.uri, **self.client_options)
        try:
            client.admin.command('ping')
            database = client.get_default_database(default=self.db_name)
            self._generation += 1
            connection = Connection(client=client, database=database, generation=self._generation)
            logger.info('MongoDB connected (database=%s)', database.name)
            for hook in self.on_connect:
                hook(connection)
        except BaseException:
            client.close()
            raise
        return connection

    def close(self) -> None:
        with self._lock:
            attempt, self._attempt = self._attempt, None
        if attempt is not None:
            # An attempt still in flight is closed once it resolves
            attempt.add_done_callback(_close_attempt)


def _close_attempt(attempt: Future) -> None:
    if attempt.exception() is None:
        attempt.result().client.close()
        logger.info('MongoDB connection closed')


_managers: Dict[Tuple[str, str], ConnectionManager] = {}
_managers_lock = threading.Lock()


def get_connection_manager(uri: str, name: str = 'default', **options) -> ConnectionManager:
    """
    Return the process-wide manager for ``(name, uri)``, creating it on first use.

    Options only apply when the manager is created.
    """
    key = (name, uri)
    with _managers_lock:
        manager = _managers.get(key)
        if manager is None:
            manager = _managers[key] = ConnectionManager(uri, **options)
    return manager


def reset_connection_managers() -> None:
    with _managers_lock:
        managers = list(_managers.values())
        _managers.clear()
    for manager in managers:
        manager.close()


def get_database() -> Database:
    """Database handle of the current app, connecting if needed."""
    return current_app.extensions['mongo'].connect().database
