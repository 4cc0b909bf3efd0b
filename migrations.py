"""
Index maintenance for the users collection.

Runs once per established MongoDB connection:

1. unset literal ``null`` identity values so they no longer collide under a
   unique index,
2. drop the legacy non-partial identity index,
3. bring the collection's indexes in line with ``models.USER_INDEXES``.

Every step is best-effort. Failures are logged and reported in the returned
``MigrationReport``; they never stop the app from starting or serving requests.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pymongo.errors import OperationFailure

from config import Config
from database import ConnectionManager
from models import IDENTITY_FIELD, LEGACY_IDENTITY_INDEX, USER_INDEXES, USERS_COLLECTION

logger = logging.getLogger(__name__)

INDEX_OPTIONS = ('unique', 'sparse', 'partialFilterExpression', 'expireAfterSeconds')


class StepStatus(str, Enum):
    OK = 'ok'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass
class StepResult:
    name: str
    status: StepStatus
    detail: str = ''


@dataclass
class MigrationReport:
    steps: List[StepResult] = field(default_factory=list)

    @property
    def failed(self) -> List[StepResult]:
        return [step for step in self.steps if step.status is StepStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def status_of(self, name: str) -> Optional[StepStatus]:
        for step in self.steps:
            if step.name == name:
                return step.status
        return None


def _option(value):
    return None if value in (None, False) else value


def index_matches(info: dict, definition: dict) -> bool:
    """Compare an ``index_information()`` entry with an ``IndexModel.document``."""
    if list(info.get('key', [])) != list(definition['key'].items()):
        return False
    return all(_option(info.get(opt)) == _option(definition.get(opt)) for opt in INDEX_OPTIONS)


class IndexMigrator:
    def __init__(
        self,
        collection_name: str = USERS_COLLECTION,
        field: str = IDENTITY_FIELD,
        legacy_index: str = LEGACY_IDENTITY_INDEX,
        indexes=USER_INDEXES,
    ):
        self.collection_name = collection_name
        self.field = field
        self.legacy_index = legacy_index
        self.indexes = list(indexes)
        self.last_report: Optional[MigrationReport] = None

    def __call__(self, connection) -> MigrationReport:
        return self.run(connection.database)

    def run(self, database) -> MigrationReport:
        collection = database[self.collection_name]
        report = MigrationReport()
        for name, step in (
            ('unset_null_identity', self._unset_null_identity),
            ('drop_legacy_index', self._drop_legacy_index),
            ('sync_indexes', self._sync_indexes),
        ):
            report.steps.append(self._run_step(name, step, collection))

        self.last_report = report
        if report.ok:
            logger.info('Index maintenance finished for %s', self.collection_name)
        else:
            logger.warning(
                'Index maintenance degraded for %s: %s',
                self.collection_name,
                ', '.join(step.name for step in report.failed),
            )
        return report

    def _run_step(self, name, step, collection) -> StepResult:
        try:
            status, detail = step(collection)
        except Exception as exc:  # noqa: BLE001
            logger.warning('Index maintenance step %s failed: %s', name, exc)
            return StepResult(name, StepStatus.FAILED, str(exc))
        logger.info('Index maintenance step %s: %s (%s)', name, status.value, detail)
        return StepResult(name, status, detail)

    def _definitions(self) -> dict:
        return {model.document['name']: model.document for model in self.indexes}

    def _unset_null_identity(self, collection):
        result = collection.update_many({self.field: None}, {'$unset': {self.field: ''}})
        if not result.modified_count:
            return StepStatus.SKIPPED, 'no null values'
        return StepStatus.OK, f'unset {result.modified_count} null values'

    def _drop_legacy_index(self, collection):
        existing = collection.index_information().get(self.legacy_index)
        if existing is None:
            return StepStatus.SKIPPED, 'index not found'
        definition = self._definitions().get(self.legacy_index)
        if definition is not None and index_matches(existing, definition):
            return StepStatus.SKIPPED, 'index already current'
        try:
            collection.drop_index(self.legacy_index)
        except OperationFailure as exc:
            # Another process dropped it first
            return StepStatus.SKIPPED, f'index not dropped: {exc}'
        return StepStatus.OK, f'dropped {self.legacy_index}'

    def _sync_indexes(self, collection):
        definitions = self._definitions()
        existing = collection.index_information()

        dropped = []
        for name, info in existing.items():
            if name == '_id_':
                continue
            if name not in definitions or not index_matches(info, definitions[name]):
                collection.drop_index(name)
                dropped.append(name)

        missing = [
            model for model in self.indexes
            if model.document['name'] not in existing or model.document['name'] in dropped
        ]
        created = collection.create_indexes(missing) if missing else []

        if not dropped and not created:
            return StepStatus.SKIPPED, 'indexes already in sync'
        return StepStatus.OK, f"created={','.join(created) or '-'} dropped={','.join(dropped) or '-'}"


# ===== MAINTENANCE CLI =====

def _manager():
    return ConnectionManager(
        Config.MONGO_URI,
        db_name=Config.MONGO_DB_NAME,
        client_options={
            'serverSelectionTimeoutMS': Config.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            'connectTimeoutMS': Config.MONGO_CONNECT_TIMEOUT_MS,
        },
    )


def run_migrations() -> int:
    manager = _manager()
    try:
        report = IndexMigrator().run(manager.connect().database)
    finally:
        manager.close()
    for step in report.steps:
        print(f'{step.name}={step.status.value} {step.detail}'.rstrip())
    return 0 if report.ok else 1


def show_indexes() -> int:
    manager = _manager()
    try:
        collection = manager.connect().database[USERS_COLLECTION]
        for name, info in sorted(collection.index_information().items()):
            options = {opt: info[opt] for opt in INDEX_OPTIONS if opt in info}
            print(f'{name} key={list(info.get("key", []))} {options}')
    finally:
        manager.close()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Users index maintenance')
    sub = parser.add_subparsers(dest='cmd', required=True)
    sub.add_parser('run', help='clean null identities and resync indexes')
    sub.add_parser('status', help='list indexes on the users collection')

    args = parser.parse_args(argv)

    if args.cmd == 'run':
        return run_migrations()
    return show_indexes()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
