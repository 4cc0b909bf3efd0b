import os

import pytest

os.environ.setdefault('SESSION_SECRET', 'test-secret')

import database  # noqa: E402
from app import create_app  # noqa: E402
from fakes import FakeMongoServer  # noqa: E402

TEST_DB = 'startup_test'
TEST_URI = f'mongodb://fake-mongo:27017/{TEST_DB}'
FRONTEND_URL = 'https://app.example.com'


@pytest.fixture(autouse=True)
def _reset_connections():
    yield
    database.reset_connection_managers()


@pytest.fixture
def mongo(monkeypatch):
    server = FakeMongoServer()
    monkeypatch.setattr(database, 'MongoClient', server.client_factory)
    return server


@pytest.fixture
def db(mongo):
    return mongo.database(TEST_DB)


@pytest.fixture
def make_app(mongo, tmp_path):
    def factory(deployment='classic', **overrides):
        config = {
            'TESTING': True,
            'MONGO_URI': TEST_URI,
            'FRONTEND_URL': FRONTEND_URL,
            'APP_ENV': 'development',
            'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
            'LOG_DIR': '',
        }
        config.update(overrides)
        return create_app(deployment, config)

    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture
def login(client, db):
    """Attach an authenticated session for a freshly inserted user."""
    def _login(email='founder@example.com'):
        user_id = db['users'].insert_one({'email': email, 'supabase_user_id': f'sb-{email}'}).inserted_id
        with client.session_transaction() as sess:
            sess['_user_id'] = str(user_id)
            sess['_fresh'] = True
        return str(user_id)

    return _login
