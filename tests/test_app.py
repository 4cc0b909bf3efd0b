import pytest
from flask import request

from config import OriginPolicy, env_flag
from errors import AppError


def test_health_check_reports_anonymous_request(client):
    response = client.get('/')
    assert response.status_code == 200
    payload = response.get_json()
    assert payload['status'] == 'OK'
    assert payload['loggedIn'] is False
    assert payload['environment'] == 'development'
    assert 'classic' in payload['message']


def test_health_check_reports_authenticated_session(client, login):
    login()
    assert client.get('/').get_json()['loggedIn'] is True


def test_local_dev_origin_is_allowed_with_credentials(client):
    response = client.get('/', headers={'Origin': 'http://localhost:5173'})
    assert response.status_code == 200
    assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'
    assert response.headers['Access-Control-Allow-Credentials'] == 'true'


def test_configured_frontend_origin_is_allowed(client):
    response = client.get('/', headers={'Origin': 'https://app.example.com'})
    assert response.status_code == 200


def test_unknown_origin_is_rejected(client, db):
    response = client.get('/', headers={'Origin': 'http://evil.example'})
    assert response.status_code == 403
    assert response.get_json() == {'success': False, 'message': 'Not allowed by CORS'}
    assert 'Access-Control-Allow-Origin' not in response.headers


def test_request_without_origin_is_allowed(client):
    assert client.get('/').status_code == 200


def test_preflight_from_allowed_origin(client):
    response = client.options(
        '/api/feasibility',
        headers={
            'Origin': 'http://localhost:3000',
            'Access-Control-Request-Method': 'POST',
        },
    )
    assert response.status_code == 200
    assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:3000'
    assert 'POST' in response.headers['Access-Control-Allow-Methods']


def test_extra_origins_from_config():
    policy = OriginPolicy.from_config({
        'FRONTEND_URL': 'https://app.example.com/',
        'CORS_ORIGINS': 'https://admin.example.com, ,https://app.example.com',
    })
    assert policy.allowed == (
        'https://app.example.com',
        'http://localhost:5173',
        'http://localhost:3000',
        'https://admin.example.com',
    )
    assert policy.allows(None)
    assert not policy.allows('http://evil.example')


@pytest.mark.parametrize(
    'value, expected',
    [('1', True), ('true', True), ('YES', True), ('0', False), ('false', False), ('', False)],
)
def test_env_flag_accepts_common_spellings(monkeypatch, value, expected):
    monkeypatch.setenv('STARTUP_TEST_FLAG', value)
    assert env_flag('STARTUP_TEST_FLAG') is expected


def test_env_flag_default_when_unset(monkeypatch):
    monkeypatch.delenv('STARTUP_TEST_FLAG', raising=False)
    assert env_flag('STARTUP_TEST_FLAG', default=True) is True


def test_unhandled_route_error_becomes_single_json_response(make_app):
    app = make_app()

    @app.route('/boom')
    def boom():
        raise RuntimeError('feasibility engine exploded')

    response = app.test_client().get('/boom')
    assert response.status_code == 500
    assert response.get_json() == {'success': False, 'message': 'feasibility engine exploded'}


def test_error_status_code_is_preserved(make_app):
    app = make_app()

    @app.route('/teapot')
    def teapot():
        raise AppError('short and stout', status_code=418)

    response = app.test_client().get('/teapot')
    assert response.status_code == 418
    assert response.get_json()['success'] is False


def test_unknown_route_is_json_404(client):
    response = client.get('/does-not-exist')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_oversized_body_is_rejected(make_app):
    app = make_app(MAX_CONTENT_LENGTH=1024 * 1024)

    @app.route('/echo', methods=['POST'])
    def echo():
        return {'received': request.get_json()}

    response = app.test_client().post('/echo', data=b'x' * (1024 * 1024 + 1), content_type='application/json')
    assert response.status_code == 413
    assert response.get_json() == {'success': False, 'message': 'Request body exceeds the 1 MB limit.'}


def test_classic_mode_connects_once_at_startup(make_app, mongo, client):
    assert mongo.connect_calls == 1
    for _ in range(3):
        client.get('/')
    assert mongo.connect_calls == 1


def test_classic_mode_exits_when_database_is_unreachable(make_app, mongo):
    mongo.down = True
    with pytest.raises(SystemExit) as excinfo:
        make_app('classic')
    assert excinfo.value.code == 1


def test_serverless_mode_connects_on_first_request(make_app, mongo):
    app = make_app('serverless')
    assert mongo.connect_calls == 0

    client = app.test_client()
    assert client.get('/').status_code == 200
    assert client.get('/').status_code == 200
    assert mongo.connect_calls == 1


def test_serverless_connect_failure_is_a_json_error_then_retried(make_app, mongo):
    app = make_app('serverless')
    client = app.test_client()

    mongo.down = True
    response = client.get('/')
    assert response.status_code == 503
    assert response.get_json() == {'success': False, 'message': 'Database unavailable'}

    mongo.down = False
    assert client.get('/').status_code == 200


def test_serverless_preflight_succeeds_while_database_is_down(make_app, mongo):
    client = make_app('serverless').test_client()
    mongo.down = True

    response = client.options(
        '/api/feasibility',
        headers={
            'Origin': 'http://localhost:5173',
            'Access-Control-Request-Method': 'POST',
        },
    )
    assert response.status_code == 200
    assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'
    assert mongo.connect_calls == 0

    real = client.post('/api/feasibility', json={'idea': 'x'}, headers={'Origin': 'http://localhost:5173'})
    assert real.status_code == 503
    assert real.get_json() == {'success': False, 'message': 'Database unavailable'}


def test_form_fields_share_the_body_cap(make_app):
    app = make_app(MAX_CONTENT_LENGTH=16 * 1024 * 1024, MAX_FORM_MEMORY_SIZE=1024)

    @app.route('/form', methods=['POST'])
    def form():
        return {'note': len(request.form['note'])}

    response = app.test_client().post(
        '/form',
        data={'note': 'x' * 4096},
        content_type='multipart/form-data',
    )
    assert response.status_code == 413
    assert response.get_json()['success'] is False


def test_serverless_connect_failure_can_stay_cached(make_app, mongo):
    app = make_app('serverless', MONGO_RETRY_FAILED_CONNECT=False)
    client = app.test_client()

    mongo.down = True
    assert client.get('/').status_code == 503
    mongo.down = False
    assert client.get('/').status_code == 503
    assert mongo.connect_calls == 1


def test_session_store_outage_is_reported_before_views_run(make_app, mongo):
    app = make_app()
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['visits'] = 1

    mongo.database('startup_test')['sessions'].fail_on.add('find_one')
    response = client.get('/')
    assert response.status_code == 503
    assert response.get_json()['message'] == 'Session store unavailable'


def test_forwarded_proto_is_trusted(make_app):
    app = make_app()

    @app.route('/scheme')
    def scheme():
        return {'scheme': request.scheme}

    response = app.test_client().get('/scheme', headers={'X-Forwarded-Proto': 'https'})
    assert response.get_json() == {'scheme': 'https'}
