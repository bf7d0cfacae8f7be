def test_register_login_and_public_listing(client):
    # register
    r = client.post('/auth/register', json={'username': 'testuser', 'password': 'pass123'})
    assert r.status_code == 200
    assert r.json()['role'] == 'user'
    # registering again returns the same user
    again = client.post('/auth/register', json={'username': 'testuser', 'password': 'pass123'})
    assert again.json()['id'] == r.json()['id']
    # login
    r2 = client.post('/auth/login', json={'username': 'testuser', 'password': 'pass123'})
    assert r2.status_code == 200
    assert 'access_token' in r2.json()
    token = r2.json()['access_token']
    # wrong password
    bad = client.post('/auth/login', json={'username': 'testuser', 'password': 'nope'})
    assert bad.status_code == 401
    # list groups (public)
    r3 = client.get('/api/StudyGroup/GetAllStudyGroups')
    assert r3.status_code == 200
    assert r3.json() == []
    # protected endpoint rejects missing token
    body = {'name': 'Physics Club', 'description': 'mechanics'}
    r4 = client.post('/api/StudyGroup/CreateStudyGroup', json=body)
    assert r4.status_code == 403 or r4.status_code == 401
    # and a forged one
    r5 = client.post('/api/StudyGroup/CreateStudyGroup', json=body, headers={'Authorization': 'Bearer not-a-jwt'})
    assert r5.status_code == 401
    # create with token
    headers = {'Authorization': f'Bearer {token}'}
    r6 = client.post('/api/StudyGroup/CreateStudyGroup', json=body, headers=headers)
    assert r6.status_code == 200
    assert r6.json()['group']['status'] == 'pending_approval'


def test_admin_usernames_get_administrator_role(client):
    r = client.post('/auth/register', json={'username': 'admin', 'password': 'pw'})
    assert r.json()['role'] == 'administrator'


def test_health_and_request_id(client):
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Request-ID'] == 'abc123'


def test_unexpected_error_is_generic_500(monkeypatch):
    from fastapi.testclient import TestClient
    from studygroups import repositories
    from studygroups.main import app

    def broken_list_all(self, status=None):
        raise RuntimeError("db exploded: secret dsn")

    monkeypatch.setattr(repositories.StudyGroupRepository, 'list_all', broken_list_all)
    client = TestClient(app, raise_server_exceptions=False)
    r = client.get('/api/StudyGroup/GetAllStudyGroups', headers={'X-Request-ID': 'req-500'})
    assert r.status_code == 500
    assert r.json() == {'detail': 'internal server error', 'request_id': 'req-500'}
    assert r.headers['X-Request-ID'] == 'req-500'
    assert 'secret' not in r.text
