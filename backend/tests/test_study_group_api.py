import pytest

BASE = '/api/StudyGroup'


@pytest.fixture
def physics(client, login):
    """An approved group created by `u1`; returns (group_id, headers by user)."""
    headers = {name: login(name) for name in ('admin', 'u1', 'u2', 'u3')}
    created = client.post(f'{BASE}/CreateStudyGroup', json={'name': 'Physics Club', 'description': 'mechanics'}, headers=headers['u1'])
    assert created.status_code == 200
    gid = created.json()['group']['id']
    approved = client.post(f'{BASE}/ApproveStudyGroup', json=gid, headers=headers['admin'])
    assert approved.status_code == 200
    return gid, headers


def _user_id(client, username):
    return client.post('/auth/register', json={'username': username, 'password': 'pass123'}).json()['id']


def test_create_duplicate_name_is_bad_request(client, physics):
    _, headers = physics
    r = client.post(f'{BASE}/CreateStudyGroup', json={'name': 'Physics Club'}, headers=headers['u2'])
    assert r.status_code == 400
    assert r.json()['error'] == 'duplicate_name'


def test_create_requires_name(client, login):
    r = client.post(f'{BASE}/CreateStudyGroup', json={'name': '  '}, headers=login('u1'))
    assert r.status_code == 422


def test_admin_endpoints_require_role(client, login):
    headers = login('u1')
    created = client.post(f'{BASE}/CreateStudyGroup', json={'name': 'Chem'}, headers=headers).json()['group']
    assert client.post(f'{BASE}/ApproveStudyGroup', json=created['id'], headers=headers).status_code == 403
    assert client.post(f'{BASE}/RejectStudyGroup', json=created['id'], headers=headers).status_code == 403
    assert client.get(f'{BASE}/ViewCreateStudyGroupRequests', headers=headers).status_code == 403

    admin = login('admin')
    pending = client.get(f'{BASE}/ViewCreateStudyGroupRequests', headers=admin)
    assert pending.status_code == 200
    assert [g['id'] for g in pending.json()] == [created['id']]
    assert client.post(f'{BASE}/RejectStudyGroup', json=created['id'], headers=admin).status_code == 200
    assert client.get(f'{BASE}/ViewCreateStudyGroupRequests', headers=admin).status_code == 404


def test_approve_twice_is_invalid_state(client, physics):
    gid, headers = physics
    r = client.post(f'{BASE}/ApproveStudyGroup', json=gid, headers=headers['admin'])
    assert r.status_code == 400
    assert r.json()['error'] == 'invalid_state'
    missing = client.post(f'{BASE}/ApproveStudyGroup', json='missing', headers=headers['admin'])
    assert missing.status_code == 404


def test_group_queries(client, physics):
    gid, headers = physics
    u1 = _user_id(client, 'u1')
    assert client.get(f'{BASE}/GetStudyGroupById/{gid}').json()['name'] == 'Physics Club'
    assert client.get(f'{BASE}/GetStudyGroupById/missing').status_code == 404
    assert client.get(f'{BASE}/GetGroupManagers/{gid}').json() == [u1]
    assert client.get(f'{BASE}/GetGroupManagers/missing').status_code == 404
    members = client.get(f'{BASE}/GetStudyGroupMembers/{gid}').json()
    assert members == [{'group_id': gid, 'user_id': u1, 'role': 'manager', 'joined_at': members[0]['joined_at']}]
    assert client.get(f'{BASE}/GetStudyGroupMembers/missing').status_code == 404
    assert client.get(f'{BASE}/GetUserRoleInGroup/{gid}', headers=headers['u1']).json() == 'manager'
    assert client.get(f'{BASE}/GetUserRoleInGroup/{gid}', headers=headers['u2']).status_code == 404
    assert client.get(f'{BASE}/GetUserRoleInGroup/{gid}').status_code in (401, 403)


def test_apply_and_manager_approval_flow(client, physics):
    gid, headers = physics
    u2 = _user_id(client, 'u2')
    r = client.post(f'{BASE}/ApplyToJoin', json={'studyGroupId': gid}, headers=headers['u2'])
    assert r.status_code == 200
    again = client.post(f'{BASE}/ApplyToJoin', json={'studyGroupId': gid}, headers=headers['u2'])
    assert again.status_code == 400
    assert again.json()['error'] == 'duplicate_pending'
    assert client.get(f'{BASE}/GetPendingJoinRequestsCount/{gid}').json() == 1
    requests = client.get(f'{BASE}/GetJoinRequests/{gid}').json()
    assert [(req['user_id'], req['status']) for req in requests] == [(u2, 'pending')]

    body = {'userId': u2, 'studyGroupId': gid, 'status': 'Approved'}
    denied = client.post(f'{BASE}/UpdateApplicationStatus', json=body, headers=headers['u3'])
    assert denied.status_code == 403
    ok = client.post(f'{BASE}/UpdateApplicationStatus', json=body, headers=headers['u1'])
    assert ok.status_code == 200
    assert ok.json()['request']['status'] == 'approved'
    twice = client.post(f'{BASE}/UpdateApplicationStatus', json=body, headers=headers['u1'])
    assert twice.status_code == 400
    assert twice.json()['error'] == 'invalid_state'

    assert client.get(f'{BASE}/GetUserRoleInGroup/{gid}', headers=headers['u2']).json() == 'member'
    assert client.get(f'{BASE}/GetPendingJoinRequestsCount/{gid}').json() == 0


def test_apply_to_unknown_group(client, login):
    r = client.post(f'{BASE}/ApplyToJoin', json={'studyGroupId': 'missing'}, headers=login('u2'))
    assert r.status_code == 404


def test_join_leave_and_manager_rules(client, physics):
    gid, headers = physics
    u1 = _user_id(client, 'u1')
    u3 = _user_id(client, 'u3')
    assert client.post(f'{BASE}/JoinGroup/{gid}', headers=headers['u3']).status_code == 200
    dup = client.post(f'{BASE}/JoinGroup/{gid}', headers=headers['u3'])
    assert dup.status_code == 400
    assert dup.json()['error'] == 'already_member'
    assert len(client.get(f'{BASE}/GetStudyGroupMembers/{gid}').json()) == 2

    # nobody leaves on behalf of somebody else
    other = client.post(f'{BASE}/LeaveStudyGroup', json={'userId': u3, 'groupId': gid}, headers=headers['u2'])
    assert other.status_code == 403
    left = client.post(f'{BASE}/LeaveStudyGroup', json={'userId': u3, 'groupId': gid}, headers=headers['u3'])
    assert left.status_code == 200
    gone = client.post(f'{BASE}/LeaveStudyGroup', json={'userId': u3, 'groupId': gid}, headers=headers['u3'])
    assert gone.status_code == 404

    manager = client.post(f'{BASE}/LeaveStudyGroup', json={'userId': u1, 'groupId': gid}, headers=headers['u1'])
    assert manager.status_code == 400
    assert manager.json()['error'] == 'manager_cannot_leave'


def test_admin_can_remove_member(client, physics):
    gid, headers = physics
    u3 = _user_id(client, 'u3')
    client.post(f'{BASE}/JoinGroup/{gid}', headers=headers['u3'])
    r = client.post(f'{BASE}/LeaveStudyGroup', json={'userId': u3, 'groupId': gid}, headers=headers['admin'])
    assert r.status_code == 200
    logs = client.get(f'{BASE}/GetActivityLogs/{gid}').json()
    assert logs[-1]['action'] == f'removed user {u3} from the group'


def test_dissolve_flow(client, physics):
    gid, headers = physics
    u1 = _user_id(client, 'u1')
    u2 = _user_id(client, 'u2')
    client.post(f'{BASE}/JoinGroup/{gid}', headers=headers['u2'])

    spoofed = client.post(f'{BASE}/DissolveStudyGroup', json={'userId': u1, 'groupId': gid}, headers=headers['u2'])
    assert spoofed.status_code == 403
    not_manager = client.post(f'{BASE}/DissolveStudyGroup', json={'userId': u2, 'groupId': gid}, headers=headers['u2'])
    assert not_manager.status_code == 403
    assert not_manager.json()['error'] == 'forbidden'

    ok = client.post(f'{BASE}/DissolveStudyGroup', json={'userId': u1, 'groupId': gid}, headers=headers['u1'])
    assert ok.status_code == 200
    assert client.get(f'{BASE}/GetStudyGroupById/{gid}').status_code == 404
    logs = client.get(f'{BASE}/GetActivityLogs/{gid}').json()
    assert logs[-1]['action'].startswith('dissolved')
    assert client.get(f'{BASE}/GetStudyGroup', headers=headers['u2']).json() == []


def test_delete_study_group(client, physics):
    gid, headers = physics
    denied = client.delete(f'{BASE}/DeleteStudyGroup/{gid}', headers=headers['u2'])
    assert denied.status_code == 400
    ok = client.delete(f'{BASE}/DeleteStudyGroup/{gid}', headers=headers['u1'])
    assert ok.status_code == 200
    assert client.delete(f'{BASE}/DeleteStudyGroup/{gid}', headers=headers['u1']).status_code == 400


def test_get_study_group_for_self_and_others(client, physics):
    gid, headers = physics
    u1 = _user_id(client, 'u1')
    draft = client.post(f'{BASE}/CreateStudyGroup', json={'name': 'Draft'}, headers=headers['u1']).json()['group']['id']

    own = {g['id'] for g in client.get(f'{BASE}/GetStudyGroup', headers=headers['u1']).json()}
    assert own == {gid, draft}
    other = client.get(f'{BASE}/GetStudyGroup', params={'targetUserId': u1}, headers=headers['u2']).json()
    assert [g['id'] for g in other] == [gid]
    assert client.get(f'{BASE}/GetStudyGroup', headers=headers['u2']).json() == []
