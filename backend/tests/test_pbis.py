import pytest


def test_scenario_pbi_listing_carries_titles(client, auth_headers, make_backlog, make_epic, make_pbi):
    backlog = make_backlog(auth_headers, title='Sprint 1')
    epic = make_epic(auth_headers, backlog['id'], title='Auth')
    make_pbi(auth_headers, backlog['id'], title='Login', priority='High', storyPoint=5, epicId=epic['id'])

    r = client.get('/api/pbis', params={'backlogId': backlog['id']}, headers=auth_headers)
    assert r.status_code == 200
    items = r.json()
    assert len(items) == 1
    assert items[0]['title'] == 'Login'
    assert items[0]['epicTitle'] == 'Auth'
    assert items[0]['backlogTitle'] == 'Sprint 1'
    assert items[0]['storyPoint'] == 5


def test_create_response_shape(client, auth_headers, make_backlog, pbi_payload):
    backlog = make_backlog(auth_headers)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id'], storyPoint='8', notes='n'), headers=auth_headers)
    assert r.status_code == 201
    body = r.json()
    assert body['storyPoint'] == 8
    assert body['priority'] == 'High'
    assert body['notes'] == 'n'
    assert body['epicId'] is None
    assert body['productBacklogListId'] == backlog['id']
    assert body['backlogTitle'] == backlog['title']
    assert body['epicTitle'] is None


@pytest.mark.parametrize('field', ['pic', 'title', 'priority', 'storyPoint', 'businessValue', 'userStory', 'acceptanceCriteria'])
def test_required_fields(client, auth_headers, make_backlog, pbi_payload, field):
    backlog = make_backlog(auth_headers)
    payload = pbi_payload(backlog['id'])
    payload.pop(field)
    r = client.post('/api/pbis', json=payload, headers=auth_headers)
    assert r.status_code == 400
    assert field in r.json()['detail']


def test_backlog_id_required_on_create(client, auth_headers, pbi_payload):
    r = client.post('/api/pbis', json=pbi_payload(None), headers=auth_headers)
    assert r.status_code == 400


@pytest.mark.parametrize('value', ['abc', '2.5', -1, '-3', '9' * 30, str(2**63)])
def test_story_point_must_be_non_negative_integer(client, auth_headers, make_backlog, pbi_payload, value):
    backlog = make_backlog(auth_headers)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id'], storyPoint=value), headers=auth_headers)
    assert r.status_code == 400
    assert 'storyPoint' in r.json()['detail']
    assert client.get('/api/pbis', params={'backlogId': backlog['id']}, headers=auth_headers).json() == []


def test_priority_must_be_known(client, auth_headers, make_backlog, pbi_payload):
    backlog = make_backlog(auth_headers)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id'], priority='Urgent'), headers=auth_headers)
    assert r.status_code == 400
    assert 'priority' in r.json()['detail']


def test_epic_from_other_backlog_is_rejected(client, auth_headers, make_backlog, make_epic, pbi_payload):
    home = make_backlog(auth_headers, title='Home')
    away = make_backlog(auth_headers, title='Away')
    foreign_epic = make_epic(auth_headers, away['id'])

    r = client.post('/api/pbis', json=pbi_payload(home['id'], epicId=foreign_epic['id']), headers=auth_headers)
    assert r.status_code == 404
    assert r.json()['detail'] == 'Epic not found in the specified backlog'
    assert client.get('/api/pbis', params={'backlogId': home['id']}, headers=auth_headers).json() == []


def test_create_in_foreign_backlog_is_not_found(client, register_user, make_backlog, pbi_payload):
    owner = register_user()
    other = register_user()
    backlog = make_backlog(owner)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id']), headers=other)
    assert r.status_code == 404


def test_update_replaces_fields_and_keeps_backlog(client, auth_headers, make_backlog, make_epic, make_pbi, pbi_payload):
    backlog = make_backlog(auth_headers)
    other_backlog = make_backlog(auth_headers, title='Other')
    epic = make_epic(auth_headers, backlog['id'])
    pbi = make_pbi(auth_headers, backlog['id'], epicId=epic['id'], notes='old')

    body = pbi_payload(other_backlog['id'], title='Login v2', priority='Low', storyPoint='3')
    r = client.put(f"/api/pbis/{pbi['id']}", json=body, headers=auth_headers)
    assert r.status_code == 200
    updated = r.json()
    assert updated['title'] == 'Login v2'
    assert updated['priority'] == 'Low'
    assert updated['storyPoint'] == 3
    assert updated['notes'] is None
    assert updated['epicId'] is None
    assert updated['productBacklogListId'] == backlog['id']


def test_update_with_epic_of_other_backlog_fails(client, auth_headers, make_backlog, make_epic, make_pbi, pbi_payload):
    backlog = make_backlog(auth_headers)
    away = make_backlog(auth_headers)
    foreign_epic = make_epic(auth_headers, away['id'])
    pbi = make_pbi(auth_headers, backlog['id'])
    r = client.put(f"/api/pbis/{pbi['id']}", json=pbi_payload(epicId=foreign_epic['id']), headers=auth_headers)
    assert r.status_code == 404
    assert client.get(f"/api/pbis/{pbi['id']}", headers=auth_headers).json()['epicId'] is None


def test_other_user_cannot_touch_pbi(client, register_user, make_backlog, make_pbi, pbi_payload):
    owner = register_user()
    other = register_user()
    backlog = make_backlog(owner)
    pbi = make_pbi(owner, backlog['id'])
    path = f"/api/pbis/{pbi['id']}"
    assert client.get(path, headers=other).status_code == 404
    assert client.put(path, json=pbi_payload(title='mine now'), headers=other).status_code == 403
    assert client.delete(path, headers=other).status_code == 403
    assert client.get(path, headers=owner).json()['title'] == pbi['title']
    assert client.get('/api/pbis', headers=other).json() == []


def test_delete_pbi(client, auth_headers, make_backlog, make_pbi):
    backlog = make_backlog(auth_headers)
    pbi = make_pbi(auth_headers, backlog['id'])
    r = client.delete(f"/api/pbis/{pbi['id']}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {'message': 'PBI deleted successfully'}
    assert client.delete(f"/api/pbis/{pbi['id']}", headers=auth_headers).status_code == 404


def test_epic_filters(client, auth_headers, make_backlog, make_epic, make_pbi):
    backlog = make_backlog(auth_headers)
    epic = make_epic(auth_headers, backlog['id'])
    with_epic = make_pbi(auth_headers, backlog['id'], title='In epic', epicId=epic['id'])
    loose = make_pbi(auth_headers, backlog['id'], title='Loose')

    def ids(params):
        params = {'backlogId': backlog['id'], **params}
        return [p['id'] for p in client.get('/api/pbis', params=params, headers=auth_headers).json()]

    assert ids({}) == [with_epic['id'], loose['id']]
    assert ids({'epicId': epic['id']}) == [with_epic['id']]
    assert ids({'epicId': 'null'}) == [loose['id']]
    r = client.get('/api/pbis', params={'epicId': 'abc'}, headers=auth_headers)
    assert r.status_code == 400


def test_list_with_sort_params(client, auth_headers, make_backlog, make_pbi):
    backlog = make_backlog(auth_headers)
    make_pbi(auth_headers, backlog['id'], title='low', priority='Low')
    make_pbi(auth_headers, backlog['id'], title='high', priority='High')
    make_pbi(auth_headers, backlog['id'], title='medium', priority='Medium')
    r = client.get(
        '/api/pbis',
        params={'backlogId': backlog['id'], 'sortField': 'priority', 'sortDirection': 'asc'},
        headers=auth_headers,
    )
    assert [p['title'] for p in r.json()] == ['high', 'medium', 'low']
    bad = client.get('/api/pbis', params={'sortField': 'password'}, headers=auth_headers)
    assert bad.status_code == 400


def test_blank_epic_id_means_no_epic(client, auth_headers, make_backlog, pbi_payload):
    backlog = make_backlog(auth_headers)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id'], epicId=''), headers=auth_headers)
    assert r.status_code == 201
    assert r.json()['epicId'] is None


def test_story_point_at_storage_limit_is_accepted(client, auth_headers, make_backlog, pbi_payload):
    backlog = make_backlog(auth_headers)
    r = client.post('/api/pbis', json=pbi_payload(backlog['id'], storyPoint=str(2**63 - 1)), headers=auth_headers)
    assert r.status_code == 201
    assert r.json()['storyPoint'] == 2**63 - 1


def test_update_response_carries_titles(client, auth_headers, make_backlog, make_epic, make_pbi, pbi_payload):
    backlog = make_backlog(auth_headers, title='Sprint 1')
    epic = make_epic(auth_headers, backlog['id'], title='Auth')
    pbi = make_pbi(auth_headers, backlog['id'])
    r = client.put(f"/api/pbis/{pbi['id']}", json=pbi_payload(epicId=epic['id']), headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['backlogTitle'] == 'Sprint 1'
    assert r.json()['epicTitle'] == 'Auth'
