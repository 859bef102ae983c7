from unittest.mock import patch

import pytest

from gestor import db
from gestor.models.tables import Equipe, Task, TaskResponsavel


@pytest.fixture
def client(company, app_ctx):
    return app_ctx.test_client()


def _auth(client, email):
    resp = client.post('/api/v1/auth/login', json={'email': email, 'password': 'secret'})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def team_task(company):
    task = Task(titulo='Plantão', empresa_id=company['empresa'].id, criado_por=company['owner'].id)
    task.responsaveis.append(TaskResponsavel(equipe_id=company['team'].id))
    db.session.add(task)
    db.session.commit()
    return task


def _titles(client, headers):
    return [task['titulo'] for task in client.get('/api/v1/tasks', headers=headers).get_json()]


# =============================================================================
# CONSULTA
# =============================================================================

def test_members_list_company_teams(client, company):
    headers = _auth(client, 'bruno@acme.test')
    resp = client.get('/api/v1/equipes', headers=headers)
    assert resp.status_code == 200
    data = resp.get_json()
    assert [team['nome'] for team in data] == ['Suporte']
    assert [member['nome'] for member in data[0]['membros']] == ['Ana']

    team_id = company['team'].id
    assert client.get(f'/api/v1/equipes/{team_id}', headers=headers).get_json()['id'] == team_id
    assert client.get('/api/v1/equipes/9999', headers=headers).status_code == 404


def test_master_cannot_open_company_team(client, company):
    headers = _auth(client, 'master@plataforma.test')
    assert client.get(f"/api/v1/equipes/{company['team'].id}", headers=headers).status_code == 403


# =============================================================================
# ALTERAÇÕES
# =============================================================================

def test_manager_creates_team(client, company):
    headers = _auth(client, 'manager@acme.test')
    resp = client.post(
        '/api/v1/equipes',
        headers=headers,
        json={'nome': ' Financeiro ', 'membros_ids': [company['bruno'].id, company['ana'].id]},
    )
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['nome'] == 'Financeiro'
    assert [member['nome'] for member in data['membros']] == ['Ana', 'Bruno']
    assert Equipe.query.count() == 2


@pytest.mark.parametrize(
    'payload, status, error',
    [
        ({}, 400, 'nome_required'),
        ({'nome': 'X', 'membros_ids': 'ana'}, 400, 'invalid_membros'),
        ({'nome': 'X', 'membros_ids': [9999]}, 404, 'usuario_not_found'),
        (['X'], 400, 'invalid_payload'),
    ],
)
def test_team_creation_errors(client, company, payload, status, error):
    headers = _auth(client, 'owner@acme.test')
    resp = client.post('/api/v1/equipes', headers=headers, json=payload)
    assert resp.status_code == status
    assert resp.get_json()['error'] == error
    assert Equipe.query.count() == 1


def test_collaborators_cannot_change_teams(client, company):
    headers = _auth(client, 'ana@acme.test')
    team_id = company['team'].id
    assert client.post('/api/v1/equipes', headers=headers, json={'nome': 'X'}).status_code == 403
    assert client.patch(f'/api/v1/equipes/{team_id}', headers=headers, json={'nome': 'X'}).status_code == 403
    assert client.delete(f'/api/v1/equipes/{team_id}', headers=headers).status_code == 403
    resp = client.post(f'/api/v1/equipes/{team_id}/membros', headers=headers, json={'usuarios_ids': [company['bruno'].id]})
    assert resp.status_code == 403


def test_rename_and_replace_members(client, company):
    headers = _auth(client, 'manager@acme.test')
    url = f"/api/v1/equipes/{company['team'].id}"

    resp = client.patch(url, headers=headers, json={'nome': 'Atendimento', 'membros_ids': [company['bruno'].id]})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['nome'] == 'Atendimento'
    assert [member['nome'] for member in data['membros']] == ['Bruno']

    assert client.patch(url, headers=headers, json={'nome': ' '}).get_json()['error'] == 'nome_cannot_be_empty'


def test_adding_member_grants_team_task_visibility(client, company, team_task):
    bruno = _auth(client, 'bruno@acme.test')
    assert _titles(client, bruno) == []

    manager = _auth(client, 'manager@acme.test')
    url = f"/api/v1/equipes/{company['team'].id}/membros"
    resp = client.post(url, headers=manager, json={'usuarios_ids': [company['bruno'].id, company['ana'].id]})
    assert resp.status_code == 200
    assert [member['nome'] for member in resp.get_json()['membros']] == ['Ana', 'Bruno']

    assert _titles(client, bruno) == ['Plantão']


def test_removing_member_revokes_team_task_visibility(client, company, team_task):
    ana = _auth(client, 'ana@acme.test')
    assert _titles(client, ana) == ['Plantão']

    manager = _auth(client, 'manager@acme.test')
    url = f"/api/v1/equipes/{company['team'].id}/membros/{company['ana'].id}"
    resp = client.delete(url, headers=manager)
    assert resp.status_code == 200
    assert resp.get_json()['membros'] == []

    assert _titles(client, ana) == []
    assert client.delete(url, headers=manager).get_json()['error'] == 'membro_not_found'


def test_add_members_requires_users(client, company):
    headers = _auth(client, 'manager@acme.test')
    url = f"/api/v1/equipes/{company['team'].id}/membros"
    assert client.post(url, headers=headers, json={}).get_json()['error'] == 'usuarios_required'
    resp = client.post(url, headers=headers, json={'usuarios_ids': [9999]})
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'usuario_not_found'


def test_delete_team_drops_its_assignments(client, company, team_task):
    headers = _auth(client, 'owner@acme.test')
    assert client.delete(f"/api/v1/equipes/{company['team'].id}", headers=headers).status_code == 204

    assert Equipe.query.count() == 0
    assert TaskResponsavel.query.count() == 0
    assert db.session.get(Task, team_task.id) is not None
    assert _titles(client, _auth(client, 'ana@acme.test')) == []
    assert _titles(client, headers) == ['Plantão']


def test_team_changes_invalidate_dashboards(client, company):
    headers = _auth(client, 'manager@acme.test')
    with patch('gestor.controllers.routes.blueprints.equipes.invalidate_company_dashboards') as invalidate:
        client.post('/api/v1/equipes', headers=headers, json={'nome': 'Financeiro'})
        client.patch(f"/api/v1/equipes/{company['team'].id}", headers=headers, json={'nome': 'Atendimento'})
        client.post(
            f"/api/v1/equipes/{company['team'].id}/membros",
            headers=headers,
            json={'usuarios_ids': [company['bruno'].id]},
        )
        client.delete(f"/api/v1/equipes/{company['team'].id}/membros/{company['bruno'].id}", headers=headers)
        client.delete(f"/api/v1/equipes/{company['team'].id}", headers=headers)

    assert invalidate.call_count == 5
    assert {call.args for call in invalidate.call_args_list} == {(company['empresa'].id,)}
