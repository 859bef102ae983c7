from datetime import date, time
from unittest.mock import patch

import pytest

from gestor import db
from gestor.constants import Role
from gestor.models.tables import Reuniao, ReuniaoParticipante
from gestor.services.meetings import can_edit_meeting, can_view_meeting, visible_meetings
from gestor.services.notifications import notify_meeting_created
from gestor.utils.permissions import RoleContext


@pytest.fixture(autouse=True)
def dispatch():
    with patch('gestor.controllers.routes.blueprints.reunioes.dispatch_async') as dispatch_mock:
        yield dispatch_mock


@pytest.fixture
def client(company, app_ctx):
    return app_ctx.test_client()


def _auth(client, email):
    resp = client.post('/api/v1/auth/login', json={'email': email, 'password': 'secret'})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


def _meeting(company, titulo, creator, *participantes, dia=date(2024, 3, 4)):
    meeting = Reuniao(
        titulo=titulo,
        data_reuniao=dia,
        horario_inicio=time(9, 0),
        empresa_id=company['empresa'].id,
        criado_por=company[creator].id,
    )
    meeting.participantes.extend(participantes)
    db.session.add(meeting)
    db.session.commit()
    return meeting


@pytest.fixture
def meetings(company):
    """Kickoff with Bruno, Daily with the Suporte team, Retro created by Bruno for Ana."""
    return {
        'kickoff': _meeting(company, 'Kickoff', 'manager', ReuniaoParticipante(usuario_id=company['bruno'].id)),
        'daily': _meeting(
            company, 'Daily', 'manager', ReuniaoParticipante(equipe_id=company['team'].id), dia=date(2024, 3, 5)
        ),
        'retro': _meeting(
            company, 'Retro', 'bruno', ReuniaoParticipante(usuario_id=company['ana'].id), dia=date(2024, 3, 8)
        ),
    }


def _titles(resp):
    return [meeting['titulo'] for meeting in resp.get_json()]


# =============================================================================
# VISIBILIDADE
# =============================================================================

def test_visibility_rules(company, meetings):
    ana = company['ana'].role_context()
    bruno = company['bruno'].role_context()
    owner = company['owner'].role_context()
    ordered = [meetings['kickoff'], meetings['daily'], meetings['retro']]

    assert [m.titulo for m in visible_meetings(ana, ordered)] == ['Daily', 'Retro']
    assert [m.titulo for m in visible_meetings(bruno, ordered)] == ['Kickoff', 'Retro']
    assert [m.titulo for m in visible_meetings(owner, ordered)] == ['Kickoff', 'Daily', 'Retro']


def test_other_company_never_sees_meetings(company, meetings):
    outsider = RoleContext(role=Role.OWNER, user_id=999, company_id=company['empresa'].id + 1)
    assert not can_view_meeting(outsider, meetings['kickoff'])
    assert not can_edit_meeting(outsider, meetings['kickoff'])


def test_edit_rights(company, meetings):
    assert can_edit_meeting(company['bruno'].role_context(), meetings['retro'])
    assert not can_edit_meeting(company['ana'].role_context(), meetings['retro'])
    assert can_edit_meeting(company['manager'].role_context(), meetings['retro'])


def test_list_meetings_follows_visibility(client, meetings):
    resp = client.get('/api/v1/reunioes', headers=_auth(client, 'ana@acme.test'))
    assert resp.status_code == 200
    assert _titles(resp) == ['Daily', 'Retro']

    owner = _auth(client, 'owner@acme.test')
    assert _titles(client.get('/api/v1/reunioes', headers=owner)) == ['Kickoff', 'Daily', 'Retro']
    resp = client.get('/api/v1/reunioes?de=2024-03-05&ate=2024-03-07', headers=owner)
    assert _titles(resp) == ['Daily']
    assert client.get('/api/v1/reunioes?de=05/03/2024', headers=owner).status_code == 400


def test_get_meeting_checks_access(client, meetings):
    ana = _auth(client, 'ana@acme.test')
    assert client.get(f"/api/v1/reunioes/{meetings['daily'].id}", headers=ana).status_code == 200
    assert client.get(f"/api/v1/reunioes/{meetings['kickoff'].id}", headers=ana).status_code == 403
    assert client.get('/api/v1/reunioes/9999', headers=ana).status_code == 404

    master = _auth(client, 'master@plataforma.test')
    assert client.get('/api/v1/reunioes', headers=master).status_code == 403


# =============================================================================
# ALTERAÇÕES
# =============================================================================

def test_collaborator_schedules_meeting(client, company, dispatch):
    headers = _auth(client, 'ana@acme.test')
    resp = client.post(
        '/api/v1/reunioes',
        headers=headers,
        json={
            'titulo': 'Alinhamento',
            'data_reuniao': '2024-04-01',
            'horario_inicio': '14:30',
            'link_reuniao': 'https://meet.example.com/abc',
            'usuarios_ids': [company['bruno'].id],
            'equipes_ids': [company['team'].id],
        },
    )
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['horario_inicio'] == '14:30'
    assert data['duracao_minutos'] == 60
    assert data['criado_por'] == company['ana'].id
    assert data['participantes'] == [
        {'usuario_id': company['bruno'].id, 'nome': 'Bruno'},
        {'equipe_id': company['team'].id, 'nome': 'Suporte'},
    ]
    dispatch.assert_called_once_with(notify_meeting_created, data['id'])


@pytest.mark.parametrize(
    'payload, status, error',
    [
        ({'data_reuniao': '2024-04-01', 'horario_inicio': '14:30'}, 400, 'titulo_required'),
        ({'titulo': 'X', 'horario_inicio': '14:30'}, 400, 'data_horario_required'),
        ({'titulo': 'X', 'data_reuniao': '01/04/2024', 'horario_inicio': '14:30'}, 400, 'invalid_date_or_time'),
        ({'titulo': 'X', 'data_reuniao': '2024-04-01', 'horario_inicio': '14:30', 'duracao_minutos': 0}, 400,
         'invalid_duracao'),
        ({'titulo': 'X', 'data_reuniao': '2024-04-01', 'horario_inicio': '14:30'}, 400, 'participantes_required'),
        ({'titulo': 'X', 'data_reuniao': '2024-04-01', 'horario_inicio': '14:30', 'usuarios_ids': [9999]}, 404,
         'usuario_not_found'),
        ({'titulo': 'X', 'data_reuniao': '2024-04-01', 'horario_inicio': '14:30', 'equipes_ids': [9999]}, 404,
         'equipe_not_found'),
    ],
)
def test_meeting_creation_errors(client, company, dispatch, payload, status, error):
    headers = _auth(client, 'manager@acme.test')
    resp = client.post('/api/v1/reunioes', headers=headers, json=payload)
    assert resp.status_code == status
    assert resp.get_json()['error'] == error
    assert Reuniao.query.count() == 0
    dispatch.assert_not_called()


def test_creator_updates_meeting(client, company, meetings):
    headers = _auth(client, 'bruno@acme.test')
    url = f"/api/v1/reunioes/{meetings['retro'].id}"
    resp = client.patch(
        url,
        headers=headers,
        json={'horario_inicio': '16:00', 'duracao_minutos': 30, 'equipes_ids': [company['team'].id]},
    )
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['titulo'] == 'Retro'
    assert data['horario_inicio'] == '16:00'
    assert data['duracao_minutos'] == 30
    assert data['participantes'] == [{'equipe_id': company['team'].id, 'nome': 'Suporte'}]
    assert ReuniaoParticipante.query.count() == 3


def test_participant_cannot_edit_meeting(client, meetings):
    headers = _auth(client, 'ana@acme.test')
    url = f"/api/v1/reunioes/{meetings['retro'].id}"
    assert client.patch(url, headers=headers, json={'titulo': 'Outra'}).status_code == 403
    assert client.delete(url, headers=headers).status_code == 403


def test_manager_deletes_meeting(client, meetings):
    headers = _auth(client, 'manager@acme.test')
    assert client.delete(f"/api/v1/reunioes/{meetings['retro'].id}", headers=headers).status_code == 204
    assert Reuniao.query.count() == 2
    assert ReuniaoParticipante.query.count() == 2
