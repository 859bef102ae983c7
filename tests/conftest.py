import os
import tempfile

# Importing any ``gestor`` module builds the app, so the environment must be
# ready before the first import.
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ['SCHEDULER_ENABLED'] = '0'
os.environ['LOGIN_RATE_LIMIT'] = '1000 per minute'
os.environ.setdefault('APP_LOG_DIR', os.path.join(tempfile.gettempdir(), 'gestor-test-logs'))

import pytest

from gestor import app, db
from gestor.constants import Role
from gestor.extensions.cache import cache
from gestor.models.tables import Empresa, Equipe, User


@pytest.fixture
def app_ctx():
    """Fresh schema and empty cache inside an application context."""
    with app.app_context():
        db.drop_all()
        db.create_all()
        cache.clear()
        yield app
        db.session.remove()


@pytest.fixture
def company(app_ctx):
    """Company with an owner, a manager, two collaborators and one team."""
    empresa = Empresa(nome_fantasia='Acme', razao_social='Acme LTDA', cnpj='00.000.000/0001-00')
    db.session.add(empresa)
    db.session.flush()

    def _user(nome, email, role):
        user = User(nome=nome, email=email, tipo_usuario=role, empresa_id=empresa.id, celular='5511999990000')
        user.set_password('secret')
        db.session.add(user)
        return user

    owner = _user('Olga Dona', 'owner@acme.test', Role.OWNER)
    manager = _user('Gil Gestor', 'manager@acme.test', Role.MANAGER)
    ana = _user('Ana', 'ana@acme.test', Role.COLLABORATOR)
    bruno = _user('Bruno', 'bruno@acme.test', Role.COLLABORATOR)
    team = Equipe(nome='Suporte', empresa=empresa)
    team.membros.append(ana)
    db.session.add(team)

    master = User(nome='Master', email='master@plataforma.test', tipo_usuario=Role.MASTER)
    master.set_password('secret')
    db.session.add(master)
    db.session.commit()

    return {
        'empresa': empresa,
        'owner': owner,
        'manager': manager,
        'ana': ana,
        'bruno': bruno,
        'team': team,
        'master': master,
    }
