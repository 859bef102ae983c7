"""
Rotas HTTP da aplicacao Gestor de Tarefas.

A aplicacao expoe apenas a API JSON (``/api/v1``) consumida pelo frontend e
os endpoints de infraestrutura (``/health``, ``/ping``).

ARQUIVOS AUXILIARES:
    - _decorators.py: Decorators de autorizacao por papel
    - _error_handlers.py: Tratamento centralizado de erros
    - _validators.py: Validadores de entrada JSON
    - api.py: Blueprint da API JSON (tarefas, usuarios, administracao)
    - blueprints/: Blueprints de equipes, reunioes e infraestrutura
"""

from flask import Flask

from gestor.controllers.routes._error_handlers import register_error_handlers


def register_blueprints(flask_app: Flask) -> None:
    """
    Registra todos os blueprints e handlers de erro da aplicacao.

    Args:
        flask_app: Instancia da aplicacao Flask.
    """
    from gestor.controllers.routes.api import api_bp

    flask_app.register_blueprint(api_bp)

    from gestor.controllers.routes.blueprints import register_all_blueprints
    register_all_blueprints(flask_app)

    register_error_handlers(flask_app)
