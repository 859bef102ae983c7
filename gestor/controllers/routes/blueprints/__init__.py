"""
Registro centralizado de blueprints por dominio.

Blueprints Disponiveis:
    - health_bp: Health checks e status
    - equipes_bp: Gestao de equipes e membros
    - reunioes_bp: Reunioes da empresa

Uso:
    from gestor.controllers.routes.blueprints import register_all_blueprints
    register_all_blueprints(app)
"""

from flask import Flask


def register_all_blueprints(app: Flask) -> None:
    """
    Registra os blueprints de dominio na aplicacao Flask.

    Args:
        app: Instancia da aplicacao Flask.
    """
    # Health - endpoints de infraestrutura (/health, /ping)
    from gestor.controllers.routes.blueprints.health import health_bp
    app.register_blueprint(health_bp)

    # Equipes - /api/v1/equipes
    from gestor.controllers.routes.blueprints.equipes import equipes_bp
    app.register_blueprint(equipes_bp)

    # Reunioes - /api/v1/reunioes
    from gestor.controllers.routes.blueprints.reunioes import reunioes_bp
    app.register_blueprint(reunioes_bp)
