"""
Blueprint para health checks e endpoints de infraestrutura.

Rotas:
    - GET /health: Verifica banco de dados e agendador
    - GET /ping: Keep-alive leve, sem acesso ao ORM
"""

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gestor import db, limiter
from gestor.utils.datetime_utils import now_aware


# =============================================================================
# BLUEPRINT DEFINITION
# =============================================================================

health_bp = Blueprint('health', __name__)


# =============================================================================
# ROTAS
# =============================================================================

@health_bp.route("/ping")
@limiter.exempt  # Health check - nao aplica rate limit para evitar falsos positivos
def ping():
    """
    Endpoint leve para monitoramento externo.

    Returns:
        204: Aplicacao respondendo
    """
    return ("", 204)


@health_bp.route("/health")
@limiter.exempt
def health():
    """
    Verifica dependencias da aplicacao.

    Returns:
        200: Banco acessivel
        503: Falha ao consultar o banco
    """
    from gestor.scheduler import scheduler

    database_ok = True
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Health check: banco indisponivel")
        database_ok = False

    payload = {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "scheduler": scheduler.running,
        "timestamp": now_aware().isoformat(),
    }
    return jsonify(payload), 200 if database_ok else 503
