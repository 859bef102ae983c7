"""
Handlers de erro centralizados para a aplicacao.

Todas as respostas de erro seguem o formato ``{error, status, message}``.

Error Handlers:
    - InvalidRule: Regra de recorrencia invalida (400)
    - InvalidRole / MissingCompanyContext: Contexto de papel invalido (403)
    - 404, 405: Recurso ou metodo inexistente
    - 429: Rate limit excedido
    - 500 / SQLAlchemyError: Erros internos, com rollback da sessao
"""

from flask import Flask, Response, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from gestor import db
from gestor.services.recurrence import InvalidRule
from gestor.utils.permissions import InvalidRole, MissingCompanyContext


# =============================================================================
# FUNCOES AUXILIARES
# =============================================================================

def api_error_response(error: str, status_code: int, message: str | None = None) -> tuple[Response, int]:
    """
    Cria resposta JSON padronizada para erros de API.

    Args:
        error: Tipo do erro (ex: "not_found", "forbidden").
        status_code: Codigo HTTP do erro.
        message: Mensagem descritiva opcional.

    Returns:
        tuple[Response, int]: Resposta JSON e codigo de status.
    """
    response_data = {
        "error": error,
        "status": status_code,
    }
    if message:
        response_data["message"] = message

    return jsonify(response_data), status_code


# =============================================================================
# REGISTRO DE ERROR HANDLERS
# =============================================================================

def register_error_handlers(app: Flask) -> None:
    """
    Registra todos os error handlers na aplicacao Flask.

    Args:
        app: Instancia da aplicacao Flask.
    """

    @app.errorhandler(InvalidRule)
    def handle_invalid_rule(e):
        return api_error_response("invalid_rule", 400, str(e))

    @app.errorhandler(InvalidRole)
    def handle_invalid_role(e):
        app.logger.warning("Papel invalido em %s %s: %s", request.method, request.path, e)
        return api_error_response("invalid_role", 403, str(e))

    @app.errorhandler(MissingCompanyContext)
    def handle_missing_company(e):
        app.logger.warning("Contexto sem empresa em %s %s: %s", request.method, request.path, e)
        return api_error_response("missing_company_context", 403, str(e))

    @app.errorhandler(404)
    def handle_not_found(e):
        return api_error_response("not_found", 404, "Resource not found")

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return api_error_response("method_not_allowed", 405)

    @app.errorhandler(429)
    def handle_rate_limit(e):
        """Registra excecao e retorna mensagem apropriada."""
        from gestor.utils.logging_config import log_exception
        log_exception(e, request)

        return api_error_response(
            "rate_limit_exceeded",
            429,
            "Too many requests. Please wait before trying again."
        )

    @app.errorhandler(500)
    def handle_internal_error(e):
        """Registra excecao, faz rollback e retorna erro generico."""
        from gestor.utils.logging_config import log_exception
        log_exception(e, request)

        db.session.rollback()

        return api_error_response(
            "internal_error",
            500,
            "An unexpected error occurred. Please try again later."
        )

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        """Registra excecao e faz rollback da transacao falha."""
        from gestor.utils.logging_config import log_exception
        log_exception(e, request)

        db.session.rollback()

        return api_error_response(
            "database_error",
            500,
            "A database error occurred. Please try again."
        )
