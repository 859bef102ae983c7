"""
Decorators de autorizacao para rotas da API.

Devem ser aplicados abaixo de ``token_required``, que popula ``g.api_user``.

Decorators Disponiveis:
    - manager_required: Restringe a proprietarios e gestores da empresa
    - master_required: Restringe a usuarios master
"""

from functools import wraps

from flask import g

from gestor.controllers.routes._error_handlers import api_error_response
from gestor.utils.permissions import can_manage_company, is_master


def manager_required(fn):
    """Permite apenas quem administra tarefas e usuarios da propria empresa."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not can_manage_company(g.api_user.role_context()):
            return api_error_response("forbidden", 403, "Apenas proprietarios e gestores")
        return fn(*args, **kwargs)

    return wrapper


def master_required(fn):
    """Permite apenas usuarios master."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not is_master(g.api_user.role_context()):
            return api_error_response("forbidden", 403, "Apenas usuarios master")
        return fn(*args, **kwargs)

    return wrapper
