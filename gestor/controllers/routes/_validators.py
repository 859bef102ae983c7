"""
Validadores de entrada das rotas JSON.

Funcoes de Validacao:
    - json_object: Corpo da requisicao como objeto JSON
    - parse_date: Data no formato YYYY-MM-DD
    - parse_time: Horario no formato HH:MM
    - parse_ids: Lista de identificadores inteiros
"""

from datetime import datetime

from flask import request


def json_object() -> dict | None:
    """
    Retorna o corpo JSON da requisicao como dict.

    Returns:
        dict | None: ``{}`` quando nao ha corpo, None quando o corpo nao
        e um objeto (lista, numero, string).
    """
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def parse_date(raw: str | None):
    """Return a date from YYYY-MM-DD string or raise ValueError."""

    if raw is None:
        return None
    return datetime.strptime(raw, "%Y-%m-%d").date()


def parse_time(raw: str | None):
    """Return a time from HH:MM string or raise ValueError."""

    if raw is None:
        return None
    return datetime.strptime(raw, "%H:%M").time()


def parse_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("expected a list")
    return [int(value) for value in raw]
