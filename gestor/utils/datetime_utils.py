"""
Utilitários centralizados para manipulação de datas e horas.

Este módulo padroniza o tratamento de timestamps em toda a aplicação,
garantindo consistência entre diferentes modelos e serviços.

Padrões da aplicação:
    - Timezone principal: America/Sao_Paulo (SAO_PAULO_TZ)
    - Armazenamento: DATETIME sem timezone (naive)
    - Prazos de tarefas: datas de calendário, comparadas sem horário

Uso recomendado:
    # Em models
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    # Em código
    from gestor.utils.datetime_utils import now_naive, today_local, as_calendar_date
"""

from datetime import date, datetime
from zoneinfo import ZoneInfo

# Timezone principal da aplicação
SAO_PAULO_TZ = ZoneInfo("America/Sao_Paulo")


def now_naive() -> datetime:
    """
    Retorna datetime atual em São Paulo, sem timezone (naive).

    Ideal para armazenamento em colunas DATETIME,
    que não suportam timezone nativamente.

    Returns:
        datetime: Data/hora atual em São Paulo, sem tzinfo.
    """
    return datetime.now(SAO_PAULO_TZ).replace(tzinfo=None)


def now_aware() -> datetime:
    """Retorna datetime atual em São Paulo, com timezone (aware)."""
    return datetime.now(SAO_PAULO_TZ)


def today_local() -> date:
    """
    Retorna a data de hoje no horário de São Paulo.

    Usada como referência para prazos: uma tarefa vence no fim do dia
    local, independentemente do horário do servidor.
    """
    return now_aware().date()


def as_calendar_date(value) -> date | None:
    """
    Normaliza um prazo para data de calendário.

    Aceita ``date``, ``datetime`` (aware é convertido para São Paulo antes
    de truncar) ou string ``YYYY-MM-DD``/ISO. Retorna None para vazio.

    Raises:
        ValueError: string em formato inválido.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(SAO_PAULO_TZ)
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
