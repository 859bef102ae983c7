"""
Constantes centralizadas da aplicação.

Este módulo centraliza enumerações e constantes utilizadas em toda a
aplicação, evitando magic strings e facilitando manutenção.

Seções:
    - PAPÉIS: Tipos de usuário e permissões
    - TAREFAS: Status, prioridades e tipos de tarefa
    - CONFIGURAÇÕES: Chaves da tabela configuracoes_sistema
    - CACHE: Prefixos de chaves de cache
"""

from enum import Enum


# =============================================================================
# PAPÉIS DE USUÁRIO
# =============================================================================

class Role(str, Enum):
    """Closed set of user roles."""

    MASTER = "master"
    OWNER = "proprietario"
    MANAGER = "gestor"
    COLLABORATOR = "colaborador"


# Papéis que enxergam todas as tarefas da empresa
COMPANY_WIDE_ROLES = frozenset({Role.OWNER, Role.MANAGER})


# =============================================================================
# TAREFAS
# =============================================================================

class TaskStatus(str, Enum):
    """Enumeration of possible task states."""

    CREATED = "criada"
    ACCEPTED = "aceita"
    EXECUTING = "executando"
    COMPLETED = "concluida"
    APPROVED = "aprovada"


# Status considerados "finalizados" (nunca atrasados)
FINISHED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.APPROVED})

# Status em aberto usados pelos lembretes e avisos de atraso
OPEN_STATUSES = frozenset({TaskStatus.CREATED, TaskStatus.ACCEPTED, TaskStatus.EXECUTING})


class TaskPriority(str, Enum):
    """Enumeration of task priority levels."""

    LOW = "baixa"
    MEDIUM = "media"
    HIGH = "alta"
    URGENT = "urgente"


class TaskType(str, Enum):
    """Personal tasks versus company work."""

    PERSONAL = "pessoal"
    PROFESSIONAL = "profissional"


class AssigneeKind(str, Enum):
    """Kind of responsible attached to a task."""

    USER = "usuario"
    TEAM = "equipe"


# Rótulos curtos dos dias da semana (domingo = 0)
WEEKDAY_LABELS = ("dom", "seg", "ter", "qua", "qui", "sex", "sáb")


# =============================================================================
# CONFIGURAÇÕES DO SISTEMA
# =============================================================================

# Chave com a URL do webhook do n8n
SETTING_WEBHOOK_URL = "n8n_webhook_mensagens"

# Chaves liga/desliga das notificações (valor 'true' ativa)
SETTING_NOTIFY_TASK_CREATED = "notif_tarefa_criada_ativa"
SETTING_NOTIFY_REMINDER_TODAY = "notif_lembrete_dia_ativa"
SETTING_NOTIFY_OVERDUE_1DAY = "notif_atraso_1dia_ativa"
SETTING_NOTIFY_OVERDUE_5DAYS = "notif_atraso_5dias_ativa"


# =============================================================================
# CACHE
# =============================================================================

CACHE_KEY_DASHBOARD_PREFIX = "dashboard_stats:"
