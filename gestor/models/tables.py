"""Database models used by the application."""

import json
from datetime import date, datetime

from flask_login import UserMixin
from sqlalchemy.types import TypeDecorator, String
from werkzeug.security import generate_password_hash, check_password_hash

from gestor import db
from gestor.constants import (
    AssigneeKind,
    FINISHED_STATUSES,
    Role,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from gestor.services.recurrence import Frequency, RecurrenceRule
from gestor.utils.datetime_utils import now_naive
from gestor.utils.permissions import RoleContext, TaskRecord, is_overdue


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, name: str):
    """Enum column storing the Portuguese values instead of member names."""
    return db.Enum(
        enum_cls,
        name=name,
        values_callable=_enum_values,
        native_enum=False,
        validate_strings=True,
    )


class JsonString(TypeDecorator):
    """Store JSON as a serialized string."""
    impl = String
    cache_ok = True

    def __init__(self, length=255, **kwargs):
        super().__init__(length=length, **kwargs)

    def process_bind_param(self, value, dialect):
        """Serialize Python objects to JSON before storing in the DB."""
        if value is not None:
            return json.dumps(value)
        return None

    def process_result_value(self, value, dialect):
        """Deserialize JSON strings from the DB into Python objects."""
        if value is not None:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return None


# Association table linking users to their teams
usuarios_equipes = db.Table(
    'usuarios_equipes',
    db.Column('usuario_id', db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), primary_key=True),
    db.Column('equipe_id', db.Integer, db.ForeignKey('equipes.id', ondelete='CASCADE'), primary_key=True),
)


class Empresa(db.Model):
    """Company (tenant) registered in the system."""
    __tablename__ = 'empresas'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nome_fantasia = db.Column(db.String(150), nullable=False)
    razao_social = db.Column(db.String(200))
    cnpj = db.Column(db.String(18), unique=True)
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "nome_fantasia": self.nome_fantasia,
            "razao_social": self.razao_social,
        }

    def __repr__(self):
        return f"<Empresa {self.nome_fantasia}>"


class User(db.Model, UserMixin):
    """Application user account."""
    __tablename__ = "usuarios"
    id = db.Column(db.Integer, primary_key=True)
    nome = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    celular = db.Column(db.String(20))
    password = db.Column(db.String(255), nullable=False)
    tipo_usuario = db.Column(
        _enum_column(Role, "tipo_usuario"), nullable=False, default=Role.COLLABORATOR
    )
    empresa_id = db.Column(db.Integer, db.ForeignKey("empresas.id", ondelete="CASCADE"))
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    empresa = db.relationship("Empresa", backref=db.backref("usuarios", lazy=True))
    equipes = db.relationship(
        "Equipe", secondary=usuarios_equipes, back_populates="membros", lazy="selectin"
    )

    def set_password(self, password):
        """Hash and store the user's password."""
        self.password = generate_password_hash(password)

    def check_password(self, password):
        """Validate a plaintext password against the stored hash."""
        return check_password_hash(self.password, password)

    @property
    def is_active(self):
        """Return True if the user is marked as active."""
        return self.ativo

    def role_context(self) -> RoleContext:
        """Return the explicit authorization context of this user."""
        return RoleContext(
            role=self.tipo_usuario,
            user_id=self.id,
            company_id=self.empresa_id,
            team_ids=frozenset(team.id for team in self.equipes),
        )

    def contact_payload(self) -> dict:
        """Return the fields sent to the notification webhook."""
        return {
            "id": self.id,
            "nome": self.nome,
            "email": self.email,
            "celular": self.celular,
        }

    def __repr__(self):
        return f"<User {self.email}>"


class Equipe(db.Model):
    """Team of users inside a company."""
    __tablename__ = "equipes"
    id = db.Column(db.Integer, primary_key=True)
    nome = db.Column(db.String(100), nullable=False)
    empresa_id = db.Column(
        db.Integer, db.ForeignKey("empresas.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    empresa = db.relationship("Empresa", backref=db.backref("equipes", lazy=True))
    membros = db.relationship(
        "User", secondary=usuarios_equipes, back_populates="equipes", lazy="selectin"
    )

    def __repr__(self):
        return f"<Equipe {self.nome}>"


class Task(db.Model):
    """Task of a company, assigned to users and/or teams."""
    __tablename__ = "tarefas"

    id = db.Column(db.Integer, primary_key=True)
    titulo = db.Column(db.String(200), nullable=False)
    descricao = db.Column(db.Text)
    prioridade = db.Column(
        _enum_column(TaskPriority, "prioridade_tarefa"), nullable=False, default=TaskPriority.MEDIUM
    )
    status = db.Column(
        _enum_column(TaskStatus, "status_tarefa"), nullable=False, default=TaskStatus.CREATED
    )
    tipo_tarefa = db.Column(
        _enum_column(TaskType, "tipo_tarefa"), nullable=False, default=TaskType.PROFESSIONAL
    )
    data_conclusao = db.Column(db.Date)
    horario_conclusao = db.Column(db.Time)
    empresa_id = db.Column(
        db.Integer, db.ForeignKey("empresas.id", ondelete="CASCADE"), nullable=False
    )
    criado_por = db.Column(db.Integer, db.ForeignKey("usuarios.id"), nullable=False)
    arquivada = db.Column(db.Boolean, nullable=False, default=False)
    tarefa_recorrente_id = db.Column(
        db.Integer,
        db.ForeignKey(
            "tarefas_recorrentes.id",
            use_alter=True,
            name="fk_tarefas_tarefa_recorrente_id",
            ondelete="SET NULL",
        ),
    )
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=now_naive, onupdate=now_naive, nullable=False)

    empresa = db.relationship("Empresa")
    creator = db.relationship("User", foreign_keys=[criado_por])
    responsaveis = db.relationship(
        "TaskResponsavel",
        backref="tarefa",
        cascade="all, delete-orphan",
        order_by="TaskResponsavel.id.asc()",
        lazy="selectin",
    )
    checklists = db.relationship(
        "TaskChecklist",
        backref="tarefa",
        cascade="all, delete-orphan",
        order_by="TaskChecklist.id.asc()",
        lazy="selectin",
    )
    tempo_sessoes = db.relationship(
        "TaskTimeSession",
        backref="tarefa",
        cascade="all, delete-orphan",
        order_by="TaskTimeSession.inicio.asc()",
        lazy="selectin",
    )

    @property
    def assignee_keys(self) -> frozenset:
        """Return ``{(kind, id)}`` for every responsible of the task."""
        return frozenset(resp.key for resp in self.responsaveis)

    @property
    def minutes_spent(self) -> int:
        """Return the minutes recorded by closed time sessions."""
        return sum(session.minutos_trabalhados or 0 for session in self.tempo_sessoes)

    def as_record(self) -> TaskRecord:
        """Return the read-only snapshot consumed by the visibility rules."""
        return TaskRecord(
            id=self.id,
            status=self.status,
            due_date=self.data_conclusao,
            company_id=self.empresa_id,
            assignees=self.assignee_keys,
            archived=bool(self.arquivada),
            completed_at=self.completed_at,
            created_at=self.created_at,
            minutes_spent=self.minutes_spent,
        )

    def is_overdue(self, today: date | None = None) -> bool:
        return is_overdue(self.as_record(), today)

    def set_status(self, status: TaskStatus, when: datetime | None = None) -> None:
        """Change status keeping ``completed_at`` consistent."""
        self.status = status
        if status in FINISHED_STATUSES:
            if self.completed_at is None:
                self.completed_at = when or now_naive()
        else:
            self.completed_at = None

    def __repr__(self):
        return f"<Task {self.titulo}>"


class TaskResponsavel(db.Model):
    """Responsible (user or team) of a task."""

    __tablename__ = "tarefas_responsaveis"

    id = db.Column(db.Integer, primary_key=True)
    tarefa_id = db.Column(
        db.Integer, db.ForeignKey("tarefas.id", ondelete="CASCADE"), nullable=False
    )
    usuario_id = db.Column(db.Integer, db.ForeignKey("usuarios.id", ondelete="CASCADE"))
    equipe_id = db.Column(db.Integer, db.ForeignKey("equipes.id", ondelete="CASCADE"))
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    usuario = db.relationship("User")
    equipe = db.relationship("Equipe")

    __table_args__ = (
        db.CheckConstraint(
            "(usuario_id IS NULL) <> (equipe_id IS NULL)",
            name="ck_tarefas_responsaveis_usuario_ou_equipe",
        ),
    )

    @property
    def key(self) -> tuple:
        if self.usuario_id is not None:
            return (AssigneeKind.USER, self.usuario_id)
        return (AssigneeKind.TEAM, self.equipe_id)

    def __repr__(self):
        kind, value = self.key
        return f"<TaskResponsavel task={self.tarefa_id} {kind.value}={value}>"


class TaskChecklist(db.Model):
    """Checklist attached to a task."""

    __tablename__ = "tarefas_checklists"

    id = db.Column(db.Integer, primary_key=True)
    tarefa_id = db.Column(
        db.Integer, db.ForeignKey("tarefas.id", ondelete="CASCADE"), nullable=False
    )
    titulo = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    itens = db.relationship(
        "TaskChecklistItem",
        backref="checklist",
        cascade="all, delete-orphan",
        order_by="TaskChecklistItem.id.asc()",
        lazy="selectin",
    )


class TaskChecklistItem(db.Model):
    __tablename__ = "tarefas_checklist_itens"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("tarefas_checklists.id", ondelete="CASCADE"), nullable=False
    )
    item = db.Column(db.String(255), nullable=False)
    concluido = db.Column(db.Boolean, nullable=False, default=False)


class TaskTimeSession(db.Model):
    """Time tracking session of a user working on a task."""

    __tablename__ = "tarefas_tempo_sessoes"

    id = db.Column(db.Integer, primary_key=True)
    tarefa_id = db.Column(
        db.Integer, db.ForeignKey("tarefas.id", ondelete="CASCADE"), nullable=False
    )
    usuario_id = db.Column(
        db.Integer, db.ForeignKey("usuarios.id", ondelete="CASCADE"), nullable=False
    )
    inicio = db.Column(db.DateTime, nullable=False, default=now_naive)
    fim = db.Column(db.DateTime)
    minutos_trabalhados = db.Column(db.Integer)

    usuario = db.relationship("User")

    @property
    def is_open(self) -> bool:
        return self.fim is None

    def __repr__(self):
        return f"<TaskTimeSession task={self.tarefa_id} user={self.usuario_id}>"


class Reuniao(db.Model):
    """Meeting scheduled inside a company."""

    __tablename__ = "reunioes"

    id = db.Column(db.Integer, primary_key=True)
    titulo = db.Column(db.String(200), nullable=False)
    descricao = db.Column(db.Text)
    data_reuniao = db.Column(db.Date, nullable=False)
    horario_inicio = db.Column(db.Time, nullable=False)
    duracao_minutos = db.Column(db.Integer, nullable=False, default=60)
    link_reuniao = db.Column(db.String(255))
    empresa_id = db.Column(
        db.Integer, db.ForeignKey("empresas.id", ondelete="CASCADE"), nullable=False
    )
    criado_por = db.Column(db.Integer, db.ForeignKey("usuarios.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=now_naive, onupdate=now_naive, nullable=False)

    criador = db.relationship("User", foreign_keys=[criado_por])
    participantes = db.relationship(
        "ReuniaoParticipante",
        backref="reuniao",
        cascade="all, delete-orphan",
        order_by="ReuniaoParticipante.id.asc()",
        lazy="selectin",
    )

    # Mesma interface usada pelas regras de visibilidade das tarefas
    @property
    def company_id(self):
        return self.empresa_id

    @property
    def assignees(self) -> frozenset:
        return frozenset(part.key for part in self.participantes)

    def __repr__(self):
        return f"<Reuniao {self.titulo} {self.data_reuniao}>"


class ReuniaoParticipante(db.Model):
    """Participant (user or team) of a meeting."""

    __tablename__ = "reunioes_participantes"

    id = db.Column(db.Integer, primary_key=True)
    reuniao_id = db.Column(
        db.Integer, db.ForeignKey("reunioes.id", ondelete="CASCADE"), nullable=False
    )
    usuario_id = db.Column(db.Integer, db.ForeignKey("usuarios.id", ondelete="CASCADE"))
    equipe_id = db.Column(db.Integer, db.ForeignKey("equipes.id", ondelete="CASCADE"))

    usuario = db.relationship("User")
    equipe = db.relationship("Equipe")

    __table_args__ = (
        db.CheckConstraint(
            "(usuario_id IS NULL) <> (equipe_id IS NULL)",
            name="ck_reunioes_participantes_usuario_ou_equipe",
        ),
    )

    @property
    def key(self) -> tuple:
        if self.usuario_id is not None:
            return (AssigneeKind.USER, self.usuario_id)
        return (AssigneeKind.TEAM, self.equipe_id)


class RecurringTask(db.Model):
    """Recurrence configuration that materializes copies of a template task."""

    __tablename__ = "tarefas_recorrentes"

    id = db.Column(db.Integer, primary_key=True)
    tarefa_template_id = db.Column(
        db.Integer, db.ForeignKey("tarefas.id", ondelete="CASCADE"), nullable=False
    )
    empresa_id = db.Column(
        db.Integer, db.ForeignKey("empresas.id", ondelete="CASCADE"), nullable=False
    )
    criado_por = db.Column(db.Integer, db.ForeignKey("usuarios.id"), nullable=False)
    frequencia = db.Column(_enum_column(Frequency, "frequencia_recorrencia"), nullable=False)
    intervalo = db.Column(db.Integer, nullable=False, default=1)
    dias_semana = db.Column(JsonString(64))
    dia_mes = db.Column(db.Integer)
    data_inicio = db.Column(db.Date, nullable=False)
    data_fim = db.Column(db.Date)
    ativo = db.Column(db.Boolean, nullable=False, default=True)
    proxima_execucao = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=now_naive, onupdate=now_naive, nullable=False)

    template = db.relationship("Task", foreign_keys=[tarefa_template_id])

    def to_rule(self) -> RecurrenceRule:
        """Return the pure recurrence rule stored in this row."""
        return RecurrenceRule(
            frequency=self.frequencia,
            start_date=self.data_inicio,
            interval=self.intervalo or 1,
            weekdays=frozenset(self.dias_semana or ()),
            day_of_month=self.dia_mes,
            end_date=self.data_fim,
        )

    def apply_rule(self, rule: RecurrenceRule) -> None:
        """Copy a validated rule into the row."""
        rule.validate()
        self.frequencia = rule.frequency
        self.intervalo = rule.interval
        self.dias_semana = sorted(rule.weekdays) or None
        self.dia_mes = rule.day_of_month
        self.data_inicio = rule.start_date
        self.data_fim = rule.end_date

    def __repr__(self):
        return f"<RecurringTask {self.id} template={self.tarefa_template_id}>"


class SystemSetting(db.Model):
    """Key/value system configuration (feature toggles, webhook URL)."""

    __tablename__ = "configuracoes_sistema"

    id = db.Column(db.Integer, primary_key=True)
    chave = db.Column(db.String(100), unique=True, nullable=False)
    valor = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=now_naive, onupdate=now_naive, nullable=False)

    @classmethod
    def get_value(cls, chave: str, default: str | None = None) -> str | None:
        setting = cls.query.filter_by(chave=chave).first()
        if setting is None or setting.valor is None:
            return default
        return setting.valor

    @classmethod
    def is_enabled(cls, chave: str) -> bool:
        """Toggles are stored as the string ``'true'``."""
        return (cls.get_value(chave) or "").strip().lower() == "true"

    @classmethod
    def set_value(cls, chave: str, valor: str) -> "SystemSetting":
        setting = cls.query.filter_by(chave=chave).first()
        if setting is None:
            setting = cls(chave=chave)
            db.session.add(setting)
        setting.valor = valor
        return setting


class NotificationLog(db.Model):
    """Audit trail of webhook notifications."""

    __tablename__ = "notificacoes_logs"

    id = db.Column(db.Integer, primary_key=True)
    acao = db.Column(db.String(64), nullable=False)
    sucesso = db.Column(db.Boolean, nullable=False, default=False)
    dados_entrada = db.Column(db.JSON)
    dados_retorno = db.Column(db.JSON)
    erro = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=now_naive, nullable=False)

    def __repr__(self):
        return f"<NotificationLog {self.acao} sucesso={self.sucesso}>"
