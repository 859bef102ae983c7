"""
Módulo de agendamento de tarefas
Gerencia os jobs diários usando APScheduler
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
import logging
import atexit

from gestor.utils.datetime_utils import SAO_PAULO_TZ

logger = logging.getLogger(__name__)
scheduler = BackgroundScheduler(timezone=SAO_PAULO_TZ)

JOB_TIMEZONE = 'America/Sao_Paulo'


def run_in_app_context(app, job_id, func, *args):
    """Executa ``func`` dentro do contexto da aplicação registrando falhas."""
    with app.app_context():
        try:
            result = func(*args)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Erro ao executar job %s", job_id)
            return None
        logger.info("Job %s concluído: %s", job_id, result)
        return result


def register_jobs(app, target=None):
    """
    Registra os jobs diários no agendador.

    Args:
        app: Instância da aplicação Flask
        target: Agendador a usar (padrão: o agendador do módulo)
    """
    from gestor.services.notifications import (
        send_due_today_reminders,
        send_overdue_notifications,
    )
    from gestor.services.recurring_tasks import generate_recurring_tasks

    target = target or scheduler
    jobs = (
        ('generate_recurring_tasks', 'Geração de tarefas recorrentes', 0, 5,
         generate_recurring_tasks, ()),
        ('task_reminder_today', 'Lembrete de tarefas do dia', 8, 0,
         send_due_today_reminders, ()),
        ('task_overdue_1day', 'Aviso de tarefas com 1 dia de atraso', 9, 0,
         send_overdue_notifications, (1,)),
        ('task_overdue_5days', 'Aviso de tarefas com 5 dias de atraso', 9, 0,
         send_overdue_notifications, (5,)),
    )
    for job_id, name, hour, minute, func, args in jobs:
        target.add_job(
            func=run_in_app_context,
            args=(app, job_id, func, *args),
            trigger=CronTrigger(hour=hour, minute=minute, timezone=JOB_TIMEZONE),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    return target


def init_scheduler(app):
    """
    Inicializa o agendador de tarefas

    Args:
        app: Instância da aplicação Flask
    """
    if scheduler.running:
        logger.warning("Scheduler já está rodando, pulando inicialização")
        return

    register_jobs(app)

    logger.info("Iniciando scheduler...")
    scheduler.start()

    jobs = scheduler.get_jobs()
    logger.info(f"Jobs agendados: {len(jobs)}")
    for job in jobs:
        logger.info(f"  - {job.id}: {job.name} (próxima execução: {job.next_run_time})")

    atexit.register(shutdown_scheduler)


def shutdown_scheduler():
    """Desliga o scheduler de forma segura"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler desligado")
