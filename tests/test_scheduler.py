from apscheduler.schedulers.background import BackgroundScheduler

from gestor import app
from gestor.scheduler import register_jobs, run_in_app_context
from gestor.services.notifications import send_overdue_notifications


def test_register_jobs_adds_daily_jobs():
    target = register_jobs(app, BackgroundScheduler(timezone='America/Sao_Paulo'))
    jobs = {job.id: job for job in target.get_jobs()}

    assert set(jobs) == {
        'generate_recurring_tasks',
        'task_reminder_today',
        'task_overdue_1day',
        'task_overdue_5days',
    }
    assert str(jobs['generate_recurring_tasks'].trigger) == "cron[hour='0', minute='5']"
    assert str(jobs['task_reminder_today'].trigger) == "cron[hour='8', minute='0']"
    assert jobs['task_overdue_5days'].args[1:] == ('task_overdue_5days', send_overdue_notifications, 5)
    assert all(job.max_instances == 1 and job.coalesce for job in jobs.values())


def test_job_failures_are_contained():
    def _boom():
        raise RuntimeError('falhou')

    assert run_in_app_context(app, 'boom', _boom) is None
    assert run_in_app_context(app, 'ok', lambda value: value * 2, 21) == 42
