from celery import Celery

from core.env import env_str
from services.schedule_loader import as_celery_schedule, load_schedule_config

CELERY_TIMEZONE = env_str("CELERY_TIMEZONE", "UTC") or "UTC"
CELERY_BROKER_URL = env_str("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = env_str("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

app = Celery(
    "memberships",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["jobs.tasks"],
)

app.conf.update(
    task_track_started=True,
    timezone=CELERY_TIMEZONE,
    beat_schedule={},
)

yaml_timezone, yaml_entries, _ = load_schedule_config()
schedule_from_yaml = as_celery_schedule(yaml_entries) if yaml_entries else {}
if schedule_from_yaml:
    app.conf.beat_schedule.update(schedule_from_yaml)
if yaml_timezone:
    app.conf.update(timezone=yaml_timezone)
current_tz = getattr(app.conf, "timezone", None) or "UTC"
app.conf.enable_utc = str(current_tz).upper() == "UTC"
