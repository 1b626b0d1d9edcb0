"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

from core.config import settings

# Schedule configuration
beat_schedule = {
    # Daily readiness -> load -> session adjustment for every active athlete.
    # Runs after the overnight wearable syncs have landed.
    'daily-readiness-pipeline': {
        'task': 'tasks.run_daily_pipeline',
        'schedule': crontab(hour=settings.DAILY_PIPELINE_HOUR_UTC, minute=0),
    },
}
