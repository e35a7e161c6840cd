"""arq worker settings module.

Import path for arq CLI: arq bookpost.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from bookpost.config import get_settings
from bookpost.workers.jobs import reconcile_abandoned_sessions, settle_leaderboards, shutdown, startup


class WorkerSettings:
    """arq worker settings for session reconciliation and leaderboard settlement."""

    functions = [reconcile_abandoned_sessions, settle_leaderboards]
    cron_jobs = [
        cron(reconcile_abandoned_sessions, second=0, run_at_startup=True, unique=True),
        cron(settle_leaderboards, second=30, run_at_startup=True, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 120
    allow_abort_jobs = True
