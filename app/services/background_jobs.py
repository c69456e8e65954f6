"""
Background Jobs Service
Periodically purges expired sessions from the session store

Features:
- Scheduled jobs using APScheduler
- Configurable timezone and interval
- Job statistics for the health endpoint
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
import logging
import os
from typing import Dict, Optional
from pytz import timezone

from app.services.session_store import SessionStore
from app.utils.audit import AuditSink

logger = logging.getLogger(__name__)


class BackgroundJobService:
    """
    Manages scheduled background jobs

    Jobs:
    - Sweep expired sessions (every SESSION_SWEEP_MINUTES, default 15)

    Usage:
        jobs = BackgroundJobService(session_store, audit_sink)
        jobs.start()  # Start all scheduled jobs
        jobs.shutdown()  # Stop all jobs gracefully
    """

    def __init__(self, session_store: SessionStore, audit: AuditSink):
        """Initialize scheduler with timezone configuration"""
        tz_name = os.getenv("TIMEZONE", "UTC")
        self.timezone = timezone(tz_name)
        self.scheduler = BackgroundScheduler(timezone=self.timezone)
        self.session_store = session_store
        self.audit = audit

        # Track job execution statistics
        self.job_stats = {
            'sweep_sessions': {'last_run': None, 'status': 'idle', 'error': None, 'purged': 0},
        }

    def start(self):
        """
        Start all scheduled background jobs

        Jobs are only started if ENABLE_BACKGROUND_JOBS=true in environment
        """
        if os.getenv("ENABLE_BACKGROUND_JOBS", "true").lower() != "true":
            logger.info("Background jobs disabled via ENABLE_BACKGROUND_JOBS environment variable")
            return

        minutes = int(os.getenv("SESSION_SWEEP_MINUTES", "15"))
        self.scheduler.add_job(
            func=self.sweep_expired_sessions,
            trigger=IntervalTrigger(minutes=minutes, timezone=self.timezone),
            id='sweep_sessions',
            name='Purge expired sessions',
            replace_existing=True,
            max_instances=1  # Prevent concurrent runs
        )
        logger.info(f"Scheduled: Purge expired sessions (every {minutes} min)")

        self.scheduler.start()
        logger.info(f"Background jobs started (timezone: {self.timezone}, jobs: {len(self.scheduler.get_jobs())})")

    def shutdown(self):
        """Shutdown scheduler gracefully"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Background jobs stopped gracefully")

    def get_job_stats(self) -> Dict:
        """Statistics for all jobs including next run times"""
        jobs_info = []
        for job in self.scheduler.get_jobs():
            stats = self.job_stats.get(job.id, {})
            jobs_info.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'last_run': stats.get('last_run'),
                'status': stats.get('status', 'idle'),
                'error': stats.get('error')
            })

        return {
            'scheduler_running': self.scheduler.running,
            'timezone': str(self.timezone),
            'jobs': jobs_info
        }

    def sweep_expired_sessions(self) -> Optional[int]:
        """Drop sessions whose access token has expired"""
        job_id = 'sweep_sessions'
        self.job_stats[job_id]['status'] = 'running'
        self.job_stats[job_id]['error'] = None
        start_time = datetime.now()

        try:
            purged = self.session_store.purge_expired()
            elapsed = (datetime.now() - start_time).total_seconds()
            logger.info(f"[{job_id}] Completed in {elapsed:.2f}s - purged {purged} sessions")

            self.job_stats[job_id]['status'] = 'success'
            self.job_stats[job_id]['purged'] = purged
            self.audit.emit("session.sweep", purged=purged, remaining=len(self.session_store))
            return purged

        except Exception as e:
            logger.error(f"[{job_id}] Failed: {str(e)}")
            self.job_stats[job_id]['status'] = 'failed'
            self.job_stats[job_id]['error'] = str(e)
            return None

        finally:
            self.job_stats[job_id]['last_run'] = datetime.now().isoformat()
