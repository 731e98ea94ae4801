import logging
import threading
from datetime import datetime
from ..services.engine import JobEngine
from ..services.errors import NotFound
from ..services.schedules import build_job_data, next_occurrence
from ..storage.database import ScheduledJobModel

class CronRunner:
    """Turns due scheduled-job definitions into pending jobs."""

    def __init__(self, engine: JobEngine):
        self.engine = engine
        self.storage = engine.storage
        self._tick_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def tick(self) -> int:
        """Fire every enabled definition whose next_run_at has passed.

        A definition that fails to fire keeps its next_run_at, so the same
        occurrence is attempted again on the next tick.
        """
        if not self._tick_lock.acquire(blocking=False):
            self.logger.debug("Previous cron tick still running, skipping")
            return 0
        try:
            now = self.engine.clock()
            fired = 0
            for scheduled in self.storage.list_due_scheduled_jobs(now):
                try:
                    if self.fire(scheduled, now):
                        fired += 1
                except Exception as e:
                    self.logger.error(f"Scheduled job {scheduled.name} ({scheduled.id}) failed to trigger: {e}")
                    try:
                        self.storage.record_scheduled_failure(scheduled.id, str(e), now)
                    except Exception:
                        self.logger.exception(f"Could not record failure of scheduled job {scheduled.id}")
            return fired
        finally:
            self._tick_lock.release()

    def fire(self, scheduled: ScheduledJobModel, now: datetime) -> bool:
        queue = self.storage.get_queue(scheduled.queue_id)
        if not queue:
            raise NotFound("Queue", scheduled.queue_id)

        next_run_at = next_occurrence(scheduled.cron_expression, scheduled.timezone, now)
        job = self.storage.fire_scheduled_job(
            scheduled.id,
            scheduled.next_run_at,
            build_job_data(scheduled, queue.max_retries, now),
            {
                "last_run_at": now,
                "last_run_status": "triggered",
                "last_run_error": None,
                "next_run_at": next_run_at,
                "updated_at": now,
            },
        )
        if job is None:
            self.logger.debug(f"Scheduled job {scheduled.id} already fired by another runner")
            return False

        self.logger.info(f"Scheduled job {scheduled.name} triggered job {job.id}, next run at {next_run_at}")
        return True
