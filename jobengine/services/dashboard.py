from ..models.dashboard import DashboardSummary
from ..models.job import Job
from ..models.schedule import ScheduledJob
from ..storage.database import Storage
from .queues import QueueRegistry

RECENT_LIMIT = 10

class Dashboard:
    """Read-only rollups across queues, jobs and scheduled jobs."""

    def __init__(self, storage: Storage, queues: QueueRegistry):
        self.storage = storage
        self.queues = queues

    def summary(self, limit: int = RECENT_LIMIT) -> DashboardSummary:
        queue_stats = [q.stats for q in self.queues.list_queues()]

        return DashboardSummary(
            queues=queue_stats,
            total_pending=sum(s.pending for s in queue_stats),
            total_active=sum(s.active for s in queue_stats),
            total_completed=sum(s.completed for s in queue_stats),
            total_failed=sum(s.failed for s in queue_stats),
            total_delayed=sum(s.delayed for s in queue_stats),
            active_scheduled_jobs=self.storage.count_enabled_scheduled_jobs(),
            recent_failed_jobs=[
                Job.model_validate(j) for j in self.storage.list_recent_failed_jobs(limit)
            ],
            upcoming_scheduled_runs=[
                ScheduledJob.model_validate(s) for s in self.storage.list_upcoming_scheduled_jobs(limit)
            ],
        )
