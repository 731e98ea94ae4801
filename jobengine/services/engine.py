from typing import Optional
from ..config.settings import Settings
from ..storage.database import Storage, utcnow
from .dashboard import Dashboard
from .jobs import JobManager
from .queues import QueueRegistry
from .schedules import ScheduledJobRegistry

class JobEngine:
    """The services sharing one store and one clock."""

    def __init__(self, storage: Storage, clock=utcnow, max_backoff_ms: Optional[int] = None):
        self.storage = storage
        self.clock = clock
        self.queues = QueueRegistry(storage, clock=clock)
        self.jobs = JobManager(storage, clock=clock, max_backoff_ms=max_backoff_ms)
        self.schedules = ScheduledJobRegistry(storage, clock=clock)
        self.dashboard = Dashboard(storage, self.queues)

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobEngine":
        return cls(Storage(settings.database_url), max_backoff_ms=settings.max_backoff_ms)
