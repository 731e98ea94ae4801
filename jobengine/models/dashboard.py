from typing import List
from pydantic import BaseModel, Field
from .job import Job
from .queue import QueueStats
from .schedule import ScheduledJob

class DashboardSummary(BaseModel):
    queues: List[QueueStats] = Field(default_factory=list)
    total_pending: int = 0
    total_active: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_delayed: int = 0
    active_scheduled_jobs: int = 0
    recent_failed_jobs: List[Job] = Field(default_factory=list)
    upcoming_scheduled_runs: List[ScheduledJob] = Field(default_factory=list)
