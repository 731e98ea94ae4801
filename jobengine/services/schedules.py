import logging
from datetime import datetime, timezone
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from croniter import croniter
from ..models.job import Job, JobStatus
from ..models.schedule import ScheduledJob, ScheduledJobCreate, ScheduledJobUpdate
from ..storage.database import Storage, ScheduledJobModel, utcnow
from .errors import InvalidSchedule, NotFound

logger = logging.getLogger(__name__)

def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidSchedule(f"Unknown timezone: {name}")

def validate_schedule(cron_expression: str, tz_name: str) -> None:
    if not cron_expression or not croniter.is_valid(cron_expression, second_at_beginning=True):
        raise InvalidSchedule(f"Invalid cron expression: {cron_expression!r}")
    load_timezone(tz_name)

def next_occurrence(cron_expression: str, tz_name: str, after: datetime) -> datetime:
    """First occurrence strictly after ``after`` (naive UTC), evaluated in ``tz_name``."""
    zone = load_timezone(tz_name)
    start = after.replace(tzinfo=timezone.utc).astimezone(zone)
    try:
        nxt = croniter(cron_expression, start, second_at_beginning=True).get_next(datetime)
    except (ValueError, KeyError) as e:
        raise InvalidSchedule(f"Invalid cron expression {cron_expression!r}: {e}")
    return nxt.astimezone(timezone.utc).replace(tzinfo=None)

class ScheduledJobRegistry:
    """Recurring job definitions. Firing due definitions is the cron runner's job."""

    def __init__(self, storage: Storage, clock=utcnow):
        self.storage = storage
        self.clock = clock

    def _require(self, scheduled_id: str) -> ScheduledJobModel:
        scheduled = self.storage.get_scheduled_job(scheduled_id)
        if not scheduled:
            raise NotFound("Scheduled job", scheduled_id)
        return scheduled

    def create(self, queue_id: str, params: ScheduledJobCreate) -> ScheduledJob:
        if not self.storage.get_queue(queue_id):
            raise NotFound("Queue", queue_id)
        validate_schedule(params.cron_expression, params.timezone)

        now = self.clock()
        scheduled = self.storage.add_scheduled_job({
            "queue_id": queue_id,
            "name": params.name,
            "description": params.description,
            "cron_expression": params.cron_expression,
            "timezone": params.timezone,
            "data": params.data,
            "next_run_at": next_occurrence(params.cron_expression, params.timezone, now),
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Scheduled job {scheduled.name} created, next run at {scheduled.next_run_at}")
        return ScheduledJob.model_validate(scheduled)

    def get(self, scheduled_id: str) -> ScheduledJob:
        return ScheduledJob.model_validate(self._require(scheduled_id))

    def list(self, queue_id: str) -> List[ScheduledJob]:
        return [ScheduledJob.model_validate(s) for s in self.storage.list_scheduled_jobs(queue_id)]

    def update(self, scheduled_id: str, params: ScheduledJobUpdate) -> ScheduledJob:
        existing = self._require(scheduled_id)
        updates = params.model_dump(exclude_none=True)

        cron_expression = updates.get("cron_expression", existing.cron_expression)
        tz_name = updates.get("timezone", existing.timezone)
        if "cron_expression" in updates or "timezone" in updates:
            validate_schedule(cron_expression, tz_name)

        is_enabled = updates.get("is_enabled", existing.is_enabled)
        schedule_changed = (
            cron_expression != existing.cron_expression
            or tz_name != existing.timezone
            or (is_enabled and not existing.is_enabled)
        )
        # a disabled definition keeps its next_run_at frozen until re-enabled
        if schedule_changed and is_enabled:
            updates["next_run_at"] = next_occurrence(cron_expression, tz_name, self.clock())

        updates["updated_at"] = self.clock()
        scheduled = self.storage.update_scheduled_job(scheduled_id, updates)
        return ScheduledJob.model_validate(scheduled)

    def delete(self, scheduled_id: str) -> None:
        if not self.storage.delete_scheduled_job(scheduled_id):
            raise NotFound("Scheduled job", scheduled_id)

    def trigger(self, scheduled_id: str) -> Job:
        """Enqueue one run right now, outside the cron cadence."""
        scheduled = self._require(scheduled_id)
        queue = self.storage.get_queue(scheduled.queue_id)
        if not queue:
            raise NotFound("Queue", scheduled.queue_id)

        now = self.clock()
        job = self.storage.add_job(build_job_data(scheduled, queue.max_retries, now))
        logger.info(f"Manually triggered scheduled job {scheduled.name}")
        return Job.model_validate(job)

def build_job_data(scheduled: ScheduledJobModel, max_retries: int, now: datetime) -> dict:
    return {
        "queue_id": scheduled.queue_id,
        "name": scheduled.name,
        "data": scheduled.data or {},
        "priority": 0,
        "max_attempts": max_retries + 1,
        "status": JobStatus.PENDING.value,
        "created_at": now,
        "updated_at": now,
    }
