import logging
from datetime import timedelta
from typing import Any, List, Optional
from ..models.job import Job, JobCreate, JobListQuery, JobStatus
from ..models.queue import BackoffStrategy
from ..storage.database import Storage, JobModel, QueueModel, utcnow
from .backoff import compute_retry_delay
from .errors import InvalidState, JobEngineError, NotFound, StateConflict

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_MS = 5000

class JobManager:
    """Owns every job status transition.

    Transitions are conditional updates on the current status; a caller that
    loses a race gets ``StateConflict`` instead of overwriting the winner.
    """

    def __init__(self, storage: Storage, clock=utcnow, max_backoff_ms: Optional[int] = None):
        self.storage = storage
        self.clock = clock
        self.max_backoff_ms = max_backoff_ms

    def _require(self, job_id: str) -> JobModel:
        job = self.storage.get_job(job_id)
        if not job:
            raise NotFound("Job", job_id)
        return job

    def _require_queue(self, queue_id: str) -> QueueModel:
        queue = self.storage.get_queue(queue_id)
        if not queue:
            raise NotFound("Queue", queue_id)
        return queue

    def _conflict(self, job_id: str, action: str) -> JobEngineError:
        job = self.storage.get_job(job_id)
        if not job:
            return NotFound("Job", job_id)
        return StateConflict(f"Cannot {action} job {job_id} in state {job.status}")

    # ---------- creation & queries ----------

    def enqueue(self, queue_id: str, params: JobCreate) -> Job:
        queue = self._require_queue(queue_id)
        now = self.clock()
        delayed = params.delay_ms > 0

        job = self.storage.add_job({
            "queue_id": queue.id,
            "name": params.name,
            "data": params.data,
            "priority": params.priority,
            # one initial attempt plus the queue's retries
            "max_attempts": queue.max_retries + 1,
            "status": (JobStatus.DELAYED if delayed else JobStatus.PENDING).value,
            "delay_until": now + timedelta(milliseconds=params.delay_ms) if delayed else None,
            "created_at": now,
            "updated_at": now,
        })
        logger.debug(f"Job {job.id} ({job.name}) enqueued on {queue.name} as {job.status}")
        return Job.model_validate(job)

    def get_job(self, job_id: str) -> Job:
        return Job.model_validate(self._require(job_id))

    def list_jobs(self, queue_id: str, query: Optional[JobListQuery] = None) -> List[Job]:
        query = query or JobListQuery()
        self._require_queue(queue_id)
        jobs = self.storage.list_jobs(
            queue_id,
            status=query.status.value if query.status else None,
            offset=(query.page - 1) * query.page_size,
            limit=query.page_size,
        )
        return [Job.model_validate(job) for job in jobs]

    # ---------- dispatch transitions ----------

    def mark_active(self, job_id: str) -> Job:
        """Claim a pending job. Exactly one of several racing callers succeeds."""
        if not self.storage.claim_job(job_id, self.clock()):
            raise self._conflict(job_id, "activate")
        return self.get_job(job_id)

    def mark_completed(self, job_id: str, result: Any = None) -> Job:
        now = self.clock()
        ok = self.storage.compare_and_set_job(job_id, [JobStatus.ACTIVE], {
            "status": JobStatus.COMPLETED.value,
            "result": result,
            "completed_at": now,
            "progress": 100,
            "updated_at": now,
        })
        if not ok:
            raise self._conflict(job_id, "complete")
        return self.get_job(job_id)

    def mark_failed(self, job_id: str, error: str, stack_trace: Optional[str] = None) -> Job:
        """Record a handler failure and either schedule a retry or fail the job for good."""
        job = self._require(job_id)
        if job.status != JobStatus.ACTIVE.value:
            raise StateConflict(f"Cannot fail job {job_id} in state {job.status}")

        now = self.clock()
        if job.attempts < job.max_attempts:
            queue = self.storage.get_queue(job.queue_id)
            delay_ms = compute_retry_delay(
                queue.backoff if queue else BackoffStrategy.FIXED,
                queue.retry_delay_ms if queue else DEFAULT_RETRY_DELAY_MS,
                job.attempts,
                max_delay_ms=self.max_backoff_ms,
            )
            # delay_until must land after the status change
            delay_ms = max(delay_ms, 1)
            updates = {
                "status": JobStatus.DELAYED.value,
                "error": error,
                "stack_trace": stack_trace,
                "delay_until": now + timedelta(milliseconds=delay_ms),
                "updated_at": now,
            }
            logger.info(f"Job {job_id} failed (attempt {job.attempts}/{job.max_attempts}), "
                        f"retrying in {delay_ms}ms")
        else:
            updates = {
                "status": JobStatus.FAILED.value,
                "error": error,
                "stack_trace": stack_trace,
                "failed_at": now,
                "updated_at": now,
            }
            logger.warning(f"Job {job_id} failed permanently after {job.attempts} attempt(s)")

        # attempts were read above; the status guard keeps that read valid
        if not self.storage.compare_and_set_job(job_id, [JobStatus.ACTIVE], updates):
            raise self._conflict(job_id, "fail")
        return self.get_job(job_id)

    def update_progress(self, job_id: str, progress: int) -> Job:
        progress = min(100, max(0, int(progress)))
        ok = self.storage.compare_and_set_job(
            job_id,
            [JobStatus.PENDING, JobStatus.DELAYED, JobStatus.ACTIVE],
            {"progress": progress, "updated_at": self.clock()},
        )
        if not ok:
            raise self._conflict(job_id, "update progress of")
        return self.get_job(job_id)

    def promote_delayed(self) -> int:
        """Move every delayed job whose delay has elapsed back to pending."""
        count = self.storage.promote_delayed_jobs(self.clock())
        if count:
            logger.debug(f"Promoted {count} delayed jobs to pending")
        return count

    def fail_stale_active(self, timeout_seconds: float) -> int:
        """Fail jobs that have been active longer than ``timeout_seconds``."""
        cutoff = self.clock() - timedelta(seconds=timeout_seconds)
        failed = 0
        for job in self.storage.list_stale_active_jobs(cutoff):
            try:
                self.mark_failed(job.id, f"Job exceeded timeout of {timeout_seconds:g}s")
                failed += 1
            except (InvalidState, NotFound):
                # finished or was cleared between the scan and the update
                continue
        if failed:
            logger.warning(f"Failed {failed} job(s) stuck in active state")
        return failed

    # ---------- operator actions ----------

    def retry(self, job_id: str, reset_attempts: bool = False) -> Job:
        job = self._require(job_id)
        if job.status != JobStatus.FAILED.value:
            raise InvalidState(f"Can only retry failed jobs (job {job_id} is {job.status})")

        updates = {
            "status": JobStatus.PENDING.value,
            "error": None,
            "stack_trace": None,
            "failed_at": None,
            "processed_at": None,
            "updated_at": self.clock(),
        }
        if reset_attempts:
            updates["attempts"] = 0
        elif job.attempts >= job.max_attempts:
            updates["max_attempts"] = job.attempts + 1

        if not self.storage.compare_and_set_job(job_id, [JobStatus.FAILED], updates):
            raise self._conflict(job_id, "retry")
        logger.info(f"Job {job_id} queued for retry")
        return self.get_job(job_id)

    def retry_all_failed(self, queue_id: str) -> int:
        self._require_queue(queue_id)
        count = self.storage.requeue_failed_jobs(queue_id, self.clock())
        logger.info(f"Retrying {count} failed jobs in queue {queue_id}")
        return count

    def cancel(self, job_id: str) -> None:
        """Remove a job that has not started. Active and terminal jobs are refused."""
        job = self._require(job_id)
        if job.status not in (JobStatus.PENDING.value, JobStatus.DELAYED.value):
            raise InvalidState(f"Can only cancel pending or delayed jobs (job {job_id} is {job.status})")
        if not self.storage.delete_job_if(job_id, [JobStatus.PENDING, JobStatus.DELAYED]):
            raise self._conflict(job_id, "cancel")
        logger.info(f"Job {job_id} cancelled")
