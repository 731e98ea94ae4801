import logging
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional
from ..handlers.registry import HandlerRegistry, JobContext
from ..models.job import Job, JobStatus
from ..services.engine import JobEngine
from ..services.errors import InvalidState, JobEngineError, NotFound
from ..storage.database import QueueModel

class Dispatcher:
    """One dispatch pass per tick: reap stuck jobs, promote delayed jobs,
    then run pending jobs of every unpaused queue within its concurrency."""

    def __init__(self, engine: JobEngine, handlers: HandlerRegistry, job_timeout: Optional[float] = None):
        self.engine = engine
        self.storage = engine.storage
        self.jobs = engine.jobs
        self.handlers = handlers
        self.job_timeout = job_timeout
        self._tick_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def tick(self) -> int:
        """Run one pass and return how many jobs were dispatched.

        Store errors before dispatch starts propagate; errors on a single
        queue or job are logged and the pass continues.
        """
        if not self._tick_lock.acquire(blocking=False):
            self.logger.debug("Previous dispatch tick still running, skipping")
            return 0
        try:
            if self.job_timeout:
                self.jobs.fail_stale_active(self.job_timeout)
            self.jobs.promote_delayed()

            dispatched = 0
            for queue in self.storage.list_queues(paused=False):
                try:
                    dispatched += self.dispatch_queue(queue)
                except Exception:
                    self.logger.exception(f"Error dispatching queue {queue.name}")
            return dispatched
        finally:
            self._tick_lock.release()

    def dispatch_queue(self, queue: QueueModel) -> int:
        active = self.storage.count_jobs_by_status(queue.id)[JobStatus.ACTIVE.value]
        candidates = self.storage.get_next_pending_jobs(queue.id, queue.concurrency - active)

        claimed = []
        for candidate in candidates:
            try:
                claimed.append(self.jobs.mark_active(candidate.id))
            except (InvalidState, NotFound):
                # the conditional update is the real guard; someone else got it
                self.logger.debug(f"Job {candidate.id} no longer pending, skipping")
            except Exception:
                self.logger.exception(f"Could not claim job {candidate.id}")

        if not claimed:
            return 0

        self.logger.debug(f"Processing {len(claimed)} jobs from queue {queue.name}")
        if len(claimed) == 1:
            self.process_job(claimed[0])
        else:
            with ThreadPoolExecutor(max_workers=len(claimed),
                                    thread_name_prefix=f"dispatch-{queue.name}") as pool:
                list(pool.map(self.process_job, claimed))
        return len(claimed)

    def process_job(self, job: Job) -> None:
        """Run a claimed job's handler and record the outcome. Never raises."""
        try:
            self._run(job)
        except Exception:
            self.logger.exception(f"Error processing job {job.id}")

    def _run(self, job: Job) -> None:
        handler = self.handlers.get(job.name)
        if handler is None:
            # retrying cannot make a missing handler appear
            self.logger.warning(f"Unknown job type: {job.name}")
            self._complete(job, {"status": "skipped", "reason": f"Unknown job type: {job.name}"})
            return

        context = JobContext(
            job_id=job.id,
            name=job.name,
            attempt=job.attempts,
            report_progress=lambda pct: self.jobs.update_progress(job.id, pct),
        )
        try:
            result = handler(job.data, context)
        except Exception as e:
            self.logger.error(f"Job {job.id} ({job.name}) failed: {e}")
            self._fail(job, str(e) or e.__class__.__name__, traceback.format_exc())
            return

        self._complete(job, result)

    def _complete(self, job: Job, result: Any) -> None:
        try:
            self.jobs.mark_completed(job.id, result)
        except JobEngineError as e:
            # e.g. the watchdog already failed it
            self.logger.warning(f"Result of job {job.id} dropped: {e}")
            return
        except Exception as e:
            self.logger.exception(f"Could not store result of job {job.id}")
            self._fail(job, f"Could not store result: {e}", traceback.format_exc())
            return
        self.logger.info(f"Job {job.id} ({job.name}) completed successfully")

    def _fail(self, job: Job, error: str, stack_trace: str) -> None:
        try:
            self.jobs.mark_failed(job.id, error, stack_trace)
        except JobEngineError as e:
            self.logger.warning(f"Failure of job {job.id} not recorded: {e}")
