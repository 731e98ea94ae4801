import logging
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from ..models.job import JobStatus
from ..models.queue import Queue, QueueCreate, QueueStats, QueueUpdate
from ..storage.database import Storage, QueueModel, utcnow
from .errors import AlreadyExists, InvalidState, NotFound

logger = logging.getLogger(__name__)

class QueueRegistry:
    """Named queue definitions and their live statistics."""

    def __init__(self, storage: Storage, clock=utcnow):
        self.storage = storage
        self.clock = clock

    def _require(self, queue_id: str) -> QueueModel:
        queue = self.storage.get_queue(queue_id)
        if not queue:
            raise NotFound("Queue", queue_id)
        return queue

    def create_queue(self, params: QueueCreate) -> Queue:
        if self.storage.get_queue_by_name(params.name):
            raise AlreadyExists(f"Queue with name '{params.name}' already exists")

        now = self.clock()
        data = params.model_dump()
        data["backoff"] = params.backoff.value
        try:
            queue = self.storage.add_queue({**data, "created_at": now, "updated_at": now})
        except IntegrityError:
            # lost a race with another creator on the unique name
            raise AlreadyExists(f"Queue with name '{params.name}' already exists")

        logger.info(f"Queue {queue.name} created ({queue.id})")
        return Queue.model_validate(queue)

    def get_queue(self, queue_id: str) -> Queue:
        queue = Queue.model_validate(self._require(queue_id))
        queue.stats = self.stats(queue_id)
        return queue

    def get_queue_by_name(self, name: str) -> Queue:
        queue = self.storage.get_queue_by_name(name)
        if not queue:
            raise NotFound("Queue", name)
        return self.get_queue(queue.id)

    def resolve(self, ref: str) -> Queue:
        """Look a queue up by id, falling back to its name."""
        queue = self.storage.get_queue(ref) or self.storage.get_queue_by_name(ref)
        if not queue:
            raise NotFound("Queue", ref)
        return self.get_queue(queue.id)

    def list_queues(self) -> List[Queue]:
        queues = []
        for model in self.storage.list_queues():
            queue = Queue.model_validate(model)
            queue.stats = self._stats_for(model)
            queues.append(queue)
        return queues

    def update_queue(self, queue_id: str, params: QueueUpdate) -> Queue:
        self._require(queue_id)
        updates = params.model_dump(exclude_none=True)
        if "backoff" in updates:
            updates["backoff"] = params.backoff.value
        if updates:
            updates["updated_at"] = self.clock()
            self.storage.update_queue(queue_id, updates)
        return self.get_queue(queue_id)

    def _set_paused(self, queue_id: str, paused: bool) -> Queue:
        self._require(queue_id)
        queue = self.storage.update_queue(queue_id, {"is_paused": paused, "updated_at": self.clock()})
        logger.info(f"Queue {queue.name} {'paused' if paused else 'resumed'}")
        return Queue.model_validate(queue)

    def pause(self, queue_id: str) -> Queue:
        return self._set_paused(queue_id, True)

    def resume(self, queue_id: str) -> Queue:
        return self._set_paused(queue_id, False)

    def _stats_for(self, queue: QueueModel) -> QueueStats:
        counts = self.storage.count_jobs_by_status(queue.id)
        return QueueStats(
            queue_id=queue.id,
            queue_name=queue.name,
            pending=counts[JobStatus.PENDING.value],
            active=counts[JobStatus.ACTIVE.value],
            completed=counts[JobStatus.COMPLETED.value],
            failed=counts[JobStatus.FAILED.value],
            delayed=counts[JobStatus.DELAYED.value],
            paused=queue.is_paused,
        )

    def stats(self, queue_id: str) -> QueueStats:
        """Counts per status, always read from the store."""
        return self._stats_for(self._require(queue_id))

    def clear(self, queue_id: str, status: Optional[JobStatus] = None) -> int:
        self._require(queue_id)
        count = self.storage.delete_jobs(queue_id, JobStatus(status).value if status else None)
        logger.info(f"Cleared {count} jobs from queue {queue_id}")
        return count

    def delete_queue(self, queue_id: str) -> None:
        queue = self._require(queue_id)
        refs = self.storage.count_queue_references(queue_id)
        if refs:
            raise InvalidState(
                f"Queue {queue.name} is still referenced by {refs} job(s) or scheduled job(s)"
            )
        self.storage.delete_queue(queue_id)
        logger.info(f"Queue {queue.name} deleted")
