from sqlalchemy import (
    create_engine, Column, String, Integer, Boolean, DateTime, Text, JSON,
    ForeignKey, Index, case, delete, func, select, update,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from uuid import uuid4
import os
import threading
from ..models.job import JobStatus

Base = declarative_base()

def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return str(uuid4())

class QueueModel(Base):
    __tablename__ = "job_queues"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_paused = Column(Boolean, nullable=False, default=False)
    concurrency = Column(Integer, nullable=False, default=1)
    max_retries = Column(Integer, nullable=False, default=3)
    retry_delay_ms = Column(Integer, nullable=False, default=5000)
    backoff = Column(String, nullable=False, default="fixed")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

class JobModel(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=new_id)
    queue_id = Column(String, ForeignKey("job_queues.id"), nullable=False)
    name = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value)
    priority = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    progress = Column(Integer, nullable=False, default=0)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    stack_trace = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    delay_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # dispatch selection
        Index("ix_jobs_dispatch", "queue_id", "status", "priority", "created_at"),
        # delay promotion
        Index("ix_jobs_delay", "status", "delay_until"),
    )

class ScheduledJobModel(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(String, primary_key=True, default=new_id)
    queue_id = Column(String, ForeignKey("job_queues.id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    cron_expression = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    data = Column(JSON, nullable=False, default=dict)
    is_enabled = Column(Boolean, nullable=False, default=True)
    last_run_at = Column(DateTime, nullable=True)
    next_run_at = Column(DateTime, nullable=True)
    last_run_status = Column(String, nullable=True)
    last_run_error = Column(Text, nullable=True)
    run_count = Column(Integer, nullable=False, default=0)
    fail_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_scheduled_jobs_due", "is_enabled", "next_run_at"),
    )

def default_db_url() -> str:
    db_path = os.path.join(os.path.expanduser("~"), ".jobengine", "jobs.db")
    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    return f"sqlite:///{db_path}"

class Storage:
    """Record-level access to queues, jobs and scheduled jobs.

    Status changes go through ``compare_and_set_job`` so the row's current
    status is checked and written in one statement.
    """

    def __init__(self, db_url: str = None):
        if not db_url:
            db_url = default_db_url()
        elif "://" not in db_url:
            # bare file path, like the CLI's --db option
            db_url = f"sqlite:///{db_url}"

        kwargs = {}
        in_memory = False
        if db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
                in_memory = True

        self.engine = create_engine(db_url, **kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        # one shared connection: transactions from different threads must not interleave
        self._lock = threading.RLock() if in_memory else nullcontext()

    def __del__(self):
        if hasattr(self, 'engine'):
            self.engine.dispose()

    @contextmanager
    def session(self):
        """Transactional scope: commit on success, roll back on error."""
        with self._lock:
            session = self.Session()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ---------- queues ----------

    def add_queue(self, queue_data: dict) -> QueueModel:
        with self.session() as session:
            queue = QueueModel(**queue_data)
            session.add(queue)
            return queue

    def get_queue(self, queue_id: str) -> Optional[QueueModel]:
        with self.session() as session:
            return session.get(QueueModel, queue_id)

    def get_queue_by_name(self, name: str) -> Optional[QueueModel]:
        with self.session() as session:
            return session.scalars(select(QueueModel).where(QueueModel.name == name)).first()

    def list_queues(self, paused: Optional[bool] = None) -> List[QueueModel]:
        with self.session() as session:
            query = select(QueueModel).order_by(QueueModel.name.asc())
            if paused is not None:
                query = query.where(QueueModel.is_paused == paused)
            return list(session.scalars(query))

    def update_queue(self, queue_id: str, updates: dict) -> Optional[QueueModel]:
        with self.session() as session:
            queue = session.get(QueueModel, queue_id)
            if queue:
                for key, value in updates.items():
                    setattr(queue, key, value)
            return queue

    def delete_queue(self, queue_id: str) -> bool:
        with self.session() as session:
            result = session.execute(delete(QueueModel).where(QueueModel.id == queue_id))
            return result.rowcount > 0

    def count_queue_references(self, queue_id: str) -> int:
        with self.session() as session:
            jobs = session.scalar(
                select(func.count()).select_from(JobModel).where(JobModel.queue_id == queue_id)
            )
            scheduled = session.scalar(
                select(func.count()).select_from(ScheduledJobModel)
                .where(ScheduledJobModel.queue_id == queue_id)
            )
            return (jobs or 0) + (scheduled or 0)

    def count_jobs_by_status(self, queue_id: str) -> Dict[str, int]:
        with self.session() as session:
            rows = session.execute(
                select(JobModel.status, func.count())
                .where(JobModel.queue_id == queue_id)
                .group_by(JobModel.status)
            ).all()
        counts = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            counts[status] = count
        return counts

    # ---------- jobs ----------

    def add_job(self, job_data: dict) -> JobModel:
        with self.session() as session:
            job = JobModel(**job_data)
            session.add(job)
            return job

    def get_job(self, job_id: str) -> Optional[JobModel]:
        with self.session() as session:
            return session.get(JobModel, job_id)

    def list_jobs(self, queue_id: str, status: Optional[str] = None,
                  offset: int = 0, limit: Optional[int] = None) -> List[JobModel]:
        with self.session() as session:
            query = (
                select(JobModel)
                .where(JobModel.queue_id == queue_id)
                .order_by(JobModel.priority.desc(), JobModel.created_at.asc())
            )
            if status:
                query = query.where(JobModel.status == status)
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return list(session.scalars(query))

    def get_next_pending_jobs(self, queue_id: str, limit: int) -> List[JobModel]:
        """Pending jobs of a queue, highest priority first, FIFO within a priority."""
        if limit <= 0:
            return []
        return self.list_jobs(queue_id, status=JobStatus.PENDING.value, limit=limit)

    def compare_and_set_job(self, job_id: str, expected: Iterable[JobStatus], updates: dict) -> bool:
        """Apply ``updates`` only if the job's status is one of ``expected``."""
        expected = [JobStatus(s).value for s in expected]
        updates = dict(updates)
        updates.setdefault("updated_at", utcnow())
        with self.session() as session:
            result = session.execute(
                update(JobModel)
                .where(JobModel.id == job_id, JobModel.status.in_(expected))
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def claim_job(self, job_id: str, now: datetime) -> bool:
        """pending -> active, counting the attempt."""
        return self.compare_and_set_job(job_id, [JobStatus.PENDING], {
            "status": JobStatus.ACTIVE.value,
            "attempts": JobModel.attempts + 1,
            "processed_at": now,
            "updated_at": now,
        })

    def delete_job_if(self, job_id: str, expected: Iterable[JobStatus]) -> bool:
        expected = [JobStatus(s).value for s in expected]
        with self.session() as session:
            result = session.execute(
                delete(JobModel)
                .where(JobModel.id == job_id, JobModel.status.in_(expected))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def delete_jobs(self, queue_id: str, status: Optional[str] = None) -> int:
        with self.session() as session:
            query = delete(JobModel).where(JobModel.queue_id == queue_id)
            if status:
                query = query.where(JobModel.status == status)
            result = session.execute(query.execution_options(synchronize_session=False))
            return result.rowcount

    def promote_delayed_jobs(self, now: datetime) -> int:
        with self.session() as session:
            result = session.execute(
                update(JobModel)
                .where(JobModel.status == JobStatus.DELAYED.value, JobModel.delay_until <= now)
                .values(status=JobStatus.PENDING.value, delay_until=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def requeue_failed_jobs(self, queue_id: str, now: datetime) -> int:
        """Bulk failed -> pending; exhausted jobs get exactly one more attempt."""
        with self.session() as session:
            result = session.execute(
                update(JobModel)
                .where(JobModel.queue_id == queue_id, JobModel.status == JobStatus.FAILED.value)
                .values(
                    status=JobStatus.PENDING.value,
                    max_attempts=case(
                        (JobModel.attempts >= JobModel.max_attempts, JobModel.attempts + 1),
                        else_=JobModel.max_attempts,
                    ),
                    error=None,
                    stack_trace=None,
                    failed_at=None,
                    processed_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def list_stale_active_jobs(self, started_before: datetime) -> List[JobModel]:
        with self.session() as session:
            return list(session.scalars(
                select(JobModel)
                .where(JobModel.status == JobStatus.ACTIVE.value,
                       JobModel.processed_at < started_before)
            ))

    def list_recent_failed_jobs(self, limit: int = 10) -> List[JobModel]:
        with self.session() as session:
            return list(session.scalars(
                select(JobModel)
                .where(JobModel.status == JobStatus.FAILED.value)
                .order_by(JobModel.failed_at.desc())
                .limit(limit)
            ))

    # ---------- scheduled jobs ----------

    def add_scheduled_job(self, scheduled_data: dict) -> ScheduledJobModel:
        with self.session() as session:
            scheduled = ScheduledJobModel(**scheduled_data)
            session.add(scheduled)
            return scheduled

    def get_scheduled_job(self, scheduled_id: str) -> Optional[ScheduledJobModel]:
        with self.session() as session:
            return session.get(ScheduledJobModel, scheduled_id)

    def list_scheduled_jobs(self, queue_id: str) -> List[ScheduledJobModel]:
        with self.session() as session:
            return list(session.scalars(
                select(ScheduledJobModel)
                .where(ScheduledJobModel.queue_id == queue_id)
                .order_by(ScheduledJobModel.name.asc())
            ))

    def update_scheduled_job(self, scheduled_id: str, updates: dict) -> Optional[ScheduledJobModel]:
        with self.session() as session:
            scheduled = session.get(ScheduledJobModel, scheduled_id)
            if scheduled:
                for key, value in updates.items():
                    setattr(scheduled, key, value)
            return scheduled

    def delete_scheduled_job(self, scheduled_id: str) -> bool:
        with self.session() as session:
            result = session.execute(
                delete(ScheduledJobModel).where(ScheduledJobModel.id == scheduled_id)
            )
            return result.rowcount > 0

    def list_due_scheduled_jobs(self, now: datetime) -> List[ScheduledJobModel]:
        with self.session() as session:
            return list(session.scalars(
                select(ScheduledJobModel)
                .where(ScheduledJobModel.is_enabled.is_(True),
                       ScheduledJobModel.next_run_at <= now)
                .order_by(ScheduledJobModel.next_run_at.asc())
            ))

    def list_upcoming_scheduled_jobs(self, limit: int = 10) -> List[ScheduledJobModel]:
        with self.session() as session:
            return list(session.scalars(
                select(ScheduledJobModel)
                .where(ScheduledJobModel.is_enabled.is_(True),
                       ScheduledJobModel.next_run_at.is_not(None))
                .order_by(ScheduledJobModel.next_run_at.asc())
                .limit(limit)
            ))

    def count_enabled_scheduled_jobs(self) -> int:
        with self.session() as session:
            return session.scalar(
                select(func.count()).select_from(ScheduledJobModel)
                .where(ScheduledJobModel.is_enabled.is_(True))
            ) or 0

    def fire_scheduled_job(self, scheduled_id: str, expected_next_run_at: datetime,
                           job_data: dict, updates: dict) -> Optional[JobModel]:
        """Insert the occurrence's job and advance the definition atomically.

        Returns None (and inserts nothing) when the definition's ``next_run_at``
        no longer matches, i.e. another runner already fired this occurrence.
        """
        with self.session() as session:
            values = dict(updates)
            values.setdefault("run_count", ScheduledJobModel.run_count + 1)
            result = session.execute(
                update(ScheduledJobModel)
                .where(ScheduledJobModel.id == scheduled_id,
                       ScheduledJobModel.next_run_at == expected_next_run_at)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            job = JobModel(**job_data)
            session.add(job)
            return job

    def record_scheduled_failure(self, scheduled_id: str, error: str, now: datetime) -> None:
        with self.session() as session:
            session.execute(
                update(ScheduledJobModel)
                .where(ScheduledJobModel.id == scheduled_id)
                .values(
                    last_run_status="error",
                    last_run_error=error,
                    fail_count=ScheduledJobModel.fail_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
