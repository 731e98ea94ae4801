import time
from jobengine.config.settings import Settings
from jobengine.handlers.registry import HandlerRegistry
from jobengine.models.job import JobCreate, JobStatus
from jobengine.models.queue import QueueCreate
from jobengine.services.engine import JobEngine
from jobengine.workers.scheduler import JobScheduler

def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False

def test_disabled_scheduler_does_not_start(storage):
    settings = Settings(disable_scheduler=True)
    job_scheduler = JobScheduler(JobEngine(storage), HandlerRegistry(), settings)
    assert job_scheduler.start() is False
    assert job_scheduler.running is False

def test_scheduler_runs_jobs_until_stopped(storage):
    engine = JobEngine(storage)
    handlers = HandlerRegistry()
    handlers.register("ping", lambda data: "pong")
    q = engine.queues.create_queue(QueueCreate(name="live"))
    job = engine.jobs.enqueue(q.id, JobCreate(name="ping"))

    settings = Settings(disable_scheduler=False, dispatch_interval=0.05, scheduler_interval=0.05)
    job_scheduler = JobScheduler(engine, handlers, settings)
    assert job_scheduler.start() is True
    try:
        assert wait_for(lambda: engine.jobs.get_job(job.id).status == JobStatus.COMPLETED)
        assert engine.jobs.get_job(job.id).result == "pong"
    finally:
        job_scheduler.stop(timeout=5)
    assert job_scheduler.running is False
