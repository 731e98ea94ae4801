import pytest
import threading
from datetime import timedelta
from jobengine.models.job import JobCreate, JobStatus
from jobengine.models.queue import QueueCreate
from jobengine.services.engine import JobEngine
from jobengine.storage.database import Storage
from jobengine.workers.dispatcher import Dispatcher

@pytest.fixture
def calls():
    return []

@pytest.fixture
def dispatcher(engine, handlers, calls):
    lock = threading.Lock()

    @handlers.handler("work")
    def work(data):
        with lock:
            calls.append(data.get("label"))
        return {"label": data.get("label")}

    @handlers.handler("explode")
    def explode(data):
        calls.append("explode")
        raise RuntimeError("handler blew up")

    return Dispatcher(engine, handlers)

def test_successful_job_completed(engine, queue, dispatcher):
    job = engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "a"}))
    assert dispatcher.tick() == 1

    job = engine.jobs.get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"label": "a"}
    assert job.attempts == 1
    assert job.progress == 100

def test_selection_by_priority_then_age(engine, dispatcher, calls, clock):
    q = engine.queues.create_queue(QueueCreate(name="pairs", concurrency=2))
    t0 = clock.now
    clock.now = t0 + timedelta(seconds=1)
    a = engine.jobs.enqueue(q.id, JobCreate(name="work", data={"label": "A"}, priority=5))
    clock.now = t0
    b = engine.jobs.enqueue(q.id, JobCreate(name="work", data={"label": "B"}, priority=5))
    clock.now = t0 + timedelta(seconds=2)
    c = engine.jobs.enqueue(q.id, JobCreate(name="work", data={"label": "C"}, priority=9))

    assert [j.id for j in engine.storage.get_next_pending_jobs(q.id, 2)] == [c.id, b.id]

    assert dispatcher.tick() == 2
    assert sorted(calls) == ["B", "C"]
    assert engine.jobs.get_job(a.id).status == JobStatus.PENDING

    dispatcher.tick()
    assert sorted(calls) == ["A", "B", "C"]

def test_handler_failure_goes_through_retry(engine, queue, dispatcher):
    job = engine.jobs.enqueue(queue.id, JobCreate(name="explode"))
    dispatcher.tick()

    job = engine.jobs.get_job(job.id)
    assert job.status == JobStatus.DELAYED
    assert job.error == "handler blew up"
    assert "Traceback" in job.stack_trace
    assert "RuntimeError" in job.stack_trace

def test_retry_exhaustion(engine, dispatcher, calls, clock):
    q = engine.queues.create_queue(QueueCreate(name="flaky", max_retries=2, retry_delay_ms=1000))
    job = engine.jobs.enqueue(q.id, JobCreate(name="explode"))

    seen = []
    for _ in range(3):
        dispatcher.tick()
        seen.append(engine.jobs.get_job(job.id).status)
        clock.advance(seconds=2)

    assert seen == [JobStatus.DELAYED, JobStatus.DELAYED, JobStatus.FAILED]
    job = engine.jobs.get_job(job.id)
    assert job.attempts == job.max_attempts == 3
    assert calls == ["explode"] * 3

    # nothing left to dispatch
    dispatcher.tick()
    assert len(calls) == 3

def test_delayed_job_waits_for_its_time(engine, queue, dispatcher, calls, clock):
    engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "later"}, delay_ms=5000))
    dispatcher.tick()
    assert calls == []

    clock.advance(seconds=5)
    dispatcher.tick()
    assert calls == ["later"]

def test_paused_queue_not_dispatched(engine, queue, dispatcher, calls):
    running = engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "running"}))
    engine.jobs.mark_active(running.id)
    waiting = engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "waiting"}))
    engine.queues.pause(queue.id)

    assert dispatcher.tick() == 0
    assert calls == []
    assert engine.jobs.get_job(waiting.id).status == JobStatus.PENDING
    assert engine.jobs.get_job(running.id).status == JobStatus.ACTIVE

    # the in-flight job can still finish while paused
    engine.jobs.mark_completed(running.id, None)
    assert engine.jobs.get_job(running.id).status == JobStatus.COMPLETED

def test_active_jobs_count_against_concurrency(engine, dispatcher, calls):
    q = engine.queues.create_queue(QueueCreate(name="limited", concurrency=2))
    busy = engine.jobs.enqueue(q.id, JobCreate(name="work", data={"label": "busy"}))
    engine.jobs.mark_active(busy.id)
    for label in ("x", "y", "z"):
        engine.jobs.enqueue(q.id, JobCreate(name="work", data={"label": label}))

    assert dispatcher.tick() == 1
    assert calls == ["x"]

def test_unknown_job_name_skipped(engine, queue, dispatcher):
    job = engine.jobs.enqueue(queue.id, JobCreate(name="no-such-handler"))
    dispatcher.tick()

    job = engine.jobs.get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"status": "skipped", "reason": "Unknown job type: no-such-handler"}
    assert job.attempts == 1

def test_handler_with_context_reports_progress(engine, queue, handlers):
    seen = {}

    @handlers.handler("report", pass_context=True)
    def report(data, context):
        context.report_progress(40)
        seen["progress"] = engine.jobs.get_job(context.job_id).progress
        seen["attempt"] = context.attempt
        return "ok"

    job = engine.jobs.enqueue(queue.id, JobCreate(name="report"))
    Dispatcher(engine, handlers).tick()

    assert seen == {"progress": 40, "attempt": 1}
    assert engine.jobs.get_job(job.id).result == "ok"

def test_watchdog_fails_stuck_jobs(engine, queue, handlers, clock):
    stuck = engine.jobs.enqueue(queue.id, JobCreate(name="work"))
    engine.jobs.mark_active(stuck.id)
    dispatcher = Dispatcher(engine, handlers, job_timeout=60)

    clock.advance(minutes=5)
    dispatcher.tick()

    stuck = engine.jobs.get_job(stuck.id)
    assert stuck.status == JobStatus.DELAYED
    assert stuck.error == "Job exceeded timeout of 60s"

def test_overlapping_tick_skipped(engine, queue, dispatcher, calls):
    engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "a"}))
    with dispatcher._tick_lock:
        assert dispatcher.tick() == 0
    assert calls == []
    assert dispatcher.tick() == 1

def test_one_bad_queue_does_not_stop_others(engine, queue, dispatcher, calls, monkeypatch):
    other = engine.queues.create_queue(QueueCreate(name="zzz"))
    engine.jobs.enqueue(queue.id, JobCreate(name="work", data={"label": "default"}))
    engine.jobs.enqueue(other.id, JobCreate(name="work", data={"label": "zzz"}))

    original = dispatcher.storage.get_next_pending_jobs

    def broken_for_default(queue_id, limit):
        if queue_id == queue.id:
            raise RuntimeError("store hiccup")
        return original(queue_id, limit)

    monkeypatch.setattr(dispatcher.storage, "get_next_pending_jobs", broken_for_default)
    assert dispatcher.tick() == 1
    assert calls == ["zzz"]

def test_parallel_batch_on_in_memory_store(handlers, clock):
    engine = JobEngine(Storage("sqlite://"), clock=clock)
    q = engine.queues.create_queue(QueueCreate(name="wide", concurrency=8))

    @handlers.handler("step", pass_context=True)
    def step(data, context):
        for pct in (25, 50, 75):
            context.report_progress(pct)
        return data["n"]

    jobs = [engine.jobs.enqueue(q.id, JobCreate(name="step", data={"n": n})) for n in range(8)]
    dispatcher = Dispatcher(engine, handlers)
    for _ in range(5):
        dispatcher.tick()

    finished = [engine.jobs.get_job(job.id) for job in jobs]
    assert [job.status for job in finished] == [JobStatus.COMPLETED] * 8
    assert [job.result for job in finished] == list(range(8))
    assert all(job.progress == 100 and job.attempts == 1 for job in finished)
