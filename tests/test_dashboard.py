from jobengine.models.job import JobCreate
from jobengine.models.queue import QueueCreate
from jobengine.models.schedule import ScheduledJobCreate, ScheduledJobUpdate

def test_empty_dashboard(engine):
    summary = engine.dashboard.summary()
    assert summary.queues == []
    assert summary.total_pending == 0
    assert summary.recent_failed_jobs == []
    assert summary.upcoming_scheduled_runs == []

def test_totals_across_queues(engine, queue):
    other = engine.queues.create_queue(QueueCreate(name="other"))
    engine.jobs.enqueue(queue.id, JobCreate(name="a"))
    engine.jobs.enqueue(other.id, JobCreate(name="b"))
    engine.jobs.enqueue(other.id, JobCreate(name="c", delay_ms=100))
    done = engine.jobs.enqueue(other.id, JobCreate(name="d"))
    engine.jobs.mark_active(done.id)
    engine.jobs.mark_completed(done.id, None)
    engine.queues.pause(other.id)

    summary = engine.dashboard.summary()
    assert len(summary.queues) == 2
    assert summary.total_pending == 2
    assert summary.total_delayed == 1
    assert summary.total_completed == 1
    assert summary.total_active == 0
    assert [s.paused for s in summary.queues] == [False, True]

def test_recent_failures_newest_first(engine, clock):
    q = engine.queues.create_queue(QueueCreate(name="once", max_retries=0))
    ids = []
    for i in range(12):
        job = engine.jobs.enqueue(q.id, JobCreate(name=f"job-{i}"))
        engine.jobs.mark_active(job.id)
        engine.jobs.mark_failed(job.id, f"error {i}")
        ids.append(job.id)
        clock.advance(seconds=1)

    summary = engine.dashboard.summary()
    assert summary.total_failed == 12
    assert [j.id for j in summary.recent_failed_jobs] == list(reversed(ids))[:10]

def test_upcoming_runs_soonest_first(engine, queue):
    engine.schedules.create(queue.id, ScheduledJobCreate(name="daily", cron_expression="0 0 * * *"))
    engine.schedules.create(queue.id, ScheduledJobCreate(name="minutely", cron_expression="* * * * *"))
    off = engine.schedules.create(queue.id, ScheduledJobCreate(name="hourly", cron_expression="0 * * * *"))
    engine.schedules.update(off.id, ScheduledJobUpdate(is_enabled=False))

    summary = engine.dashboard.summary()
    assert summary.active_scheduled_jobs == 2
    assert [s.name for s in summary.upcoming_scheduled_runs] == ["minutely", "daily"]
