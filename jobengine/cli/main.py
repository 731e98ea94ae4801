import click
import json
import sys
from functools import wraps
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from ..config.logging import setup_logging
from ..config.settings import get_settings
from ..handlers.registry import load_registry
from ..handlers.shell import builtin_registry
from ..models.job import JobCreate, JobListQuery, JobStatus
from ..models.queue import BackoffStrategy, QueueCreate, QueueUpdate
from ..models.schedule import ScheduledJobCreate, ScheduledJobUpdate
from ..services.engine import JobEngine
from ..services.errors import JobEngineError
from ..workers.scheduler import JobScheduler

console = Console()

STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.ACTIVE: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.DELAYED: "magenta",
}

def handle_errors(func):
    """Report engine and validation errors in red and exit 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (JobEngineError, ValidationError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    return wrapper

def parse_json(value):
    if value is None:
        return None
    data = json.loads(value)
    if not isinstance(data, dict):
        raise ValueError("Job data must be a JSON object")
    return data

def fmt_time(value):
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"

def truncate(text, width=50):
    if not text:
        return ""
    return text[:width] + "..." if len(text) > width else text

class AppContext:
    def __init__(self, settings):
        self.settings = settings
        self._engine = None

    @property
    def engine(self) -> JobEngine:
        if self._engine is None:
            self._engine = JobEngine.from_settings(self.settings)
        return self._engine

pass_app = click.make_pass_decorator(AppContext)

@click.group()
@click.option('--db', 'database_url', default=None, envvar='JOBENGINE_DATABASE_URL',
              help='SQLAlchemy URL or SQLite file path')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.pass_context
def cli(ctx, database_url, log_level):
    """jobengine - durable job queues and cron scheduling"""
    settings = get_settings(database_url=database_url,
                            log_level=log_level.upper() if log_level else None)
    setup_logging(settings.log_level)
    ctx.obj = AppContext(settings)

# ---------- queues ----------

@cli.group()
def queue():
    """Manage queues"""
    pass

@queue.command('create')
@click.argument('name')
@click.option('--description', default=None)
@click.option('--concurrency', default=1, type=int, show_default=True)
@click.option('--max-retries', default=3, type=int, show_default=True)
@click.option('--retry-delay-ms', default=5000, type=int, show_default=True)
@click.option('--backoff', default='fixed', show_default=True,
              type=click.Choice([b.value for b in BackoffStrategy]))
@pass_app
@handle_errors
def queue_create(app, name, description, concurrency, max_retries, retry_delay_ms, backoff):
    """Create a queue"""
    q = app.engine.queues.create_queue(QueueCreate(
        name=name, description=description, concurrency=concurrency,
        max_retries=max_retries, retry_delay_ms=retry_delay_ms, backoff=backoff,
    ))
    console.print(f"[green]Queue {q.name} created ({q.id})[/green]")

@queue.command('list')
@pass_app
@handle_errors
def queue_list(app):
    """List queues with job counts"""
    queues = app.engine.queues.list_queues()
    if not queues:
        console.print("[yellow]No queues found[/yellow]")
        return

    table = Table(title="Queues")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Paused")
    table.add_column("Concurrency")
    for column in ("Pending", "Active", "Completed", "Failed", "Delayed"):
        table.add_column(column, justify="right")

    for q in queues:
        s = q.stats
        table.add_row(q.id, q.name, "yes" if q.is_paused else "no", str(q.concurrency),
                      str(s.pending), str(s.active), str(s.completed), str(s.failed), str(s.delayed))
    console.print(table)

@queue.command('show')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_show(app, queue_ref):
    """Show a queue (by id or name)"""
    q = app.engine.queues.resolve(queue_ref)
    console.print_json(q.model_dump_json())

@queue.command('update')
@click.argument('queue_ref')
@click.option('--description', default=None)
@click.option('--concurrency', default=None, type=int)
@click.option('--max-retries', default=None, type=int)
@click.option('--retry-delay-ms', default=None, type=int)
@click.option('--backoff', default=None, type=click.Choice([b.value for b in BackoffStrategy]))
@pass_app
@handle_errors
def queue_update(app, queue_ref, description, concurrency, max_retries, retry_delay_ms, backoff):
    """Change a queue's settings (the name cannot change)"""
    q = app.engine.queues.resolve(queue_ref)
    q = app.engine.queues.update_queue(q.id, QueueUpdate(
        description=description, concurrency=concurrency, max_retries=max_retries,
        retry_delay_ms=retry_delay_ms, backoff=backoff,
    ))
    console.print(f"[green]Queue {q.name} updated[/green]")

@queue.command('pause')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_pause(app, queue_ref):
    """Stop dispatching a queue's pending jobs"""
    q = app.engine.queues.pause(app.engine.queues.resolve(queue_ref).id)
    console.print(f"[yellow]Queue {q.name} paused[/yellow]")

@queue.command('resume')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_resume(app, queue_ref):
    """Resume a paused queue"""
    q = app.engine.queues.resume(app.engine.queues.resolve(queue_ref).id)
    console.print(f"[green]Queue {q.name} resumed[/green]")

@queue.command('stats')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_stats(app, queue_ref):
    """Show job counts per status"""
    stats = app.engine.queues.stats(app.engine.queues.resolve(queue_ref).id)

    table = Table(title=f"Queue {stats.queue_name}{' (paused)' if stats.paused else ''}")
    table.add_column("State", style="cyan")
    table.add_column("Count", style="magenta")
    for status, style in STATUS_STYLES.items():
        table.add_row(f"[{style}]{status.value}[/{style}]", str(getattr(stats, status.value)))
    console.print(table)

@queue.command('clear')
@click.argument('queue_ref')
@click.option('--status', type=click.Choice([s.value for s in STATUS_STYLES]),
              help='Only delete jobs in this state')
@click.confirmation_option(prompt="Are you sure you want to delete these jobs?")
@pass_app
@handle_errors
def queue_clear(app, queue_ref, status):
    """Delete a queue's jobs"""
    count = app.engine.queues.clear(app.engine.queues.resolve(queue_ref).id,
                                    JobStatus(status) if status else None)
    console.print(f"[green]Cleared {count} job(s)[/green]")

@queue.command('delete')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_delete(app, queue_ref):
    """Delete a queue that no job or scheduled job refers to"""
    q = app.engine.queues.resolve(queue_ref)
    app.engine.queues.delete_queue(q.id)
    console.print(f"[green]Queue {q.name} deleted[/green]")

@queue.command('retry-failed')
@click.argument('queue_ref')
@pass_app
@handle_errors
def queue_retry_failed(app, queue_ref):
    """Return every failed job of a queue to pending"""
    count = app.engine.jobs.retry_all_failed(app.engine.queues.resolve(queue_ref).id)
    console.print(f"[green]{count} job(s) queued for retry[/green]")

# ---------- jobs ----------

@cli.group()
def job():
    """Manage jobs"""
    pass

@job.command('enqueue')
@click.argument('queue_ref')
@click.argument('name')
@click.option('--data', default=None, help='JSON object passed to the handler')
@click.option('--priority', default=0, type=int, show_default=True, help='Higher runs first')
@click.option('--delay-ms', default=0, type=int, show_default=True)
@pass_app
@handle_errors
def job_enqueue(app, queue_ref, name, data, priority, delay_ms):
    """Add a job to a queue"""
    q = app.engine.queues.resolve(queue_ref)
    j = app.engine.jobs.enqueue(q.id, JobCreate(
        name=name, data=parse_json(data) or {}, priority=priority, delay_ms=delay_ms,
    ))
    console.print(f"[green]Job {j.id} enqueued successfully ({j.status.value})[/green]")

@job.command('list')
@click.argument('queue_ref')
@click.option('--status', type=click.Choice([s.value for s in STATUS_STYLES]),
              help='Filter jobs by state')
@click.option('--page', default=1, type=int)
@click.option('--page-size', default=20, type=int)
@pass_app
@handle_errors
def job_list(app, queue_ref, status, page, page_size):
    """List jobs by state"""
    q = app.engine.queues.resolve(queue_ref)
    jobs = app.engine.jobs.list_jobs(q.id, JobListQuery(status=status, page=page, page_size=page_size))

    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    table = Table(title=f"Jobs in {q.name}{f' ({status})' if status else ''}")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("State")
    table.add_column("Priority", justify="right")
    table.add_column("Attempts", style="yellow")
    table.add_column("Created At", style="blue")
    table.add_column("Last Error", style="red")

    for j in jobs:
        style = STATUS_STYLES.get(j.status, "white")
        table.add_row(
            j.id,
            j.name,
            f"[{style}]{j.status.value}[/{style}]",
            str(j.priority),
            f"{j.attempts}/{j.max_attempts}",
            fmt_time(j.created_at),
            truncate(j.error),
        )
    console.print(table)

@job.command('show')
@click.argument('job_id')
@pass_app
@handle_errors
def job_show(app, job_id):
    """Show a job in full"""
    console.print_json(app.engine.jobs.get_job(job_id).model_dump_json())

@job.command('retry')
@click.argument('job_id')
@click.option('--reset-attempts', is_flag=True, help='Start the attempt count from zero')
@pass_app
@handle_errors
def job_retry(app, job_id, reset_attempts):
    """Return a failed job to pending"""
    app.engine.jobs.retry(job_id, reset_attempts=reset_attempts)
    console.print(f"[green]Job {job_id} moved back to pending queue[/green]")

@job.command('cancel')
@click.argument('job_id')
@pass_app
@handle_errors
def job_cancel(app, job_id):
    """Cancel a pending or delayed job"""
    app.engine.jobs.cancel(job_id)
    console.print(f"[green]Job {job_id} cancelled[/green]")

@job.command('progress')
@click.argument('job_id')
@click.argument('percent', type=int)
@pass_app
@handle_errors
def job_progress(app, job_id, percent):
    """Set a job's progress (0-100)"""
    j = app.engine.jobs.update_progress(job_id, percent)
    console.print(f"Job {j.id} progress: {j.progress}%")

# ---------- scheduled jobs ----------

@cli.group()
def schedule():
    """Manage cron-scheduled jobs"""
    pass

@schedule.command('create')
@click.argument('queue_ref')
@click.argument('name')
@click.argument('cron_expression')
@click.option('--timezone', 'tz', default='UTC', show_default=True)
@click.option('--description', default=None)
@click.option('--data', default=None, help='JSON object passed to each run')
@pass_app
@handle_errors
def schedule_create(app, queue_ref, name, cron_expression, tz, description, data):
    """Create a recurring job, e.g. schedule create default report "0 * * * *" """
    q = app.engine.queues.resolve(queue_ref)
    s = app.engine.schedules.create(q.id, ScheduledJobCreate(
        name=name, cron_expression=cron_expression, timezone=tz,
        description=description, data=parse_json(data) or {},
    ))
    console.print(f"[green]Scheduled job {s.id} created, next run at {fmt_time(s.next_run_at)} UTC[/green]")

@schedule.command('list')
@click.argument('queue_ref')
@pass_app
@handle_errors
def schedule_list(app, queue_ref):
    """List a queue's scheduled jobs"""
    q = app.engine.queues.resolve(queue_ref)
    items = app.engine.schedules.list(q.id)
    if not items:
        console.print("[yellow]No scheduled jobs found[/yellow]")
        return

    table = Table(title=f"Scheduled jobs in {q.name}")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Cron")
    table.add_column("Timezone")
    table.add_column("Enabled")
    table.add_column("Next Run (UTC)", style="blue")
    table.add_column("Last Status")
    table.add_column("Runs/Fails", justify="right")
    for s in items:
        table.add_row(s.id, s.name, s.cron_expression, s.timezone,
                      "yes" if s.is_enabled else "no", fmt_time(s.next_run_at),
                      s.last_run_status or "-", f"{s.run_count}/{s.fail_count}")
    console.print(table)

@schedule.command('show')
@click.argument('scheduled_id')
@pass_app
@handle_errors
def schedule_show(app, scheduled_id):
    """Show a scheduled job in full"""
    console.print_json(app.engine.schedules.get(scheduled_id).model_dump_json())

@schedule.command('update')
@click.argument('scheduled_id')
@click.option('--cron', 'cron_expression', default=None)
@click.option('--timezone', 'tz', default=None)
@click.option('--description', default=None)
@click.option('--data', default=None)
@click.option('--enable/--disable', 'is_enabled', default=None)
@pass_app
@handle_errors
def schedule_update(app, scheduled_id, cron_expression, tz, description, data, is_enabled):
    """Change a scheduled job"""
    s = app.engine.schedules.update(scheduled_id, ScheduledJobUpdate(
        cron_expression=cron_expression, timezone=tz, description=description,
        data=parse_json(data), is_enabled=is_enabled,
    ))
    console.print(f"[green]Scheduled job {s.id} updated, next run at {fmt_time(s.next_run_at)} UTC[/green]")

@schedule.command('delete')
@click.argument('scheduled_id')
@pass_app
@handle_errors
def schedule_delete(app, scheduled_id):
    """Delete a scheduled job"""
    app.engine.schedules.delete(scheduled_id)
    console.print(f"[green]Scheduled job {scheduled_id} deleted[/green]")

@schedule.command('trigger')
@click.argument('scheduled_id')
@pass_app
@handle_errors
def schedule_trigger(app, scheduled_id):
    """Enqueue one run of a scheduled job now"""
    j = app.engine.schedules.trigger(scheduled_id)
    console.print(f"[green]Job {j.id} enqueued[/green]")

# ---------- dashboard ----------

@cli.command()
@pass_app
@handle_errors
def dashboard(app):
    """Show summary of all queues, recent failures and upcoming runs"""
    summary = app.engine.dashboard.summary()

    table = Table(title="Queue Status")
    table.add_column("Queue", style="cyan")
    for status in STATUS_STYLES:
        table.add_column(status.value, style=STATUS_STYLES[status], justify="right")
    table.add_column("Paused")
    for s in summary.queues:
        table.add_row(s.queue_name, str(s.pending), str(s.active), str(s.completed),
                      str(s.failed), str(s.delayed), "yes" if s.paused else "no")
    table.add_row("[bold]total[/bold]", str(summary.total_pending), str(summary.total_active),
                  str(summary.total_completed), str(summary.total_failed),
                  str(summary.total_delayed), "")
    console.print(table)

    console.print(f"\nActive scheduled jobs: [green]{summary.active_scheduled_jobs}[/green]")

    if summary.recent_failed_jobs:
        failed = Table(title="Recent Failures")
        failed.add_column("ID", style="cyan")
        failed.add_column("Name", style="magenta")
        failed.add_column("Failed At", style="blue")
        failed.add_column("Error", style="red")
        for j in summary.recent_failed_jobs:
            failed.add_row(j.id, j.name, fmt_time(j.failed_at), truncate(j.error))
        console.print(failed)

    if summary.upcoming_scheduled_runs:
        upcoming = Table(title="Upcoming Runs")
        upcoming.add_column("Name", style="magenta")
        upcoming.add_column("Cron")
        upcoming.add_column("Next Run (UTC)", style="blue")
        for s in summary.upcoming_scheduled_runs:
            upcoming.add_row(s.name, s.cron_expression, fmt_time(s.next_run_at))
        console.print(upcoming)

# ---------- scheduler process ----------

@cli.group()
def scheduler():
    """Run the dispatcher and cron runner"""
    pass

def build_scheduler(app, handlers, dispatch_interval=None, scheduler_interval=None):
    registry = builtin_registry()
    for path in handlers:
        registry.update(load_registry(path))

    settings = app.settings.model_copy(update={
        k: v for k, v in {
            "dispatch_interval": dispatch_interval,
            "scheduler_interval": scheduler_interval,
        }.items() if v is not None
    })
    return JobScheduler(app.engine, registry, settings)

@scheduler.command('start')
@click.option('--handlers', multiple=True, help='Handler registry as module:attribute (repeatable)')
@click.option('--dispatch-interval', default=None, type=float, help='Seconds between dispatch ticks')
@click.option('--scheduler-interval', default=None, type=float, help='Seconds between cron ticks')
@pass_app
@handle_errors
def scheduler_start(app, handlers, dispatch_interval, scheduler_interval):
    """Run until interrupted with Ctrl+C"""
    job_scheduler = build_scheduler(app, handlers, dispatch_interval, scheduler_interval)
    if job_scheduler.disabled:
        console.print("[yellow]Job scheduler is disabled (DISABLE_JOB_SCHEDULER)[/yellow]")
        return
    console.print("[cyan]Job scheduler running. Press Ctrl+C to stop...[/cyan]")
    job_scheduler.run_forever()
    console.print("[green]Job scheduler stopped[/green]")

@scheduler.command('tick')
@click.option('--handlers', multiple=True, help='Handler registry as module:attribute (repeatable)')
@pass_app
@handle_errors
def scheduler_tick(app, handlers):
    """Run one cron tick and one dispatch tick"""
    job_scheduler = build_scheduler(app, handlers)
    fired = job_scheduler.cron_runner.tick()
    dispatched = job_scheduler.dispatcher.tick()
    console.print(f"Triggered {fired} scheduled job(s), dispatched {dispatched} job(s)")

def main():
    cli()

if __name__ == '__main__':
    main()
