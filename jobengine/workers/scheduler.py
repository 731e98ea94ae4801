import logging
import signal
import threading
from ..config.settings import Settings
from ..handlers.registry import HandlerRegistry
from ..services.engine import JobEngine
from .cron_runner import CronRunner
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)

class JobScheduler:
    """Runs the dispatcher and the cron runner on their own periods."""

    def __init__(self, engine: JobEngine, handlers: HandlerRegistry, settings: Settings):
        self.dispatcher = Dispatcher(engine, handlers, job_timeout=settings.job_timeout or None)
        self.cron_runner = CronRunner(engine)
        self.dispatch_interval = settings.dispatch_interval
        self.scheduler_interval = settings.scheduler_interval
        self.disabled = settings.disable_scheduler
        self._stop_event = threading.Event()
        self._threads = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> bool:
        """Start both loops. Each runs one tick immediately, then on its period."""
        if self.disabled:
            logger.warning("Job scheduler is disabled via configuration")
            return False

        with self._lock:
            if self._threads:
                return True
            self._stop_event.clear()
            self._threads = [
                threading.Thread(target=self._loop, name="jobengine-dispatcher", daemon=True,
                                 args=("dispatch", self.dispatcher.tick, self.dispatch_interval)),
                threading.Thread(target=self._loop, name="jobengine-cron", daemon=True,
                                 args=("cron", self.cron_runner.tick, self.scheduler_interval)),
            ]
            for thread in self._threads:
                thread.start()

        logger.info(f"Job scheduler started (processing: {self.dispatch_interval:g}s, "
                    f"scheduling: {self.scheduler_interval:g}s)")
        return True

    def _loop(self, name: str, tick, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                tick()
            except Exception:
                # e.g. store unreachable; the next period tries again
                logger.exception(f"Error in {name} tick")
            if self._stop_event.wait(interval):
                break

    def stop(self, timeout: float = None) -> None:
        """Stop both loops, letting in-flight ticks finish."""
        with self._lock:
            self._stop_event.set()
            for thread in self._threads:
                thread.join(timeout)
            self._threads = []
        logger.info("Job scheduler stopped")

    def handle_shutdown(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info("Shutting down job scheduler gracefully...")
        self._stop_event.set()

    def run_forever(self) -> None:
        """Block until SIGINT/SIGTERM. Must be called from the main thread."""
        signal.signal(signal.SIGINT, self.handle_shutdown)
        signal.signal(signal.SIGTERM, self.handle_shutdown)
        if not self.start():
            return
        try:
            while not self._stop_event.wait(0.5):
                pass
        finally:
            self.stop()
