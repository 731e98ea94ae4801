import pytest
import tempfile
import os
from datetime import datetime, timedelta
from jobengine.handlers.registry import HandlerRegistry
from jobengine.models.queue import QueueCreate
from jobengine.services.engine import JobEngine
from jobengine.storage.database import Storage

class ManualClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name
    yield db_path
    try:
        os.unlink(db_path)
    except PermissionError:
        pass  # File might still be locked, will be cleaned up later

@pytest.fixture
def storage(temp_db):
    return Storage(temp_db)

@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 3, 2, 10, 0, 0))

@pytest.fixture
def engine(storage, clock):
    return JobEngine(storage, clock=clock)

@pytest.fixture
def queue(engine):
    return engine.queues.create_queue(QueueCreate(name="default", retry_delay_ms=1000))

@pytest.fixture
def handlers():
    return HandlerRegistry()
