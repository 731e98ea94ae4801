from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"

class QueueCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    concurrency: int = Field(default=1, ge=1, le=100)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay_ms: int = Field(default=5000, ge=1)
    backoff: BackoffStrategy = BackoffStrategy.FIXED

class QueueUpdate(BaseModel):
    """Mutable queue settings. The name is fixed at creation."""
    description: Optional[str] = None
    concurrency: Optional[int] = Field(default=None, ge=1, le=100)
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)
    retry_delay_ms: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[BackoffStrategy] = None

class QueueStats(BaseModel):
    queue_id: str
    queue_name: str
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False

class Queue(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    is_paused: bool = False
    concurrency: int
    max_retries: int
    retry_delay_ms: int
    backoff: BackoffStrategy = BackoffStrategy.FIXED
    created_at: datetime
    updated_at: datetime
    stats: Optional[QueueStats] = None
