from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

class JobStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

class JobCreate(BaseModel):
    name: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0  # higher = dispatched first
    delay_ms: int = Field(default=0, ge=0)

class JobListQuery(BaseModel):
    status: Optional[JobStatus] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    queue_id: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    priority: int = 0
    attempts: int = 0
    max_attempts: int
    progress: int = 0
    result: Optional[Any] = None
    error: Optional[str] = None
    stack_trace: Optional[str] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    delay_until: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
