from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

class ScheduledJobCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    cron_expression: str  # e.g. "0 * * * *" for hourly
    timezone: str = "UTC"
    data: Dict[str, Any] = Field(default_factory=dict)

class ScheduledJobUpdate(BaseModel):
    description: Optional[str] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    is_enabled: Optional[bool] = None

class ScheduledJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    queue_id: str
    name: str
    description: Optional[str] = None
    cron_expression: str
    timezone: str = "UTC"
    data: Dict[str, Any] = Field(default_factory=dict)
    is_enabled: bool = True
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_error: Optional[str] = None
    run_count: int = 0
    fail_count: int = 0
    created_at: datetime
    updated_at: datetime
