"""Scheduled job model.

Runtime model for recurring workflow triggers (not persisted).
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, Field

from src.models.execution import ExecutionStatus


@dataclass
class ScheduledJob:
    """A cron-driven trigger for one workflow.

    Created by ``schedule()``, toggled by stop/resume, destroyed by ``remove()``.
    ``task`` is the asyncio timer currently driving the job, if active.
    """

    id: str
    workflow_id: str
    cron_expression: str
    timezone: str
    is_active: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_status: ExecutionStatus | None = None
    last_error: str | None = None
    run_count: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)

    def to_read(self) -> "ScheduledJobRead":
        return ScheduledJobRead(
            id=self.id,
            workflow_id=self.workflow_id,
            cron_expression=self.cron_expression,
            timezone=self.timezone,
            is_active=self.is_active,
            last_run_at=self.last_run_at,
            next_run_at=self.next_run_at,
            last_status=self.last_status,
            last_error=self.last_error,
            run_count=self.run_count,
        )


class ScheduledJobRead(BaseModel):
    """Schema for reading a scheduled job."""

    id: str
    workflow_id: str
    cron_expression: str
    timezone: str
    is_active: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_status: ExecutionStatus | None = None
    last_error: str | None = None
    run_count: int = 0


class ScheduleCreate(BaseModel):
    """Schema for creating a scheduled job."""

    workflow_id: str
    cron_expression: str = Field(min_length=1)
    timezone: str | None = None


class CronValidation(BaseModel):
    """Cron validation request/response."""

    expression: str
    valid: bool | None = None
    description: str | None = None
