"""
Models for the snapshot scheduler.

This module defines Pydantic models for:
- Cycle states and results
- Email messages and delivery outcomes
- Scheduler configuration
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class CycleState(str, Enum):
    """Stages of one refresh-compare-notify-rotate cycle."""
    IDLE = "idle"
    REFRESHING = "refreshing"
    COMPARING = "comparing"
    NOTIFYING = "notifying"
    ROTATING = "rotating"


class CycleTrigger(str, Enum):
    """What started a cycle."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class EmailMessage(BaseModel):
    """Outgoing transactional email."""
    sender: str = Field(..., description="From address")
    to: str = Field(..., description="Recipient address")
    subject: str = Field(..., description="Subject line")
    html: str = Field(..., description="HTML body")


class DeliveryOutcome(BaseModel):
    """Result of sending one message."""
    recipient: str
    success: bool
    error: Optional[str] = None


class NotificationReport(BaseModel):
    """Result of one notification fan-out."""
    attempted: int = Field(default=0)
    delivered: int = Field(default=0)
    failed: int = Field(default=0)
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)


class CycleResult(BaseModel):
    """Result of one snapshot cycle."""
    cycle_id: str = Field(..., description="Unique cycle identifier")
    trigger: CycleTrigger = Field(default=CycleTrigger.SCHEDULED)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    state: CycleState = Field(default=CycleState.IDLE, description="Stage reached")
    success: bool = Field(default=False)
    skipped: bool = Field(default=False, description="Collapsed into a running cycle")
    failed_stage: Optional[CycleState] = Field(default=None)

    changes: List[str] = Field(default_factory=list)
    deliveries_attempted: int = Field(default=0)
    deliveries_succeeded: int = Field(default=0)
    deliveries_failed: int = Field(default=0)
    rotated_records: int = Field(default=0)

    duration_seconds: float = Field(default=0.0)
    errors: List[str] = Field(default_factory=list)


class SchedulerConfig(BaseModel):
    """Configuration for the snapshot scheduler."""
    # Monthly schedule
    schedule_day: int = Field(default=1, ge=1, le=28, description="Day of month to run the cycle")
    schedule_hour: int = Field(default=0, ge=0, le=23, description="Hour to run the cycle (24h format)")
    schedule_minute: int = Field(default=0, ge=0, le=59, description="Minute to run the cycle")
    timezone: str = Field(default="America/Los_Angeles", description="Timezone for scheduling")

    # Test mode never registers the recurring job
    suppress_schedule: bool = Field(default=False)

    # Notifications
    mail_from: str = Field(default="onboarding@resend.dev")
    monthly_subject: str = Field(default="Monthly Updates")
    mail_rate_limit_per_second: float = Field(default=2.0, gt=0)

    # Late-start tolerance for the cron job
    misfire_grace_time_seconds: int = Field(default=3600, ge=1)

    # Upper bound on how long a crashed process can block other cycles
    cycle_lease_seconds: int = Field(default=6 * 3600, ge=60)
