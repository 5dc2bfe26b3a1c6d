"""Rate limiting, risk assessment and suspicious-activity models."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, Field

from .enums import RiskLevel


class RateLimitConfig(BaseModel):
    """Rate-limit policy. Durations are in seconds."""

    max_attempts: int = Field(default=5, ge=1)
    window_seconds: float = Field(default=15 * 60, gt=0)
    block_duration_seconds: float = Field(default=60 * 60, gt=0)


class RateLimitEntry(BaseModel):
    """Counting state for one identifier. Timestamps are epoch seconds."""

    count: int
    first_attempt: float
    last_attempt: float


class RateLimitResult(BaseModel):
    """Verdict of a rate-limit check."""

    allowed: bool
    remaining_attempts: int
    reset_time: float = Field(..., description="Epoch seconds when the window resets")


class AmountRiskAssessment(BaseModel):
    """Heuristic risk verdict for a payment amount."""

    valid: bool
    risk: RiskLevel
    reasons: list[str] = Field(default_factory=list)


class SuspiciousActivity(BaseModel):
    """Entry of the suspicious-activity log."""

    identifier: str
    activity: str
    timestamp: dt.datetime
    details: dict[str, Any] | None = None


class SecurityStats(BaseModel):
    """Snapshot of guard state."""

    active_rate_limits: int
    blocked_identifiers: int
    suspicious_activities: int
    recent_activities: int = Field(
        ..., description="Suspicious activities recorded within the last hour"
    )
