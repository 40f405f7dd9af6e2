"""Pydantic schemas for result log endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.result_log import MetricType


class ResultLogCreate(BaseModel):
    """Request model for reporting a prompt outcome.

    Non-positive values are rejected here, before the metric validator runs.
    """

    metric_type: MetricType
    metric_value: float = Field(gt=0, description="Reported value (must be positive)")
    metric_unit: str = Field(min_length=1, max_length=20)
    note: Optional[str] = Field(default=None, max_length=1000)


class ResultLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    prompt_id: int
    metric_type: MetricType
    metric_value: float
    metric_unit: str
    note: Optional[str] = None
    is_flagged: bool
    created_at: datetime


class ResultLogCreateResponse(BaseModel):
    result_log: ResultLogResponse
    flagged: bool
    message: Optional[str] = Field(
        default=None, description="Why the value was flagged, if it was"
    )


class MetricSummary(BaseModel):
    count: int
    total: float
    average: float


class ResultLogListResponse(BaseModel):
    result_logs: list[ResultLogResponse]
    summary: dict[str, MetricSummary] = Field(
        description="Per metric type, over non-flagged logs only"
    )
