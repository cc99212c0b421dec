"""
Pydantic models for pullstream.

Page records exchanged with paginated sources, pagination settings, and the
request/response bodies of the pipeline API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pullstream.errors import PageFormatError


class Page(BaseModel):
    """One page returned by a paginated fetch function."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    items: List[Any] = Field(
        default_factory=list,
        description="Items in this page, in source order"
    )
    next_token: Optional[Any] = Field(
        None,
        alias="nextToken",
        description="Token for the next page (None on the last page)"
    )

    @classmethod
    def coerce(cls, raw: Any) -> "Page":
        """Accept a Page or a mapping with items and next_token/nextToken."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise PageFormatError(
                "fetch_page returned something that is not a page",
                received=type(raw).__name__,
                errors=e.error_count(),
            ) from e


class PaginationSettings(BaseModel):
    """Knobs for a paginated source."""
    model_config = ConfigDict(frozen=True)

    start_token: Optional[Any] = Field(
        None,
        description="Token passed to the first fetch"
    )
    max_pages: Optional[int] = Field(
        None,
        description="Stop after this many pages even if more are available",
        ge=1
    )
    fetch_timeout_seconds: Optional[float] = Field(
        None,
        description="Per-fetch timeout in seconds",
        gt=0
    )


# ---------- pipeline API ----------

class OperationType(str, Enum):
    """Supported pipeline stages"""
    MAP = "map"
    FILTER = "filter"
    TAKE = "take"
    SKIP = "skip"
    BATCH = "batch"
    FLATTEN = "flatten"


class OperationSpec(BaseModel):
    """One stage of a pipeline submitted over HTTP."""
    type: OperationType = Field(..., description="Stage type")
    fn: Optional[str] = Field(
        None,
        description="Registered function name for map/filter stages"
    )
    arg: Optional[Any] = Field(
        None,
        description="Argument bound to the registered function"
    )
    count: Optional[int] = Field(
        None,
        description="Element count for take/skip stages",
        ge=0
    )
    size: Optional[int] = Field(
        None,
        description="Batch size for batch stages",
        ge=1
    )
    depth: Optional[int] = Field(
        None,
        description="Flatten depth (unbounded when omitted)",
        ge=0
    )

    @model_validator(mode='after')
    def validate_stage_arguments(self):
        """Each stage type needs its own argument."""
        if self.type in (OperationType.MAP, OperationType.FILTER) and not self.fn:
            raise ValueError(f"{self.type.value} stage requires fn")
        if self.type in (OperationType.TAKE, OperationType.SKIP) and self.count is None:
            raise ValueError(f"{self.type.value} stage requires count")
        if self.type is OperationType.BATCH and self.size is None:
            raise ValueError("batch stage requires size")
        return self


MAX_RANGE_SIZE = 100_000


class RangeSource(BaseModel):
    """Inclusive integer range used as a pipeline source."""
    start: int = Field(..., description="First value")
    end: int = Field(..., description="Last value (inclusive)")
    step: int = Field(1, description="Step between values")

    @field_validator('step')
    @classmethod
    def validate_step(cls, v):
        if v == 0:
            raise ValueError("step must not be zero")
        return v

    @model_validator(mode='after')
    def validate_size(self):
        """At most MAX_RANGE_SIZE values per request."""
        size = max(0, (self.end - self.start) // self.step + 1)
        if size > MAX_RANGE_SIZE:
            raise ValueError(f"range yields {size} values, at most {MAX_RANGE_SIZE} allowed")
        return self


class PipelineRequest(BaseModel):
    """A source plus an ordered list of stages."""
    items: Optional[List[Any]] = Field(
        None,
        description="Literal collection used as the source"
    )
    range: Optional[RangeSource] = Field(
        None,
        description="Integer range used as the source"
    )
    operations: List[OperationSpec] = Field(
        default_factory=list,
        description="Stages applied in order"
    )

    @model_validator(mode='after')
    def validate_single_source(self):
        """Exactly one source must be given."""
        if (self.items is None) == (self.range is None):
            raise ValueError("provide exactly one of items or range")
        return self


class PerformanceReport(BaseModel):
    """Timing and memory of one eager drain."""
    operation: str = Field(..., description="Name of the measured operation")
    success: bool = Field(..., description="Whether the operation completed")
    execution_time_ms: float = Field(..., description="Wall time in milliseconds", ge=0)
    memory_usage_mb: float = Field(..., description="Peak traced memory in megabytes", ge=0)
    result_size: Optional[int] = Field(None, description="Number of results, if sized")
    error: Optional[str] = Field(None, description="Error message when the operation failed")


class PipelineResponse(BaseModel):
    """Result of running a pipeline."""
    ok: bool = Field(True, description="Processing success status")
    result: List[Any] = Field(..., description="Drained values in order")
    operations_applied: List[str] = Field(..., description="Stage types in order")
    performance: PerformanceReport = Field(..., description="Performance of the drain")


class PaginateResponse(BaseModel):
    """Result of draining a paginated source."""
    ok: bool = Field(True, description="Processing success status")
    items: List[Any] = Field(..., description="Items in source order")
    fetch_count: int = Field(..., description="Number of page fetches issued", ge=0)
    page_size: int = Field(..., description="Items per page", ge=1)


class StatusResponse(BaseModel):
    """Service status."""
    ok: bool = Field(True, description="Service status")
    status: str = Field(..., description="Status description")
    uptime_seconds: float = Field(..., description="Service uptime in seconds", ge=0)
    memory_usage_mb: Optional[float] = Field(
        None,
        description="Resident memory of the process in megabytes",
        ge=0
    )


class ErrorResponse(BaseModel):
    """Error response model"""
    ok: bool = Field(False, description="Request success status")
    error: str = Field(..., description="Error message")
    error_type: Optional[str] = Field(None, description="Exception class name")
    details: Optional[Dict[str, Any]] = Field(None, description="Error context")
    timestamp: datetime = Field(..., description="Error timestamp")
