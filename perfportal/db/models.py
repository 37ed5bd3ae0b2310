from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Return a timezone-naive UTC timestamp for database storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin(SQLModel):
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class TestRunStatus:
    __test__ = False

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (UPLOADED, PROCESSING, COMPLETED, FAILED)


class Capability(TimestampMixin, table=True):
    __tablename__ = "capabilities"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    name: str = Field(index=True, unique=True, nullable=False)
    description: Optional[str] = None
    test_objective: Optional[str] = None
    test_scope: Optional[str] = None
    environment_details: Optional[str] = None
    acceptance_criteria: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    is_active: bool = Field(default=True, nullable=False)


class CapabilityTestCase(TimestampMixin, table=True):
    __tablename__ = "capability_test_cases"
    __table_args__ = (
        UniqueConstraint("capability_id", "test_case_name", name="uq_capability_test_case_name"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    capability_id: UUID = Field(foreign_key="capabilities.id", nullable=False, index=True)
    test_case_name: str = Field(nullable=False)
    description: Optional[str] = None
    priority: Optional[str] = None


class TestRun(TimestampMixin, table=True):
    __tablename__ = "test_runs"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    capability_id: UUID = Field(foreign_key="capabilities.id", nullable=False, index=True)
    test_name: str = Field(nullable=False)
    test_date: Optional[datetime] = Field(default=None)
    uploaded_by: Optional[str] = None
    file_name: Optional[str] = None
    storage_path: Optional[str] = None
    file_type: str = Field(default="jtl", nullable=False)
    status: str = Field(default=TestRunStatus.UPLOADED, index=True)
    description: Optional[str] = None
    error_message: Optional[str] = None
    build_number: Optional[str] = Field(default=None, index=True)

    # Summary columns, one per overall aggregate metric.
    total_requests: Optional[int] = None
    successful_requests: Optional[int] = None
    failed_requests: Optional[int] = None
    avg_response_time: Optional[float] = None
    min_response_time: Optional[float] = None
    max_response_time: Optional[float] = None
    median_response_time: Optional[float] = None
    percentile_90: Optional[float] = None
    percentile_95: Optional[float] = None
    percentile_99: Optional[float] = None
    throughput: Optional[float] = None
    error_rate: Optional[float] = None
    test_duration_seconds: Optional[float] = None

    rows_parsed: Optional[int] = None
    rows_skipped: Optional[int] = None
    capability_specific_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
