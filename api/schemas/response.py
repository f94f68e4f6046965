# WORKFLOW: Pydantic response schemas for pipeline endpoints.
# Used by: API pipeline router, testing
# Schemas include:
# 1. YearResultResponse - Outcome of one processed year with row counts per table
# 2. RunResponse - Outcome of a year range
# 3. TableSummary/TablesResponse - Existence and row counts of a year's output tables
# 4. ErrorDetail - Structured error carried in HTTP error responses
#
# Response flow: Pipeline result -> Pydantic model -> API response

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from services.pipeline import RunResult, YearResult


class YearResultResponse(BaseModel):
    year: int
    success: bool
    tables: Dict[str, int] = Field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def from_result(cls, result: YearResult) -> "YearResultResponse":
        return cls(
            year=result.year,
            success=result.success,
            tables=result.tables,
            failed_step=result.failed_step,
            error=result.error,
            duration_seconds=result.duration_seconds,
        )


class RunResponse(BaseModel):
    success: bool
    succeeded_years: List[int]
    failed_years: List[int]
    results: List[YearResultResponse]

    @classmethod
    def from_result(cls, run: RunResult) -> "RunResponse":
        return cls(
            success=run.success,
            succeeded_years=run.succeeded_years,
            failed_years=run.failed_years,
            results=[YearResultResponse.from_result(r) for r in run.results],
        )


class TableSummary(BaseModel):
    table: str
    exists: bool
    row_count: Optional[int] = None


class TablesResponse(BaseModel):
    year: int
    tables: List[TableSummary]


class ErrorDetail(BaseModel):
    error_type: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
