# WORKFLOW: Pydantic request schemas for API input validation.
# Used by: FastAPI pipeline endpoints for request validation and documentation
# Schemas include:
# 1. ProcessingOptionsRequest - Processing options shared by all runs (databases come from settings)
# 2. ProcessYearRequest - For POST /pipeline/years/{year}
# 3. ProcessRangeRequest - For POST /pipeline/run
#
# Validation flow: HTTP request -> Pydantic validation -> Endpoint processing
# Ensures all inputs are properly formatted and validated before processing.

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProcessingOptionsRequest(BaseModel):
    """
    Options shared by single-year and range requests.

    Databases always come from the server settings; unknown fields such as
    database URLs are rejected.
    """
    model_config = ConfigDict(extra="forbid")

    timeout_seconds: Optional[float] = Field(None, gt=0, description="Per-step timeout in seconds")
    retain_intermediate: Optional[bool] = Field(None, description="Keep production_temp/trade_temp tables")


class ProcessYearRequest(ProcessingOptionsRequest):
    """Request schema for processing a single year."""


class ProcessRangeRequest(ProcessingOptionsRequest):
    """Request schema for processing a year range."""
    start_year: int = Field(..., ge=1990, le=2100, description="First year (inclusive)")
    end_year: int = Field(..., ge=1990, le=2100, description="Last year (inclusive)")
    years: Optional[List[int]] = Field(None, description="Only process these years of the range")

    @model_validator(mode="after")
    def check_range(self):
        if self.end_year < self.start_year:
            raise ValueError("end_year must not be before start_year")
        return self
