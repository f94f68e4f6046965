# WORKFLOW: Exception hierarchy for the circularity indicators pipeline.
# Used by: Catalog loading, pipeline orchestrator, API routers, CLI
# Exceptions:
# 1. CircularityPipelineError - Base class carrying a context dictionary
# 2. CatalogConfigurationError - Invalid product catalog (fatal before any year runs)
# 3. MissingInputError - Expected raw table absent (normally downgraded to a warning)
# 4. PipelineStepError - A step failed for one year (fatal for that year only)
# 5. StepTimeoutError - A step exceeded the configured timeout
# 6. TableWriteCancelledError - A table replacement was abandoned before its swap
#
# Error flow: Step failure -> PipelineStepError(year, step) -> caller decides to re-run

"""
Exception hierarchy for the circularity indicators pipeline.
"""

from typing import Any, Dict, List, Optional


class CircularityPipelineError(Exception):
    """Base exception with structured context for logging and API responses."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


class CatalogConfigurationError(CircularityPipelineError):
    """Product catalog is missing, unreadable or inconsistent."""


class MissingInputError(CircularityPipelineError):
    """An expected raw input table does not exist for the requested year."""

    def __init__(self, table_name: str, year: Optional[int] = None):
        super().__init__(
            f"Input table '{table_name}' is not available",
            context={"table": table_name, "year": year},
        )
        self.table_name = table_name
        self.year = year


class StepTimeoutError(CircularityPipelineError):
    """A pipeline step did not finish within the configured timeout."""

    def __init__(self, step: str, timeout_seconds: float):
        super().__init__(
            f"Step '{step}' exceeded timeout of {timeout_seconds}s",
            context={"step": step, "timeout_seconds": timeout_seconds},
        )
        self.step = step
        self.timeout_seconds = timeout_seconds


class TableWriteCancelledError(CircularityPipelineError):
    """A table replacement was cancelled; no target table was changed."""

    def __init__(self, tables: List[str]):
        super().__init__(
            f"Replacement of {', '.join(tables)} was cancelled",
            context={"tables": tables},
        )
        self.tables = tables


class PipelineStepError(CircularityPipelineError):
    """
    A step failed while processing one year.

    Carries the year and step name so callers can decide whether to re-run
    that year. Tables written by earlier steps of the year stay intact; the
    failing step's staging tables are dropped.
    """

    def __init__(self, year: int, step: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Year {year}, step '{step}': {message}",
            context={"year": year, "step": step},
        )
        self.year = year
        self.step = step
        self.cause = cause
