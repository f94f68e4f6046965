# WORKFLOW: Pipeline endpoints to trigger processing runs and inspect year tables.
# Used by: Operators, schedulers, integration testing
# Endpoints:
# 1. POST /pipeline/years/{year} - Process one year
# 2. POST /pipeline/run - Process a year range; failed years are reported, not raised
# 3. GET /pipeline/years/{year}/tables - Existence and row counts of a year's output tables
#
# Request flow: HTTP request -> Schema validation -> Catalog loading -> CircularityPipeline -> Response
# Pipeline runs block, so the endpoints are plain functions executed in FastAPI's threadpool.
# Both databases are taken from settings; only the CLI can point a run at other databases.

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, status

from api.schemas.request import ProcessingOptionsRequest, ProcessRangeRequest, ProcessYearRequest
from api.schemas.response import ErrorDetail, RunResponse, TablesResponse, TableSummary, YearResultResponse
from core.catalog import ProductCatalog, load_product_catalog
from core.config import settings
from core.exceptions import CatalogConfigurationError, PipelineStepError
from db.models import OUTPUT_TABLES, table_name
from db.session import get_engine, table_row_counts
from services.pipeline import CircularityPipeline, ProcessingOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


def get_catalog() -> ProductCatalog:
    """Load the product catalog configured in settings."""
    try:
        return load_product_catalog(settings.products_config_path)
    except CatalogConfigurationError as e:
        logger.error(f"Product catalog could not be loaded: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ErrorDetail(**e.to_dict()).model_dump(),
        )


def _build_pipeline(catalog: ProductCatalog, request: ProcessingOptionsRequest, **options) -> CircularityPipeline:
    return CircularityPipeline(
        catalog,
        source_database_url=settings.source_database_url,
        target_database_url=settings.target_database_url,
        options=ProcessingOptions(
            timeout_seconds=request.timeout_seconds,
            retain_intermediate=request.retain_intermediate,
            **options,
        ),
    )


@router.post("/years/{year}", response_model=YearResultResponse)
def process_year(
    request: ProcessYearRequest,
    year: int = Path(..., ge=1990, le=2100),
    catalog: ProductCatalog = Depends(get_catalog),
):
    """
    Process one year and replace its output tables.

    A failing step returns HTTP 500 with the year and step in the error context.
    """
    logger.info(f"Processing request for year {year}")
    pipeline = _build_pipeline(catalog, request)
    try:
        result = pipeline.process_year(year)
    except PipelineStepError as e:
        logger.error(f"Year {year} failed at step '{e.step}': {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ErrorDetail(**e.to_dict()).model_dump(),
        )

    return YearResultResponse.from_result(result)


@router.post("/run", response_model=RunResponse)
def process_range(
    request: ProcessRangeRequest,
    catalog: ProductCatalog = Depends(get_catalog),
):
    """
    Process every year of a range.

    Failed years are listed in the response; the run itself succeeds.
    """
    logger.info(f"Processing request for years {request.start_year}-{request.end_year}")
    pipeline = _build_pipeline(catalog, request, years=request.years)
    run = pipeline.process_years(request.start_year, request.end_year)
    return RunResponse.from_result(run)


@router.get("/years/{year}/tables", response_model=TablesResponse)
def year_tables(year: int = Path(..., ge=1990, le=2100)):
    """
    Row counts of the output tables of a year in the target database.
    """
    names = [table_name(kind, year) for kind in OUTPUT_TABLES]
    try:
        counts = table_row_counts(get_engine(settings.target_database_url), names)
    except Exception as e:
        logger.error(f"Failed to read table summary for {year}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to read table summary: {str(e)}",
        )

    return TablesResponse(
        year=year,
        tables=[
            TableSummary(table=name, exists=counts[name] is not None, row_count=counts[name])
            for name in names
        ],
    )
