# WORKFLOW: Pipeline orchestrator that turns raw tables into per-year circularity indicator tables.
# Used by: CLI (scripts/process_data.py), API pipeline endpoints, tests
# Functions:
# 1. CircularityPipeline.process_year() - Run every step for one year
# 2. CircularityPipeline.process_years() - Run a year range; a failed year does not stop the others
# 3. CircularityPipeline.prepare() - Write run-level tables (product mapping, rate parameters, country codes)
# 4. _run_step() - Compute one step in a worker thread with a timeout
# 5. _write_tables() - All-or-nothing replacement of the step's output tables, under the step timeout
#
# Year flow:
# production -> trade -> production_trade (merge + fallback) -> circularity_indicators
# (+ aggregates, unit values) -> material_flows -> collection_rates -> strategy_indicators -> cleanup
# Each step computes DataFrames first and writes only after the computation finished, so a
# step that fails or times out leaves no partial table behind.

"""
Pipeline orchestrator for circularity indicator tables.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import structlog

from core.catalog import ProductCatalog
from core.config import Settings, settings
from core.exceptions import PipelineStepError, StepTimeoutError
from db.models import (
    INTERMEDIATE_TABLES,
    CircularityParameter,
    CountryCodeMapping,
    ProductMappingCode,
    table_dtypes,
    table_name,
)
from db.session import (
    drop_tables,
    get_engine,
    init_db,
    read_table_or_empty,
    replace_model_rows,
    replace_tables,
)
from etl.collection_rates import category_collection_rates, product_collection_rates
from etl.country_codes import get_country_code_mapping
from etl.indicators import (
    build_circularity_indicators,
    build_country_aggregates,
    build_product_aggregates,
    build_unit_values,
)
from etl.material_flows import (
    category_composition,
    category_recovery_rates,
    product_composition,
    product_recovery_rates,
    select_observed_flows,
)
from etl.product_mapping import build_mapping_table
from etl.production_trade import (
    apply_trade_fallback,
    harmonize_production,
    harmonize_trade,
    merge_production_trade,
)
from etl.strategy_indicators import build_strategy_indicators
from etl.validators import (
    COLLECTION_RAW_COLUMNS,
    MASS_BALANCE_COLUMNS,
    PRODUCTION_RAW_COLUMNS,
    TRADE_RAW_COLUMNS,
    missing_columns,
    validate_raw_inputs,
)

logger = logging.getLogger(__name__)
events = structlog.get_logger("pipeline")

STEPS = [
    "production",
    "trade",
    "production_trade",
    "circularity_indicators",
    "material_flows",
    "collection_rates",
    "strategy_indicators",
    "cleanup",
]


@dataclass
class ProcessingOptions:
    """Named options for a pipeline run. None means "use the configured default"."""
    timeout_seconds: Optional[float] = None
    retain_intermediate: Optional[bool] = None
    years: Optional[List[int]] = None


@dataclass
class YearResult:
    year: int
    success: bool
    tables: Dict[str, int] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass
class RunResult:
    results: List[YearResult] = field(default_factory=list)

    @property
    def succeeded_years(self) -> List[int]:
        return [r.year for r in self.results if r.success]

    @property
    def failed_years(self) -> List[int]:
        return [r.year for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed_years


class CircularityPipeline:
    """Processes raw production, trade and waste tables into year tables."""

    def __init__(
        self,
        catalog: ProductCatalog,
        source_database_url: str,
        target_database_url: str,
        options: Optional[ProcessingOptions] = None,
        config: Settings = settings,
    ):
        self.catalog = catalog
        self.config = config
        self.options = options or ProcessingOptions()
        self.source_database_url = source_database_url
        self.target_database_url = target_database_url
        self.source_engine = get_engine(source_database_url)
        self.target_engine = get_engine(target_database_url)
        self.mapping = build_mapping_table(catalog)
        self._prepared = False

    @property
    def timeout_seconds(self) -> float:
        if self.options.timeout_seconds is not None:
            return self.options.timeout_seconds
        return self.config.step_timeout_seconds

    @property
    def retain_intermediate(self) -> bool:
        if self.options.retain_intermediate is not None:
            return self.options.retain_intermediate
        return self.config.retain_intermediate_tables

    def prepare(self) -> None:
        """
        Write the run-level tables: product mapping codes, circularity rate parameters
        and the PRODCOM country code mapping.
        """
        try:
            init_db(self.target_engine)
            replace_model_rows(self.target_engine, ProductMappingCode, self.mapping)
            replace_model_rows(self.target_engine, CircularityParameter, self.catalog.rate_parameters())
            replace_model_rows(self.target_engine, CountryCodeMapping, get_country_code_mapping())
            self._prepared = True
            logger.info(f"Run-level tables written ({len(self.mapping)} mapping rows)")
        except Exception as e:
            logger.error(f"Failed to write run-level tables: {e}")
            raise

    def _run_step(self, year: int, step: str, func: Callable[..., Any], *args) -> Any:
        """
        Run ``func`` in a worker thread and wait at most the configured timeout.

        Raises:
            PipelineStepError: if the computation fails or times out
        """
        started = time.time()
        events.info("step_started", year=year, step=step)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{step}-{year}")
        future = executor.submit(func, *args)
        try:
            result = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as e:
            timeout_error = StepTimeoutError(step, self.timeout_seconds)
            events.error("step_timed_out", year=year, step=step, timeout_seconds=self.timeout_seconds)
            raise PipelineStepError(year, step, timeout_error.message, cause=timeout_error) from e
        except PipelineStepError:
            raise
        except Exception as e:
            events.error(
                "step_failed",
                year=year,
                step=step,
                error_type=type(e).__name__,
                error_message=str(e),
                duration_ms=round((time.time() - started) * 1000, 2),
            )
            raise PipelineStepError(year, step, str(e), cause=e) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        events.info(
            "step_completed",
            year=year,
            step=step,
            duration_ms=round((time.time() - started) * 1000, 2),
        )
        return result

    def _write_tables(self, year: int, step: str, frames: Dict[str, pd.DataFrame]) -> Dict[str, int]:
        """
        Replace the year tables of one step; returns row counts per physical table.

        The write runs in a worker thread under the same timeout as the
        computation. On timeout the replacement is cancelled before its swap,
        so the previous tables stay in place.
        """
        tables = {
            table_name(kind, year): (frame, table_dtypes(kind))
            for kind, frame in frames.items()
        }
        cancelled = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{step}-{year}-write")
        future = executor.submit(replace_tables, self.target_engine, tables, cancelled)
        try:
            future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as e:
            cancelled.set()
            timeout_error = StepTimeoutError(step, self.timeout_seconds)
            events.error("step_write_timed_out", year=year, step=step, timeout_seconds=self.timeout_seconds)
            raise PipelineStepError(
                year, step, f"writing tables timed out: {timeout_error.message}", cause=timeout_error
            ) from e
        except Exception as e:
            events.error("step_write_failed", year=year, step=step, error_message=str(e))
            raise PipelineStepError(year, step, f"writing tables failed: {e}", cause=e) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        counts = {name: len(frame) for name, (frame, _) in tables.items()}
        events.info("tables_written", year=year, step=step, rows=counts)
        return counts

    def _load_raw(self, kind: str, name: str, columns: List[str], year: int) -> pd.DataFrame:
        """Read a raw table; absent tables become empty frames, malformed ones raise."""
        raw = read_table_or_empty(self.source_engine, name, columns, year)
        if raw.empty:
            return raw

        missing = missing_columns(raw, columns)
        if missing:
            raise ValueError(f"Table '{name}' is missing required columns: {missing}")

        report = validate_raw_inputs({kind: raw})
        for error in report["datasets"][kind]["errors"]:
            logger.warning(f"{name}: {error}")
        return raw

    # Step computations. They run in worker threads and only read.

    def _compute_production(self, year: int) -> pd.DataFrame:
        name = self.config.production_table_template.format(year=year)
        raw = self._load_raw("production", name, PRODUCTION_RAW_COLUMNS, year)
        return harmonize_production(raw, self.catalog, year)

    def _compute_trade(self, year: int) -> pd.DataFrame:
        name = self.config.trade_table_template.format(year=year)
        raw = self._load_raw("trade", name, TRADE_RAW_COLUMNS, year)
        return harmonize_trade(raw, self.mapping, year)

    def _compute_production_trade(self, production: pd.DataFrame, trade: pd.DataFrame) -> pd.DataFrame:
        return apply_trade_fallback(merge_production_trade(production, trade))

    def _compute_indicators(self, year: int, production_trade: pd.DataFrame) -> Dict[str, pd.DataFrame]:
        indicators = build_circularity_indicators(
            production_trade, self.catalog, year, self.config.trade_ratio_threshold
        )
        return {
            "circularity_indicators": indicators,
            "country_aggregates": build_country_aggregates(indicators, year),
            "product_aggregates": build_product_aggregates(indicators, year),
            "product_unit_values": build_unit_values(production_trade),
        }

    def _compute_material_flows(self, year: int) -> Dict[str, pd.DataFrame]:
        flows = self._load_raw("mass_balance", self.config.mass_balance_table, MASS_BALANCE_COLUMNS, year)
        observed = select_observed_flows(flows, year, self.config.observed_scenario_marker)
        composition = category_composition(observed, self.config.composition_flow_id)
        recovery = category_recovery_rates(
            observed, self.config.recovery_flow_ids, self.config.loss_flow_id
        )
        return {
            "product_material_composition": product_composition(composition, self.catalog),
            "product_material_recovery_rates": product_recovery_rates(composition, recovery, self.catalog),
        }

    def _compute_collection_rates(self, year: int) -> pd.DataFrame:
        name = self.config.collection_table_template.format(year=year)
        raw = self._load_raw("collection", name, COLLECTION_RAW_COLUMNS, year)
        category_rates = category_collection_rates(
            raw, self.config.collection_operation_codes, self.config.collection_unit_codes
        )
        return product_collection_rates(category_rates, self.catalog, year)

    def _compute_strategy(
        self,
        year: int,
        indicators: pd.DataFrame,
        collection: pd.DataFrame,
        recovery: pd.DataFrame,
    ) -> pd.DataFrame:
        return build_strategy_indicators(
            indicators, collection, recovery, self.catalog, year, self.config.eu_aggregate_geo
        )

    def process_year(self, year: int) -> YearResult:
        """
        Process one year.

        Args:
            year: Year to process

        Returns:
            YearResult with row counts per written table

        Raises:
            PipelineStepError: the year failed; carries the failing step
        """
        started = time.time()
        events.info("year_started", year=year)

        if not self._prepared:
            try:
                self.prepare()
            except Exception as e:
                raise PipelineStepError(year, "product_mapping", str(e), cause=e) from e

        tables: Dict[str, int] = {}

        production = self._run_step(year, "production", self._compute_production, year)
        tables.update(self._write_tables(year, "production", {"production_temp": production}))

        trade = self._run_step(year, "trade", self._compute_trade, year)
        tables.update(self._write_tables(year, "trade", {"trade_temp": trade}))

        production_trade = self._run_step(
            year, "production_trade", self._compute_production_trade, production, trade
        )
        tables.update(self._write_tables(year, "production_trade", {"production_trade": production_trade}))

        indicator_tables = self._run_step(
            year, "circularity_indicators", self._compute_indicators, year, production_trade
        )
        tables.update(self._write_tables(year, "circularity_indicators", indicator_tables))

        material_tables = self._run_step(year, "material_flows", self._compute_material_flows, year)
        tables.update(self._write_tables(year, "material_flows", material_tables))

        collection = self._run_step(year, "collection_rates", self._compute_collection_rates, year)
        tables.update(self._write_tables(year, "collection_rates", {"product_collection_rates": collection}))

        strategy = self._run_step(
            year,
            "strategy_indicators",
            self._compute_strategy,
            year,
            indicator_tables["circularity_indicators"],
            collection,
            material_tables["product_material_recovery_rates"],
        )
        tables.update(self._write_tables(
            year, "strategy_indicators", {"circularity_strategy_indicators": strategy}
        ))

        if not self.retain_intermediate:
            intermediate = [table_name(kind, year) for kind in INTERMEDIATE_TABLES]
            try:
                drop_tables(self.target_engine, intermediate)
            except Exception as e:
                raise PipelineStepError(year, "cleanup", str(e), cause=e) from e
            for name in intermediate:
                tables.pop(name, None)

        duration = time.time() - started
        events.info("year_completed", year=year, duration_ms=round(duration * 1000, 2), tables=len(tables))
        return YearResult(year=year, success=True, tables=tables, duration_seconds=round(duration, 3))

    def process_years(self, start_year: int, end_year: int) -> RunResult:
        """
        Process every year in [start_year, end_year].

        Only years listed in ``options.years`` are processed when that list is set.
        A failed year is recorded and the run continues with the next one.
        """
        if end_year < start_year:
            raise ValueError(f"end_year ({end_year}) is before start_year ({start_year})")

        years = list(range(start_year, end_year + 1))
        if self.options.years:
            years = [year for year in years if year in set(self.options.years)]

        run = RunResult()
        for year in years:
            started = time.time()
            try:
                run.results.append(self.process_year(year))
            except PipelineStepError as e:
                logger.error(f"Processing of {year} failed at step '{e.step}': {e.message}")
                run.results.append(YearResult(
                    year=year,
                    success=False,
                    failed_step=e.step,
                    error=e.message,
                    duration_seconds=round(time.time() - started, 3),
                ))

        logger.info(
            f"Processed {len(years)} years: {len(run.succeeded_years)} succeeded, "
            f"{len(run.failed_years)} failed {run.failed_years}"
        )
        return run
