# WORKFLOW: Command-line entry point for processing circularity indicator years.
# Used by: Scheduled batch runs, manual re-runs of single years
# Functions:
# 1. parse_args() - Year range, database URLs, catalog path and processing options
# 2. setup_directories() - Create the local data directory for SQLite databases
# 3. main() - Load catalog -> build pipeline -> process years -> report
#
# Processing flow: products.toml -> ProductCatalog -> CircularityPipeline.process_years() -> exit code
# Exit codes: 0 all years succeeded, 1 at least one year failed, 2 invalid product catalog

"""
Command-line entry point for processing circularity indicator years.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.catalog import load_product_catalog  # noqa: E402
from core.config import settings  # noqa: E402
from core.exceptions import CatalogConfigurationError  # noqa: E402
from services.pipeline import CircularityPipeline, ProcessingOptions  # noqa: E402

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Process circularity indicator tables for a range of years')
    parser.add_argument('--start-year', type=int, required=True, help='First year to process')
    parser.add_argument('--end-year', type=int, help='Last year to process (defaults to --start-year)')
    parser.add_argument('--source-db', default=settings.source_database_url, help='Raw database URL')
    parser.add_argument('--target-db', default=settings.target_database_url, help='Processed database URL')
    parser.add_argument('--products-config', default=settings.products_config_path, help='Path to products.toml')
    parser.add_argument('--timeout', type=float, default=None, help='Per-step timeout in seconds')
    parser.add_argument('--keep-intermediate', action='store_true', help='Keep production_temp/trade_temp tables')
    parser.add_argument('--log-level', default=settings.log_level, help='Logging level')
    return parser.parse_args(argv)


def setup_directories(*database_urls: str) -> None:
    """
    Create parent directories of file-based SQLite databases.
    """
    for url in database_urls:
        if url.startswith('sqlite:///') and ':memory:' not in url:
            Path(url[len('sqlite:///'):]).parent.mkdir(parents=True, exist_ok=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main processing function.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    end_year = args.end_year if args.end_year is not None else args.start_year
    if end_year < args.start_year:
        logger.error(f"--end-year ({end_year}) is before --start-year ({args.start_year})")
        return 2

    try:
        catalog = load_product_catalog(args.products_config)
    except CatalogConfigurationError as e:
        logger.error(f"Invalid product catalog: {e.message} {e.context}")
        return 2

    setup_directories(args.source_db, args.target_db)

    pipeline = CircularityPipeline(
        catalog,
        source_database_url=args.source_db,
        target_database_url=args.target_db,
        options=ProcessingOptions(
            timeout_seconds=args.timeout,
            retain_intermediate=args.keep_intermediate or None,
        ),
    )

    logger.info(f"Processing years {args.start_year}-{end_year}")
    run = pipeline.process_years(args.start_year, end_year)

    for result in run.results:
        if result.success:
            logger.info(f"{result.year}: ok ({len(result.tables)} tables, {result.duration_seconds}s)")
        else:
            logger.error(f"{result.year}: failed at step '{result.failed_step}': {result.error}")

    return 0 if run.success else 1


if __name__ == "__main__":
    sys.exit(main())
