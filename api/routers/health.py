# WORKFLOW: Health check endpoints for monitoring and operational status.
# Used by: Load balancers, monitoring systems, operational dashboards
# Endpoints:
# 1. /healthz - Basic health check (always returns healthy)
# 2. /readyz - Readiness check with service dependencies
# 3. /livez - Liveness check for Kubernetes probes
#
# Health flow: Health check request -> Service status check -> Health response
# Readiness flow: Readiness check -> Source/target database and product catalog -> Ready/Not ready
# Used for service discovery, load balancing, and operational monitoring.

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from core.catalog import load_product_catalog
from core.config import settings
from core.exceptions import CatalogConfigurationError
from db.session import check_db_connection

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/healthz")
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        Health status of the API
    """
    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": settings.version,
        "environment": settings.environment
    }


@router.get("/readyz")
def readiness_check():
    """
    Readiness check endpoint.

    Checks if the service is ready to handle requests by verifying:
    - Source (raw) database connection
    - Target (processed) database connection
    - Product catalog validity

    Returns:
        Readiness status with detailed checks
    """
    checks = {
        "source_database": check_db_connection(settings.source_database_url),
        "target_database": check_db_connection(settings.target_database_url),
        "product_catalog": False,
    }

    try:
        load_product_catalog(settings.products_config_path)
        checks["product_catalog"] = True
    except CatalogConfigurationError as e:
        logger.error(f"Product catalog check failed: {e.message}")

    is_ready = all(checks.values())

    return {
        "status": "ready" if is_ready else "not_ready",
        "timestamp": _now(),
        "checks": checks,
        "version": settings.version
    }


@router.get("/livez")
async def liveness_check():
    """
    Liveness check endpoint.

    Simple check to determine if the service is alive.
    Used by Kubernetes liveness probes.

    Returns:
        Liveness status
    """
    return {
        "status": "alive",
        "timestamp": _now()
    }
