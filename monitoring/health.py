"""
Health check endpoints for Kubernetes readiness and liveness checks.

Checks:
- Database connectivity
- Payment gateways configured
"""
from typing import TYPE_CHECKING, Any, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from database.connection import Database

if TYPE_CHECKING:
    from gateways.registry import GatewayRegistry

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Gateway configuration check
    - Overall system health status
    """

    def __init__(self, database: Database, gateways: "GatewayRegistry"):
        """
        Initialize health check service.

        Args:
            database: Database handle
            gateways: Registry of enabled gateway adapters
        """
        self.database = database
        self.gateways = gateways

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with self.database.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_gateways(self) -> Dict[str, Any]:
        """
        Check that at least one payment gateway is enabled.

        No provider call is made; credentials are validated at startup.

        Raises:
            HealthCheckError: If no gateway is enabled
        """
        methods = [m.value for m in self.gateways.methods]
        if not methods:
            raise HealthCheckError("No payment gateway is enabled")

        return {
            "status": "healthy",
            "service": "gateways",
            "enabled": methods,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("gateways", self.check_gateways)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {
                    "status": "unhealthy",
                    "service": name,
                    "error": str(e),
                }
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness endpoint: all dependencies must be available."""
        return await self.check_all()
