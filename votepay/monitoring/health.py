"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Vote credit worker state
- Gateway circuit breaker state
"""
import time
from typing import Any, Dict, Optional

import structlog

from votepay.database.connection import Database
from votepay.integrations.gateway_client import CircuitBreaker
from votepay.workers.vote_credit_worker import VoteCreditWorker

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Only the database decides readiness; the worker and circuit breaker are
    reported for visibility.
    """

    def __init__(
        self,
        database: Database,
        vote_worker: Optional[VoteCreditWorker] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.database = database
        self.vote_worker = vote_worker
        self.circuit_breaker = circuit_breaker
        self.started_at = time.monotonic()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            await self.database.ping()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    def check_vote_worker(self) -> Dict[str, Any]:
        if self.vote_worker is None:
            return {"status": "unknown", "service": "vote_credit_worker"}
        return {
            "status": "healthy" if self.vote_worker.running else "stopped",
            "service": "vote_credit_worker",
            "pending": self.vote_worker.pending,
        }

    def check_gateway_circuit(self) -> Dict[str, Any]:
        if self.circuit_breaker is None:
            return {"status": "unknown", "service": "gateway"}
        state = self.circuit_breaker.state
        return {
            "status": "healthy" if state == "closed" else "degraded",
            "service": "gateway",
            "circuit_state": state,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks: Dict[str, Any] = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        checks["vote_credit_worker"] = self.check_vote_worker()
        checks["gateway"] = self.check_gateway_circuit()

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "uptime_seconds": round(time.monotonic() - self.started_at, 3),
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe endpoint."""
        return await self.check_all()
