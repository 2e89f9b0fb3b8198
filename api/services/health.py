# SPDX-License-Identifier: Apache-2.0

"""
Health Check Service

Reports the health of the workflow engine dependencies: MongoDB and the
AMQP event broker.
"""

import os
import time
from datetime import datetime
from typing import Dict, Any, List, Optional
from opentelemetry import trace

from services.amqp import AMQPNotifier, Notifier
from services.mongodb import MongoDBService

tracer = trace.get_tracer(__name__)


class HealthCheckService:
    """Service for workflow dependency health monitoring."""

    def __init__(self, mongodb_service: Optional[MongoDBService] = None, notifier: Optional[Notifier] = None):
        self.mongodb_service = mongodb_service
        self.notifier = notifier
        self.service_version = os.getenv('SERVICE_VERSION', '1.0.0')

    def get_health(self) -> Dict[str, Any]:
        """Get health status of every configured dependency."""
        with tracer.start_as_current_span("health.check") as span:
            start_time = time.time()

            mongodb_health = self._check_mongodb_health()
            amqp_health = self._check_amqp_health()

            overall_status = self._determine_overall_status([
                mongodb_health["status"],
                amqp_health["status"]
            ])

            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
                "health.mongodb_status": mongodb_health["status"],
                "health.amqp_status": amqp_health["status"]
            })

            return {
                "status": overall_status,
                "service": "beneficios-workflow",
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "mongodb": mongodb_health,
                    "amqp": amqp_health
                }
            }

    def _check_mongodb_health(self) -> Dict[str, Any]:
        """Check MongoDB connectivity."""
        if self.mongodb_service is None:
            return {"status": "disabled"}

        with tracer.start_as_current_span("health.mongodb_check") as span:
            start_time = time.time()
            health_info = self.mongodb_service.health_check()
            health_info["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
            health_info["last_check"] = datetime.utcnow().isoformat() + "Z"

            span.set_attribute("mongodb.status", health_info["status"])
            return health_info

    def _check_amqp_health(self) -> Dict[str, Any]:
        """Check AMQP broker connectivity."""
        if not isinstance(self.notifier, AMQPNotifier):
            return {"status": "disabled"}

        with tracer.start_as_current_span("health.amqp_check") as span:
            start_time = time.time()
            is_healthy = self.notifier.health_check()
            response_time = round((time.time() - start_time) * 1000, 2)

            status = "healthy" if is_healthy else "unhealthy"
            span.set_attributes({
                "amqp.status": status,
                "amqp.response_time_ms": response_time
            })

            return {
                "status": status,
                "response_time_ms": response_time,
                "exchange": self.notifier.config.exchange,
                "last_check": datetime.utcnow().isoformat() + "Z"
            }

    def _determine_overall_status(self, dependency_statuses: List[str]) -> str:
        """Determine overall system status based on dependency health."""
        active = [status for status in dependency_statuses if status != "disabled"]
        if all(status == "healthy" for status in active):
            return "healthy"
        elif any(status == "healthy" for status in active):
            return "degraded"
        else:
            return "unhealthy"
