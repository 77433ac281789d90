"""CloudWatch custom metrics for webhook outcomes and operator alerts.

All emission is fire-and-forget: exceptions are caught internally and logged
as warnings via structlog. Emission NEVER raises into or blocks the caller.

boto3 is synchronous, so put_metric_data calls are dispatched to a
ThreadPoolExecutor to keep the event loop free. The client carries short
connect/read timeouts and a single attempt: metrics are not worth delaying
an acknowledgement for.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import boto3
import structlog
from botocore.config import Config

logger = structlog.get_logger(__name__)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cw-metrics")

_CLIENT_CONFIG = Config(connect_timeout=2, read_timeout=2, retries={"max_attempts": 1})


class CloudWatchMetrics:
    """Emits delivery outcomes and operator-visible alerts."""

    def __init__(self, namespace: str, region: str, enabled: bool = True):
        self.namespace = namespace
        self.region = region
        self.enabled = enabled
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("cloudwatch", region_name=self.region, config=_CLIENT_CONFIG)
        return self._client

    def _put(self, metric_name: str, dimensions: list[dict]) -> None:
        """Synchronous put_metric_data. Runs in thread pool."""
        try:
            self._get_client().put_metric_data(
                Namespace=self.namespace,
                MetricData=[{
                    "MetricName": metric_name,
                    "Dimensions": dimensions,
                    "Value": 1.0,
                    "Unit": "Count",
                    "Timestamp": datetime.now(timezone.utc),
                }],
            )
        except Exception as e:
            logger.warning("metric_emit_failed", error=str(e), metric=metric_name)

    def _dispatch(self, metric_name: str, dimensions: list[dict]) -> None:
        if not self.enabled:
            return
        loop = asyncio.get_running_loop()
        loop.run_in_executor(_executor, self._put, metric_name, dimensions)

    async def emit_webhook_outcome(self, outcome: str, event_type: str | None = None) -> None:
        """Count one delivery by outcome (applied, stale, duplicate, unhandled, ...)."""
        dimensions = [{"Name": "Outcome", "Value": outcome}]
        if event_type:
            dimensions.append({"Name": "EventType", "Value": event_type})
        self._dispatch("Deliveries", dimensions)

    async def emit_operator_alert(self, kind: str, event_type: str | None = None) -> None:
        """Count an operator-visible condition; CloudWatch alarms page on these.

        kinds: authentication_failure, malformed_payload, dispute_created
        """
        dimensions = [{"Name": "Kind", "Value": kind}]
        if event_type:
            dimensions.append({"Name": "EventType", "Value": event_type})
        self._dispatch("OperatorAlerts", dimensions)
