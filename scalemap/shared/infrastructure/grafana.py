"""
Grafana OTLP Metrics Exporter
==============================

Pushes LLM usage and triage run metrics to Grafana Cloud via OTLP.

Metrics exported:
- llm_tokens_total / llm_prompt_tokens / llm_completion_tokens
- llm_latency_ms: reasoning-model request latency
- triage_processing_ms: wall-clock duration of a triage run
- triage_cost_estimate: projected or actual cost of a run
- triage_fallback: 1 when the run used base scores only
"""

import base64
import time
from typing import Optional, Dict, List, Any

import httpx

from scalemap.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class GrafanaOTLPExporter:
    """
    Export metrics to Grafana Cloud via the OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) JSON format with gauge data points.
    Export failures are logged and reported as False, never raised.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        service_name: str = "scalemap-triage",
        service_version: str = "1.0.0",
        environment: str = "development"
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            service_name: service.name resource attribute
            service_version: service.version resource attribute
            environment: deployment.environment resource attribute
        """
        self._host = host
        self._api_key = api_key
        self._instance_id = instance_id
        self._service_name = service_name
        self._service_version = service_version
        self._environment = environment
        self._enabled = bool(host and api_key and instance_id)

        if self._enabled:
            auth_pair = f"{instance_id}:{api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in host:
                self._url = f"{host}/otlp/v1/metrics"
            else:
                self._url = host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": host, "instance_id": instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(host),
                    "api_key_configured": bool(api_key),
                    "instance_id_configured": bool(instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def _attributes(self, values: Dict[str, Any]) -> List[dict]:
        attributes = [{"key": "service", "value": {"stringValue": self._service_name}}]
        for key, value in values.items():
            attributes.append({"key": key, "value": {"stringValue": str(value)}})
        return attributes

    @staticmethod
    def _gauge(name: str, unit: str, description: str, value: Any, timestamp_ns: int, attributes: List[dict]) -> dict:
        point = {"timeUnixNano": timestamp_ns, "attributes": attributes}
        if isinstance(value, float):
            point["asDouble"] = value
        else:
            point["asInt"] = int(value)
        return {
            "name": name,
            "unit": unit,
            "description": description,
            "gauge": {"dataPoints": [point]}
        }

    def build_payload(self, metrics: List[dict]) -> dict:
        """Wrap gauge metrics in an OTLP resourceMetrics envelope."""
        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": self._service_name}},
                            {"key": "service.version", "value": {"stringValue": self._service_version}},
                            {"key": "deployment.environment", "value": {"stringValue": self._environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def _send(self, payload: dict, context: Dict[str, Any]) -> bool:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics to Grafana", extra={"error": str(e), **context})
            return False

        if response.status_code in (200, 202):
            logger.debug("Metrics exported to Grafana", extra={"status_code": response.status_code, **context})
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url,
                **context
            }
        )
        return False

    async def export_llm_metrics(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        operation: str = "chat_completion"
    ) -> bool:
        """
        Export reasoning-model usage metrics to Grafana.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        timestamp_ns = int(time.time() * 1_000_000_000)
        attributes = self._attributes({"model": model, "operation": operation})

        payload = self.build_payload([
            self._gauge("llm_tokens_total", "1", "Total tokens used in LLM requests",
                        prompt_tokens + completion_tokens, timestamp_ns, attributes),
            self._gauge("llm_prompt_tokens", "1", "Prompt tokens in LLM requests",
                        prompt_tokens, timestamp_ns, attributes),
            self._gauge("llm_completion_tokens", "1", "Completion tokens generated",
                        completion_tokens, timestamp_ns, attributes),
            self._gauge("llm_latency_ms", "ms", "LLM request latency in milliseconds",
                        latency_ms, timestamp_ns, attributes),
        ])
        return await self._send(payload, {"model": model, "operation": operation})

    async def export_triage_metrics(
        self,
        processing_time_ms: int,
        cost_estimate: float,
        total_tokens: int,
        fallback: bool,
        sector: str,
        model: str
    ) -> bool:
        """
        Export the metrics of one completed triage run.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        timestamp_ns = int(time.time() * 1_000_000_000)
        attributes = self._attributes({"sector": sector, "model": model})

        payload = self.build_payload([
            self._gauge("triage_processing_ms", "ms", "Triage run duration",
                        processing_time_ms, timestamp_ns, attributes),
            self._gauge("triage_cost_estimate", "GBP", "Estimated triage cost",
                        float(cost_estimate), timestamp_ns, attributes),
            self._gauge("triage_tokens_total", "1", "Tokens used by a triage run",
                        total_tokens, timestamp_ns, attributes),
            self._gauge("triage_fallback", "1", "1 when the run used base scores only",
                        1 if fallback else 0, timestamp_ns, attributes),
        ])
        return await self._send(payload, {"sector": sector, "operation": "triage"})


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> Optional[GrafanaOTLPExporter]:
    """Get the global Grafana exporter, if one was initialized."""
    return _grafana_exporter


def init_grafana_exporter(
    host: Optional[str],
    api_key: Optional[str],
    instance_id: Optional[str],
    service_name: str = "scalemap-triage",
    service_version: str = "1.0.0",
    environment: str = "development"
) -> GrafanaOTLPExporter:
    """Initialize the global Grafana exporter with credentials."""
    global _grafana_exporter
    _grafana_exporter = GrafanaOTLPExporter(
        host=host,
        api_key=api_key,
        instance_id=instance_id,
        service_name=service_name,
        service_version=service_version,
        environment=environment
    )
    return _grafana_exporter
