"""OpenTelemetry logging and tracing for MCP tool calls"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber, set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from whatsnew_mcp.config import AppConfig, config

logger = logging.getLogger(__name__)

# Parameters safe to export as attributes (bounded value sets)
LOW_CARDINALITY_PARAMS = ("limit", "offset", "product", "force")
QUERY_PREVIEW_LENGTH = 200
ERROR_MESSAGE_LENGTH = 500


def _signal_endpoint(base: str, suffix: str) -> str:
    if base.endswith(suffix):
        return base
    return f"{base.rstrip('/')}{suffix}"


class TelemetryService:
    """Export one structured log record per tool invocation"""

    def __init__(self, app_config: AppConfig | None = None):
        self.config = app_config or config
        self.logging_enabled = self.config.otel_logging_enabled
        self.tracing_enabled = self.config.otel_tracing_enabled
        self.logger_provider = None
        self.tracer_provider = None
        self.otel_logger = None

        if self.logging_enabled:
            try:
                self._initialize_logging()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel logging: {e}. Logging disabled.")
                self.logging_enabled = False

        if self.tracing_enabled:
            try:
                self._initialize_tracing()
            except Exception as e:
                logger.warning(f"Failed to initialize OTel tracing: {e}. Tracing disabled.")
                self.tracing_enabled = False

    def _resource(self) -> Resource:
        return Resource(
            attributes={
                SERVICE_NAME: self.config.otel_service_name,
                SERVICE_VERSION: self.config.otel_service_version,
            }
        )

    def _initialize_logging(self) -> None:
        """Initialize OpenTelemetry logging with OTLP log exporter"""
        self.logger_provider = LoggerProvider(resource=self._resource())

        log_endpoint = _signal_endpoint(self.config.otel_endpoint, "/v1/logs")
        self.logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=log_endpoint))
        )
        set_logger_provider(self.logger_provider)
        self.otel_logger = self.logger_provider.get_logger(__name__)

        logger.info(f"OpenTelemetry logging initialized with endpoint: {log_endpoint}")

    def _initialize_tracing(self) -> None:
        """Initialize OpenTelemetry tracing with OTLP trace exporter"""
        self.tracer_provider = TracerProvider(resource=self._resource())

        trace_endpoint = _signal_endpoint(self.config.otel_endpoint, "/v1/traces")
        self.tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint))
        )
        trace.set_tracer_provider(self.tracer_provider)

        logger.info(f"OpenTelemetry tracing initialized with endpoint: {trace_endpoint}")

    def build_attributes(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        response: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> dict[str, str | int | float | bool]:
        """
        Build low-cardinality attributes for a tool call

        Free-text query values never become attributes.
        """
        attributes: dict[str, str | int | float | bool] = {
            "mcp.tool.name": tool_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "response.success": error is None,
        }

        for name in LOW_CARDINALITY_PARAMS:
            value = parameters.get(name)
            if value is not None:
                attributes[f"tool.param.{name}"] = value
        attributes["tool.param.has_query"] = bool(parameters.get("query"))

        if response:
            attributes["response.size_bytes"] = len(json.dumps(response, default=str))

            if tool_name == "search_updates":
                attributes["response.result_count"] = len(response.get("documents", []))
                if "total_count" in response:
                    attributes["response.total_count"] = int(response["total_count"])
                if "query_time_ms" in response:
                    attributes["response.query_time_ms"] = float(response["query_time_ms"])
            elif tool_name == "sync_updates":
                attributes["response.sync_success"] = bool(response.get("success"))
                attributes["response.document_count"] = int(response.get("document_count", 0))
                attributes["response.commit_count"] = int(response.get("commit_count", 0))
            elif tool_name == "get_sync_status" and "status" in response:
                attributes["response.status"] = str(response["status"])

        if error:
            attributes["error.type"] = type(error).__name__
            error_message = str(error)
            if len(error_message) > ERROR_MESSAGE_LENGTH:
                error_message = error_message[:ERROR_MESSAGE_LENGTH] + "..."
            attributes["error.message"] = error_message

        return attributes

    def build_body(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        error: Exception | None = None,
    ) -> str:
        """Human-readable log body; query text goes here, not in attributes"""
        parts = [f"[{tool_name}]", "FAILED" if error else "SUCCESS"]

        query = parameters.get("query")
        if query:
            preview = query[:QUERY_PREVIEW_LENGTH]
            if len(query) > QUERY_PREVIEW_LENGTH:
                preview += "..."
            parts.append(f'query="{preview}"')
        if parameters.get("id") is not None:
            parts.append(f"id={parameters['id']}")
        if error:
            parts.append(f"error={type(error).__name__}")

        return " ".join(parts)

    def log_tool_call(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        response: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        """
        Log a tool invocation and its outcome to OpenTelemetry

        Args:
            tool_name: Name of the MCP tool being called
            parameters: All parameters passed to the tool
            response: The response data (if successful)
            error: The error (if failed)
        """
        if not self.logging_enabled or not self.otel_logger:
            return

        try:
            attributes = self.build_attributes(tool_name, parameters, response, error)
            body = self.build_body(tool_name, parameters, error)
            severity = SeverityNumber.ERROR if error else SeverityNumber.INFO

            self.otel_logger.emit(
                body=body,
                severity_number=severity,
                attributes=attributes,
                timestamp=int(datetime.now(timezone.utc).timestamp() * 1e9),
            )
        except Exception as e:
            # Telemetry must never break a tool call
            logger.warning(f"Failed to log telemetry: {e}")


_telemetry_service: TelemetryService | None = None
_instrumentation_initialized = False


def _ensure_instrumentation_initialized() -> None:
    """Instrument httpx before any client is created"""
    global _instrumentation_initialized
    if not _instrumentation_initialized and config.otel_tracing_enabled:
        try:
            HTTPXClientInstrumentor().instrument()
            _instrumentation_initialized = True
            logger.info("HTTP request tracing instrumentation initialized")
        except Exception as e:
            logger.warning(f"Failed to initialize HTTP tracing instrumentation: {e}")


def get_telemetry_service() -> TelemetryService:
    """Get or create the global telemetry service instance"""
    global _telemetry_service
    _ensure_instrumentation_initialized()
    if _telemetry_service is None:
        _telemetry_service = TelemetryService()
    return _telemetry_service
