"""Unit tests for telemetry service"""

from unittest.mock import MagicMock, patch

from whatsnew_mcp.services.telemetry import TelemetryService


def _config(logging_enabled=False, tracing_enabled=False):
    config = MagicMock()
    config.otel_logging_enabled = logging_enabled
    config.otel_tracing_enabled = tracing_enabled
    config.otel_endpoint = "http://localhost:4318"
    config.otel_service_name = "test-service"
    config.otel_service_version = "1.0.0"
    return config


class TestTelemetryService:
    """Test telemetry service initialization and logging"""

    def test_telemetry_service_disabled(self):
        """Test that telemetry can be disabled"""
        service = TelemetryService(_config())

        assert service.logging_enabled is False
        assert service.tracing_enabled is False
        assert service.otel_logger is None

    @patch("whatsnew_mcp.services.telemetry.set_logger_provider")
    def test_telemetry_logging_enabled(self, mock_set_logger_provider):
        """Test that logging initializes when enabled"""
        service = TelemetryService(_config(logging_enabled=True))

        assert service.logging_enabled is True
        assert service.logger_provider is not None
        mock_set_logger_provider.assert_called_once()

    @patch("whatsnew_mcp.services.telemetry.trace.set_tracer_provider")
    def test_telemetry_tracing_enabled(self, mock_set_tracer_provider):
        """Test that tracing initializes when enabled"""
        service = TelemetryService(_config(tracing_enabled=True))

        assert service.tracing_enabled is True
        assert service.tracer_provider is not None
        mock_set_tracer_provider.assert_called_once()

    @patch(
        "whatsnew_mcp.services.telemetry.LoggerProvider", side_effect=RuntimeError("exporter down")
    )
    def test_initialization_failure_disables_logging(self, mock_provider):
        """Test that a failing exporter setup does not raise"""
        service = TelemetryService(_config(logging_enabled=True))

        assert service.logging_enabled is False

    def test_log_tool_call_noop_when_disabled(self):
        """Test that nothing is emitted when logging is disabled"""
        service = TelemetryService(_config())
        service.otel_logger = MagicMock()

        service.log_tool_call("search_updates", {"query": "x"})

        service.otel_logger.emit.assert_not_called()

    def test_log_tool_call_emits_record(self):
        """Test that an enabled service emits one record per call"""
        service = TelemetryService(_config())
        service.logging_enabled = True
        service.otel_logger = MagicMock()

        service.log_tool_call(
            "search_updates",
            {"query": "inventory", "limit": 5, "offset": 0},
            response={"documents": [{}, {}], "total_count": 7, "query_time_ms": 1.5},
        )

        service.otel_logger.emit.assert_called_once()
        kwargs = service.otel_logger.emit.call_args.kwargs
        assert kwargs["attributes"]["response.result_count"] == 2
        assert kwargs["attributes"]["response.total_count"] == 7
        assert 'query="inventory"' in kwargs["body"]

    def test_emit_failure_is_swallowed(self):
        """Test that telemetry errors never break a tool call"""
        service = TelemetryService(_config())
        service.logging_enabled = True
        service.otel_logger = MagicMock()
        service.otel_logger.emit.side_effect = RuntimeError("collector down")

        service.log_tool_call("get_update", {"id": 1}, error=LookupError("missing"))


class TestAttributes:
    """Test attribute construction"""

    def test_query_text_is_not_an_attribute(self):
        service = TelemetryService(_config())

        attributes = service.build_attributes(
            "search_updates", {"query": "secret roadmap", "product": "Sales", "limit": 3}
        )

        assert "secret roadmap" not in attributes.values()
        assert attributes["tool.param.has_query"] is True
        assert attributes["tool.param.product"] == "Sales"
        assert attributes["tool.param.limit"] == 3

    def test_sync_response_attributes(self):
        service = TelemetryService(_config())

        attributes = service.build_attributes(
            "sync_updates",
            {"force": True},
            response={"success": True, "document_count": 4, "commit_count": 2},
        )

        assert attributes["tool.param.force"] is True
        assert attributes["response.sync_success"] is True
        assert attributes["response.document_count"] == 4

    def test_error_attributes_are_truncated(self):
        service = TelemetryService(_config())

        attributes = service.build_attributes(
            "get_update", {"id": 9}, error=ValueError("x" * 600)
        )

        assert attributes["response.success"] is False
        assert attributes["error.type"] == "ValueError"
        assert len(attributes["error.message"]) == 503

    def test_body_truncates_long_queries(self):
        service = TelemetryService(_config())

        body = service.build_body("search_updates", {"query": "q" * 300})

        assert body.startswith("[search_updates] SUCCESS")
        assert "q" * 200 + "..." in body
