"""
Unit tests for envelope parsing and gateway metrics.
"""

import pytest

from shared.envelope import Err, MalformedEnvelopeError, Ok, parse_envelope
from shared.metrics import MetricsCollector


class TestParseEnvelope:
    """Test cases for parse_envelope."""

    def test_success(self):
        assert parse_envelope({"success": True, "data": {"id": "u1"}}) == Ok({"id": "u1"})

    def test_success_without_data(self):
        assert parse_envelope({"success": True}) == Ok(None)

    def test_error(self):
        payload = {"success": False, "error": {"code": "USER_NOT_FOUND", "message": "User not found"}}

        envelope = parse_envelope(payload)

        assert envelope == Err("USER_NOT_FOUND", "User not found")
        assert envelope.to_dict() == payload

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {"data": {}},
        {"success": "yes"},
        {"success": False},
        {"success": False, "error": {"message": "no code"}},
    ])
    def test_malformed(self, payload):
        with pytest.raises(MalformedEnvelopeError):
            parse_envelope(payload)


class TestGatewayMetrics:
    """Test cases for the gateway-specific collectors."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("gateway")

    def test_breaker_state_gauge(self, metrics):
        metrics.record_breaker_state("users", "open")

        gauge = metrics.get_metric("circuit_breaker_state")
        assert metrics.registry.get_sample_value("circuit_breaker_state", {"breaker": "users"}) == 2
        assert gauge is not None
        assert metrics.registry.get_sample_value(
            "circuit_breaker_transitions_total", {"breaker": "users", "state": "open"}
        ) == 1

    def test_backend_call_counter(self, metrics):
        metrics.record_backend_call("orders", "fallback")
        metrics.record_backend_call("orders", "fallback")

        assert metrics.registry.get_sample_value(
            "backend_calls_total", {"backend": "orders", "outcome": "fallback"}
        ) == 2

    def test_backend_metrics_only_on_gateway(self):
        assert MetricsCollector("users").get_metric("backend_calls_total") is None
