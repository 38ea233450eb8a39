"""Tests for Prometheus metrics."""
from livebridge.metrics import Metrics


def test_registries_are_isolated():
    first, second = Metrics(), Metrics()
    first.record_auth_rejection()

    assert first.registry.get_sample_value("livebridge_auth_rejections_total") == 1
    assert second.registry.get_sample_value("livebridge_auth_rejections_total") == 0


def test_app_up():
    metrics = Metrics(service_name="livebridge", version="0.1.0")
    assert metrics.registry.get_sample_value("app_up", {"service": "livebridge", "version": "0.1.0"}) == 1


def test_event_types_are_lowercased():
    metrics = Metrics()
    metrics.record_event_received("Track")
    metrics.record_event_received("track")
    metrics.record_event_received(None)

    assert metrics.registry.get_sample_value("livebridge_events_received_total", {"event_type": "track"}) == 2
    assert metrics.registry.get_sample_value("livebridge_events_received_total", {"event_type": "unknown"}) == 1


def test_outcome_counters():
    metrics = Metrics()
    metrics.record_token_exchange("success")
    metrics.record_token_exchange("invalid_credentials")
    metrics.record_profile_lookup("error")
    metrics.record_reconnect_attempt()
    metrics.record_normalization_gap()

    assert metrics.registry.get_sample_value("livebridge_token_exchanges_total", {"outcome": "success"}) == 1
    assert metrics.registry.get_sample_value("livebridge_token_exchanges_total", {"outcome": "invalid_credentials"}) == 1
    assert metrics.registry.get_sample_value("livebridge_profile_lookups_total", {"outcome": "error"}) == 1
    assert metrics.registry.get_sample_value("livebridge_reconnect_attempts_total") == 1
    assert metrics.registry.get_sample_value("livebridge_normalization_gaps_total") == 1


def test_active_sessions_gauge():
    metrics = Metrics()
    metrics.set_active_sessions(3)
    assert metrics.registry.get_sample_value("livebridge_sessions_active") == 3


def test_process_metrics():
    metrics = Metrics()
    metrics.update_system_metrics()
    assert metrics.registry.get_sample_value("process_resident_memory_bytes", {"service": "livebridge"}) > 0
