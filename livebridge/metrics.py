"""
Prometheus metrics for the LiveBridge service.

Every ``Metrics`` instance owns its registry, so apps built in tests never
collide on metric names.
"""
import os

import psutil
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class Metrics:
    """HTTP, process and live-session metrics."""

    def __init__(self, service_name: str = "livebridge", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()
        r = self.registry

        # HTTP
        self.http_requests_total = Counter(
            "http_requests_total", "Total HTTP requests",
            ["service", "method", "path", "status"], registry=r,
        )
        self.http_request_duration = Histogram(
            "http_request_duration_seconds", "HTTP request duration in seconds",
            ["service", "method", "path"], registry=r,
        )
        self.http_requests_active = Gauge("http_requests_active", "Number of active HTTP requests", registry=r)

        Info("app", "Application information", registry=r).info({"service": service_name, "version": version})
        self.app_up = Gauge("app_up", "Application up status (1=up, 0=down)", ["service", "version"], registry=r)
        self.app_up.labels(service=service_name, version=version).set(1)

        # Live sessions
        self.sessions_active = Gauge("livebridge_sessions_active", "Number of mounted live sessions", registry=r)
        self.websocket_connections = Gauge(
            "livebridge_websocket_connections", "UI WebSocket connections across all sessions", registry=r,
        )
        self.events_received_total = Counter(
            "livebridge_events_received_total", "Canonical events appended to session logs",
            ["event_type"], registry=r,
        )
        self.normalization_gaps_total = Counter(
            "livebridge_normalization_gaps_total", "Raw records with synthesized fields", registry=r,
        )
        self.token_exchanges_total = Counter(
            "livebridge_token_exchanges_total", "Identity exchanges by outcome", ["outcome"], registry=r,
        )
        self.reconnect_attempts_total = Counter(
            "livebridge_reconnect_attempts_total", "Stream reconnection attempts", registry=r,
        )
        self.auth_rejections_total = Counter(
            "livebridge_auth_rejections_total", "Stream connections rejected for authentication", registry=r,
        )
        self.profile_lookups_total = Counter(
            "livebridge_profile_lookups_total", "Profile lookups by outcome", ["outcome"], registry=r,
        )

        # Process (psutil)
        self.process_cpu_seconds = Counter(
            "process_cpu_seconds_total", "Total CPU time consumed by process", ["service"], registry=r,
        )
        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes", "Resident memory size in bytes", ["service"], registry=r,
        )
        self.process_open_fds = Gauge(
            "process_open_fds", "Number of open file descriptors", ["service"], registry=r,
        )
        self._last_cpu_total = 0.0
        self.update_system_metrics()

    def update_system_metrics(self):
        """Refresh process metrics; best effort."""
        try:
            process = psutil.Process(os.getpid())
            cpu = process.cpu_times()
            cpu_total = cpu.user + cpu.system
            if cpu_total > self._last_cpu_total:
                self.process_cpu_seconds.labels(service=self.service_name).inc(cpu_total - self._last_cpu_total)
            self._last_cpu_total = cpu_total
            self.process_memory_bytes.labels(service=self.service_name).set(process.memory_info().rss)
            if hasattr(process, "num_fds"):
                self.process_open_fds.labels(service=self.service_name).set(process.num_fds())
        except psutil.Error:
            pass

    def record_event_received(self, event_type: str):
        self.events_received_total.labels(event_type=(event_type or "unknown").lower()).inc()

    def record_normalization_gap(self):
        self.normalization_gaps_total.inc()

    def record_token_exchange(self, outcome: str):
        self.token_exchanges_total.labels(outcome=outcome).inc()

    def record_reconnect_attempt(self):
        self.reconnect_attempts_total.inc()

    def record_auth_rejection(self):
        self.auth_rejections_total.inc()

    def record_profile_lookup(self, outcome: str):
        self.profile_lookups_total.labels(outcome=outcome).inc()

    def set_active_sessions(self, count: int):
        self.sessions_active.set(count)

    def set_websocket_connections(self, count: int):
        self.websocket_connections.set(count)
