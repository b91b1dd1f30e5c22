"""Central registry for Prometheus metrics used across the guard service."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

log = logging.getLogger(__name__)


REQUEST_COUNTER = Counter(
	"abuseguard_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"abuseguard_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

GUARD_DECISIONS = Counter(
	"abuseguard_decisions_total",
	"Guard pipeline decisions by stage and outcome",
	["stage", "outcome"],
)

RATE_LIMIT_TRIPS = Counter(
	"abuseguard_rate_limit_trips_total",
	"Rate limit windows that denied a request",
	["policy"],
)

THREATS_DETECTED = Counter(
	"abuseguard_threats_detected_total",
	"Content rejected by threat signature class",
	["signature"],
)

SECURITY_EVENTS = Counter(
	"abuseguard_security_events_total",
	"Security events recorded by kind",
	["kind"],
)

SECURITY_EVENT_WRITE_FAILURES = Counter(
	"abuseguard_security_event_write_failures_total",
	"Security events that could not be persisted",
	["kind"],
)

ADMIN_ACTIONS = Counter(
	"abuseguard_admin_actions_total",
	"Admin audit log entries written",
	["action"],
)

BOOKKEEPING_FAILURES = Counter(
	"abuseguard_bookkeeping_failures_total",
	"Fail-open denormalised counter updates that failed",
	["operation"],
)

NOTIFICATIONS_CREATED = Counter(
	"abuseguard_notifications_created_total",
	"Notifications persisted",
	["type"],
)


def guard_decision(stage: str, outcome: str) -> None:
	GUARD_DECISIONS.labels(stage=stage, outcome=outcome).inc()


def rate_limit_trip(policy: str) -> None:
	RATE_LIMIT_TRIPS.labels(policy=policy).inc()


def threat_detected(signature: str) -> None:
	THREATS_DETECTED.labels(signature=signature).inc()


def security_event(kind: str) -> None:
	SECURITY_EVENTS.labels(kind=kind).inc()


def security_event_write_failed(kind: str) -> None:
	SECURITY_EVENT_WRITE_FAILURES.labels(kind=kind).inc()


def admin_action(action: str) -> None:
	ADMIN_ACTIONS.labels(action=action).inc()


def bookkeeping_failed(operation: str) -> None:
	BOOKKEEPING_FAILURES.labels(operation=operation).inc()


def notification_created(kind: str) -> None:
	NOTIFICATIONS_CREATED.labels(type=kind).inc()


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)
