# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Auth flow metrics ---
LOGIN_SUCCESSES = Counter("auth_login_success_total",
                          "Login successes", registry=APP_REGISTRY)
LOGIN_FAILURES = Counter("auth_login_failure_total", "Login failures", [
                         "reason"], registry=APP_REGISTRY)
FORBIDDEN = Counter(
    "auth_forbidden_total", "Requests rejected for missing org role", registry=APP_REGISTRY
)

# --- Ledger ---
JOURNALS_CREATED = Counter("gl_journals_created_total", "Journals created", [
                           "source"], registry=APP_REGISTRY)
JOURNALS_POSTED = Counter("gl_journals_posted_total",
                          "Journals posted", registry=APP_REGISTRY)
POSTING_BLOCKED = Counter("gl_posting_blocked_total", "Postings refused", [
                          "reason"], registry=APP_REGISTRY)
PERIOD_TRANSITIONS = Counter("gl_period_transitions_total", "Fiscal period status changes", [
                             "status"], registry=APP_REGISTRY)

# --- Billing / Webhook ---
WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total", "Webhook events", ["provider", "event", "outcome"], registry=APP_REGISTRY
)
INVOICES_CREATED = Counter("billing_invoices_created_total", "Invoices created", [
                           "kind"], registry=APP_REGISTRY)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    LOGIN_FAILURES.labels(reason="bad_credentials").inc(0)
    for reason in ("unbalanced", "period_closed", "already_posted", "journal_voided"):
        POSTING_BLOCKED.labels(reason=reason).inc(0)
    for status in ("Open", "Closed", "Locked"):
        PERIOD_TRANSITIONS.labels(status=status).inc(0)
    WEBHOOK_EVENTS.labels(
        provider="paystack", event="charge.success", outcome="handled").inc(0)
    INVOICES_CREATED.labels(kind="proration").inc(0)
