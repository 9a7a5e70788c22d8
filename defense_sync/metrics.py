"""
Prometheus metrics for the Chargeback Defense sync engine
"""

from prometheus_client import Counter, Gauge, Histogram

# Sync job metrics
sync_jobs_total = Counter(
    "defense_sync_jobs_total",
    "Sync jobs finished",
    ["vendor", "direction", "status"],
)

sync_job_duration = Histogram(
    "defense_sync_job_duration_seconds",
    "Sync job duration",
    ["vendor", "direction"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

sync_queue_depth = Gauge(
    "defense_sync_queue_depth",
    "Sync jobs waiting per lane",
    ["lane"],
)

# Adapter metrics
adapter_calls_total = Counter(
    "defense_sync_adapter_calls_total",
    "Adapter calls after retries",
    ["vendor", "operation", "outcome"],
)

adapter_retries_total = Counter(
    "defense_sync_adapter_retries_total",
    "Adapter call retries",
    ["vendor", "operation"],
)

# Matching and evidence
reservation_matches_total = Counter(
    "defense_sync_reservation_matches_total",
    "Reservation match attempts by resulting strategy",
    ["strategy"],
)

evidence_documents_total = Counter(
    "defense_sync_evidence_documents_total",
    "Evidence document fetches",
    ["evidence_type", "outcome"],
)

# Webhooks
webhook_deliveries_total = Counter(
    "defense_sync_webhook_deliveries_total",
    "Webhook deliveries received",
    ["vendor", "outcome"],
)

# Integration lifecycle
integrations_by_status = Gauge(
    "defense_sync_integrations",
    "Integrations per persisted status",
    ["status"],
)

circuit_breaker_trips_total = Counter(
    "defense_sync_circuit_breaker_trips_total",
    "Integrations moved to error by the circuit breaker",
    ["vendor", "reason"],
)

# Alerts
chargeback_alerts_total = Counter(
    "defense_sync_chargeback_alerts_total",
    "Chargeback alerts taken in",
    ["source", "outcome"],
)
