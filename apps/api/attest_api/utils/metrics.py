"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Recording metrics
proofs_recorded = Counter(
    "attest_proofs_recorded_total",
    "Total proof records written",
    ["kind"],
)

provenance_appended = Counter(
    "attest_provenance_events_total",
    "Total provenance events appended",
    ["actor"],
)

# Verification metrics
verification_results = Counter(
    "attest_verification_results_total",
    "Per-artifact verification outcomes",
    ["status"],
)

verification_duration = Histogram(
    "attest_verification_duration_seconds",
    "Verification run duration",
)

compose_replay_results = Counter(
    "attest_compose_replay_results_total",
    "Compose replay outcomes",
    ["status"],
)

# Reconciliation metrics
reconciliation_items = Counter(
    "attest_reconciliation_items_total",
    "Items handled by the reconciliation scanner",
    ["operation", "outcome"],
)

# Nightly metrics
nightly_runs = Counter(
    "attest_nightly_runs_total",
    "Nightly verification runs",
    ["status"],
)

notification_deliveries = Counter(
    "attest_notification_deliveries_total",
    "Notification deliveries",
    ["channel", "status"],
)
