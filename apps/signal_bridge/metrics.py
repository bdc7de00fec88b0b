"""
Prometheus metrics for the Signal Bridge.

Defined at module level so every component increments the same collectors;
exposed by the FastAPI app at ``/metrics``.
"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Signal pipeline
# ============================================================================

signals_received_total = Counter(
    "signal_bridge_signals_received_total",
    "Total number of signals received from the upstream generator",
    ["timeframe", "tier"],
)

signals_filtered_total = Counter(
    "signal_bridge_signals_filtered_total",
    "Total number of signals dropped before distribution",
    ["reason"],  # low_confidence, below_threshold
)

signals_distributed_total = Counter(
    "signal_bridge_signals_distributed_total",
    "Total number of signals fanned out to accounts",
)

upstream_requests_total = Counter(
    "signal_bridge_upstream_requests_total",
    "Total number of upstream generator requests",
    ["outcome"],  # success, filtered, error
)

upstream_attempts_total = Counter(
    "signal_bridge_upstream_attempts_total",
    "Total number of HTTP attempts against the upstream generator",
    ["outcome"],  # ok, retryable, fatal
)

cycle_duration_seconds = Histogram(
    "signal_bridge_cycle_duration_seconds",
    "Time taken to complete one scheduled signal cycle",
    buckets=[1.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
)

# ============================================================================
# Command queue
# ============================================================================

commands_created_total = Counter(
    "signal_bridge_commands_created_total",
    "Total number of per-account commands created",
)

commands_claimed_total = Counter(
    "signal_bridge_commands_claimed_total",
    "Total number of commands handed to EAs on poll",
)

commands_reported_total = Counter(
    "signal_bridge_commands_reported_total",
    "Total number of execution reports received",
    ["result"],  # completed, failed, ignored, recovered
)

accounts_skipped_total = Counter(
    "signal_bridge_accounts_skipped_total",
    "Total number of accounts skipped during distribution",
    ["reason"],
)

stale_commands = Gauge(
    "signal_bridge_stale_commands",
    "Processing commands past the staleness window at the last check",
)

notifications_sent_total = Counter(
    "signal_bridge_notifications_sent_total",
    "Total number of notification deliveries",
    ["status"],  # success, error
)
