"""
Prometheus metrics for payment orchestration monitoring.

Tracks:
- Payment outcomes by error code
- Gateway call counts and duration
- Rate-limit decisions
- Vote credit outcomes and queue depth
- Persistence failures
- Gateway circuit breaker state
"""
from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "votepay_payment_requests_total",
    "Total number of payment requests",
    ["outcome"],  # success, replayed, or an error code
)

payment_processing_duration_seconds = Histogram(
    "votepay_payment_processing_duration_seconds",
    "Payment processing duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0),
)

payment_amount = Histogram(
    "votepay_payment_amount",
    "Requested payment amounts",
    buckets=(10, 50, 100, 500, 1000, 5000, 10000, 50000),
)

# Gateway metrics
gateway_requests_total = Counter(
    "votepay_gateway_requests_total",
    "Total gateway requests",
    ["channel", "outcome"],  # outcome: success, declined, unreachable
)

gateway_duration_seconds = Histogram(
    "votepay_gateway_duration_seconds",
    "Gateway call duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0),
)

gateway_circuit_breaker_state = Gauge(
    "votepay_gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Rate limiting metrics
rate_limit_decisions_total = Counter(
    "votepay_rate_limit_decisions_total",
    "Total rate-limit decisions",
    ["limiter", "decision", "source"],  # source: limiter, cache
)

# Vote credit metrics
vote_credits_total = Counter(
    "votepay_vote_credits_total",
    "Total vote credit outcomes",
    ["status"],  # applied, duplicate, not_found, failed, dropped
)

votes_credited_total = Counter(
    "votepay_votes_credited_total",
    "Total votes credited to candidates",
)

vote_credit_queue_depth = Gauge(
    "votepay_vote_credit_queue_depth",
    "Number of vote credits waiting to be applied",
)

# Persistence metrics
persistence_failures_total = Counter(
    "votepay_persistence_failures_total",
    "Total swallowed persistence failures",
    ["operation"],
)

# Callback metrics
gateway_callbacks_total = Counter(
    "votepay_gateway_callbacks_total",
    "Total gateway callbacks received",
    ["status"],  # updated, unknown, rejected, invalid
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(outcome: str) -> None:
        """Record a payment request outcome."""
        payment_requests_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_payment_amount(amount: float) -> None:
        """Record a validated payment amount."""
        payment_amount.observe(amount)

    @staticmethod
    def record_payment_duration(duration_seconds: float) -> None:
        """Record payment processing duration."""
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_gateway_call(channel: str, outcome: str, duration_seconds: float) -> None:
        """Record a gateway call."""
        gateway_requests_total.labels(channel=channel, outcome=outcome).inc()
        gateway_duration_seconds.observe(duration_seconds)

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_rate_limit_decision(limiter: str, allowed: bool, cached: bool) -> None:
        """Record a rate-limit decision."""
        rate_limit_decisions_total.labels(
            limiter=limiter,
            decision="allowed" if allowed else "rejected",
            source="cache" if cached else "limiter",
        ).inc()

    @staticmethod
    def record_vote_credit(status: str, votes: int = 0) -> None:
        """Record a vote credit outcome."""
        vote_credits_total.labels(status=status).inc()
        if votes > 0:
            votes_credited_total.inc(votes)

    @staticmethod
    def set_vote_credit_queue_depth(depth: int) -> None:
        """Set vote credit queue depth."""
        vote_credit_queue_depth.set(depth)

    @staticmethod
    def record_persistence_failure(operation: str) -> None:
        """Record a swallowed persistence failure."""
        persistence_failures_total.labels(operation=operation).inc()

    @staticmethod
    def record_callback(status: str) -> None:
        """Record a gateway callback outcome."""
        gateway_callbacks_total.labels(status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
