"""Prometheus metrics for authentication and token flows."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "qodari_iam_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "qodari_iam_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
TOKENS_ISSUED = Counter(
    "qodari_iam_tokens_issued_total",
    "Access tokens issued",
    ["grant_type"],
)
REFRESH_REUSE_DETECTED = Counter(
    "qodari_iam_refresh_reuse_detected_total",
    "Refresh token families revoked after reuse of a rotated token",
)
RATE_LIMITED = Counter(
    "qodari_iam_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["scope"],
)
LOGINS = Counter(
    "qodari_iam_logins_total",
    "Login attempts",
    ["result"],
)
