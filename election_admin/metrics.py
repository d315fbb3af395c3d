"""Prometheus metrics shared by the web layer and the lifecycle manager."""
from prometheus_client import Counter, Histogram

lifecycle_operations = Counter(
    "election_lifecycle_operations_total",
    "Total number of successful election lifecycle operations",
    ["operation"]
)
lifecycle_rejections = Counter(
    "election_lifecycle_rejections_total",
    "Total number of rejected election lifecycle operations",
    ["operation", "error_type"]
)
ballots_cast = Counter(
    "ballots_cast_total",
    "Total number of ballots recorded"
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "status"]
)
