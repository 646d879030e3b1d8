"""Application metrics using the Prometheus client library.

All metrics are defined here so there is one inventory of everything the
service measures.  Modules import the metric they own and increment it
at the point of action.

  Counters   only go up; Prometheus derives rates with rate().
  Gauges     go up and down (in-flight requests, queue depth).
  Histograms bucket observations so percentiles can be computed.

Prometheus scrapes GET /metrics (see lms/api/metrics_endpoint.py).  The
worker process keeps its own registry; its task counters are only visible
when the worker exposes or pushes them.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

WORKER_TASKS = Counter(
    "worker_tasks_total",
    "Background tasks handled by the worker",
    ["queue", "outcome"],  # completed|retried|dead_lettered
)

# ---------------------------------------------------------------------------
# Learning pipeline
# ---------------------------------------------------------------------------

LESSON_COMPLETIONS = Counter(
    "lesson_completions_total",
    "Lesson completion marks by result",
    ["result"],  # "new" or "repeat" (idempotent re-completion)
)

COURSE_COMPLETIONS = Counter(
    "course_completions_total",
    "Enrollments that reached 100% progress for the first time",
)

CERTIFICATE_ISSUANCE = Counter(
    "certificate_issuance_total",
    "Certificate issue() calls by outcome",
    ["outcome"],  # created|existing|race_recovered|rejected|collision
)

CERTIFICATE_VERIFICATIONS = Counter(
    "certificate_verifications_total",
    "Public certificate verification lookups",
    ["result"],  # "found" or "not_found"
)
