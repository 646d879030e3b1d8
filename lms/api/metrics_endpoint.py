"""GET /metrics: Prometheus text exposition.

Scraped by Prometheus; exposes the HTTP metrics recorded by the
middleware and the pipeline counters from lms.core.metrics, e.g.

  lesson_completions_total{result="new"} 412.0
  certificate_issuance_total{outcome="race_recovered"} 3.0
  task_queue_depth{queue_name="certificate_generation"} 0.0

Keep this off the public ingress; it reveals traffic and error rates.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
