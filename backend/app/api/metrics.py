"""Prometheus-compatible metrics endpoint."""

from fastapi import APIRouter, Response

from app.monitoring.metrics import realtime_online_users
from app.monitoring.registry import registry

from keepsake.realtime.managers import get_presence_registry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics() -> Response:
    """Expose chat and sweeper metrics for Prometheus scraping."""

    # Sessions update the gauge on auth and close; resync it in case one was torn down mid-way.
    realtime_online_users.set(len(get_presence_registry()))
    return Response(content=registry.render(), media_type="text/plain; version=0.0.4")
