"""Prometheus metrics for the HTTP surface."""

from prometheus_fastapi_instrumentator import Instrumentator
from fastapi import FastAPI


def setup_monitoring(app: FastAPI) -> Instrumentator:
    """Instrument all routes except metrics and static assets; expose /metrics.

    Set ENABLE_METRICS=true to turn instrumentation on.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        env_var_name="ENABLE_METRICS",
        should_instrument_requests_inprogress=True,
        inprogress_name="eventsite_requests_inprogress",
        inprogress_labels=True,
        excluded_handlers=["/metrics", "/static.*"],
    )
    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
    return instrumentator
