# opportunity_api/main.py
"""
FastAPI application.

Run locally:
    uvicorn opportunity_api.main:app --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from opportunity_api.config import get_settings
from opportunity_api.logging_config import configure_logging, new_trace_id
from opportunity_api.routers import access_router, admin_lifecycle_router

settings = get_settings()
configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

app = FastAPI(title="Opportunity Lifecycle API")

if settings.cors_origin_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

app.include_router(admin_lifecycle_router)
app.include_router(access_router)

if not settings.ADMIN_API_KEY:
    logger.warning("ADMIN_API_KEY is not set; admin endpoints will refuse every request")


@app.middleware("http")
async def assign_trace_id(request: Request, call_next):
    """Tag every log line of a request with one trace id."""
    trace_id = new_trace_id()
    response = await call_next(request)
    response.headers["X-Trace-Id"] = trace_id
    return response


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "opportunity-lifecycle-api", "environment": settings.ENVIRONMENT}
