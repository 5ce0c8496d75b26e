"""FastAPI application exposing the membership reconciliation engine."""

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.env import env_str
from core.logging import setup_logging
from web import routers

setup_logging()

app = FastAPI(
    title="Membership Reconciliation API",
    description="Assigns, expires and repairs user memberships.",
    version="0.1.0",
)

origins = [origin.strip() for origin in (env_str("CORS_ALLOW_ORIGINS", "http://localhost:3000") or "").split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in origins if origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Basic liveness check."""
    return {"status": "ok", "message": "Membership Reconciliation API is running."}


@app.get("/healthz", include_in_schema=False)
def readiness_check():
    """Lightweight readiness probe including database connectivity."""
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


@app.get("/metrics", include_in_schema=False)
def prometheus_metrics():
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(routers.memberships.router, prefix="/api/v1")
app.include_router(routers.payments.router, prefix="/api/v1")
app.include_router(routers.health.router, prefix="/api/v1")
