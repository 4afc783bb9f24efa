"""
NFTMail Router API
FastAPI application for tiered mail routing, decay inboxes and the
Ghost-Calendar.
"""

import logging
import os
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.dependencies import get_kv_backend
from app.routers import calendar, mail
from app.services.errors import RoutingError, UnconfiguredError, http_status_for

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="NFTMail Router API",
    description="Tiered mail routing with sovereign decay storage",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes http://localhost:3000 (dashboard dev server). Additional
    origins are read from the CORS_ORIGINS environment variable as a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://nftmail.box,https://app.nftmail.box

    Duplicates are removed while preserving order.
    """
    always_included = ["http://localhost:3000"]

    extra_origins: List[str] = []
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutingError)
async def routing_error_handler(request: Request, exc: RoutingError) -> JSONResponse:
    """Render domain errors as {"detail": {"code", "message"}} with the mapped status."""
    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.error_code, "message": exc.message}},
    )


app.include_router(mail.router, prefix="/api/mail", tags=["mail"])
app.include_router(calendar.router, prefix="/api/calendar", tags=["calendar"])


@app.get("/")
async def root():
    return {"message": "NFTMail Router API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


def _kv_backend_or_503():
    try:
        return get_kv_backend()
    except UnconfiguredError as exc:
        raise HTTPException(
            status_code=503,
            detail=f"KV backend unavailable: {exc.message}",
        )


@app.get("/health/kv")
async def health_kv(kv=Depends(_kv_backend_or_503)):
    """
    Test the key-value backend connection.

    Runs the backend's lightweight ping (a one-row select on Supabase, PING
    on Redis). Returns 503 when the backend is unconfigured or unreachable.
    """
    try:
        await kv.ping()
        return {"status": "ok", "kv": "reachable"}
    except Exception as exc:
        logger.error(f"KV health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"KV connection failed: {str(exc)}",
        )
