"""Health and readiness endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from src.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    # The in-memory backend has no external store to wait for
    db_ok = True
    if settings.transaction_store_backend == "postgres":
        from src.db.database import check_db

        db_ok = await check_db()

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "degraded",
            "store_backend": settings.transaction_store_backend,
            "database": db_ok,
        },
    )
