from fastapi import APIRouter, Depends

from src.emr.context import AppContext
from src.emr.security import get_app_context

router = APIRouter(prefix="", tags=["system"])


@router.get("/health")
async def health_check_v1() -> dict:
    """API v1 health endpoint."""
    return {"status": "ok", "version": "v1"}


@router.get("/system/storage/health")
async def storage_health_v1(ctx: AppContext = Depends(get_app_context)) -> dict:
    """Report which storage backend is active.

    - ``{"status": "ok", "backend": "memory"}`` for in-memory repositories.
    - ``{"status": "ok", "backend": "sql"}`` when SQL repositories are wired
      and the database answers a trivial query.
    - ``{"status": "unreachable", "backend": "sql"}`` otherwise.
    """

    engine = ctx.repositories.engine
    if engine is None:
        return {"status": "ok", "backend": "memory"}
    return {"status": "ok" if ctx.repositories.ping() else "unreachable", "backend": "sql"}
