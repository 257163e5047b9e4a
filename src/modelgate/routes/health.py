"""Health and readiness routes."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from modelgate.db.connection import get_conn
from modelgate.gateway.orchestrator import Gateway
from modelgate.routes.deps import get_gateway

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz(gateway: Gateway = Depends(get_gateway)) -> JSONResponse:  # noqa: B008
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1")
    except Exception:
        db_ok = False

    statuses = await gateway.check_all_health()
    providers = {name: status.available for name, status in statuses.items()}
    active = gateway.active_provider_name
    ok = db_ok and active is not None and any(providers.values())
    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "ok": ok,
            "db": db_ok,
            "active_provider": active,
            "state": gateway.state.value,
            "providers": providers,
        },
    )
