"""Usage ledger read routes."""

from fastapi import APIRouter, Depends, Query

from modelgate.gateway.orchestrator import Gateway
from modelgate.routes.deps import get_gateway

router = APIRouter(prefix="/ai/usage", tags=["api-usage"])


@router.get("/daily")
def daily(gateway: Gateway = Depends(get_gateway)) -> dict[str, object]:  # noqa: B008
    record = gateway.get_daily_stats()
    return {
        **record.to_dict(),
        "daily_limit": gateway.ledger.daily_limit,
        "percent_used": gateway.ledger.get_daily_usage_percent(),
    }


@router.get("/total")
def total(gateway: Gateway = Depends(get_gateway)) -> dict[str, object]:  # noqa: B008
    return {**gateway.get_total_stats().to_dict(), "session": gateway.get_usage_stats()}


@router.get("/history")
def history(
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
    days: int = Query(default=7, ge=1, le=365),
) -> dict[str, object]:
    return {"items": [record.to_dict() for record in gateway.get_historical_stats(days)]}


@router.get("/savings")
def savings(gateway: Gateway = Depends(get_gateway)) -> dict[str, object]:  # noqa: B008
    return gateway.get_cost_savings().to_dict()


@router.get("/limit")
def limit(
    gateway: Gateway = Depends(get_gateway),  # noqa: B008
    tokens: int = Query(ge=0),
) -> dict[str, object]:
    return gateway.ledger.check_limit(tokens).to_dict()
