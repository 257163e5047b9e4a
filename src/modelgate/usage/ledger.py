"""Day-keyed token/cost ledger with per-request and daily budgets.

The ledger is the single source of truth for metered usage. Every
completed request is added to today's record (overall, per provider and
per model) and persisted through a ``UsageStore``. Read operations are
pure aggregations over the in-memory records.

Nothing here raises: persistence failures are logged and the in-memory
state stays authoritative for the lifetime of the process.
"""

from __future__ import annotations

import logging
from copy import deepcopy
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from modelgate.usage.store import MemoryUsageStore, UsageStore

logger = logging.getLogger(__name__)

DEFAULT_OFFLINE_PROVIDERS = frozenset({"ollama"})


@dataclass(slots=True)
class UsageTotals:
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0

    def add(self, tokens: int, cost: float, requests: int = 1) -> None:
        self.tokens += tokens
        self.cost += cost
        self.requests += requests

    def merge(self, other: UsageTotals) -> None:
        self.add(other.tokens, other.cost, other.requests)

    def to_dict(self) -> dict[str, Any]:
        return {"tokens": self.tokens, "cost": round(self.cost, 8), "requests": self.requests}

    @classmethod
    def from_dict(cls, payload: Any) -> UsageTotals:
        if not isinstance(payload, dict):
            return cls()
        return cls(
            tokens=max(0, int(payload.get("tokens", 0) or 0)),
            cost=max(0.0, float(payload.get("cost", 0.0) or 0.0)),
            requests=max(0, int(payload.get("requests", 0) or 0)),
        )


@dataclass(slots=True)
class ProviderUsage(UsageTotals):
    models: dict[str, UsageTotals] = field(default_factory=dict)

    def add_model(self, model: str, tokens: int, cost: float) -> None:
        self.models.setdefault(model, UsageTotals()).add(tokens, cost)

    def merge(self, other: UsageTotals) -> None:
        UsageTotals.merge(self, other)
        if isinstance(other, ProviderUsage):
            for model, totals in other.models.items():
                self.models.setdefault(model, UsageTotals()).merge(totals)

    def to_dict(self) -> dict[str, Any]:
        payload = UsageTotals.to_dict(self)
        payload["models"] = {name: totals.to_dict() for name, totals in self.models.items()}
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> ProviderUsage:
        base = UsageTotals.from_dict(payload)
        usage = cls(tokens=base.tokens, cost=base.cost, requests=base.requests)
        models = payload.get("models") if isinstance(payload, dict) else None
        if isinstance(models, dict):
            for name, totals in models.items():
                usage.models[str(name)] = UsageTotals.from_dict(totals)
        return usage


@dataclass(slots=True)
class UsageRecord:
    date: str
    total: UsageTotals = field(default_factory=UsageTotals)
    providers: dict[str, ProviderUsage] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total": self.total.to_dict(),
            "providers": {name: usage.to_dict() for name, usage in self.providers.items()},
        }

    @classmethod
    def from_dict(cls, day: str, payload: dict[str, Any]) -> UsageRecord:
        record = cls(date=day, total=UsageTotals.from_dict(payload.get("total")))
        providers = payload.get("providers")
        if isinstance(providers, dict):
            for name, usage in providers.items():
                record.providers[str(name)] = ProviderUsage.from_dict(usage)
        return record

    def copy(self) -> UsageRecord:
        return deepcopy(self)


@dataclass(slots=True)
class TotalStats:
    total: UsageTotals
    providers: dict[str, ProviderUsage]
    days: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total.to_dict(),
            "providers": {name: usage.to_dict() for name, usage in self.providers.items()},
            "days": self.days,
        }


@dataclass(slots=True, frozen=True)
class LimitCheck:
    allowed: bool
    would_exceed_daily: bool
    would_exceed_per_request: bool
    remaining_today: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "would_exceed_daily": self.would_exceed_daily,
            "would_exceed_per_request": self.would_exceed_per_request,
            "remaining_today": self.remaining_today,
        }


@dataclass(slots=True, frozen=True)
class CostSavings:
    offline_tokens: int
    offline_requests: int
    saved_by_cost: float
    reference_rate_per_1k: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "offline_tokens": self.offline_tokens,
            "offline_requests": self.offline_requests,
            "saved_by_cost": round(self.saved_by_cost, 6),
            "reference_rate_per_1k": self.reference_rate_per_1k,
        }


class UsageLedger:
    def __init__(
        self,
        *,
        per_request_limit: int,
        daily_limit: int,
        store: UsageStore | None = None,
        reference_rate_per_1k: float = 0.00025,
        offline_providers: frozenset[str] = DEFAULT_OFFLINE_PROVIDERS,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.per_request_limit = per_request_limit
        self.daily_limit = daily_limit
        self.reference_rate_per_1k = reference_rate_per_1k
        self.offline_providers = offline_providers
        self._store: UsageStore = store if store is not None else MemoryUsageStore()
        self._today = today
        self._days: dict[str, UsageRecord] = {}
        self._load()

    def _load(self) -> None:
        try:
            stored = self._store.load_days()
        except Exception as exc:
            logger.warning("Usage ledger load failed; starting empty: %s", exc)
            return
        for day, payload in stored.items():
            try:
                self._days[day] = UsageRecord.from_dict(day, payload)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Usage ledger skipped unreadable day=%s: %s", day, exc)

    def _persist(self, record: UsageRecord) -> None:
        try:
            self._store.save_day(record.date, record.to_dict())
        except Exception as exc:
            logger.warning("Usage ledger persist failed day=%s: %s", record.date, exc)

    def _today_key(self) -> str:
        return self._today().isoformat()

    def _record(self, day: str) -> UsageRecord:
        return self._days.get(day) or UsageRecord(date=day)

    def track_request(
        self, provider: str, tokens: int, cost: float, model: str | None = None
    ) -> UsageRecord:
        tokens = max(0, int(tokens or 0))
        cost = max(0.0, float(cost or 0.0))
        day = self._today_key()
        record = self._days.setdefault(day, UsageRecord(date=day))
        record.total.add(tokens, cost)
        bucket = record.providers.setdefault(provider, ProviderUsage())
        bucket.add(tokens, cost)
        if model:
            bucket.add_model(model, tokens, cost)
        self._persist(record)
        logger.debug(
            "Usage tracked provider=%s model=%s tokens=%d cost=%.6f", provider, model, tokens, cost
        )
        return record.copy()

    def check_limit(self, request_tokens: int) -> LimitCheck:
        request_tokens = max(0, int(request_tokens))
        used = self._record(self._today_key()).total.tokens
        remaining = max(0, self.daily_limit - used)
        over_request = request_tokens > self.per_request_limit
        over_daily = used + request_tokens > self.daily_limit
        return LimitCheck(
            allowed=not (over_request or over_daily),
            would_exceed_daily=over_daily,
            would_exceed_per_request=over_request,
            remaining_today=remaining,
        )

    def get_daily_stats(self) -> UsageRecord:
        return self._record(self._today_key()).copy()

    def get_daily_usage_percent(self) -> float:
        if self.daily_limit <= 0:
            return 100.0
        used = self.get_daily_stats().total.tokens
        return round(min(100.0, used * 100.0 / self.daily_limit), 2)

    def get_historical_stats(self, days: int = 7) -> list[UsageRecord]:
        """One record per day ending today, oldest first; missing days are zeroed."""
        today = self._today()
        return [
            self._record((today - timedelta(days=offset)).isoformat()).copy()
            for offset in range(max(0, days) - 1, -1, -1)
        ]

    def get_total_stats(self) -> TotalStats:
        total = UsageTotals()
        providers: dict[str, ProviderUsage] = {}
        for record in self._days.values():
            total.merge(record.total)
            for name, usage in record.providers.items():
                providers.setdefault(name, ProviderUsage()).merge(usage)
        return TotalStats(total=total, providers=providers, days=len(self._days))

    def get_cost_savings(self) -> CostSavings:
        providers = self.get_total_stats().providers
        tokens = sum(
            usage.tokens for name, usage in providers.items() if name in self.offline_providers
        )
        requests = sum(
            usage.requests for name, usage in providers.items() if name in self.offline_providers
        )
        return CostSavings(
            offline_tokens=tokens,
            offline_requests=requests,
            saved_by_cost=tokens / 1000 * self.reference_rate_per_1k,
            reference_rate_per_1k=self.reference_rate_per_1k,
        )

    def cleanup(self, retention_days: int = 30) -> int:
        cutoff = (self._today() - timedelta(days=retention_days)).isoformat()
        expired = [day for day in self._days if day < cutoff]
        for day in expired:
            del self._days[day]
        try:
            self._store.delete_days(expired)
        except Exception as exc:
            logger.warning("Usage ledger cleanup persist failed: %s", exc)
        if expired:
            logger.info("Usage ledger pruned days=%d cutoff=%s", len(expired), cutoff)
        return len(expired)

    def reset(self) -> None:
        self._days.clear()
        try:
            self._store.clear()
        except Exception as exc:
            logger.warning("Usage ledger reset persist failed: %s", exc)
