from datetime import date, timedelta

import pytest

from modelgate.usage.ledger import UsageLedger
from modelgate.usage.store import MemoryUsageStore, SQLiteUsageStore


class _Clock:
    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


def _ledger(
    clock: _Clock | None = None,
    *,
    per_request: int = 2000,
    daily: int = 1000,
    store=None,
) -> UsageLedger:
    return UsageLedger(
        per_request_limit=per_request,
        daily_limit=daily,
        store=store if store is not None else MemoryUsageStore(),
        today=clock or _Clock(date(2025, 3, 10)),
    )


def test_track_request_is_additive_across_providers_and_models() -> None:
    ledger = _ledger(daily=100_000)
    ledger.track_request("gemini", 100, 0.01, "gemini-2.0-flash")
    ledger.track_request("gemini", 50, 0.02, "gemini-2.5-pro")
    ledger.track_request("ollama", 30, 0.0, "llama2")

    record = ledger.get_daily_stats()
    assert record.date == "2025-03-10"
    assert record.total.tokens == 180
    assert record.total.requests == 3
    assert record.total.cost == pytest.approx(0.03)
    assert record.providers["gemini"].tokens == 150
    assert record.providers["gemini"].requests == 2
    assert record.providers["gemini"].models["gemini-2.5-pro"].tokens == 50
    assert record.providers["ollama"].cost == 0.0
    assert sum(p.tokens for p in record.providers.values()) == record.total.tokens


def test_negative_values_are_clamped() -> None:
    ledger = _ledger()
    ledger.track_request("openai", -5, -1.0)
    totals = ledger.get_daily_stats().total
    assert totals.tokens == 0
    assert totals.cost == 0.0
    assert totals.requests == 1


def test_daily_limit_denies_and_reports_remaining() -> None:
    ledger = _ledger(per_request=2000, daily=1000)
    ledger.track_request("gemini", 600, 0.0)
    check = ledger.check_limit(500)
    assert check.allowed is False
    assert check.would_exceed_daily is True
    assert check.would_exceed_per_request is False
    assert check.remaining_today == 400

    assert ledger.check_limit(400).allowed is True


def test_per_request_limit() -> None:
    ledger = _ledger(per_request=2000, daily=100_000)
    check = ledger.check_limit(2500)
    assert check.allowed is False
    assert check.would_exceed_per_request is True
    assert check.would_exceed_daily is False


def test_daily_totals_are_monotonic_within_a_day() -> None:
    ledger = _ledger(daily=100_000)
    seen: list[int] = []
    for tokens in (10, 0, 25, 5):
        ledger.track_request("openai", tokens, 0.0)
        seen.append(ledger.get_daily_stats().total.tokens)
    assert seen == sorted(seen)
    assert seen[-1] == 40


def test_usage_percent_is_capped() -> None:
    ledger = _ledger(daily=1000)
    ledger.track_request("gemini", 250, 0.0)
    assert ledger.get_daily_usage_percent() == 25.0
    ledger.track_request("gemini", 5000, 0.0)
    assert ledger.get_daily_usage_percent() == 100.0


def test_history_is_oldest_first_and_zero_filled() -> None:
    clock = _Clock(date(2025, 3, 8))
    ledger = _ledger(clock, daily=100_000)
    ledger.track_request("gemini", 70, 0.07)
    clock.today = date(2025, 3, 10)
    ledger.track_request("openai", 30, 0.03)

    history = ledger.get_historical_stats(3)
    assert [record.date for record in history] == ["2025-03-08", "2025-03-09", "2025-03-10"]
    assert [record.total.tokens for record in history] == [70, 0, 30]
    assert history[1].providers == {}


def test_new_day_starts_from_zero() -> None:
    clock = _Clock(date(2025, 3, 10))
    ledger = _ledger(clock, daily=1000)
    ledger.track_request("gemini", 900, 0.0)
    assert ledger.check_limit(200).allowed is False
    clock.today = clock.today + timedelta(days=1)
    assert ledger.get_daily_stats().total.tokens == 0
    assert ledger.check_limit(200).allowed is True


def test_total_stats_merge_days() -> None:
    clock = _Clock(date(2025, 3, 9))
    ledger = _ledger(clock, daily=100_000)
    ledger.track_request("gemini", 10, 0.1, "gemini-2.0-flash")
    clock.today = date(2025, 3, 10)
    ledger.track_request("gemini", 20, 0.2, "gemini-2.0-flash")

    stats = ledger.get_total_stats()
    assert stats.days == 2
    assert stats.total.tokens == 30
    assert stats.providers["gemini"].models["gemini-2.0-flash"].requests == 2
    assert stats.to_dict()["total"]["cost"] == pytest.approx(0.3)


def test_cost_savings_uses_offline_tokens_only() -> None:
    ledger = _ledger(daily=100_000)
    ledger.track_request("ollama", 4000, 0.0)
    ledger.track_request("gemini", 1000, 0.05)
    savings = ledger.get_cost_savings()
    assert savings.offline_tokens == 4000
    assert savings.offline_requests == 1
    assert savings.saved_by_cost == pytest.approx(0.001)


def test_cleanup_drops_days_past_retention() -> None:
    store = MemoryUsageStore()
    clock = _Clock(date(2025, 1, 1))
    ledger = _ledger(clock, store=store)
    ledger.track_request("gemini", 1, 0.0)
    clock.today = date(2025, 2, 1)
    ledger.track_request("gemini", 2, 0.0)
    clock.today = date(2025, 2, 15)

    assert ledger.cleanup(30) == 1
    assert set(store.days) == {"2025-02-01"}
    assert ledger.get_total_stats().days == 1
    assert ledger.cleanup(30) == 0


def test_reset_clears_memory_and_store() -> None:
    store = MemoryUsageStore()
    ledger = _ledger(store=store)
    ledger.track_request("gemini", 10, 0.0)
    ledger.reset()
    assert store.days == {}
    assert ledger.get_total_stats().total.tokens == 0


def test_persist_failure_keeps_in_memory_state() -> None:
    class _BrokenStore(MemoryUsageStore):
        def save_day(self, day, payload) -> None:
            raise OSError("disk full")

    ledger = _ledger(store=_BrokenStore(), daily=100_000)
    record = ledger.track_request("openai", 12, 0.0)
    assert record.total.tokens == 12
    assert ledger.get_daily_stats().total.tokens == 12


def test_sqlite_store_survives_restart(tmp_path) -> None:
    path = str(tmp_path / "usage.db")
    first = _ledger(store=SQLiteUsageStore("tutoring", path=path), daily=100_000)
    first.track_request("gemini", 40, 0.004, "gemini-2.0-flash")
    first.track_request("gemini", 10, 0.001, "gemini-2.0-flash")

    second = _ledger(store=SQLiteUsageStore("tutoring", path=path), daily=100_000)
    record = second.get_daily_stats()
    assert record.total.tokens == 50
    assert record.total.requests == 2
    assert record.providers["gemini"].models["gemini-2.0-flash"].tokens == 50

    other = _ledger(store=SQLiteUsageStore("other-app", path=path), daily=100_000)
    assert other.get_daily_stats().total.tokens == 0


def test_check_limit_denial_is_monotonic_in_request_size() -> None:
    ledger = _ledger(per_request=2500, daily=1000)
    ledger.track_request("gemini", 350, 0.0)

    first_denied = next(
        tokens for tokens in range(0, 3001) if not ledger.check_limit(tokens).allowed
    )
    assert first_denied == 651
    for tokens in range(first_denied, 3001):
        assert ledger.check_limit(tokens).allowed is False


def test_unreadable_stored_days_are_skipped() -> None:
    store = MemoryUsageStore()
    store.days["2025-03-08"] = {"total": {"tokens": "abc"}}
    store.days["2025-03-09"] = {
        "total": {"tokens": 5, "cost": 0.1, "requests": 1},
        "providers": {"openai": {"tokens": 5, "models": {"gpt-4o": {"cost": "n/a"}}}},
    }
    store.days["2025-03-10"] = {"total": {"tokens": 40, "cost": 0.0, "requests": 2}}

    ledger = _ledger(store=store)
    assert ledger.get_daily_stats().total.tokens == 40
    totals = ledger.get_total_stats()
    assert totals.days == 1
    assert totals.total.tokens == 40


def test_returned_records_do_not_alias_ledger_state() -> None:
    ledger = _ledger(daily=100_000)
    tracked = ledger.track_request("gemini", 10, 0.01, "gemini-2.0-flash")
    tracked.total.tokens = 999

    daily = ledger.get_daily_stats()
    daily.total.tokens = 500
    daily.providers["gemini"].models.clear()
    ledger.get_historical_stats(1)[0].providers.clear()

    fresh = ledger.get_daily_stats()
    assert fresh.total.tokens == 10
    assert fresh.providers["gemini"].models["gemini-2.0-flash"].tokens == 10
