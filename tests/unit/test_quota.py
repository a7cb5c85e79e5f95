"""
Unit tests for the daily quota governor.
"""

import threading

from mission_engine import quota


ORG = "org_q"


# ─── STATISTIC COUNTER ───────────────────────────────────────

def test_usage_is_zero_without_row(test_db):
    usage = quota.get_daily_usage(ORG)
    assert all(usage[kind] == 0 for kind in quota.USAGE_KINDS)


def test_sequential_increments_add_up(test_db):
    for _ in range(7):
        quota.increment_usage(ORG, "leads_searched", 1)
    assert quota.get_daily_usage(ORG)["leads_searched"] == 7


def test_increment_is_scoped_by_day(test_db):
    quota.increment_usage(ORG, "leads_searched", 3, day="2026-03-09")
    quota.increment_usage(ORG, "leads_searched", 2, day="2026-03-10")
    assert quota.get_daily_usage(ORG, "2026-03-09")["leads_searched"] == 3
    assert quota.get_daily_usage(ORG, "2026-03-10")["leads_searched"] == 2


def test_interleaved_increments_lose_an_update(test_db, monkeypatch):
    """Two writers read the same value before either writes: one increment is lost."""
    stale = dict(quota.get_daily_usage(ORG))
    monkeypatch.setattr(quota, "get_daily_usage", lambda org, day=None: dict(stale))

    quota.increment_usage(ORG, "leads_searched", 1)
    quota.increment_usage(ORG, "leads_searched", 1)

    monkeypatch.undo()
    assert quota.get_daily_usage(ORG)["leads_searched"] == 1


def test_unknown_kind_rejected(test_db):
    try:
        quota.increment_usage(ORG, "leads_teleported", 1)
        assert False, "expected ValueError"
    except ValueError as e:
        assert "leads_teleported" in str(e)


# ─── ATOMIC CHARGES ──────────────────────────────────────────

def test_try_consume_stops_at_limit(test_db):
    assert quota.try_consume(ORG, "search_runs", 1, limit=2)
    assert quota.try_consume(ORG, "search_runs", 1, limit=2)
    assert not quota.try_consume(ORG, "search_runs", 1, limit=2)
    assert quota.get_daily_usage(ORG)["search_runs"] == 2


def test_try_consume_never_exceeds_limit_under_threads(test_db):
    limit = 5
    results = []
    lock = threading.Lock()

    def worker():
        ok = quota.try_consume(ORG, "leads_contacted", 1, limit)
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(results) == limit
    assert quota.get_daily_usage(ORG)["leads_contacted"] == limit


def test_reserve_grants_remaining_capacity(test_db):
    assert quota.reserve(ORG, "leads_enriched", 4, limit=10) == 4
    assert quota.reserve(ORG, "leads_enriched", 10, limit=10) == 6
    assert quota.reserve(ORG, "leads_enriched", 3, limit=10) == 0
    assert quota.get_daily_usage(ORG)["leads_enriched"] == 10


def test_release_refunds_and_floors_at_zero(test_db):
    quota.reserve(ORG, "leads_investigated", 3, limit=5)
    quota.release(ORG, "leads_investigated", 2)
    assert quota.get_daily_usage(ORG)["leads_investigated"] == 1
    quota.release(ORG, "leads_investigated", 5)
    assert quota.get_daily_usage(ORG)["leads_investigated"] == 0


# ─── LIMITS ──────────────────────────────────────────────────

class TestLimitFor:

    def test_defaults(self):
        assert quota.limit_for("search_runs") == 3
        assert quota.limit_for("leads_enriched") == 10
        assert quota.limit_for("leads_investigated") == 5
        assert quota.limit_for("leads_contacted") == 3

    def test_search_limit_comes_from_org_and_is_capped(self):
        assert quota.limit_for("search_runs", org_config={"daily_search_limit": 2}) == 2
        assert quota.limit_for("search_runs", org_config={"daily_search_limit": 40}) == 5

    def test_mission_limits_capped_at_fifty(self):
        mission = {"daily_enrich_limit": 500, "daily_contact_limit": 7}
        assert quota.limit_for("leads_enriched", mission) == 50
        assert quota.limit_for("leads_contacted", mission) == 7

    def test_skipped_result_shape(self):
        result = quota.skipped_result("search_runs", 3, used=3)
        assert result["skipped"] is True
        assert result["reason"] == "daily_limit_reached"
        assert result["used"] == 3
