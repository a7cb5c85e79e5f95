"""
Quota Governor - per-organization, per-day usage counters.

Two ways to charge a counter:

- increment_usage(): read today's row, add delta, upsert. Not atomic; two
  concurrent callers can lose an update. Only used for statistics that gate
  nothing (leads_searched).
- try_consume() / reserve(): one conditional write at the storage layer, so
  the limit check and the increment cannot interleave with another worker.
  Every limit-enforced charge goes through these; release() hands back the
  part of a reservation that was not used.

Usage:
    from mission_engine import quota
    if not quota.try_consume(org_id, "search_runs", 1, limit):
        return quota.skipped_result("search_runs", limit)
"""

import logging
from typing import Optional

from mission_engine.db.connection import get_db_conn, to_iso, utcnow

logger = logging.getLogger("mission_engine.quota")

USAGE_KINDS = ("leads_searched", "search_runs", "leads_enriched",
               "leads_investigated", "leads_contacted")

# (mission/org column, default, hard cap)
LIMIT_POLICY = {
    "search_runs": ("daily_search_limit", 3, 5),
    "leads_enriched": ("daily_enrich_limit", 10, 50),
    "leads_investigated": ("daily_investigate_limit", 5, 50),
    "leads_contacted": ("daily_contact_limit", 3, 50),
}


def _check_kind(kind: str):
    if kind not in USAGE_KINDS:
        raise ValueError(f"Unknown usage kind: {kind}")


def today(now=None) -> str:
    return (now or utcnow()).date().isoformat()


def get_daily_usage(organization_id: str, day: str = None) -> dict:
    """Counters for the organization on `day` (UTC date), zero when no row exists."""
    day = day or today()
    with get_db_conn() as conn:
        row = conn.execute(
            "SELECT * FROM daily_usage WHERE organization_id=? AND usage_date=?",
            (organization_id, day),
        ).fetchone()
    usage = {"organization_id": organization_id, "usage_date": day}
    for kind in USAGE_KINDS:
        usage[kind] = row[kind] if row else 0
    return usage


def increment_usage(organization_id: str, kind: str, delta: int = 1, day: str = None) -> dict:
    """Read-then-upsert increment. Lossy under concurrent callers."""
    _check_kind(kind)
    day = day or today()
    current = get_daily_usage(organization_id, day)
    new_value = current[kind] + delta
    with get_db_conn() as conn:
        conn.execute(f"""
            INSERT INTO daily_usage (organization_id, usage_date, {kind}, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(organization_id, usage_date) DO UPDATE SET
                {kind}=excluded.{kind}, updated_at=excluded.updated_at
        """, (organization_id, day, new_value, to_iso()))
        conn.commit()
    current[kind] = new_value
    return current


def _ensure_row(conn, organization_id: str, day: str):
    conn.execute("""
        INSERT OR IGNORE INTO daily_usage (organization_id, usage_date, updated_at)
        VALUES (?, ?, ?)
    """, (organization_id, day, to_iso()))


def try_consume(organization_id: str, kind: str, amount: int, limit: int, day: str = None) -> bool:
    """Atomically add `amount` to the counter if the result stays within `limit`."""
    _check_kind(kind)
    if amount <= 0:
        return True
    day = day or today()
    with get_db_conn() as conn:
        _ensure_row(conn, organization_id, day)
        cursor = conn.execute(f"""
            UPDATE daily_usage SET {kind} = {kind} + ?, updated_at = ?
            WHERE organization_id=? AND usage_date=? AND {kind} + ? <= ?
        """, (amount, to_iso(), organization_id, day, amount, limit))
        conn.commit()
        return cursor.rowcount == 1


def reserve(organization_id: str, kind: str, requested: int, limit: int, day: str = None) -> int:
    """Atomically take up to `requested` units of the remaining capacity.

    Returns the number of units granted (0 when the limit is already met).
    """
    _check_kind(kind)
    if requested <= 0:
        return 0
    day = day or today()
    with get_db_conn() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            _ensure_row(conn, organization_id, day)
            used = conn.execute(
                f"SELECT {kind} FROM daily_usage WHERE organization_id=? AND usage_date=?",
                (organization_id, day),
            ).fetchone()[0]
            granted = max(0, min(requested, limit - used))
            if granted:
                conn.execute(f"""
                    UPDATE daily_usage SET {kind} = {kind} + ?, updated_at = ?
                    WHERE organization_id=? AND usage_date=?
                """, (granted, to_iso(), organization_id, day))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return granted


def release(organization_id: str, kind: str, amount: int, day: str = None):
    """Give back part of a reservation (floored at zero)."""
    _check_kind(kind)
    if amount <= 0:
        return
    day = day or today()
    with get_db_conn() as conn:
        conn.execute(f"""
            UPDATE daily_usage SET {kind} = MAX({kind} - ?, 0), updated_at = ?
            WHERE organization_id=? AND usage_date=?
        """, (amount, to_iso(), organization_id, day))
        conn.commit()
    logger.debug("Released %d %s for %s", amount, kind, organization_id)


def limit_for(kind: str, mission: Optional[dict] = None, org_config: Optional[dict] = None) -> int:
    """Effective daily ceiling for a counter.

    Search executions come from the organization config; enrich, investigate
    and contact come from the mission. Each is capped.
    """
    column, default, cap = LIMIT_POLICY[kind]
    source = org_config if kind == "search_runs" else mission
    value = (source or {}).get(column) or default
    return min(cap, int(value))


def remaining(organization_id: str, kind: str, limit: int, day: str = None) -> int:
    return max(0, limit - get_daily_usage(organization_id, day)[kind])


def skipped_result(kind: str, limit: int, used: int = None, **extra) -> dict:
    result = {"skipped": True, "reason": "daily_limit_reached", "limit_kind": kind, "limit": limit}
    if used is not None:
        result["used"] = used
    result.update(extra)
    return result
