"""
Mission Engine - Data Access Layer
Provides CRUD operations for missions, tasks, leads, campaigns and logs via a
plain-function Python API. Rows come back as dicts with JSON columns decoded.
"""

import json
from typing import Iterable, List, Optional

from mission_engine.db.connection import _safe_update, gen_id, get_db_conn, to_iso

_JSON_COLUMNS = ("params", "payload", "result", "research", "settings",
                 "details", "meta", "summary", "company_profile")


def _row_to_dict(row) -> Optional[dict]:
    if row is None:
        return None
    data = dict(row)
    for col in _JSON_COLUMNS:
        if col in data and isinstance(data[col], str):
            try:
                data[col] = json.loads(data[col])
            except ValueError:
                pass
    return data


def _dumps(value) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


# ─── MISSIONS ───────────────────────────────────────────────────

MISSION_STATUSES = ("active", "paused", "completed")


def create_mission(data: dict) -> dict:
    mid = data.get("id") or gen_id("mis")
    now = to_iso()
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO missions (id, organization_id, user_id, title, status, params,
                daily_enrich_limit, daily_investigate_limit, daily_contact_limit,
                created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?)
        """, (
            mid, data["organization_id"], data.get("user_id"), data["title"],
            data.get("status", "active"), _dumps(data.get("params", {})),
            data.get("daily_enrich_limit", 10), data.get("daily_investigate_limit", 5),
            data.get("daily_contact_limit", 3),
            now, now,
        ))
        conn.commit()
        row = conn.execute("SELECT * FROM missions WHERE id=?", (mid,)).fetchone()
        return _row_to_dict(row)


def get_mission(mission_id: str) -> Optional[dict]:
    with get_db_conn() as conn:
        row = conn.execute("SELECT * FROM missions WHERE id=?", (mission_id,)).fetchone()
        return _row_to_dict(row)


def list_missions(organization_id: str = None, status: str = None, limit: int = 500) -> list:
    query = "SELECT * FROM missions WHERE 1=1"
    params = []
    if organization_id:
        query += " AND organization_id=?"
        params.append(organization_id)
    if status:
        query += " AND status=?"
        params.append(status)
    query += " ORDER BY created_at ASC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


def update_mission_status(mission_id: str, status: str) -> Optional[dict]:
    if status not in MISSION_STATUSES:
        raise ValueError(f"Unknown mission status: {status}")
    return _row_to_dict(_safe_update(
        "missions", mission_id, {"status": status, "updated_at": to_iso()},
        {"status", "updated_at"},
    ))


# ─── ORGANIZATION CONFIG ────────────────────────────────────────

ORG_CONFIG_DEFAULTS = {
    "daily_search_limit": 3,
    "notification_email": None,
    "sender_name": None,
    "company_profile": {},
}


def get_org_config(organization_id: str) -> dict:
    """Organization settings, falling back to defaults when no row exists."""
    with get_db_conn() as conn:
        row = conn.execute(
            "SELECT * FROM organization_config WHERE organization_id=?", (organization_id,)
        ).fetchone()
    data = {"organization_id": organization_id, **ORG_CONFIG_DEFAULTS}
    if row:
        data.update({k: v for k, v in _row_to_dict(row).items() if v is not None})
    return data


def upsert_org_config(organization_id: str, data: dict) -> dict:
    current = get_org_config(organization_id)
    merged = {**current, **data}
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO organization_config (organization_id, daily_search_limit,
                notification_email, sender_name, company_profile, updated_at)
            VALUES (?,?,?,?,?,?)
            ON CONFLICT(organization_id) DO UPDATE SET
                daily_search_limit=excluded.daily_search_limit,
                notification_email=excluded.notification_email,
                sender_name=excluded.sender_name,
                company_profile=excluded.company_profile,
                updated_at=excluded.updated_at
        """, (
            organization_id, merged["daily_search_limit"], merged["notification_email"],
            merged["sender_name"], _dumps(merged.get("company_profile") or {}), to_iso(),
        ))
        conn.commit()
    return get_org_config(organization_id)


# ─── TASKS ──────────────────────────────────────────────────────

def create_task(data: dict) -> dict:
    """Insert a pending task.

    A second insert with the same idempotency_key is silently dropped and
    reported back as {"duplicate": True}.
    """
    tid = data.get("id") or gen_id("tsk")
    now = to_iso()
    with get_db_conn() as conn:
        cursor = conn.execute("""
            INSERT OR IGNORE INTO tasks (id, organization_id, mission_id, type, status,
                payload, scheduled_for, idempotency_key, parent_task_id, created_at, updated_at)
            VALUES (?,?,?,?,'pending',?,?,?,?,?,?)
        """, (
            tid, data["organization_id"], data.get("mission_id"), data["type"],
            _dumps(data.get("payload", {})), data.get("scheduled_for"),
            data.get("idempotency_key"), data.get("parent_task_id"), now, now,
        ))
        conn.commit()
        if cursor.rowcount == 0:
            return {"duplicate": True, "idempotency_key": data.get("idempotency_key")}
        row = conn.execute("SELECT * FROM tasks WHERE id=?", (tid,)).fetchone()
        return _row_to_dict(row)


def get_task(task_id: str) -> Optional[dict]:
    with get_db_conn() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone()
        return _row_to_dict(row)


def list_tasks(organization_id: str = None, mission_id: str = None, status: str = None,
               task_type: str = None, parent_task_id: str = None, limit: int = 100) -> list:
    query = "SELECT * FROM tasks WHERE 1=1"
    params = []
    for column, value in (("organization_id", organization_id), ("mission_id", mission_id),
                          ("status", status), ("type", task_type),
                          ("parent_task_id", parent_task_id)):
        if value:
            query += f" AND {column}=?"
            params.append(value)
    query += " ORDER BY created_at ASC, rowid ASC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


def list_due_tasks(now: str, limit: int) -> list:
    """Pending tasks whose scheduled_for is empty or not in the future, oldest first."""
    with get_db_conn() as conn:
        rows = conn.execute("""
            SELECT * FROM tasks
            WHERE status='pending' AND (scheduled_for IS NULL OR scheduled_for <= ?)
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
        """, (now, limit)).fetchall()
        return [_row_to_dict(r) for r in rows]


def claim_task(task_id: str, worker_id: str, now: str = None) -> Optional[dict]:
    """Atomically move a task from pending to processing.

    Returns the claimed row, or None when another worker got there first.
    """
    now = now or to_iso()
    with get_db_conn() as conn:
        cursor = conn.execute("""
            UPDATE tasks SET status='processing', worker_id=?, processing_started_at=?,
                heartbeat_at=?, updated_at=?
            WHERE id=? AND status='pending'
        """, (worker_id, now, now, now, task_id))
        conn.commit()
        if cursor.rowcount != 1:
            return None
        row = conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone()
        return _row_to_dict(row)


def _owner_clause(worker_id: Optional[str]):
    if worker_id is None:
        return "", ()
    return " AND worker_id=?", (worker_id,)


def touch_task(task_id: str, worker_id: str = None, now: str = None) -> bool:
    """Refresh the heartbeat of a processing task.

    False when the task is no longer processing under `worker_id`
    (rescued, cancelled or finished elsewhere).
    """
    clause, owner = _owner_clause(worker_id)
    with get_db_conn() as conn:
        cursor = conn.execute(f"""
            UPDATE tasks SET heartbeat_at=?
            WHERE id=? AND status='processing'{clause}
        """, (now or to_iso(), task_id, *owner))
        conn.commit()
        return cursor.rowcount == 1


def complete_task(task_id: str, result: dict, worker_id: str = None) -> Optional[dict]:
    """Store the result of a processing task. None when the task is not ours to finish."""
    clause, owner = _owner_clause(worker_id)
    with get_db_conn() as conn:
        cursor = conn.execute(f"""
            UPDATE tasks SET status='completed', result=?, error_message=NULL, updated_at=?
            WHERE id=? AND status='processing'{clause}
        """, (_dumps(result), to_iso(), task_id, *owner))
        conn.commit()
        if cursor.rowcount != 1:
            return None
        return _row_to_dict(conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone())


def fail_task(task_id: str, error_message: str, worker_id: str = None) -> Optional[dict]:
    clause, owner = _owner_clause(worker_id)
    with get_db_conn() as conn:
        cursor = conn.execute(f"""
            UPDATE tasks SET status='failed', error_message=?, updated_at=?
            WHERE id=? AND status='processing'{clause}
        """, (error_message or "Unknown error", to_iso(), task_id, *owner))
        conn.commit()
        if cursor.rowcount != 1:
            return None
        return _row_to_dict(conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone())


def cancel_task(task_id: str) -> Optional[dict]:
    """Operator cancel. Completed tasks are left alone (returns None)."""
    with get_db_conn() as conn:
        cursor = conn.execute("""
            UPDATE tasks SET status='failed', error_message='Cancelled by operator', updated_at=?
            WHERE id=? AND status!='completed'
        """, (to_iso(), task_id))
        conn.commit()
        if cursor.rowcount != 1:
            return None
        return _row_to_dict(conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone())


def requeue_task(task_id: str) -> Optional[dict]:
    """Operator retry: put a finished task back in the queue.

    Only failed or completed tasks are requeued; returns None otherwise.
    """
    with get_db_conn() as conn:
        cursor = conn.execute("""
            UPDATE tasks SET status='pending', error_message=NULL, scheduled_for=NULL,
                worker_id=NULL, processing_started_at=NULL, heartbeat_at=NULL,
                retry_count=COALESCE(retry_count, 0) + 1, updated_at=?
            WHERE id=? AND status IN ('failed', 'completed')
        """, (to_iso(), task_id))
        conn.commit()
        if cursor.rowcount != 1:
            return None
        return _row_to_dict(conn.execute("SELECT * FROM tasks WHERE id=?", (task_id,)).fetchone())


def rescue_stuck_tasks(older_than: str, limit: int = 100) -> List[str]:
    """Return processing tasks whose last heartbeat is before `older_than` to pending.

    Tasks claimed without a heartbeat fall back to their claim time.
    """
    with get_db_conn() as conn:
        rows = conn.execute("""
            SELECT id FROM tasks
            WHERE status='processing' AND COALESCE(heartbeat_at, processing_started_at) < ?
            ORDER BY COALESCE(heartbeat_at, processing_started_at) ASC LIMIT ?
        """, (older_than, limit)).fetchall()
        rescued = []
        now = to_iso()
        for r in rows:
            cursor = conn.execute("""
                UPDATE tasks SET status='pending', worker_id=NULL, processing_started_at=NULL,
                    heartbeat_at=NULL, error_message='Rescued after stalling in processing', updated_at=?
                WHERE id=? AND status='processing'
            """, (now, r["id"]))
            if cursor.rowcount == 1:
                rescued.append(r["id"])
        conn.commit()
        return rescued


def count_tasks_by_status(organization_id: str) -> dict:
    with get_db_conn() as conn:
        rows = conn.execute("""
            SELECT status, COUNT(*) AS n FROM tasks WHERE organization_id=? GROUP BY status
        """, (organization_id,)).fetchall()
    counts = {"pending": 0, "processing": 0, "completed": 0, "failed": 0}
    counts.update({r["status"]: r["n"] for r in rows})
    return counts


def count_tasks_updated_since(organization_id: str, status: str, since: str) -> int:
    with get_db_conn() as conn:
        return conn.execute("""
            SELECT COUNT(*) FROM tasks WHERE organization_id=? AND status=? AND updated_at >= ?
        """, (organization_id, status, since)).fetchone()[0]


# ─── LEADS ──────────────────────────────────────────────────────

LEAD_UPDATE_FIELDS = {
    "name", "title", "company", "company_domain", "email", "phone", "linkedin_url",
    "location", "industry", "status", "research", "enrichment_error",
    "last_enriched_at", "last_investigated_at", "updated_at",
}


def create_lead(data: dict) -> dict:
    lid = data.get("id") or gen_id("lead")
    now = to_iso()
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO leads (id, organization_id, mission_id, user_id, source_id, name, title,
                company, company_domain, email, phone, linkedin_url, location, industry, status,
                created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """, (
            lid, data["organization_id"], data.get("mission_id"), data.get("user_id"),
            data.get("source_id"), data.get("name"), data.get("title"), data.get("company"),
            data.get("company_domain"), data.get("email"), data.get("phone"),
            data.get("linkedin_url"), data.get("location"), data.get("industry"),
            data.get("status", "saved"), now, now,
        ))
        conn.commit()
        return _row_to_dict(conn.execute("SELECT * FROM leads WHERE id=?", (lid,)).fetchone())


def get_lead(lead_id: str) -> Optional[dict]:
    with get_db_conn() as conn:
        return _row_to_dict(conn.execute("SELECT * FROM leads WHERE id=?", (lead_id,)).fetchone())


def list_leads(mission_id: str = None, status: str = None, limit: int = 100) -> list:
    query = "SELECT * FROM leads WHERE 1=1"
    params = []
    if mission_id:
        query += " AND mission_id=?"
        params.append(mission_id)
    if status:
        query += " AND status=?"
        params.append(status)
    query += " ORDER BY created_at ASC, rowid ASC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


def update_lead(lead_id: str, data: dict) -> Optional[dict]:
    data = dict(data)
    if "research" in data and not isinstance(data["research"], str):
        data["research"] = _dumps(data["research"])
    data["updated_at"] = to_iso()
    return _row_to_dict(_safe_update("leads", lead_id, data, LEAD_UPDATE_FIELDS))


def existing_source_ids(mission_id: str) -> set:
    with get_db_conn() as conn:
        rows = conn.execute(
            "SELECT source_id FROM leads WHERE mission_id=? AND source_id IS NOT NULL", (mission_id,)
        ).fetchall()
        return {r["source_id"] for r in rows}


def list_enriched_uncontacted(mission_id: str, limit: int = 10) -> list:
    """Enriched leads with an email that never produced a contacted_leads row."""
    with get_db_conn() as conn:
        rows = conn.execute("""
            SELECT l.* FROM leads l
            WHERE l.mission_id=? AND l.status='enriched'
              AND l.email IS NOT NULL AND l.email != ''
              AND NOT EXISTS (SELECT 1 FROM contacted_leads c WHERE c.lead_id = l.id)
            ORDER BY l.created_at ASC, l.rowid ASC
            LIMIT ?
        """, (mission_id, limit)).fetchall()
        return [_row_to_dict(r) for r in rows]


# ─── CONTACTED LEADS ────────────────────────────────────────────

def create_contacted_lead(data: dict) -> dict:
    cid = data.get("id") or gen_id("ctl")
    now = to_iso()
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO contacted_leads (id, organization_id, mission_id, lead_id, user_id, name,
                email, company, role, subject, provider, message_id, thread_id, status, kind,
                engagement_score, evaluation_status, sent_at, last_interaction_at, created_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """, (
            cid, data["organization_id"], data.get("mission_id"), data.get("lead_id"),
            data.get("user_id"), data.get("name"), data.get("email"), data.get("company"),
            data.get("role"), data.get("subject"), data.get("provider"),
            data.get("message_id"), data.get("thread_id"), data.get("status", "sent"),
            data.get("kind", "initial"), data.get("engagement_score", 0),
            data.get("evaluation_status", "pending"), data.get("sent_at", now),
            data.get("last_interaction_at", now), data.get("created_at", now),
        ))
        conn.commit()
        return _row_to_dict(conn.execute("SELECT * FROM contacted_leads WHERE id=?", (cid,)).fetchone())


def get_latest_contacted_lead(lead_id: str, mission_id: str = None) -> Optional[dict]:
    query = "SELECT * FROM contacted_leads WHERE lead_id=?"
    params = [lead_id]
    if mission_id:
        query += " AND mission_id=?"
        params.append(mission_id)
    query += " ORDER BY sent_at DESC, rowid DESC LIMIT 1"
    with get_db_conn() as conn:
        return _row_to_dict(conn.execute(query, params).fetchone())


def list_contacted_due_for_evaluation(before: str, limit: int) -> list:
    """Pending contacted leads of active missions idle since before `before`, oldest first."""
    with get_db_conn() as conn:
        rows = conn.execute("""
            SELECT cl.* FROM contacted_leads cl
            JOIN missions m ON m.id = cl.mission_id
            WHERE cl.evaluation_status='pending' AND cl.last_interaction_at < ?
                AND m.status='active'
            ORDER BY cl.last_interaction_at ASC, cl.rowid ASC
            LIMIT ?
        """, (before, limit)).fetchall()
        return [_row_to_dict(r) for r in rows]


def claim_contacted_for_evaluation(contacted_ids: Iterable[str]) -> List[str]:
    """Flip pending rows to evaluating, one conditional update per row.

    Returns the ids this call flipped; rows another scan got first are left out.
    """
    claimed = []
    with get_db_conn() as conn:
        for contacted_id in contacted_ids:
            cursor = conn.execute("""
                UPDATE contacted_leads SET evaluation_status='evaluating'
                WHERE id=? AND evaluation_status='pending'
            """, (contacted_id,))
            if cursor.rowcount == 1:
                claimed.append(contacted_id)
        conn.commit()
    return claimed


def release_contacted_evaluation(contacted_ids: Iterable[str]) -> int:
    """Put rows flipped by claim_contacted_for_evaluation back to pending."""
    ids = list(contacted_ids)
    if not ids:
        return 0
    placeholders = ",".join("?" for _ in ids)
    with get_db_conn() as conn:
        cursor = conn.execute(f"""
            UPDATE contacted_leads SET evaluation_status='pending'
            WHERE evaluation_status='evaluating' AND id IN ({placeholders})
        """, ids)
        conn.commit()
        return cursor.rowcount


def set_evaluation_status(lead_id: str, mission_id: str, status: str) -> int:
    with get_db_conn() as conn:
        cursor = conn.execute("""
            UPDATE contacted_leads SET evaluation_status=? WHERE lead_id=? AND mission_id=?
        """, (status, lead_id, mission_id))
        conn.commit()
        return cursor.rowcount


def count_contacted_since(organization_id: str, since: str) -> int:
    with get_db_conn() as conn:
        return conn.execute("""
            SELECT COUNT(*) FROM contacted_leads WHERE organization_id=? AND created_at >= ?
        """, (organization_id, since)).fetchone()[0]


# ─── LEAD RESPONSES ─────────────────────────────────────────────

ENGAGEMENT_POINTS = {"open": 1, "click": 2, "reply": 3}


def record_interaction(lead_id: str, interaction_type: str, content: str = None,
                       mission_id: str = None, organization_id: str = None) -> dict:
    """Store an open/click/reply and bump the engagement score of the latest contact."""
    if interaction_type not in ENGAGEMENT_POINTS:
        raise ValueError(f"Unknown interaction type: {interaction_type}")
    now = to_iso()
    contacted = get_latest_contacted_lead(lead_id, mission_id)
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO lead_responses (organization_id, mission_id, lead_id, type, content, created_at)
            VALUES (?,?,?,?,?,?)
        """, (
            organization_id or (contacted or {}).get("organization_id"),
            mission_id or (contacted or {}).get("mission_id"),
            lead_id, interaction_type, content, now,
        ))
        if contacted:
            conn.execute("""
                UPDATE contacted_leads
                SET engagement_score = engagement_score + ?, last_interaction_at = ?
                WHERE id=?
            """, (ENGAGEMENT_POINTS[interaction_type], now, contacted["id"]))
        conn.commit()
    return get_latest_contacted_lead(lead_id, mission_id) or {"lead_id": lead_id}


def list_lead_responses(lead_id: str) -> list:
    with get_db_conn() as conn:
        rows = conn.execute(
            "SELECT * FROM lead_responses WHERE lead_id=? ORDER BY created_at ASC", (lead_id,)
        ).fetchall()
        return [dict(r) for r in rows]


def count_replies_since(organization_id: str, since: str) -> int:
    with get_db_conn() as conn:
        return conn.execute("""
            SELECT COUNT(*) FROM lead_responses
            WHERE organization_id=? AND type='reply' AND created_at >= ?
        """, (organization_id, since)).fetchone()[0]


# ─── CAMPAIGNS ──────────────────────────────────────────────────

def create_campaign(data: dict, steps: list) -> dict:
    cid = data.get("id") or gen_id("cmp")
    now = to_iso()
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO campaigns (id, organization_id, user_id, name, status, settings,
                created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?)
        """, (
            cid, data["organization_id"], data.get("user_id"), data["name"],
            data.get("status", "active"), _dumps(data.get("settings", {})), now, now,
        ))
        for idx, step in enumerate(steps):
            conn.execute("""
                INSERT INTO campaign_steps (campaign_id, order_index, name, offset_days,
                    subject_template, body_template)
                VALUES (?,?,?,?,?,?)
            """, (
                cid, idx, step.get("name") or f"Step {idx + 1}",
                int(step.get("offset_days") or 0),
                step.get("subject", ""), step.get("body_html", ""),
            ))
        conn.commit()
    return get_campaign_by_name(data["organization_id"], data["name"])


def get_campaign_by_name(organization_id: str, name: str) -> Optional[dict]:
    with get_db_conn() as conn:
        row = conn.execute(
            "SELECT * FROM campaigns WHERE organization_id=? AND name=?", (organization_id, name)
        ).fetchone()
        if not row:
            return None
        campaign = _row_to_dict(row)
        steps = conn.execute("""
            SELECT * FROM campaign_steps WHERE campaign_id=? ORDER BY order_index ASC
        """, (campaign["id"],)).fetchall()
        campaign["steps"] = [dict(s) for s in steps]
        return campaign


# ─── EXCLUDED DOMAINS ───────────────────────────────────────────

def add_excluded_domain(organization_id: str, domain: str):
    with get_db_conn() as conn:
        conn.execute("""
            INSERT OR IGNORE INTO excluded_domains (organization_id, domain) VALUES (?, ?)
        """, (organization_id, domain.lower().strip().lstrip("@")))
        conn.commit()


def list_excluded_domains(organization_id: str) -> set:
    with get_db_conn() as conn:
        rows = conn.execute(
            "SELECT domain FROM excluded_domains WHERE organization_id=?", (organization_id,)
        ).fetchall()
        return {r["domain"].lower().strip().lstrip("@") for r in rows}


# ─── MISSION LOGS ───────────────────────────────────────────────

def insert_mission_log(data: dict) -> int:
    with get_db_conn() as conn:
        cursor = conn.execute("""
            INSERT INTO mission_logs (organization_id, mission_id, task_id, level, message,
                details, created_at)
            VALUES (?,?,?,?,?,?,?)
        """, (
            data.get("organization_id"), data.get("mission_id"), data.get("task_id"),
            data.get("level", "info"), data["message"], _dumps(data.get("details") or {}),
            to_iso(),
        ))
        conn.commit()
        return cursor.lastrowid


def list_mission_logs(mission_id: str = None, task_id: str = None, level: str = None,
                      limit: int = 100) -> list:
    query = "SELECT * FROM mission_logs WHERE 1=1"
    params = []
    for column, value in (("mission_id", mission_id), ("task_id", task_id), ("level", level)):
        if value:
            query += f" AND {column}=?"
            params.append(value)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


# ─── LEAD EVENTS ────────────────────────────────────────────────

def insert_lead_events(events: List[dict]) -> int:
    if not events:
        return 0
    now = to_iso()
    with get_db_conn() as conn:
        conn.executemany("""
            INSERT INTO lead_events (organization_id, mission_id, task_id, lead_id, event_type,
                stage, outcome, message, meta, created_at)
            VALUES (?,?,?,?,?,?,?,?,?,?)
        """, [(
            e.get("organization_id"), e.get("mission_id"), e.get("task_id"), e.get("lead_id"),
            e["event_type"], e.get("stage"), e.get("outcome"), e.get("message"),
            _dumps(e.get("meta") or {}), now,
        ) for e in events])
        conn.commit()
        return len(events)


def list_lead_events(lead_id: str = None, task_id: str = None, event_type: str = None,
                     limit: int = 200) -> list:
    query = "SELECT * FROM lead_events WHERE 1=1"
    params = []
    for column, value in (("lead_id", lead_id), ("task_id", task_id), ("event_type", event_type)):
        if value:
            query += f" AND {column}=?"
            params.append(value)
    query += " ORDER BY id ASC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


# ─── REPORTS ────────────────────────────────────────────────────

def create_report(data: dict) -> dict:
    rid = gen_id("rep")
    with get_db_conn() as conn:
        conn.execute("""
            INSERT INTO mission_reports (id, organization_id, mission_id, report_type, subject,
                html, summary, sent_to, created_at)
            VALUES (?,?,?,?,?,?,?,?,?)
        """, (
            rid, data["organization_id"], data.get("mission_id"), data["report_type"],
            data.get("subject"), data.get("html"), _dumps(data.get("summary") or {}),
            data.get("sent_to"), to_iso(),
        ))
        conn.commit()
        return _row_to_dict(conn.execute("SELECT * FROM mission_reports WHERE id=?", (rid,)).fetchone())


def list_reports(organization_id: str, report_type: str = None, limit: int = 50) -> list:
    query = "SELECT * FROM mission_reports WHERE organization_id=?"
    params = [organization_id]
    if report_type:
        query += " AND report_type=?"
        params.append(report_type)
    query += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    with get_db_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


def mission_funnel(mission_id: str) -> dict:
    """Lead counts per status plus contact/evaluation totals for one mission."""
    with get_db_conn() as conn:
        lead_rows = conn.execute("""
            SELECT status, COUNT(*) AS n FROM leads WHERE mission_id=? GROUP BY status
        """, (mission_id,)).fetchall()
        eval_rows = conn.execute("""
            SELECT evaluation_status, COUNT(*) AS n FROM contacted_leads
            WHERE mission_id=? GROUP BY evaluation_status
        """, (mission_id,)).fetchall()
    return {
        "leads": {r["status"]: r["n"] for r in lead_rows},
        "evaluations": {r["evaluation_status"]: r["n"] for r in eval_rows},
    }
