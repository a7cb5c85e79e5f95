"""
Mission Engine - Database Initialization
Creates all tables and indexes used by the orchestrator.
"""

import sqlite3

from mission_engine.db import connection

SCHEMA_SQL = """
-- Missions (long-running prospecting campaigns)
CREATE TABLE IF NOT EXISTS missions (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    user_id TEXT,
    title TEXT NOT NULL,
    status TEXT DEFAULT 'active',
    params TEXT DEFAULT '{}',
    daily_enrich_limit INTEGER DEFAULT 10,
    daily_investigate_limit INTEGER DEFAULT 5,
    daily_contact_limit INTEGER DEFAULT 3,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Per-organization settings
CREATE TABLE IF NOT EXISTS organization_config (
    organization_id TEXT PRIMARY KEY,
    daily_search_limit INTEGER DEFAULT 3,
    notification_email TEXT,
    sender_name TEXT,
    company_profile TEXT DEFAULT '{}',
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Task table (the only coordination surface between tick drivers)
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    mission_id TEXT REFERENCES missions(id),
    type TEXT NOT NULL,
    status TEXT DEFAULT 'pending',
    payload TEXT DEFAULT '{}',
    result TEXT,
    error_message TEXT,
    scheduled_for TEXT,
    idempotency_key TEXT UNIQUE,
    parent_task_id TEXT,
    worker_id TEXT,
    retry_count INTEGER DEFAULT 0,
    processing_started_at TEXT,
    heartbeat_at TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Per-organization, per-day usage counters
CREATE TABLE IF NOT EXISTS daily_usage (
    organization_id TEXT NOT NULL,
    usage_date TEXT NOT NULL,
    leads_searched INTEGER DEFAULT 0,
    search_runs INTEGER DEFAULT 0,
    leads_enriched INTEGER DEFAULT 0,
    leads_investigated INTEGER DEFAULT 0,
    leads_contacted INTEGER DEFAULT 0,
    updated_at TEXT DEFAULT (datetime('now')),
    PRIMARY KEY (organization_id, usage_date)
);

-- Prospects
CREATE TABLE IF NOT EXISTS leads (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    mission_id TEXT REFERENCES missions(id),
    user_id TEXT,
    source_id TEXT,
    name TEXT,
    title TEXT,
    company TEXT,
    company_domain TEXT,
    email TEXT,
    phone TEXT,
    linkedin_url TEXT,
    location TEXT,
    industry TEXT,
    status TEXT DEFAULT 'saved',
    research TEXT,
    enrichment_error TEXT,
    last_enriched_at TEXT,
    last_investigated_at TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Leads that have been emailed
CREATE TABLE IF NOT EXISTS contacted_leads (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    mission_id TEXT,
    lead_id TEXT REFERENCES leads(id),
    user_id TEXT,
    name TEXT,
    email TEXT,
    company TEXT,
    role TEXT,
    subject TEXT,
    provider TEXT,
    message_id TEXT,
    thread_id TEXT,
    status TEXT DEFAULT 'sent',
    kind TEXT DEFAULT 'initial',
    engagement_score INTEGER DEFAULT 0,
    evaluation_status TEXT DEFAULT 'pending',
    sent_at TEXT,
    last_interaction_at TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

-- Opens, clicks and replies recorded by the tracking surface
CREATE TABLE IF NOT EXISTS lead_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT,
    mission_id TEXT,
    lead_id TEXT NOT NULL,
    type TEXT NOT NULL,
    content TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

-- Email campaigns and their steps
CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    user_id TEXT,
    name TEXT NOT NULL,
    status TEXT DEFAULT 'active',
    settings TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE (organization_id, name)
);

CREATE TABLE IF NOT EXISTS campaign_steps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id TEXT NOT NULL REFERENCES campaigns(id),
    order_index INTEGER NOT NULL,
    name TEXT,
    offset_days INTEGER DEFAULT 0,
    subject_template TEXT,
    body_template TEXT
);

-- Recipient domains an organization never contacts
CREATE TABLE IF NOT EXISTS excluded_domains (
    organization_id TEXT NOT NULL,
    domain TEXT NOT NULL,
    PRIMARY KEY (organization_id, domain)
);

-- Mission-scoped log entries (external observability)
CREATE TABLE IF NOT EXISTS mission_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT,
    mission_id TEXT,
    task_id TEXT,
    level TEXT DEFAULT 'info',
    message TEXT NOT NULL,
    details TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now'))
);

-- Per-lead audit trail
CREATE TABLE IF NOT EXISTS lead_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT,
    mission_id TEXT,
    task_id TEXT,
    lead_id TEXT,
    event_type TEXT NOT NULL,
    stage TEXT,
    outcome TEXT,
    message TEXT,
    meta TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now'))
);

-- Generated reports and alerts
CREATE TABLE IF NOT EXISTS mission_reports (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    mission_id TEXT,
    report_type TEXT NOT NULL,
    subject TEXT,
    html TEXT,
    summary TEXT DEFAULT '{}',
    sent_to TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(status, scheduled_for, created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_mission ON tasks(mission_id, type);
CREATE INDEX IF NOT EXISTS idx_leads_mission ON leads(mission_id, status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_leads_source ON leads(mission_id, source_id);
CREATE INDEX IF NOT EXISTS idx_contacted_eval ON contacted_leads(evaluation_status, last_interaction_at);
CREATE INDEX IF NOT EXISTS idx_logs_mission ON mission_logs(mission_id, created_at);
"""

EXPECTED_TABLES = [
    'missions', 'organization_config', 'tasks', 'daily_usage', 'leads',
    'contacted_leads', 'lead_responses', 'campaigns', 'campaign_steps',
    'excluded_domains', 'mission_logs', 'lead_events', 'mission_reports',
]


def init_db(db_path=None):
    """Initialize the database with all tables and indexes."""
    path = db_path or connection.DB_PATH
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA_SQL)
    conn.commit()

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
    )
    tables = [row[0] for row in cursor.fetchall()]
    conn.close()
    return tables


def verify_db(db_path=None):
    """Verify the database schema is correct."""
    path = db_path or connection.DB_PATH
    conn = sqlite3.connect(path)

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    actual_tables = [row[0] for row in cursor.fetchall()]
    conn.close()

    missing = set(EXPECTED_TABLES) - set(actual_tables)
    if missing:
        print(f"FAIL: Missing tables: {missing}")
        return False

    print(f"PASS: All {len(EXPECTED_TABLES)} tables present")
    return True


if __name__ == "__main__":
    tables = init_db()
    print(f"Database initialized at {connection.DB_PATH}")
    print(f"Tables created: {len(tables)}")
    verify_db()
