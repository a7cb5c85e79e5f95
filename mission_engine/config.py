"""
Centralized Configuration - Single source of truth for all settings.

All environment variables are read here, validated, and exposed as module-level
constants. Other modules import from here instead of reading os.environ directly.

Usage:
    from mission_engine.config import DB_PATH, TICK_BATCH_SIZE, LOG_LEVEL
"""

import os
import sys

# ─── PATHS ───────────────────────────────────────────────────

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# ─── DATABASE ────────────────────────────────────────────────

DB_PATH = os.environ.get("MISSION_DB_PATH", os.path.join(PROJECT_ROOT, "missions.db"))
DB_JOURNAL_MODE = os.environ.get("MISSION_JOURNAL_MODE", "WAL")

# ─── EXTERNAL SERVICES ───────────────────────────────────────

APP_URL = os.environ.get("APP_URL", "http://localhost:3000").rstrip("/")
LEAD_SEARCH_URL = os.environ.get("LEAD_SEARCH_URL", f"{APP_URL}/api/leads/search")
RESEARCH_WEBHOOK_URL = os.environ.get("RESEARCH_WEBHOOK_URL", f"{APP_URL}/api/research")
INTERNAL_API_SECRET = os.environ.get("INTERNAL_API_SECRET", "")
HTTP_TIMEOUT = int(os.environ.get("HTTP_TIMEOUT_SECONDS", "60"))

# ─── TICK ────────────────────────────────────────────────────

TICK_BATCH_SIZE = int(os.environ.get("TICK_BATCH_SIZE", "5"))
TICK_INTERVAL_SECONDS = int(os.environ.get("TICK_INTERVAL_SECONDS", "60"))
TICK_SECRET = os.environ.get("TICK_SECRET", "")
# Local development only: accept /api/tick calls when TICK_SECRET is unset
TICK_ALLOW_UNAUTHENTICATED = os.environ.get("TICK_ALLOW_UNAUTHENTICATED", "").lower() in ("1", "true", "yes")
EVALUATION_DWELL_MINUTES = int(os.environ.get("EVALUATION_DWELL_MINUTES", "5"))
EVALUATION_SCAN_LIMIT = int(os.environ.get("EVALUATION_SCAN_LIMIT", "10"))
STUCK_TASK_MINUTES = int(os.environ.get("STUCK_TASK_MINUTES", "15"))
# A running task fails once past this; must stay below STUCK_TASK_MINUTES
TASK_TIMEOUT_MINUTES = int(os.environ.get("TASK_TIMEOUT_MINUTES", "8"))

# ─── SEND WINDOW ─────────────────────────────────────────────

SEND_TARGET_HOUR = int(os.environ.get("SEND_TARGET_HOUR", "8"))
SEND_JITTER_MINUTES = int(os.environ.get("SEND_JITTER_MINUTES", "30"))
DEFAULT_UTC_OFFSET = int(os.environ.get("DEFAULT_UTC_OFFSET", "-3"))

# ─── API ─────────────────────────────────────────────────────

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")

# ─── LOGGING ─────────────────────────────────────────────────

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "text" or "json"
LOG_FILE = os.environ.get("LOG_FILE", "")  # empty = stdout only

# ─── VALIDATION ──────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_LOG_FORMATS = {"text", "json"}
_VALID_JOURNAL_MODES = {"WAL", "DELETE", "MEMORY", "OFF"}

_errors = []

if LOG_LEVEL not in _VALID_LOG_LEVELS:
    _errors.append(f"LOG_LEVEL must be one of {_VALID_LOG_LEVELS}, got '{LOG_LEVEL}'")

if LOG_FORMAT not in _VALID_LOG_FORMATS:
    _errors.append(f"LOG_FORMAT must be one of {_VALID_LOG_FORMATS}, got '{LOG_FORMAT}'")

if DB_JOURNAL_MODE not in _VALID_JOURNAL_MODES:
    _errors.append(f"MISSION_JOURNAL_MODE must be one of {_VALID_JOURNAL_MODES}, got '{DB_JOURNAL_MODE}'")

if HTTP_TIMEOUT < 1:
    _errors.append(f"HTTP_TIMEOUT_SECONDS must be positive, got {HTTP_TIMEOUT}")

if TICK_BATCH_SIZE < 1:
    _errors.append(f"TICK_BATCH_SIZE must be positive, got {TICK_BATCH_SIZE}")

if not 0 < TASK_TIMEOUT_MINUTES < STUCK_TASK_MINUTES:
    _errors.append(f"TASK_TIMEOUT_MINUTES must be positive and below STUCK_TASK_MINUTES "
                   f"({STUCK_TASK_MINUTES}), got {TASK_TIMEOUT_MINUTES}")

if not 0 <= SEND_TARGET_HOUR <= 23:
    _errors.append(f"SEND_TARGET_HOUR must be between 0 and 23, got {SEND_TARGET_HOUR}")

if SEND_JITTER_MINUTES < 0:
    _errors.append(f"SEND_JITTER_MINUTES must not be negative, got {SEND_JITTER_MINUTES}")

if not -12 <= DEFAULT_UTC_OFFSET <= 14:
    _errors.append(f"DEFAULT_UTC_OFFSET must be between -12 and 14, got {DEFAULT_UTC_OFFSET}")

if _errors:
    for e in _errors:
        print(f"[config] ERROR: {e}", file=sys.stderr)
    # Don't crash during import, the tick may not need every setting


def validate(strict: bool = False) -> list:
    """Validate all configuration settings.

    Args:
        strict: If True, raise ValueError on any errors.

    Returns:
        List of error messages (empty if all valid).
    """
    if strict and _errors:
        raise ValueError(f"Configuration errors: {'; '.join(_errors)}")
    return list(_errors)


def print_config():
    """Print current configuration (safe - no secrets)."""
    print("=" * 50)
    print("Mission Engine Configuration")
    print("=" * 50)
    print(f"  DB_PATH:                  {DB_PATH}")
    print(f"  DB_JOURNAL_MODE:          {DB_JOURNAL_MODE}")
    print(f"  APP_URL:                  {APP_URL}")
    print(f"  LEAD_SEARCH_URL:          {LEAD_SEARCH_URL}")
    print(f"  RESEARCH_WEBHOOK_URL:     {RESEARCH_WEBHOOK_URL}")
    print(f"  INTERNAL_API_SECRET:      {'set' if INTERNAL_API_SECRET else 'not set'}")
    print(f"  HTTP_TIMEOUT:             {HTTP_TIMEOUT}s")
    print(f"  TICK_BATCH_SIZE:          {TICK_BATCH_SIZE}")
    print(f"  TICK_INTERVAL_SECONDS:    {TICK_INTERVAL_SECONDS}")
    print(f"  TICK_SECRET:              {'set' if TICK_SECRET else 'not set'}")
    print(f"  TICK_ALLOW_UNAUTHENTICATED: {TICK_ALLOW_UNAUTHENTICATED}")
    print(f"  EVALUATION_DWELL_MINUTES: {EVALUATION_DWELL_MINUTES}")
    print(f"  STUCK_TASK_MINUTES:       {STUCK_TASK_MINUTES}")
    print(f"  TASK_TIMEOUT_MINUTES:     {TASK_TIMEOUT_MINUTES}")
    print(f"  SEND_TARGET_HOUR:         {SEND_TARGET_HOUR}")
    print(f"  DEFAULT_UTC_OFFSET:       {DEFAULT_UTC_OFFSET}")
    print(f"  API_HOST:                 {API_HOST}")
    print(f"  API_PORT:                 {API_PORT}")
    print(f"  LOG_LEVEL:                {LOG_LEVEL}")
    print(f"  LOG_FORMAT:               {LOG_FORMAT}")
    print(f"  PROJECT_ROOT:             {PROJECT_ROOT}")
    print("=" * 50)
