"""SQLite connection and schema shared by every store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS profiles (
    user_id          TEXT PRIMARY KEY,
    first_name       TEXT NOT NULL DEFAULT '',
    last_name        TEXT NOT NULL DEFAULT '',
    email            TEXT NOT NULL DEFAULT '',
    phone            TEXT DEFAULT '',
    title            TEXT DEFAULT '',
    skills           TEXT DEFAULT '[]',
    experience_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS jobs (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    company         TEXT NOT NULL,
    location        TEXT DEFAULT '',
    type            TEXT DEFAULT '',
    description     TEXT DEFAULT '',
    is_active       INTEGER DEFAULT 1,
    salary_min      INTEGER,
    salary_max      INTEGER,
    source          TEXT DEFAULT '',
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auto_application_settings (
    user_id         TEXT PRIMARY KEY,
    payload         TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auto_application_templates (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    name             TEXT NOT NULL,
    subject_template TEXT NOT NULL,
    body_template    TEXT NOT NULL,
    is_default       INTEGER DEFAULT 0,
    is_active        INTEGER DEFAULT 1,
    created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_email_aliases (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL UNIQUE,
    alias           TEXT NOT NULL,
    full_email      TEXT NOT NULL UNIQUE,
    routing_status  TEXT NOT NULL DEFAULT 'active',
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS applications (
    id                  TEXT PRIMARY KEY,
    job_id              TEXT NOT NULL,
    user_id             TEXT NOT NULL,
    status              TEXT NOT NULL,
    approval_status     TEXT NOT NULL,
    mail_id             TEXT,
    created_at          TEXT NOT NULL,
    queued_at           TEXT,
    sent_at             TEXT,
    job_title           TEXT DEFAULT '',
    company             TEXT DEFAULT '',
    to_email            TEXT DEFAULT '',
    subject             TEXT DEFAULT '',
    body                TEXT DEFAULT '',
    attachment_refs     TEXT DEFAULT '[]',
    contact_synthesized INTEGER DEFAULT 0,
    error_message       TEXT,
    UNIQUE(user_id, job_id)
);

CREATE TABLE IF NOT EXISTS email_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL DEFAULT '',
    application_id  TEXT NOT NULL REFERENCES applications(id),
    mail_id         TEXT NOT NULL UNIQUE,
    to_email        TEXT NOT NULL,
    from_email      TEXT NOT NULL,
    subject         TEXT DEFAULT '',
    body            TEXT DEFAULT '',
    attachments     TEXT DEFAULT '[]',
    sent_status     TEXT NOT NULL,
    sent_at         TEXT,
    delivered_at    TEXT,
    read_at         TEXT,
    retries         INTEGER DEFAULT 0,
    error_message   TEXT
);

CREATE TABLE IF NOT EXISTS recruiter_responses (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    application_id  TEXT NOT NULL REFERENCES applications(id),
    email_log_id    INTEGER REFERENCES email_logs(id),
    from_email      TEXT NOT NULL,
    from_name       TEXT DEFAULT '',
    subject         TEXT DEFAULT '',
    body            TEXT DEFAULT '',
    received_at     TEXT NOT NULL,
    parsed          INTEGER DEFAULT 0,
    response_type   TEXT DEFAULT 'unknown',
    sentiment       TEXT,
    action_required INTEGER DEFAULT 0,
    priority        TEXT DEFAULT 'normal',
    processed       INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS batch_runs (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    started_at        TEXT NOT NULL,
    ended_at          TEXT,
    matched           INTEGER DEFAULT 0,
    composed          INTEGER DEFAULT 0,
    sent              INTEGER DEFAULT 0,
    failed            INTEGER DEFAULT 0,
    skipped_by_quota  INTEGER DEFAULT 0,
    awaiting_approval INTEGER DEFAULT 0
);
"""


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open (and create if needed) the pipeline database.

    ``":memory:"`` gives a throwaway database, which the tests use.
    """
    target = str(db_path)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    logger.info("Dispatch database ready at %s.", target)
    return conn
