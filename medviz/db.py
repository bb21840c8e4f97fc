"""Database utilities for medviz.

Provides functions to initialize and interact with the SQLite database that
stores user accounts, analyzed reports (diagnoses) and the individual
findings extracted from each report. A diagnosis row keeps the raw report
text, which is never rewritten once inserted; findings and the generated
image URL are attached to it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from . import config
from .extract import Finding, findings_to_dicts

logger = logging.getLogger("medviz.db")

DB_PATH = config.DB_PATH


def get_connection() -> sqlite3.Connection:
    """Return a new database connection (ensures foreign keys enabled)."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db() -> None:
    """Create database tables if they do not already exist."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            name TEXT,
            email TEXT,
            login_method TEXT DEFAULT 'password',
            role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            last_signed_in TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS diagnoses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id),
            report_text TEXT NOT NULL,
            findings TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    # Ensure upgrade columns exist for older databases
    cur.execute("PRAGMA table_info(diagnoses)")
    cols = [row[1] for row in cur.fetchall()]
    if "generated_image_url" not in cols:
        cur.execute("ALTER TABLE diagnoses ADD COLUMN generated_image_url TEXT")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS findings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            diagnosis_id INTEGER NOT NULL REFERENCES diagnoses(id),
            body_part TEXT NOT NULL,
            condition TEXT NOT NULL,
            severity TEXT NOT NULL CHECK (severity IN ('severe', 'moderate', 'mild')),
            description TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_diagnoses_user ON diagnoses(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_findings_diagnosis ON findings(diagnosis_id)")
    conn.commit()
    conn.close()


def _format_timestamp(raw: Optional[str]) -> str:
    if not raw:
        return ""
    try:
        return datetime.fromisoformat(str(raw)).strftime("%b %d, %Y %H:%M")
    except ValueError:
        return str(raw)


def _load_findings(raw: Optional[str]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Stored findings are not valid JSON; ignoring")
        return []
    return data if isinstance(data, list) else []


def _diagnosis_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "reportText": row["report_text"],
        "findings": _load_findings(row["findings"]),
        "generatedImageUrl": row["generated_image_url"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "created_display": _format_timestamp(row["created_at"]),
    }


# ---------------------------------------------------------------------------
# Diagnoses and findings
# ---------------------------------------------------------------------------
def create_diagnosis(user_id: int, report_text: str, findings: Sequence[Finding]) -> int:
    """Insert a diagnosis with its finding rows and return the new primary key.

    The diagnosis and all of its findings are written in one transaction;
    any database error propagates to the caller.
    """
    conn = get_connection()
    try:
        with conn:
            cur = conn.execute(
                "INSERT INTO diagnoses (user_id, report_text, findings) VALUES (?, ?, ?)",
                (user_id, report_text, json.dumps(findings_to_dicts(list(findings)))),
            )
            diagnosis_id = cur.lastrowid
            if not diagnosis_id:
                raise RuntimeError("Failed to get diagnosis ID from database response")
            conn.executemany(
                """
                INSERT INTO findings (diagnosis_id, body_part, condition, severity, description)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (diagnosis_id, f.body_part, f.condition, f.severity, f.description)
                    for f in findings
                ],
            )
    finally:
        conn.close()
    logger.info("Stored diagnosis #%s for user %s with %d findings", diagnosis_id, user_id, len(findings))
    return int(diagnosis_id)


def update_diagnosis_image(diagnosis_id: int, image_url: str) -> None:
    """Attach a generated image URL to an existing diagnosis."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE diagnoses
        SET generated_image_url = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (image_url, diagnosis_id),
    )
    conn.commit()
    conn.close()


def get_diagnoses_by_user_id(user_id: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Return a user's diagnoses, newest first."""
    conn = get_connection()
    cur = conn.cursor()
    sql = """
        SELECT id, user_id, report_text, findings, generated_image_url, created_at, updated_at
        FROM diagnoses
        WHERE user_id = ?
        ORDER BY datetime(created_at) DESC, id DESC
    """
    params: tuple = (user_id,)
    if limit:
        sql += " LIMIT ?"
        params = (user_id, int(limit))
    cur.execute(sql, params)
    rows = cur.fetchall()
    conn.close()
    return [_diagnosis_from_row(row) for row in rows]


def get_diagnosis_by_id(diagnosis_id: int) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, user_id, report_text, findings, generated_image_url, created_at, updated_at
        FROM diagnoses
        WHERE id = ?
        """,
        (diagnosis_id,),
    )
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _diagnosis_from_row(row)


def get_findings_by_diagnosis_id(diagnosis_id: int) -> List[Dict[str, Any]]:
    """Return the stored finding rows of a diagnosis in extraction order."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, diagnosis_id, body_part, condition, severity, description, created_at
        FROM findings
        WHERE diagnosis_id = ?
        ORDER BY id ASC
        """,
        (diagnosis_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [
        {
            "id": row["id"],
            "diagnosisId": row["diagnosis_id"],
            "bodyPart": row["body_part"],
            "condition": row["condition"],
            "severity": row["severity"],
            "description": row["description"] or "",
            "createdAt": row["created_at"],
        }
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def get_user_by_username(username: str) -> Optional[sqlite3.Row]:
    """Retrieve a user by username (returns a Row or None)."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE username = ?", (username,))
    row = cur.fetchone()
    conn.close()
    return row


def get_user_by_id(user_id: int) -> Optional[sqlite3.Row]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = cur.fetchone()
    conn.close()
    return row


def create_user(username: str, password_hash: str, name: str = "", email: str = "") -> int:
    """Create a new user with the given username and password hash."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO users (username, password_hash, name, email, login_method, role)
        VALUES (?, ?, ?, ?, 'password', 'user')
        """,
        (username, password_hash, name or username, email or None),
    )
    conn.commit()
    user_id = cur.lastrowid
    conn.close()
    return int(user_id)


def touch_last_signed_in(user_id: int) -> None:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        "UPDATE users SET last_signed_in = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (user_id,),
    )
    conn.commit()
    conn.close()
