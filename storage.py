import sqlite3
from datetime import datetime, timezone
from typing import Any


CREATE_OVERRIDES_SQL = """
CREATE TABLE IF NOT EXISTS tap_status_updates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    office TEXT NOT NULL,
    division TEXT NOT NULL,
    period TEXT NOT NULL,
    target_index INTEGER NOT NULL,
    status TEXT NOT NULL,
    updated_by TEXT,
    updated_at TEXT NOT NULL,
    UNIQUE (office, division, period, target_index)
);
"""

CREATE_USERS_SQL = """
CREATE TABLE IF NOT EXISTS users_registry (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    email TEXT,
    sdo TEXT NOT NULL,
    school_name TEXT,
    created_at TEXT NOT NULL
);
"""

CREATE_EDIT_LOG_SQL = """
CREATE TABLE IF NOT EXISTS edit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    logged_at TEXT NOT NULL,
    office TEXT NOT NULL,
    division TEXT NOT NULL,
    period TEXT NOT NULL,
    target_index INTEGER NOT NULL,
    old_value TEXT,
    new_value TEXT,
    username TEXT,
    source TEXT NOT NULL
);
"""


class OverrideConflict(Exception):
    def __init__(self, expected: str, current: str) -> None:
        super().__init__(f"Status changed since it was read (expected {expected!r}, found {current!r})")
        self.expected = expected
        self.current = current


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(CREATE_OVERRIDES_SQL)
        conn.execute(CREATE_USERS_SQL)
        conn.execute(CREATE_EDIT_LOG_SQL)
        _ensure_column(conn, "tap_status_updates", "objective", "TEXT")
        conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column_name: str, column_type: str) -> None:
    existing = {
        row[1]
        for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
    }
    if column_name not in existing:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type}")


def list_overrides(db_path: str) -> list[dict[str, Any]]:
    query = """
    SELECT office, division, period, target_index, status, objective, updated_by, updated_at
    FROM tap_status_updates
    ORDER BY id
    """
    try:
        with sqlite3.connect(db_path) as conn:
            rows = conn.execute(query).fetchall()
    except sqlite3.OperationalError:
        # Table not created yet.
        return []

    return [
        {
            "office": row[0],
            "division": row[1],
            "period": row[2],
            "target_index": row[3],
            "status": row[4],
            "objective": row[5] or "",
            "updated_by": row[6] or "",
            "updated_at": row[7],
        }
        for row in rows
    ]


def get_override_status(
    conn: sqlite3.Connection,
    office: str,
    division: str,
    period: str,
    target_index: int,
) -> str | None:
    row = conn.execute(
        """
        SELECT status FROM tap_status_updates
        WHERE office = ? AND division = ? AND period = ? AND target_index = ?
        """,
        (office, division, period, target_index),
    ).fetchone()
    return row[0] if row else None


def upsert_override(
    db_path: str,
    office: str,
    division: str,
    period: str,
    target_index: int,
    status: str,
    username: str,
    objective: str = "",
    expected_status: str | None = None,
) -> str | None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        old_value = get_override_status(conn, office, division, period, target_index)
        if expected_status is not None and (old_value or "") != expected_status:
            conn.rollback()
            raise OverrideConflict(expected_status, old_value or "")

        conn.execute(
            """
            INSERT INTO tap_status_updates (
                office, division, period, target_index, status, objective, updated_by, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(office, division, period, target_index) DO UPDATE SET
                status=excluded.status,
                objective=excluded.objective,
                updated_by=excluded.updated_by,
                updated_at=excluded.updated_at
            """,
            (office, division, period, target_index, status, objective, username, utc_now_iso()),
        )
        conn.execute(
            """
            INSERT INTO edit_log (
                logged_at, office, division, period, target_index,
                old_value, new_value, username, source
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                utc_now_iso(),
                office,
                division,
                period,
                target_index,
                old_value or "",
                status,
                username,
                "update_status",
            ),
        )
        conn.commit()
    return old_value


def list_edit_log(db_path: str, limit: int = 100) -> list[dict[str, Any]]:
    query = """
    SELECT logged_at, office, division, period, target_index, old_value, new_value, username, source
    FROM edit_log
    ORDER BY id DESC
    LIMIT ?
    """
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(query, (limit,)).fetchall()

    return [
        {
            "logged_at": row[0],
            "office": row[1],
            "division": row[2],
            "period": row[3],
            "target_index": row[4],
            "old_value": row[5],
            "new_value": row[6],
            "username": row[7],
            "source": row[8],
        }
        for row in rows
    ]


def find_account(db_path: str, username: str) -> dict[str, Any] | None:
    query = """
    SELECT username, password_hash, email, sdo, school_name, created_at
    FROM users_registry
    WHERE username = ?
    LIMIT 1
    """
    with sqlite3.connect(db_path) as conn:
        row = conn.execute(query, (username,)).fetchone()

    if not row:
        return None

    return {
        "username": row[0],
        "password_hash": row[1],
        "email": row[2] or "",
        "sdo": row[3],
        "school_name": row[4] or "",
        "created_at": row[5],
    }


def email_in_use(db_path: str, email: str) -> bool:
    if not email:
        return False
    with sqlite3.connect(db_path) as conn:
        row = conn.execute(
            "SELECT 1 FROM users_registry WHERE lower(email) = lower(?) LIMIT 1",
            (email,),
        ).fetchone()
    return row is not None


def create_account(db_path: str, account: dict[str, Any]) -> bool:
    with sqlite3.connect(db_path) as conn:
        try:
            conn.execute(
                """
                INSERT INTO users_registry (username, password_hash, email, sdo, school_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    account["username"],
                    account["password_hash"],
                    account.get("email", ""),
                    account["sdo"],
                    account.get("school_name", ""),
                    utc_now_iso(),
                ),
            )
        except sqlite3.IntegrityError:
            return False
        conn.commit()
    return True


def update_account(
    db_path: str,
    username: str,
    sdo: str,
    school_name: str,
    password_hash: str | None = None,
) -> bool:
    with sqlite3.connect(db_path) as conn:
        if password_hash:
            cursor = conn.execute(
                """
                UPDATE users_registry
                SET sdo = ?, school_name = ?, password_hash = ?
                WHERE username = ?
                """,
                (sdo, school_name, password_hash, username),
            )
        else:
            cursor = conn.execute(
                "UPDATE users_registry SET sdo = ?, school_name = ? WHERE username = ?",
                (sdo, school_name, username),
            )
        conn.commit()
    return cursor.rowcount > 0
