"""Database operations for the local record store."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from portal.errors import CorruptRecord
from portal.models import Application, ApplicationStatus, InviteCode

# Database schema
CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS applications (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    status TEXT NOT NULL,
    submitted_at TEXT NOT NULL,
    data TEXT NOT NULL              -- Full Application JSON document
);

CREATE TABLE IF NOT EXISTS invite_codes (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL,
    application_id TEXT NOT NULL UNIQUE, -- At most one code per application
    used BOOLEAN NOT NULL DEFAULT FALSE,
    generated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Keys of the settings table
CONFIG_KEY = "class_config"
ADMIN_AUTH_KEY = "admin_authenticated"
BACKEND_URL_KEY = "backend_url"


class Database:
    """Handles database operations with proper connection management and error handling"""

    def __init__(self, db_file_path: str):
        self.db_file = db_file_path
        self.logger = logging.getLogger(self.__class__.__name__)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database with required tables"""
        try:
            with self._get_connection() as conn:
                conn.executescript(CREATE_TABLE_SQL)
                conn.commit()
                self.logger.info(f"Database initialized successfully: {self.db_file}")
        except sqlite3.Error as e:
            self.logger.critical(f"Failed to initialize database {self.db_file}: {e}")
            raise

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections with proper error handling"""
        conn = None
        try:
            conn = sqlite3.connect(self.db_file)
            conn.row_factory = sqlite3.Row
            self.logger.debug(f"Database connection opened: {self.db_file}")
            yield conn
        except sqlite3.Error as e:
            self.logger.error(f"Database error ({self.db_file}): {e}")
            raise
        finally:
            if conn:
                conn.close()
                self.logger.debug(f"Database connection closed: {self.db_file}")

    def _row_to_application(self, row: sqlite3.Row) -> Application:
        try:
            return Application.from_dict(json.loads(row["data"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Corrupt application record {row['id']}: {e}")
            raise CorruptRecord(f"Application record '{row['id']}' cannot be parsed: {e}")

    @staticmethod
    def _row_to_code(row: sqlite3.Row) -> InviteCode:
        return InviteCode(
            id=row["id"],
            code=row["code"],
            email=row["email"],
            application_id=row["application_id"],
            used=bool(row["used"]),
            generated_at=row["generated_at"],
        )

    # --- Applications ---

    def list_applications(self) -> List[Application]:
        """All applications, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM applications ORDER BY submitted_at DESC, rowid DESC"
            ).fetchall()
        self.logger.debug(f"Fetched {len(rows)} applications")
        return [self._row_to_application(row) for row in rows]

    def get_application(self, application_id: str) -> Optional[Application]:
        self.logger.debug(f"Fetching application: {application_id}")
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM applications WHERE id = ?", (application_id,)
            ).fetchone()
        if row is None:
            self.logger.debug(f"No application found with id: {application_id}")
            return None
        return self._row_to_application(row)

    def insert_application(self, application: Application) -> None:
        with self._get_connection() as conn:
            with conn:  # Use transaction
                conn.execute(
                    """
                    INSERT INTO applications (id, email, status, submitted_at, data)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        application.id,
                        application.email,
                        application.status.value,
                        application.submitted_at,
                        json.dumps(application.to_dict()),
                    ),
                )
        self.logger.info(
            f"Recorded application {application.id} for {application.email}"
        )

    def save_application(self, application: Application) -> bool:
        """Rewrites the stored record. Returns False if the id is unknown."""
        with self._get_connection() as conn:
            with conn:  # Use transaction
                cursor = conn.execute(
                    """
                    UPDATE applications SET email = ?, status = ?, data = ?
                    WHERE id = ?
                    """,
                    (
                        application.email,
                        application.status.value,
                        json.dumps(application.to_dict()),
                        application.id,
                    ),
                )
                updated = cursor.rowcount
        if updated == 0:
            self.logger.warning(f"No application record found with id {application.id}")
            return False
        self.logger.info(
            f"Updated application {application.id} (status: {application.status.value})"
        )
        return True

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ApplicationStatus}
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT LOWER(status) AS status, COUNT(*) AS total FROM applications GROUP BY LOWER(status)"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["total"]
        return counts

    # --- Invite codes ---

    def list_codes(self) -> List[InviteCode]:
        """All codes in issuance order."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM invite_codes ORDER BY rowid").fetchall()
        return [self._row_to_code(row) for row in rows]

    def get_code(self, code: str) -> Optional[InviteCode]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM invite_codes WHERE code = ?", (code,)
            ).fetchone()
        return self._row_to_code(row) if row else None

    def get_code_for_application(self, application_id: str) -> Optional[InviteCode]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM invite_codes WHERE application_id = ?", (application_id,)
            ).fetchone()
        return self._row_to_code(row) if row else None

    def insert_code(self, invite: InviteCode) -> bool:
        """Returns False if the code string or the application already has a row."""
        try:
            with self._get_connection() as conn:
                with conn:  # Use transaction
                    conn.execute(
                        """
                        INSERT INTO invite_codes (id, code, email, application_id, used, generated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            invite.id,
                            invite.code,
                            invite.email,
                            invite.application_id,
                            invite.used,
                            invite.generated_at,
                        ),
                    )
        except sqlite3.IntegrityError as e:
            self.logger.warning(
                f"Invite code {invite.code} for application {invite.application_id} not recorded: {e}"
            )
            return False
        self.logger.info(
            f"Recorded invite code {invite.code} for application {invite.application_id}"
        )
        return True

    def mark_code_used(self, code: str) -> bool:
        """Flips used to TRUE. Returns True only if this call changed the flag."""
        with self._get_connection() as conn:
            with conn:  # Use transaction
                cursor = conn.execute(
                    "UPDATE invite_codes SET used = TRUE WHERE code = ? AND used = FALSE",
                    (code,),
                )
                changed = cursor.rowcount
        if changed > 0:
            self.logger.info(f"Marked invite code {code} as used")
            return True
        return False

    # --- Settings ---

    def get_setting(self, key: str) -> Optional[Any]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            self.logger.error(f"Corrupt setting '{key}': {e}")
            raise CorruptRecord(f"Setting '{key}' cannot be parsed: {e}")

    def set_setting(self, key: str, value: Any) -> None:
        with self._get_connection() as conn:
            with conn:  # Use transaction
                conn.execute(
                    """
                    INSERT INTO settings (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (key, json.dumps(value)),
                )
        self.logger.debug(f"Stored setting '{key}'")

    def delete_setting(self, key: str) -> bool:
        with self._get_connection() as conn:
            with conn:  # Use transaction
                cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                deleted = cursor.rowcount
        return deleted > 0
