import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from use_cases.domain_models import PlayerProfile
from use_cases.results import ErrorKind, Result

log = logging.getLogger(__name__)

class SQLiteProfileRepository:
    """Player profiles derived from identity accounts. Implements the ProfileStore port."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _conn(self):
        return sqlite3.connect(self.db_path)

    def _get_current_version(self, conn) -> int:
        row = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='schema_info'").fetchone()
        if row:
            version_row = conn.execute("SELECT version FROM schema_info").fetchone()
            if version_row:
                return version_row[0]

        # Legacy databases without schema_info: a complete players table counts as v1
        players_table = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='players'").fetchone()
        if players_table:
            cols = conn.execute("PRAGMA table_info(players)").fetchall()
            col_names = {c[1] for c in cols}
            if {"user_id", "name", "email", "created_at"}.issubset(col_names):
                return 1

        return 0

    def _migrate_v1(self, conn):
        """Baseline schema (v1)."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS players (
                user_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                created_at TEXT NOT NULL
            )
        """)

    def _migrate_v2(self, conn):
        """Auth audit trail (v2)."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                actor_user_id TEXT,
                action TEXT NOT NULL,
                target_type TEXT NOT NULL,
                target_id TEXT,
                metadata_json TEXT,
                result TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_log_actor ON audit_log (actor_user_id)")

    def init_db(self):
        migrations = [self._migrate_v1, self._migrate_v2]

        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_info (
                    version INTEGER NOT NULL
                )
            """)

            current_version = self._get_current_version(conn)

            has_version_row = conn.execute("SELECT COUNT(*) FROM schema_info").fetchone()[0] > 0
            if not has_version_row:
                conn.execute("INSERT INTO schema_info (version) VALUES (?)", (current_version,))

            for i in range(current_version, len(migrations)):
                target_version = i + 1
                try:
                    migrations[i](conn)
                    conn.execute("UPDATE schema_info SET version = ?", (target_version,))
                except Exception as e:
                    # Leaving the with-block through an exception rolls back every step of this run.
                    raise RuntimeError(f"Database migration to v{target_version} failed: {e}") from e

            conn.commit()

    def create_profile(self, user_id: str, name: str, email: Optional[str], created_at: Optional[str] = None):
        created_at = created_at or datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            try:
                conn.execute("""
                    INSERT INTO players (user_id, name, email, created_at)
                    VALUES (?, ?, ?, ?)
                """, (user_id, name, email, created_at))
                conn.commit()
                return True, None
            except sqlite3.IntegrityError:
                return False, "integrity_error"

    def get_profile(self, user_id: str) -> Optional[PlayerProfile]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT user_id, name, email, created_at FROM players WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row:
                return PlayerProfile(user_id=row[0], name=row[1], email=row[2], created_at=row[3])
            return None

    def delete_profile(self, user_id: str):
        with self._conn() as conn:
            conn.execute("DELETE FROM players WHERE user_id = ?", (user_id,))
            conn.commit()

    async def create(self, user_id: str, name: str, email: Optional[str]) -> Result[None]:
        try:
            success, err = await asyncio.to_thread(self.create_profile, user_id, name, email)
        except sqlite3.Error as e:
            log.error(f"Failed to save player profile {user_id}: {e}", exc_info=True)
            return Result.failure(ErrorKind.STORE_FAILURE, str(e))
        if not success:
            return Result.failure(ErrorKind.STORE_FAILURE, err or "unknown")
        log.info(f"Player profile saved for {user_id}")
        return Result.success()

    async def get(self, user_id: str) -> Optional[PlayerProfile]:
        try:
            return await asyncio.to_thread(self.get_profile, user_id)
        except sqlite3.Error as e:
            log.error(f"Failed to load player profile {user_id}: {e}", exc_info=True)
            return None
