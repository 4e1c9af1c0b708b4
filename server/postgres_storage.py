"""PostgreSQL storage implementation."""

import json
import logging
import os
import psycopg2
from psycopg2.extras import RealDictCursor

from core.errors import StoreUnavailable
from core.interfaces import RowStore
from core.models import Row

logger = logging.getLogger(__name__)


class PostgresStorage(RowStore):
    """PostgreSQL-based storage implementation.

    Rows live in engine_rows keyed by (user_id, row_key). The version column
    backs conditional updates: UPDATE ... WHERE version = expected, or
    INSERT ... ON CONFLICT DO NOTHING when creating.
    """

    def __init__(self, config_file: str = None, db_url: str = None, connect_timeout: int = None):
        self.config_file = config_file or os.environ.get(
            'DUSHI_CONFIG', os.path.expanduser('~/.config/dushi/config.json')
        )
        self.db_url = db_url or os.environ.get(
            'DATABASE_URL',
            'postgresql://localhost:5432/dushi'
        )
        self.connect_timeout = connect_timeout or int(os.environ.get('DUSHI_DB_TIMEOUT', '5'))
        self._conn = None
        self._initialized = False

    @property
    def conn(self):
        """Lazy connection initialization."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg2.connect(self.db_url, connect_timeout=self.connect_timeout)
            except psycopg2.Error as e:
                logger.error(f"Error connecting to database: {e}")
                raise StoreUnavailable(f"Database unreachable: {e}") from e
            if not self._initialized:
                self._init_db()
                self._initialized = True
        return self._conn

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS engine_rows (
                    user_id VARCHAR(255) NOT NULL,
                    row_key VARCHAR(255) NOT NULL,
                    fields JSONB NOT NULL,
                    version INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, row_key)
                )
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_engine_rows_updated
                ON engine_rows(updated_at)
            """)
        self._conn.commit()

    def close(self):
        """Close the database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()

    def _fail(self, action: str, e: Exception):
        logger.error(f"Error {action}: {e}")
        if self._conn is not None and not self._conn.closed:
            self._conn.rollback()
        raise StoreUnavailable(f"Error {action}: {e}") from e

    def load_config(self) -> dict:
        if not os.path.exists(self.config_file):
            return {}
        with open(self.config_file, 'r') as f:
            return json.load(f)

    def get(self, user_id: str, key: str) -> Row | None:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT fields, version FROM engine_rows WHERE user_id = %s AND row_key = %s",
                    (user_id, key)
                )
                row = cur.fetchone()
            self.conn.commit()
        except psycopg2.Error as e:
            self._fail(f"loading {key} for {user_id}", e)
        if row:
            return Row(key, row['fields'], row['version'])
        return None

    def upsert(self, user_id: str, key: str, fields: dict) -> Row:
        try:
            with self.conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO engine_rows (user_id, row_key, fields, version, updated_at)
                    VALUES (%s, %s, %s, 1, CURRENT_TIMESTAMP)
                    ON CONFLICT (user_id, row_key)
                    DO UPDATE SET fields = EXCLUDED.fields,
                                  version = engine_rows.version + 1,
                                  updated_at = CURRENT_TIMESTAMP
                    RETURNING version
                """, (user_id, key, json.dumps(fields)))
                version = cur.fetchone()[0]
            self.conn.commit()
        except psycopg2.Error as e:
            self._fail(f"saving {key} for {user_id}", e)
        return Row(key, fields, version)

    def conditional_update(self, user_id: str, key: str, expected_version: int,
                           fields: dict) -> bool:
        try:
            with self.conn.cursor() as cur:
                if expected_version == 0:
                    cur.execute("""
                        INSERT INTO engine_rows (user_id, row_key, fields, version)
                        VALUES (%s, %s, %s, 1)
                        ON CONFLICT (user_id, row_key) DO NOTHING
                    """, (user_id, key, json.dumps(fields)))
                else:
                    cur.execute("""
                        UPDATE engine_rows
                        SET fields = %s, version = version + 1, updated_at = CURRENT_TIMESTAMP
                        WHERE user_id = %s AND row_key = %s AND version = %s
                    """, (json.dumps(fields), user_id, key, expected_version))
                updated = cur.rowcount == 1
            self.conn.commit()
        except psycopg2.Error as e:
            self._fail(f"updating {key} for {user_id}", e)
        return updated

    def list_rows(self, user_id: str, prefix: str) -> list[Row]:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT row_key, fields, version FROM engine_rows
                    WHERE user_id = %s AND LEFT(row_key, %s) = %s
                    ORDER BY row_key
                """, (user_id, len(prefix), prefix))
                rows = cur.fetchall()
            self.conn.commit()
        except psycopg2.Error as e:
            self._fail(f"listing {prefix!r} rows for {user_id}", e)
        return [Row(row['row_key'], row['fields'], row['version']) for row in rows]

    def list_users(self) -> list[str]:
        """List all user IDs that have stored rows."""
        try:
            with self.conn.cursor() as cur:
                cur.execute("SELECT DISTINCT user_id FROM engine_rows ORDER BY user_id")
                rows = cur.fetchall()
            self.conn.commit()
        except psycopg2.Error as e:
            self._fail("listing users", e)
        return [row[0] for row in rows]
