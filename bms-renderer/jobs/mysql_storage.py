import hashlib
import json
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List

import pymysql

from jobs.models import JobRecord
from jobs.storage import JobStore
from renderer.core import require_env, setup_logger

logger = setup_logger("bms.mysql")

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS songs (
        id BIGINT UNSIGNED NOT NULL AUTO_INCREMENT PRIMARY KEY,
        url TEXT NOT NULL,
        url_hash CHAR(64) NOT NULL,
        event_id VARCHAR(64) NULL,
        added_at DATETIME NOT NULL,
        render_result JSON NULL,
        render_error MEDIUMTEXT NULL,
        rendered_at DATETIME NULL,
        UNIQUE KEY uq_songs_url_hash (url_hash),
        KEY idx_songs_rendered_at (rendered_at)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
"""


def connection_config_from_env() -> Dict[str, Any]:
    """Authoritative connection settings. Fails fast on missing required values."""
    return {
        "host": require_env("MYSQL_HOST"),
        "user": require_env("MYSQL_USER"),
        "password": os.getenv("MYSQL_PASSWORD", ""),
        "database": require_env("MYSQL_DATABASE"),
        "port": int(os.getenv("MYSQL_PORT", 3306)),
        "charset": "utf8mb4",
        "autocommit": False,
    }


@contextmanager
def open_connection(config: Dict[str, Any] = None):
    """Scoped connection: opened for one command, closed on every exit path."""
    config = config or connection_config_from_env()
    logger.info(f"Connecting to MySQL at {config['host']}:{config['port']}...")
    connection = pymysql.connect(**config)
    logger.info("Connected to MySQL!")
    try:
        yield connection
    finally:
        connection.close()


def url_hash(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class MySQLJobStore(JobStore):
    """
    MySQL implementation of JobStore.
    A pymysql connection is not thread-safe: statements are serialized on a lock so
    dispatcher threads can share one connection.
    """

    def __init__(self, connection):
        self._conn = connection
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        with self._lock:
            with self._conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            self._conn.commit()

    def find_pending(self) -> List[JobRecord]:
        sql = """
            SELECT id, url, event_id, added_at, render_result, render_error, rendered_at
            FROM songs
            WHERE rendered_at IS NULL AND render_result IS NULL
            ORDER BY id ASC
        """
        with self._lock:
            with self._conn.cursor() as cursor:
                cursor.execute(sql)
                rows = cursor.fetchall()
            # End the read snapshot so later runs see fresh rows
            self._conn.commit()
        return [self._row_to_job(row) for row in rows]

    def save_result(self, job_id: int, result: Dict[str, Any], rendered_at: datetime) -> None:
        sql = """
            UPDATE songs
            SET render_result = %s, render_error = NULL, rendered_at = %s
            WHERE id = %s
        """
        self._write(sql, (json.dumps(result), rendered_at, job_id))

    def save_error(self, job_id: int, error: str, rendered_at: datetime) -> None:
        sql = """
            UPDATE songs
            SET render_error = %s, rendered_at = %s
            WHERE id = %s
        """
        self._write(sql, (error, rendered_at, job_id))

    def insert_if_absent(self, url: str, event_id: str, added_at: datetime) -> bool:
        """INSERT IGNORE on the unique url hash keeps re-imports idempotent."""
        sql = """
            INSERT IGNORE INTO songs (url, url_hash, event_id, added_at)
            VALUES (%s, %s, %s, %s)
        """
        return self._write(sql, (url, url_hash(url), event_id, added_at)) > 0

    def _write(self, sql, params) -> int:
        with self._lock:
            try:
                with self._conn.cursor() as cursor:
                    affected = cursor.execute(sql, params)
                self._conn.commit()
                return affected
            except Exception:
                self._conn.rollback()
                raise

    def _row_to_job(self, row) -> JobRecord:
        result = row[4]
        if isinstance(result, (str, bytes)):
            result = json.loads(result)
        return JobRecord(
            id=row[0],
            url=row[1],
            event_id=row[2],
            added_at=row[3],
            render_result=result,
            render_error=row[5],
            rendered_at=row[6]
        )
