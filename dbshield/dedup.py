"""Cheap content fingerprints used to skip unchanged databases.

The fingerprint is a SHA-256 digest over engine-reported metadata, never
over dump output. For PostgreSQL it covers the storage file node, live and
dead tuple counts and the cumulative insert, update and delete counters of
every user table plus the column layout. The file node changes on TRUNCATE,
which leaves the counters untouched. For MariaDB it covers the row
estimate, data length, update and create times of every table in the
schema plus the column layout. MySQL 8 caches these statistics, so the
cache is disabled for the fingerprint session on that server.
"""

import hashlib
import logging
import os
import subprocess
from typing import Iterable, List, Optional, Sequence
import psycopg
from .errors import FingerprintUnavailable
from .models import Config, ConnectionDetails, Engine

logger = logging.getLogger(__name__)

POSTGRES_TABLE_STATS = """
    SELECT s.schemaname, s.relname, c.relfilenode,
           s.n_tup_ins, s.n_tup_upd, s.n_tup_del, s.n_live_tup, s.n_dead_tup
    FROM pg_stat_user_tables s
    JOIN pg_class c ON c.oid = s.relid
    ORDER BY s.schemaname, s.relname
"""

POSTGRES_COLUMNS = """
    SELECT table_schema, table_name, column_name, data_type, ordinal_position
    FROM information_schema.columns
    WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
    ORDER BY table_schema, table_name, ordinal_position
"""

MYSQL_VERSION = "SELECT VERSION()"

# MySQL 8 serves information_schema.TABLES from a cache for a day by default
MYSQL_DISABLE_STATS_CACHE = "SET SESSION information_schema_stats_expiry = 0; "

MARIADB_METADATA = (
    "SELECT TABLE_NAME, TABLE_ROWS, DATA_LENGTH, UPDATE_TIME, CREATE_TIME "
    "FROM information_schema.TABLES WHERE TABLE_SCHEMA = DATABASE() "
    "ORDER BY TABLE_NAME; "
    "SELECT TABLE_NAME, COLUMN_NAME, COLUMN_TYPE, ORDINAL_POSITION "
    "FROM information_schema.COLUMNS WHERE TABLE_SCHEMA = DATABASE() "
    "ORDER BY TABLE_NAME, ORDINAL_POSITION"
)


def digest_rows(engine: Engine, rows: Iterable[Sequence]) -> str:
    """Stable digest over metadata rows."""
    sha = hashlib.sha256(engine.value.encode())
    for row in rows:
        sha.update(b"\n")
        sha.update("\t".join("" if v is None else str(v) for v in row).encode())
    return sha.hexdigest()


def should_skip(new_fingerprint: Optional[str], last_success_fingerprint: Optional[str]) -> bool:
    """True iff a previous fingerprint exists and matches the new one."""
    if new_fingerprint is None or last_success_fingerprint is None:
        return False
    return new_fingerprint == last_success_fingerprint


class Fingerprinter:
    """Computes fingerprints by querying database metadata."""

    def __init__(self, config: Config):
        self.config = config

    def fingerprint(self, engine: Engine, connection: ConnectionDetails) -> str:
        """Fingerprint the current state of a database.

        Raises:
            FingerprintUnavailable: if the metadata could not be read.
        """
        if engine is Engine.POSTGRESQL:
            return self._postgres_fingerprint(connection)
        if engine is Engine.MARIADB:
            return self._mariadb_fingerprint(connection)
        raise FingerprintUnavailable(f"Unsupported engine: {engine}")

    def _postgres_fingerprint(self, connection: ConnectionDetails) -> str:
        try:
            with psycopg.connect(
                host=connection.host,
                port=connection.port,
                user=connection.user,
                password=connection.password,
                dbname=connection.database,
                connect_timeout=max(1, int(self.config.fingerprint_timeout)),
            ) as conn:
                with conn.cursor() as cur:
                    cur.execute(POSTGRES_TABLE_STATS)
                    rows = cur.fetchall()
                    cur.execute(POSTGRES_COLUMNS)
                    rows.extend(cur.fetchall())
        except psycopg.Error as e:
            raise FingerprintUnavailable(f"PostgreSQL metadata query failed: {e}") from e
        return digest_rows(Engine.POSTGRESQL, rows)

    def _mariadb_fingerprint(self, connection: ConnectionDetails) -> str:
        version = self._mysql_query(connection, MYSQL_VERSION).strip()
        query = MARIADB_METADATA
        if "mariadb" not in version.lower():
            query = MYSQL_DISABLE_STATS_CACHE + query
        output = self._mysql_query(connection, query)
        rows = [line.split("\t") for line in output.splitlines()]
        return digest_rows(Engine.MARIADB, rows)

    def _mysql_query(self, connection: ConnectionDetails, query: str) -> str:
        env = os.environ.copy()
        if connection.password:
            env["MYSQL_PWD"] = connection.password
        cmd: List[str] = [
            self.config.mysql_path,
            f"-h{connection.host}",
            f"-P{connection.port}",
            f"-u{connection.user}",
            "--batch",
            "--skip-column-names",
            "-e",
            query,
            connection.database,
        ]
        try:
            result = subprocess.run(
                cmd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.config.fingerprint_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise FingerprintUnavailable(f"mysql metadata query failed: {e}") from e
        if result.returncode != 0:
            raise FingerprintUnavailable(
                f"mysql metadata query failed: {result.stderr.strip() or result.returncode}"
            )
        return result.stdout
