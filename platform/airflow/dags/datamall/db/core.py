from __future__ import annotations

import io
import logging
import os
import re
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
import psycopg2
from psycopg2.extensions import connection as Psycopg2Connection
from psycopg2.extensions import cursor as Psycopg2Cursor
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

STAGING_TABLE = "_datamall_staging"

_ENV_LINE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Logger with a single stream handler, for use outside Airflow tasks."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(handler)
    return logger


def read_env_file(env_path: str | Path) -> dict[str, str]:
    """KEY=value pairs from a .env file; missing file gives {}."""
    path = Path(env_path)
    if not path.exists():
        return {}

    env_vars: dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if line.startswith("#"):
            continue
        match = _ENV_LINE_RE.match(line)
        if match is None:
            continue
        key, value = match.group(1), match.group(2).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        env_vars[key] = value
    return env_vars


@dataclass
class DatabaseCredentials:
    host: str
    port: int
    database: str
    username: str
    password: str

    @classmethod
    def from_env_file(
        cls, env_path: str | Path, prefix: str = "DATAMALL_DB_"
    ) -> DatabaseCredentials:
        """
        Build credentials from {prefix}HOST, {prefix}PORT (default 5432),
        {prefix}DATABASE, {prefix}USER and {prefix}PASSWORD. The env file
        wins over the process environment.
        """
        file_vars = read_env_file(env_path)

        def lookup(name: str, default: str | None = None) -> str:
            key = prefix + name
            value = file_vars.get(key) or os.environ.get(key) or default
            if value is None:
                raise ValueError(f"Missing required environment variable: {key}")
            return value

        return cls(
            host=lookup("HOST"),
            port=int(lookup("PORT", "5432")),
            database=lookup("DATABASE"),
            username=lookup("USER"),
            password=lookup("PASSWORD"),
        )

    def connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.username,
            "password": self.password,
        }

    def __repr__(self) -> str:
        return (
            f"DatabaseCredentials(host='****', port={self.port}, "
            f"database={self.database!r}, username={self.username!r}, password='****')"
        )

    __str__ = __repr__


def pg_retry():
    """Retry transient connection failures; SQL errors are raised at once."""
    return retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(
            (psycopg2.OperationalError, psycopg2.InterfaceError)
        ),
        reraise=True,
    )


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


_COPY_ESCAPES = str.maketrans({"\\": "\\\\", "\t": "\\t", "\n": "\\n", "\r": "\\r"})


def to_copy_text(value: Any) -> str:
    """
    One value in COPY text format. Backslash, tab, LF and CR are escaped
    so the stored value is exactly the value passed in.
    """
    if value is None:
        return "\\N"
    return str(value).translate(_COPY_ESCAPES)


class PostgresEngine:
    """
    psycopg2 connection holder with the three store calls the updater
    makes (select_distinct, select_keys, insert_rows) plus query/execute
    helpers for the checksum store and run log.

    Each call runs in its own transaction: commit on success, rollback
    on error.
    """

    def __init__(self, creds: DatabaseCredentials, db_name: str | None = None) -> None:
        self.creds = creds
        self.db_name = db_name or creds.database
        self._conn: Psycopg2Connection | None = None
        self.logger = get_logger("postgres_engine")

    @property
    def connection(self) -> Psycopg2Connection:
        if self._conn is None or self._conn.closed:
            params = {**self.creds.connect_kwargs(), "dbname": self.db_name}
            self._conn = psycopg2.connect(**params)
        return self._conn

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    @contextmanager
    def cursor(self) -> Iterator[Psycopg2Cursor]:
        conn = self.connection
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except Exception as e:
            self.logger.error("Transaction rolled back: %s", e)
            conn.rollback()
            raise
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    @pg_retry()
    def query(self, sql: str, params: dict[str, Any] | tuple | None = None) -> pd.DataFrame:
        """Run a SELECT and return the result as a DataFrame."""
        with self.cursor() as cur:
            cur.execute(sql, params)
            columns = [desc[0] for desc in cur.description]
            return pd.DataFrame(cur.fetchall(), columns=columns)

    @pg_retry()
    def fetch_dicts(
        self, sql: str, params: dict[str, Any] | tuple | None = None
    ) -> list[dict[str, Any]]:
        """
        Run a SELECT and return one dict per row.

        Values keep their driver types (NULL stays None rather than NaN),
        which key comparison against parsed CSV records relies on.
        """
        with self.cursor() as cur:
            cur.execute(sql, params)
            columns = [desc[0] for desc in cur.description]
            return [dict(zip(columns, row)) for row in cur.fetchall()]

    @pg_retry()
    def execute(self, sql: str, params: dict[str, Any] | tuple | None = None) -> None:
        with self.cursor() as cur:
            cur.execute(sql, params)

    # ------------------------------------------------------------------
    # Store calls used by the updater
    # ------------------------------------------------------------------

    def select_distinct(self, target_table: str, target_schema: str, column: str) -> list[Any]:
        col = quote_ident(column)
        rows = self.fetch_dicts(
            f"select distinct {col} as value "
            f"from {qualified_name(target_schema, target_table)} "
            f"where {col} is not null"
        )
        return [row["value"] for row in rows]

    def select_keys(
        self,
        target_table: str,
        target_schema: str,
        key_fields: Iterable[str],
        where_column: str | None = None,
        where_values: Iterable[Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Key columns of existing rows. With where_column, only rows whose
        where_column value is in where_values are returned.
        """
        columns = ", ".join(quote_ident(c) for c in key_fields)
        sql = f"select {columns} from {qualified_name(target_schema, target_table)}"
        if where_column is None:
            return self.fetch_dicts(sql)

        values = list(where_values or [])
        if not values:
            return []
        sql += f" where {quote_ident(where_column)} = any(%(values)s)"
        return self.fetch_dicts(sql, {"values": values})

    @pg_retry()
    def insert_rows(
        self,
        rows: list[dict[str, Any]],
        target_table: str,
        target_schema: str,
        conflict_column: str | list[str] | None = None,
    ) -> int:
        """
        COPY rows into a temp table shaped like the target, then move them
        with one insert ... select. Returns the inserted row count.

        conflict_column adds `on conflict (...) do nothing` for targets
        that carry a unique constraint.
        """
        if not rows:
            return 0

        target = qualified_name(target_schema, target_table)
        columns = list(rows[0])
        column_list = ", ".join(quote_ident(c) for c in columns)

        buf = io.StringIO()
        for row in rows:
            buf.write("\t".join(to_copy_text(row.get(c)) for c in columns))
            buf.write("\n")
        buf.seek(0)

        insert_sql = (
            f"insert into {target} ({column_list}) "
            f"select {column_list} from {STAGING_TABLE}"
        )
        if conflict_column:
            conflict_columns = (
                [conflict_column] if isinstance(conflict_column, str) else conflict_column
            )
            insert_sql += (
                f" on conflict ({', '.join(quote_ident(c) for c in conflict_columns)})"
                " do nothing"
            )

        with self.cursor() as cur:
            cur.execute(
                f"create temp table {STAGING_TABLE} "
                f"(like {target} including defaults) on commit drop"
            )
            cur.copy_expert(
                f"copy {STAGING_TABLE} ({column_list}) from stdin "
                f"with (format text, null '\\N')",
                buf,
            )
            cur.execute(insert_sql)
            inserted = cur.rowcount

        self.logger.info("Inserted %d rows into %s", inserted, target)
        return inserted

    def __enter__(self) -> PostgresEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
