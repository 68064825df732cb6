from logging import Logger
from typing import Optional

from airflow.sdk.bases.hook import BaseHook

from datamall.db.core import DatabaseCredentials, PostgresEngine


def credentials_from_connection(
    conn_id: str, logger: Optional[Logger] = None
) -> DatabaseCredentials:
    """Airflow connection -> DatabaseCredentials (the connection's schema is the database)."""
    conn = BaseHook.get_connection(conn_id)
    creds = DatabaseCredentials(
        host=conn.host,
        port=int(conn.port or 5432),
        database=conn.schema,
        username=conn.login,
        password=conn.password,
    )
    if logger is not None:
        logger.info("Using %s connection %s: %s", conn.conn_type, conn_id, creds)
    return creds


def get_postgres_engine(
    conn_id: str, logger: Optional[Logger] = None
) -> PostgresEngine:
    return PostgresEngine(credentials_from_connection(conn_id, logger))
