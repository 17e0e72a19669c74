"""Short-lived Postgres sessions used to inspect and change extensions."""

import logging
from urllib.parse import quote

import psycopg2
from psycopg2 import sql

from coredb_operator.errors import DatabaseUnavailableError

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"

LIST_DATABASES = """
    SELECT datname
    FROM pg_database
    WHERE NOT datistemplate AND datallowconn
    ORDER BY datname
"""

LIST_EXTENSIONS = """
    SELECT
        ae.name,
        COALESCE(e.extversion, ae.default_version) AS version,
        e.extname IS NOT NULL AS enabled,
        n.nspname AS schema,
        ae.comment AS description
    FROM pg_available_extensions ae
    LEFT JOIN pg_extension e ON e.extname = ae.name
    LEFT JOIN pg_namespace n ON n.oid = e.extnamespace
    ORDER BY ae.name
"""


def build_dsn(user, password, host, port, database):
    return (
        f"postgresql://{quote(user, safe='')}:{quote(password, safe='')}"
        f"@{host}:{port}/{quote(database, safe='')}"
    )


def action_statements(action):
    """SQL statements carrying out one extension action, in order."""
    name = sql.Identifier(action.name)
    kind = action.kind.value
    if kind == "create":
        statements = []
        create = sql.SQL("CREATE EXTENSION IF NOT EXISTS {}").format(name)
        if action.schema:
            if action.schema != "public":
                statements.append(
                    sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(action.schema))
                )
            create += sql.SQL(" SCHEMA {}").format(sql.Identifier(action.schema))
        if action.version:
            create += sql.SQL(" VERSION {}").format(sql.Literal(action.version))
        statements.append(create + sql.SQL(" CASCADE"))
        return statements
    if kind == "drop":
        return [sql.SQL("DROP EXTENSION IF EXISTS {} CASCADE").format(name)]
    if kind == "update":
        return [
            sql.SQL("ALTER EXTENSION {} UPDATE TO {}").format(name, sql.Literal(action.version))
        ]
    if kind == "set_schema":
        return [
            sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(action.schema)),
            sql.SQL("ALTER EXTENSION {} SET SCHEMA {}").format(name, sql.Identifier(action.schema)),
        ]
    raise ValueError(f"Unknown extension action: {kind}")


class PostgresSession:
    """Per-pass connections to one instance, one per database, all autocommit.

    Use as a context manager so every connection is closed when the pass
    ends.
    """

    def __init__(self, host, port, user, password, connect_timeout=10, statement_timeout_ms=30000):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms
        self._connections = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _connection(self, database):
        conn = self._connections.get(database)
        if conn is not None and not conn.closed:
            return conn
        dsn = build_dsn(self.user, self.password, self.host, self.port, database)
        try:
            conn = psycopg2.connect(
                dsn,
                connect_timeout=self.connect_timeout,
                options=f"-c statement_timeout={self.statement_timeout_ms}",
                application_name="coredb-operator",
            )
        except psycopg2.OperationalError as e:
            raise DatabaseUnavailableError(
                f"cannot connect to database {database} on {self.host}:{self.port}: {e}"
            )
        conn.autocommit = True
        self._connections[database] = conn
        logger.debug(f"Connected to {self.host}:{self.port}/{database}")
        return conn

    def _query(self, database, query):
        conn = self._connection(database)
        try:
            with conn.cursor() as cur:
                cur.execute(query)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise DatabaseUnavailableError(f"catalog query on {database} failed: {e}")

    def list_databases(self):
        return [row[0] for row in self._query(MAINTENANCE_DATABASE, LIST_DATABASES)]

    def list_extensions(self, database):
        """Catalog rows for ``database`` as dicts."""
        rows = self._query(database, LIST_EXTENSIONS)
        return [
            {
                "name": name,
                "version": version,
                "enabled": bool(enabled),
                "schema": schema,
                "description": description,
            }
            for name, version, enabled, schema, description in rows
        ]

    def apply(self, database, action):
        """Run one action; psycopg2 errors propagate to the caller."""
        conn = self._connection(database)
        with conn.cursor() as cur:
            for statement in action_statements(action):
                logger.debug(f"Executing on {database}: {statement.as_string(conn)}")
                cur.execute(statement)

    def close(self):
        for database, conn in self._connections.items():
            try:
                conn.close()
            except psycopg2.Error as e:
                logger.warning(f"Failed to close connection to {database}: {e}")
        self._connections = {}
