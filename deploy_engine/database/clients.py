# deploy_engine/database/clients.py
"""
Database server clients.

Both clients speak to the server's maintenance database through a
SQLAlchemy engine in AUTOCOMMIT mode, since CREATE/DROP/RESTORE
DATABASE cannot run inside a transaction.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import NullPool

from deploy_engine.database.templates import find_template_name

logger = logging.getLogger(__name__)

MSSQL_ODBC_DRIVER = "ODBC Driver 17 for SQL Server"


def _autocommit_engine(url: URL) -> Engine:
    return create_engine(
        url,
        isolation_level="AUTOCOMMIT",
        poolclass=NullPool,
        pool_pre_ping=True,
    )


def _sql_literal(value: str) -> str:
    return value.replace("'", "''")


def server_path_join(directory: str, file_name: str) -> str:
    """Join a path as the database server sees it (Windows or POSIX)."""
    separator = "\\" if "\\" in directory else "/"
    return directory.rstrip("\\/") + separator + file_name


# ============================================
# POSTGRES
# ============================================

class PostgresClient:
    """Template-aware PostgreSQL client."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        database: str = "postgres",
        engine: Optional[Engine] = None,
    ):
        self.host = host
        self.port = port
        self.engine = engine or _autocommit_engine(URL.create(
            "postgresql+psycopg2",
            username=username,
            password=password,
            host=host,
            port=port,
            database=database,
        ))

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def database_exists(self, name: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": name},
            ).first()
        return row is not None

    def create_database(self, name: str) -> None:
        logger.info(f"[Postgres] - Creating database {name}")
        with self.engine.connect() as conn:
            conn.execute(text(f"CREATE DATABASE {self._quote(name)} ENCODING 'UTF8'"))

    def create_database_from_template(self, template_name: str, name: str) -> None:
        logger.info(f"[Postgres] - Creating database {name} from template {template_name}")
        with self.engine.connect() as conn:
            conn.execute(text(
                f"CREATE DATABASE {self._quote(name)} TEMPLATE {self._quote(template_name)} ENCODING 'UTF8'"
            ))

    def drop_database(self, name: str) -> None:
        """Terminate open sessions, clear the template flag, then drop."""
        logger.info(f"[Postgres] - Dropping database {name}")
        with self.engine.connect() as conn:
            conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :name AND pid <> pg_backend_pid()"
                ),
                {"name": name},
            )
            conn.execute(text(f"ALTER DATABASE {self._quote(name)} IS_TEMPLATE false"))
            conn.execute(text(f"DROP DATABASE IF EXISTS {self._quote(name)}"))

    def set_as_template(self, name: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(text(f"ALTER DATABASE {self._quote(name)} IS_TEMPLATE true"))

    def set_comment(self, name: str, comment: str) -> None:
        # text() treats ":word" as a bind parameter
        literal = _sql_literal(comment).replace(":", "\\:")
        with self.engine.connect() as conn:
            conn.execute(text(f"COMMENT ON DATABASE {self._quote(name)} IS '{literal}'"))

    def list_database_comments(self) -> List[Tuple[str, Optional[str]]]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(
                "SELECT datname, shobj_description(oid, 'pg_database') "
                "FROM pg_database ORDER BY datname"
            )).all()
        return [(row[0], row[1]) for row in rows]

    def find_by_source_comment(self, source_identity: str) -> Optional[str]:
        return find_template_name(self.list_database_comments(), source_identity)


# ============================================
# MSSQL
# ============================================

class MssqlClient:
    """SQL Server client. Databases are restored directly, no templates."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_windows_auth: bool = False,
        engine: Optional[Engine] = None,
    ):
        self.host = host
        self.port = port
        if engine is None:
            query = {"driver": MSSQL_ODBC_DRIVER, "TrustServerCertificate": "yes"}
            if use_windows_auth:
                query["Trusted_Connection"] = "yes"
            engine = _autocommit_engine(URL.create(
                "mssql+pyodbc",
                username=None if use_windows_auth else username,
                password=None if use_windows_auth else password,
                host=host,
                port=port or None,
                database="master",
                query=query,
            ))
        self.engine = engine

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def database_exists(self, name: str) -> bool:
        with self.engine.connect() as conn:
            value = conn.execute(text("SELECT DB_ID(:name)"), {"name": name}).scalar()
        return value is not None

    def drop_database(self, name: str) -> None:
        logger.info(f"[MSSQL] - Dropping database {name}")
        quoted = self._quote(name)
        with self.engine.connect() as conn:
            conn.execute(text(f"ALTER DATABASE {quoted} SET SINGLE_USER WITH ROLLBACK IMMEDIATE"))
            conn.execute(text(f"DROP DATABASE {quoted}"))

    def get_data_path(self) -> str:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT SERVERPROPERTY('InstanceDefaultDataPath')")).scalar()

    def list_backup_files(self, backup_path: str) -> List[Tuple[str, str]]:
        """(logical name, type) pairs from RESTORE FILELISTONLY."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("RESTORE FILELISTONLY FROM DISK = :path"),
                {"path": backup_path},
            ).mappings().all()
        return [(row["LogicalName"], row["Type"]) for row in rows]

    def restore_database(self, name: str, backup_file_name: str) -> None:
        """
        Restore ``backup_file_name`` (already placed in the server's data
        directory) into ``name``, moving data and log files next to it.
        """
        data_path = self.get_data_path()
        backup_path = server_path_join(data_path, backup_file_name)

        moves = []
        data_files = 0
        for logical_name, file_type in self.list_backup_files(backup_path):
            if file_type == "L":
                suffix = "_log.ldf"
            else:
                suffix = ".mdf" if data_files == 0 else f"_{data_files}.ndf"
                data_files += 1
            moves.append((logical_name, server_path_join(data_path, f"{name}{suffix}")))

        move_clause = ", ".join(
            f"MOVE N'{_sql_literal(logical)}' TO N'{_sql_literal(target)}'"
            for logical, target in moves
        )
        statement = f"RESTORE DATABASE {self._quote(name)} FROM DISK = N'{_sql_literal(backup_path)}' WITH {move_clause}, REPLACE, STATS = 5"

        logger.info(f"[MSSQL] - Restoring {name} from {backup_path}")
        raw = self.engine.raw_connection()
        try:
            cursor = raw.cursor()
            cursor.execute(statement)
            # RESTORE reports progress as result sets; drain them so it completes
            while cursor.nextset():
                pass
            cursor.close()
        finally:
            raw.close()


# ============================================
# FACTORY
# ============================================

class DatabaseClientFactory:
    """Builds clients; replaced by fakes in tests."""

    def create_postgres(self, host: str, port: int, username: str, password: str) -> PostgresClient:
        return PostgresClient(host, port, username, password)

    def create_mssql(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_windows_auth: bool = False,
    ) -> MssqlClient:
        return MssqlClient(host, port, username, password, use_windows_auth)
