"""Abstract base class for database adapters.

The adapter is the only part of redshift_grants that talks to the database.
It wraps the caller's SQLAlchemy engine, acquiring a connection for every
query or transaction and releasing it afterwards, and classifies the errors
that the rest of the package routes on.
"""

import logging
import re
from abc import ABC
from abc import abstractmethod
from collections.abc import Iterable
from contextlib import contextmanager
from typing import Any

import sqlalchemy as sa

from redshift_grants.errors import ConnectionUnavailable
from redshift_grants.errors import IntrospectionUnavailable
from redshift_grants.models import IdentityKind
from redshift_grants.models import Scope

log = logging.getLogger(__name__)

UNDEFINED_TABLE = '42P01'

_MISSING_RELATION = re.compile(r'relation "?([\w.$]+)"? does not exist', re.IGNORECASE)


def _sqlstate(error: sa.exc.DBAPIError) -> str | None:
    orig = error.orig
    # psycopg2 uses pgcode, psycopg uses sqlstate, redshift_connector passes a dict of fields
    code = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if code is None and orig is not None and orig.args and isinstance(orig.args[0], dict):
        code = orig.args[0].get('C')
    return code


def error_message(error: BaseException) -> str:
    """Return the database's own message for an error, without SQLAlchemy's decoration."""
    if isinstance(error, sa.exc.DBAPIError) and error.orig is not None:
        orig = error.orig
        if orig.args and isinstance(orig.args[0], dict):
            return str(orig.args[0].get('M', orig))
        return str(orig).strip()
    return str(error)


def raise_for_missing_relation(error: sa.exc.DBAPIError) -> None:
    """Raise IntrospectionUnavailable if `error` reports a relation that does not exist."""
    message = error_message(error)
    match = _MISSING_RELATION.search(message)
    if _sqlstate(error) == UNDEFINED_TABLE or match:
        raise IntrospectionUnavailable(message, relation=match.group(1) if match else None) from error


class TransactionHandle:
    """Sequential access to one connection inside an open transaction.

    Statements run in savepoints where the dialect supports them, so a failed
    statement does not poison the ones after it.
    """

    def __init__(self, conn: sa.Connection, use_savepoints: bool):
        self.conn = conn
        self.use_savepoints = use_savepoints
        self.rollback_only = False

    def execute(self, statement: str) -> None:
        """Execute a raw SQL statement.

        Raises:
            sqlalchemy.exc.DBAPIError: if the database rejects the statement.
        """
        log.debug('Executing %s', statement)
        if self.use_savepoints:
            with self.conn.begin_nested():
                self.conn.exec_driver_sql(statement)
        else:
            self.conn.exec_driver_sql(statement)

    def set_rollback_only(self) -> None:
        """Roll back instead of committing when the transaction scope ends."""
        self.rollback_only = True


class DatabaseAdapter(ABC):
    """Database client used by the reconciliation orchestrator and batch executor.

    Subclasses provide the dialect-specific introspection queries. Query methods
    that accept `catalog` run the fast system-view query by default and the
    standard-catalog equivalent when `catalog=True`; the system-view variant
    raises IntrospectionUnavailable when the view does not exist.
    """

    def __init__(self, conn):
        """Initialize the adapter.

        Args:
            conn: SQLAlchemy Engine or Connection. Only its engine is kept;
                connections are acquired per operation.
        """
        self.engine = conn.engine

    @property
    def supports_savepoints(self) -> bool:
        return True

    def _connect(self) -> sa.Connection:
        try:
            return self.engine.connect()
        except sa.exc.DBAPIError as e:
            raise ConnectionUnavailable(f'Unable to connect to the database: {error_message(e)}') from e

    def query(self, sql: str, params: dict | None = None, expanding: Iterable[str] = ()) -> list[dict]:
        """Run a read-only query on its own connection.

        Args:
            sql: SQL text with :named bind parameters.
            params: Values for the bind parameters.
            expanding: Names of parameters that hold sequences for `IN :name`.

        Returns:
            list[dict]: One mapping of column name to value per row.

        Raises:
            ConnectionUnavailable: if no connection can be acquired.
            IntrospectionUnavailable: if a queried relation does not exist.
            sqlalchemy.exc.DBAPIError: for any other database error.
        """
        statement = sa.text(sql)
        expanding = tuple(expanding)
        if expanding:
            statement = statement.bindparams(*(sa.bindparam(name, expanding=True) for name in expanding))

        with self._connect() as conn:
            try:
                rows = conn.execute(statement, params or {}).fetchall()
            except sa.exc.DBAPIError as e:
                raise_for_missing_relation(e)
                raise
        return [dict(row._mapping) for row in rows]

    @contextmanager
    def transaction(self):
        """Context manager for a transaction on a single connection.

        Yields a TransactionHandle. Commits when the block ends unless the
        handle was marked rollback-only; rolls back and re-raises if the block
        raises, including on interrupts.
        """
        with self._connect() as conn:
            trans = conn.begin()
            handle = TransactionHandle(conn, self.supports_savepoints)
            try:
                yield handle
            except BaseException:
                trans.rollback()
                raise
            if handle.rollback_only:
                trans.rollback()
            else:
                trans.commit()

    # ===== Introspection Methods =====

    @abstractmethod
    def get_current_database(self) -> str:
        """Get the name of the connected database."""

    @abstractmethod
    def get_privileges(self, scope: Scope, identity_name: str, *, catalog: bool = False) -> list[dict]:
        """Get the table, schema or database privileges held by one identity.

        Args:
            scope: TABLE_PRIVILEGES, SCHEMA_PRIVILEGES or DATABASE_PRIVILEGES
            identity_name: Name of the grantee
            catalog: Use the standard-catalog query instead of the system view

        Returns:
            Rows in the DIRECT_PRIVILEGES shape, or the CATALOG_PRIVILEGES shape
            when `catalog` is True
        """

    @abstractmethod
    def get_default_privileges(self, identity_names: tuple[str, ...], *, catalog: bool = False) -> list[dict]:
        """Get default privileges on tables granted to any of the identities.

        Returns:
            Rows in the DEFAULT_PRIVILEGES shape
        """

    @abstractmethod
    def get_role_memberships(self, member_kind: IdentityKind, *, catalog: bool = False) -> list[dict]:
        """Get every role membership of users (USER) or of roles (ROLE).

        Returns:
            Rows in the ROLE_MEMBERSHIP shape
        """

    # ===== Directory Methods =====

    @abstractmethod
    def get_users(self) -> list[str]:
        """Get the names of all non-system users."""

    @abstractmethod
    def get_groups(self) -> list[str]:
        """Get the names of all non-system groups."""

    @abstractmethod
    def get_roles(self, *, catalog: bool = False) -> list[str]:
        """Get the names of roles that are neither users nor groups."""

    @abstractmethod
    def get_role_targets(self, *, catalog: bool = False) -> list[str]:
        """Get the names of roles that can be assigned to identities."""

    @abstractmethod
    def get_object_hierarchy(self, limit: int, *, catalog: bool = False) -> list[dict[str, Any]]:
        """Get schemas and the tables and views in them.

        Args:
            limit: Maximum number of objects per schema

        Returns:
            Rows with schema_name, object_name and object_type; object_name is
            None for an empty schema
        """
