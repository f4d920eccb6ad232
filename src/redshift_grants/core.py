"""Entry points for previewing, executing and reconciling grants.

Every function takes the caller's SQLAlchemy engine or connection, picks the
adapter for its dialect, and delegates to the synthesizer, reconciler or batch
executor.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace

from redshift_grants.adapters.base import DatabaseAdapter
from redshift_grants.adapters.redshift import RedshiftAdapter
from redshift_grants.config import get_settings
from redshift_grants.errors import ConnectionUnavailable
from redshift_grants.errors import ValidationError
from redshift_grants.executor import BatchExecutor
from redshift_grants.executor import split_statements
from redshift_grants.models import BatchResult
from redshift_grants.models import Direction
from redshift_grants.models import GrantableObject
from redshift_grants.models import Identity
from redshift_grants.models import IdentityKind
from redshift_grants.models import ObjectKind
from redshift_grants.models import ReconciliationResult
from redshift_grants.models import Scope
from redshift_grants.models import StatementRequest
from redshift_grants.reconciler import reconcile
from redshift_grants.reconciler import with_fallback
from redshift_grants.synthesizer import render_preview
from redshift_grants.synthesizer import synthesize
from redshift_grants.synthesizer import validate_request

log = logging.getLogger(__name__)


def get_adapter(conn) -> DatabaseAdapter:
    """Factory function to get the appropriate adapter."""
    if conn is None:
        raise ConnectionUnavailable('No database connection established')

    dialect = conn.engine.dialect.name

    adapters: dict[str, type[DatabaseAdapter]] = {
        'postgresql': RedshiftAdapter,
        'redshift': RedshiftAdapter,
    }

    adapter_class = adapters.get(dialect)
    if not adapter_class:
        raise ValueError(f'Unsupported database dialect: {dialect}')

    return adapter_class(conn)


def preview_statements(
    conn,
    scope: Scope,
    direction: Direction,
    identities: Iterable[Identity],
    objects: Iterable[GrantableObject] = (),
    targets: Iterable[Identity] = (),
    permissions: Iterable[str] = (),
    grant_option: bool = False,
) -> str:
    """Generate the statements for a selection, one per line, without running them.

    Parameters
    ----------
    conn : SQLAlchemy Engine or Connection
        Only used to look up the connected database for database privileges.
    scope : Scope
        The privilege scope.
    direction : Direction
        Grant or revoke.
    identities : iterable of Identity
        Grantees, in the order statements are emitted.
    objects : iterable of GrantableObject
        Tables, views, whole schemas or schemas, depending on the scope.
    targets : iterable of Identity
        Roles to assign or remove for role assignment.
    permissions : iterable of str
        Privilege kinds. Ignored for role assignment.
    grant_option : bool
        Append WITH GRANT OPTION to single-table and database grants.

    Returns
    -------
    str
        The statements joined by newlines.

    Raises
    ------
    ValidationError
        If the selection does not fit the scope.
    ConflictError
        If a whole schema and one of its tables or views are both selected.
    """
    request = StatementRequest(
        scope=scope,
        direction=direction,
        identities=tuple(identities),
        objects=tuple(objects),
        targets=tuple(targets),
        permissions=tuple(permissions),
        grant_option=grant_option,
    )
    validate_request(request)

    if scope == Scope.DATABASE_PRIVILEGES:
        database = get_adapter(conn).get_current_database()
        request = replace(request, database=database)

    return render_preview(synthesize(request))


def execute_statements(conn, sql: str | Iterable[str]) -> BatchResult:
    """Execute a block of SQL, or a list of statements, in one transaction.

    Every statement is attempted. The transaction is committed only if all of
    them succeed; otherwise it is rolled back and the result says which
    statements failed and why.

    Raises:
        ValidationError: if there is nothing to execute.
        ConnectionUnavailable: if the database cannot be reached.
    """
    statements = split_statements(sql) if isinstance(sql, str) else list(sql)
    if not statements:
        raise ValidationError('No SQL statements to execute')

    log.info('Executing %d statements', len(statements))
    return BatchExecutor(get_adapter(conn)).execute(statements)


def reconcile_privileges(
    conn,
    identities: Iterable[Identity],
    objects: Iterable[GrantableObject] = (),
    scope: Scope = Scope.TABLE_PRIVILEGES,
    whole_schemas: Iterable[str] = (),
) -> ReconciliationResult:
    """Fetch the privileges the identities currently hold, in canonical form.

    See `redshift_grants.reconciler.reconcile`.
    """
    return reconcile(get_adapter(conn), identities, objects, scope, whole_schemas)


def list_identities(conn) -> list[Identity]:
    """List every user, group and role that privileges can be granted to.

    System identities are excluded.
    """
    adapter = get_adapter(conn)
    roles, _ = with_fallback(lambda catalog: adapter.get_roles(catalog=catalog), 'roles')
    return [
        *(Identity(name, IdentityKind.USER) for name in adapter.get_users()),
        *(Identity(name, IdentityKind.GROUP) for name in adapter.get_groups()),
        *(Identity(name, IdentityKind.ROLE) for name in roles),
    ]


def list_roles(conn) -> list[Identity]:
    """List the roles that can be assigned to identities."""
    adapter = get_adapter(conn)
    names, _ = with_fallback(lambda catalog: adapter.get_role_targets(catalog=catalog), 'role targets')
    return [Identity(name, IdentityKind.ROLE) for name in names]


def list_object_hierarchy(conn, limit: int | None = None) -> dict[str, list[GrantableObject]]:
    """List schemas and the tables and views in each.

    Args:
        conn: SQLAlchemy Engine or Connection.
        limit: Maximum number of tables and views listed per schema. Defaults
            to the hierarchy_limit setting.

    Returns:
        dict: Schema name to its tables and views, both sorted by name. Empty
            schemas map to an empty list.
    """
    adapter = get_adapter(conn)
    limit = limit or get_settings().hierarchy_limit
    rows, _ = with_fallback(lambda catalog: adapter.get_object_hierarchy(limit, catalog=catalog), 'object hierarchy')

    hierarchy: dict[str, list[GrantableObject]] = {}
    for row in rows:
        children = hierarchy.setdefault(row['schema_name'], [])
        if row['object_name'] is not None:
            kind = ObjectKind.VIEW if row['object_type'] == 'view' else ObjectKind.TABLE
            children.append(GrantableObject(row['object_name'], kind, parent_schema=row['schema_name']))
    return hierarchy
