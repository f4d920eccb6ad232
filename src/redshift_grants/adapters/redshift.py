"""Redshift adapter for redshift_grants.

Every privilege query comes in two variants: one on the Redshift svv_* system
views, and one on the standard PostgreSQL catalog that is used when the views
do not exist. Both variants select the canonical column names that the
normalizer expects for their introspection source.
"""

import logging
from typing import Any

from redshift_grants.adapters.base import DatabaseAdapter
from redshift_grants.config import get_settings
from redshift_grants.models import IdentityKind
from redshift_grants.models import Scope

log = logging.getLogger(__name__)


# ===== Direct privileges: Redshift system views =====

_RELATION_PRIVILEGES_SQL = """
SELECT
  current_database() AS database_name,
  p.namespace_name AS schema_name,
  p.relation_name AS object_name,
  CASE WHEN v.viewname IS NOT NULL THEN 'VIEW' ELSE 'TABLE' END AS object_type,
  p.privilege_type,
  p.identity_name,
  p.identity_type,
  p.admin_option,
  'TABLE' AS privilege_scope
FROM svv_relation_privileges p
LEFT JOIN pg_views v ON v.schemaname = p.namespace_name AND v.viewname = p.relation_name
WHERE p.identity_name = :identity_name
AND p.namespace_name NOT IN :system_schemas
ORDER BY p.namespace_name, p.relation_name, p.privilege_type
"""

_SCHEMA_PRIVILEGES_SQL = """
SELECT
  current_database() AS database_name,
  s.namespace_name AS schema_name,
  s.namespace_name AS object_name,
  'SCHEMA' AS object_type,
  s.privilege_type,
  s.identity_name,
  s.identity_type,
  s.admin_option,
  'SCHEMA' AS privilege_scope
FROM svv_schema_privileges s
WHERE s.identity_name = :identity_name
AND s.namespace_name NOT IN :system_schemas
ORDER BY s.namespace_name, s.privilege_type
"""

_DATABASE_PRIVILEGES_SQL = """
SELECT
  d.database_name,
  NULL AS schema_name,
  d.database_name AS object_name,
  'DATABASE' AS object_type,
  d.privilege_type,
  d.identity_name,
  d.identity_type,
  d.admin_option,
  'DATABASE' AS privilege_scope
FROM svv_database_privileges d
WHERE d.identity_name = :identity_name
AND d.database_name = current_database()
ORDER BY d.privilege_type
"""

# ===== Catalog privileges: information_schema and ACL columns =====

_CATALOG_RELATION_PRIVILEGES_SQL = """
SELECT
  tp.table_schema,
  tp.table_name,
  CASE WHEN t.table_type = 'VIEW' THEN 'VIEW' ELSE 'TABLE' END AS object_type,
  tp.grantee,
  tp.privilege_type,
  tp.is_grantable
FROM information_schema.table_privileges tp
LEFT JOIN information_schema.tables t ON t.table_schema = tp.table_schema AND t.table_name = tp.table_name
WHERE tp.grantee = :identity_name
AND tp.table_schema NOT IN :system_schemas
ORDER BY tp.table_schema, tp.table_name, tp.privilege_type
"""

_CATALOG_SCHEMA_PRIVILEGES_SQL = """
SELECT
  n.nspname AS table_schema,
  n.nspname AS table_name,
  'SCHEMA' AS object_type,
  g.rolname AS grantee,
  a.privilege_type,
  CASE WHEN a.is_grantable THEN 'YES' ELSE 'NO' END AS is_grantable
FROM pg_namespace n
CROSS JOIN aclexplode(n.nspacl) a
INNER JOIN pg_roles g ON g.oid = a.grantee
WHERE g.rolname = :identity_name
AND n.nspname NOT IN :system_schemas
AND n.nspname NOT LIKE 'pg\\_%'
ORDER BY n.nspname, a.privilege_type
"""

_CATALOG_DATABASE_PRIVILEGES_SQL = """
SELECT
  NULL AS table_schema,
  d.datname AS table_name,
  'DATABASE' AS object_type,
  g.rolname AS grantee,
  a.privilege_type,
  CASE WHEN a.is_grantable THEN 'YES' ELSE 'NO' END AS is_grantable
FROM pg_database d
CROSS JOIN aclexplode(d.datacl) a
INNER JOIN pg_roles g ON g.oid = a.grantee
WHERE g.rolname = :identity_name
AND d.datname = current_database()
ORDER BY a.privilege_type
"""

# ===== Default privileges =====

_DEFAULT_PRIVILEGES_SQL = """
SELECT
  schema_name,
  object_type,
  owner_name,
  owner_type,
  privilege_type,
  grantee_name,
  grantee_type,
  admin_option
FROM svv_default_privileges
WHERE grantee_name IN :identity_names
AND object_type = 'RELATION'
ORDER BY schema_name, grantee_name, privilege_type
"""

_CATALOG_DEFAULT_PRIVILEGES_SQL = """
SELECT
  n.nspname AS schema_name,
  'RELATION' AS object_type,
  o.rolname AS owner_name,
  CASE WHEN o.rolcanlogin THEN 'user' ELSE 'role' END AS owner_type,
  a.privilege_type,
  g.rolname AS grantee_name,
  CASE WHEN g.rolcanlogin THEN 'user' ELSE 'role' END AS grantee_type,
  a.is_grantable AS admin_option
FROM pg_default_acl d
INNER JOIN pg_namespace n ON n.oid = d.defaclnamespace
INNER JOIN pg_roles o ON o.oid = d.defaclrole
CROSS JOIN aclexplode(d.defaclacl) a
INNER JOIN pg_roles g ON g.oid = a.grantee
WHERE g.rolname IN :identity_names
AND d.defaclobjtype = 'r'
ORDER BY n.nspname, g.rolname, a.privilege_type
"""

# ===== Role memberships =====

_USER_ROLE_GRANTS_SQL = """
SELECT user_name AS member_name, 'user' AS member_type, role_name, admin_option
FROM svv_user_grants
WHERE user_name NOT IN :system_identities
ORDER BY user_name, role_name
"""

_ROLE_ROLE_GRANTS_SQL = """
SELECT role_name AS member_name, 'role' AS member_type, granted_role_name AS role_name, false AS admin_option
FROM svv_role_grants
ORDER BY role_name, granted_role_name
"""

_CATALOG_ROLE_MEMBERSHIPS_SQL = """
SELECT
  m.rolname AS member_name,
  CASE WHEN m.rolcanlogin THEN 'user' ELSE 'role' END AS member_type,
  r.rolname AS role_name,
  am.admin_option
FROM pg_auth_members am
INNER JOIN pg_roles r ON r.oid = am.roleid
INNER JOIN pg_roles m ON m.oid = am.member
WHERE m.rolcanlogin = :can_login
AND m.rolname NOT IN :system_identities
ORDER BY m.rolname, r.rolname
"""

# ===== Directory =====

_USERS_SQL = """
SELECT usename AS name
FROM pg_user
WHERE usename NOT IN :system_identities
ORDER BY usename
"""

_GROUPS_SQL = """
SELECT groname AS name
FROM pg_group
WHERE groname NOT LIKE 'pg\\_%'
AND groname NOT IN :system_identities
ORDER BY groname
"""

_ROLES_SQL = """
SELECT role_name AS name
FROM svv_roles
WHERE role_name NOT LIKE 'pg\\_%'
AND role_name NOT LIKE 'rs\\_%'
AND role_name NOT IN :system_identities
AND role_name NOT IN (SELECT usename FROM pg_user)
AND role_name NOT IN (SELECT groname FROM pg_group)
ORDER BY role_name
"""

_CATALOG_ROLES_SQL = """
SELECT rolname AS name
FROM pg_roles
WHERE NOT rolcanlogin
AND rolname NOT LIKE 'pg\\_%'
AND rolname NOT IN :system_identities
AND rolname NOT IN (SELECT groname FROM pg_group)
ORDER BY rolname
"""

_ROLE_TARGETS_SQL = """
SELECT role_name AS name
FROM svv_roles
WHERE role_name NOT LIKE 'pg\\_%'
AND role_name NOT LIKE 'rs\\_%'
AND role_name NOT LIKE 'rds%'
ORDER BY role_name
"""

_CATALOG_ROLE_TARGETS_SQL = """
SELECT rolname AS name
FROM pg_roles
WHERE NOT rolcanlogin
AND rolname NOT LIKE 'pg\\_%'
AND rolname NOT LIKE 'rds%'
ORDER BY rolname
"""

_OBJECT_HIERARCHY_SQL = """
WITH schemas AS (
  SELECT DISTINCT schema_name
  FROM svv_all_schemas
  WHERE schema_name NOT IN :system_schemas
  AND schema_name NOT LIKE 'pg\\_%'
),
limited_objects AS (
  SELECT
    schema_name,
    table_name AS object_name,
    CASE WHEN table_type = 'VIEW' THEN 'view' ELSE 'table' END AS object_type,
    ROW_NUMBER() OVER (PARTITION BY schema_name ORDER BY table_name) AS rn
  FROM svv_all_tables
  WHERE schema_name NOT IN :system_schemas
)
SELECT s.schema_name, o.object_name, o.object_type
FROM schemas s
LEFT JOIN limited_objects o ON o.schema_name = s.schema_name AND o.rn <= :limit
ORDER BY s.schema_name, o.object_name
"""

_CATALOG_OBJECT_HIERARCHY_SQL = """
WITH schemas AS (
  SELECT schema_name
  FROM information_schema.schemata
  WHERE schema_name NOT IN :system_schemas
  AND schema_name NOT LIKE 'pg\\_%'
),
limited_objects AS (
  SELECT
    table_schema AS schema_name,
    table_name AS object_name,
    CASE WHEN table_type = 'VIEW' THEN 'view' ELSE 'table' END AS object_type,
    ROW_NUMBER() OVER (PARTITION BY table_schema ORDER BY table_name) AS rn
  FROM information_schema.tables
  WHERE table_schema NOT IN :system_schemas
)
SELECT s.schema_name, o.object_name, o.object_type
FROM schemas s
LEFT JOIN limited_objects o ON o.schema_name = s.schema_name AND o.rn <= :limit
ORDER BY s.schema_name, o.object_name
"""

_PRIVILEGES_SQL = {
    Scope.TABLE_PRIVILEGES: (_RELATION_PRIVILEGES_SQL, _CATALOG_RELATION_PRIVILEGES_SQL),
    Scope.SCHEMA_PRIVILEGES: (_SCHEMA_PRIVILEGES_SQL, _CATALOG_SCHEMA_PRIVILEGES_SQL),
    Scope.DATABASE_PRIVILEGES: (_DATABASE_PRIVILEGES_SQL, _CATALOG_DATABASE_PRIVILEGES_SQL),
}


class RedshiftAdapter(DatabaseAdapter):
    """Adapter for Amazon Redshift, and for PostgreSQL through the catalog queries."""

    def __init__(self, conn):
        super().__init__(conn)
        self.settings = get_settings()

    @property
    def supports_savepoints(self) -> bool:
        # Redshift has no SAVEPOINT; a failed statement aborts the transaction
        return self.engine.dialect.name != 'redshift'

    def _names(self, rows: list[dict]) -> list[str]:
        return [row['name'] for row in rows]

    def get_current_database(self) -> str:
        return self.query('SELECT current_database() AS name')[0]['name']

    def get_privileges(self, scope: Scope, identity_name: str, *, catalog: bool = False) -> list[dict]:
        try:
            direct_sql, catalog_sql = _PRIVILEGES_SQL[scope]
        except KeyError:
            raise ValueError(f'No per-identity privilege query for {scope.value}') from None

        params: dict[str, Any] = {'identity_name': identity_name}
        expanding: tuple[str, ...] = ()
        if scope != Scope.DATABASE_PRIVILEGES:
            params['system_schemas'] = self.settings.system_schemas
            expanding = ('system_schemas',)

        return self.query(catalog_sql if catalog else direct_sql, params, expanding)

    def get_default_privileges(self, identity_names: tuple[str, ...], *, catalog: bool = False) -> list[dict]:
        if not identity_names:
            return []
        return self.query(
            _CATALOG_DEFAULT_PRIVILEGES_SQL if catalog else _DEFAULT_PRIVILEGES_SQL,
            {'identity_names': tuple(identity_names)},
            ('identity_names',),
        )

    def get_role_memberships(self, member_kind: IdentityKind, *, catalog: bool = False) -> list[dict]:
        params: dict[str, Any] = {'system_identities': self.settings.system_identities}
        if catalog:
            params['can_login'] = member_kind != IdentityKind.ROLE
            return self.query(_CATALOG_ROLE_MEMBERSHIPS_SQL, params, ('system_identities',))
        if member_kind == IdentityKind.ROLE:
            return self.query(_ROLE_ROLE_GRANTS_SQL)
        return self.query(_USER_ROLE_GRANTS_SQL, params, ('system_identities',))

    def get_users(self) -> list[str]:
        return self._names(
            self.query(_USERS_SQL, {'system_identities': self.settings.system_identities}, ('system_identities',)),
        )

    def get_groups(self) -> list[str]:
        return self._names(
            self.query(_GROUPS_SQL, {'system_identities': self.settings.system_identities}, ('system_identities',)),
        )

    def get_roles(self, *, catalog: bool = False) -> list[str]:
        return self._names(
            self.query(
                _CATALOG_ROLES_SQL if catalog else _ROLES_SQL,
                {'system_identities': self.settings.system_identities},
                ('system_identities',),
            ),
        )

    def get_role_targets(self, *, catalog: bool = False) -> list[str]:
        return self._names(self.query(_CATALOG_ROLE_TARGETS_SQL if catalog else _ROLE_TARGETS_SQL))

    def get_object_hierarchy(self, limit: int, *, catalog: bool = False) -> list[dict[str, Any]]:
        return self.query(
            _CATALOG_OBJECT_HIERARCHY_SQL if catalog else _OBJECT_HIERARCHY_SQL,
            {'system_schemas': self.settings.system_schemas, 'limit': limit},
            ('system_schemas',),
        )
