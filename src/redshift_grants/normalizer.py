"""Collapse introspection rows into canonical privilege records.

Each introspection source returns rows of a different shape. `normalize`
dispatches on the source tag to a single row mapping function; it never
guesses the shape from the columns present.
"""

from collections.abc import Callable
from collections.abc import Iterable
from collections.abc import Mapping
from typing import Any
from typing import NamedTuple

from redshift_grants.models import CurrentPrivilegeRecord
from redshift_grants.models import IntrospectionSource
from redshift_grants.models import ObjectKind
from redshift_grants.models import RecordScope
from redshift_grants.privileges import is_excluded
from redshift_grants.privileges import normalize_privilege


class PrivilegeRow(NamedTuple):
    """One introspection row mapped onto the canonical columns."""

    identity: str
    object_name: str
    object_kind: ObjectKind
    scope: RecordScope
    schema: str | None
    privilege: str
    admin_option: bool
    owner: str | None = None
    owner_kind: str | None = None


_TRUE_STRINGS = frozenset({'t', 'true', 'yes', 'y', '1'})

_RELATION_OBJECT_KINDS = {
    'TABLE': ObjectKind.TABLE,
    'VIEW': ObjectKind.VIEW,
    'MATERIALIZED VIEW': ObjectKind.VIEW,
    'LATE BINDING VIEW': ObjectKind.VIEW,
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _relation_kind(object_type: str | None) -> ObjectKind:
    return _RELATION_OBJECT_KINDS.get((object_type or 'TABLE').upper(), ObjectKind.TABLE)


def _map_direct_row(row: Mapping[str, Any]) -> PrivilegeRow:
    scope = (row['privilege_scope'] or '').upper()
    common = {
        'identity': row['identity_name'],
        'privilege': row['privilege_type'],
        'admin_option': _as_bool(row['admin_option']),
    }
    if scope == 'DATABASE':
        return PrivilegeRow(
            object_name=row['database_name'],
            object_kind=ObjectKind.DATABASE,
            scope=RecordScope.DATABASE,
            schema=None,
            **common,
        )
    if scope == 'SCHEMA':
        return PrivilegeRow(
            object_name=row['schema_name'],
            object_kind=ObjectKind.SCHEMA,
            scope=RecordScope.SCHEMA,
            schema=row['schema_name'],
            **common,
        )
    return PrivilegeRow(
        object_name=row['object_name'],
        object_kind=_relation_kind(row['object_type']),
        scope=RecordScope.RELATION,
        schema=row['schema_name'],
        **common,
    )


def _map_catalog_row(row: Mapping[str, Any]) -> PrivilegeRow:
    object_type = (row['object_type'] or '').upper()
    if object_type == 'DATABASE':
        object_kind, record_scope, schema = ObjectKind.DATABASE, RecordScope.DATABASE, None
    elif object_type == 'SCHEMA':
        object_kind, record_scope, schema = ObjectKind.SCHEMA, RecordScope.SCHEMA, row['table_schema']
    else:
        object_kind, record_scope, schema = _relation_kind(object_type), RecordScope.RELATION, row['table_schema']
    return PrivilegeRow(
        identity=row['grantee'],
        object_name=row['table_name'],
        object_kind=object_kind,
        scope=record_scope,
        schema=schema,
        privilege=row['privilege_type'],
        admin_option=_as_bool(row['is_grantable']),
    )


def _map_default_row(row: Mapping[str, Any]) -> PrivilegeRow:
    # Default privileges are set per schema, whatever object type they apply to
    return PrivilegeRow(
        identity=row['grantee_name'],
        object_name=row['schema_name'],
        object_kind=ObjectKind.SCHEMA,
        scope=RecordScope.DEFAULT,
        schema=row['schema_name'],
        privilege=row['privilege_type'],
        admin_option=_as_bool(row['admin_option']),
        owner=row['owner_name'],
        owner_kind=row['owner_type'],
    )


def _map_role_membership_row(row: Mapping[str, Any]) -> PrivilegeRow:
    return PrivilegeRow(
        identity=row['member_name'],
        object_name=row['role_name'],
        object_kind=ObjectKind.ROLE,
        scope=RecordScope.ROLE,
        schema=None,
        privilege='MEMBER',
        admin_option=_as_bool(row['admin_option']),
    )


_ROW_MAPPERS: dict[IntrospectionSource, Callable[[Mapping[str, Any]], PrivilegeRow]] = {
    IntrospectionSource.DIRECT_PRIVILEGES: _map_direct_row,
    IntrospectionSource.CATALOG_PRIVILEGES: _map_catalog_row,
    IntrospectionSource.DEFAULT_PRIVILEGES: _map_default_row,
    IntrospectionSource.ROLE_MEMBERSHIP: _map_role_membership_row,
}


def map_row(source: IntrospectionSource, row: Mapping[str, Any]) -> PrivilegeRow:
    """Map a single raw row of `source` onto the canonical columns."""
    return _ROW_MAPPERS[source](row)


def normalize(source: IntrospectionSource, rows: Iterable[Mapping[str, Any]]) -> list[CurrentPrivilegeRecord]:
    """Group raw introspection rows into one record per (identity, object, object kind).

    Rows carrying an excluded privilege (RULE, TRIGGER) are dropped for every
    source. The same grant frequently arrives more than once, so privileges
    accumulate with set semantics. Records come out in the order their key was
    first seen.

    Args:
        source: Which introspection query produced `rows`.
        rows: Row mappings, e.g. SQLAlchemy `Row._mapping` objects or dicts.

    Returns:
        list[CurrentPrivilegeRecord]: The grouped records.
    """
    mapper = _ROW_MAPPERS[source]
    records: dict[tuple, CurrentPrivilegeRecord] = {}

    for raw in rows:
        row = mapper(raw)
        privilege = normalize_privilege(row.privilege)
        if is_excluded(privilege):
            continue

        key = (row.identity, row.object_name, row.object_kind)
        record = records.get(key)
        if record is None:
            record = records[key] = CurrentPrivilegeRecord(
                identity=row.identity,
                object_name=row.object_name,
                object_kind=row.object_kind,
                scope=row.scope,
                schema=row.schema,
                owner=row.owner,
                owner_kind=row.owner_kind,
            )
        record.privileges.add(privilege)
        record.admin_option = record.admin_option or row.admin_option

    return list(records.values())


def merge(*record_lists: Iterable[CurrentPrivilegeRecord]) -> list[CurrentPrivilegeRecord]:
    """Concatenate normalized lists, collapsing records that share a key.

    Used when one identity's privileges come from more than one query.
    """
    merged: dict[tuple, CurrentPrivilegeRecord] = {}
    for records in record_lists:
        for record in records:
            existing = merged.get(record.key)
            if existing is None:
                merged[record.key] = record
            else:
                existing.privileges |= record.privileges
                existing.admin_option = existing.admin_option or record.admin_option
    return list(merged.values())
