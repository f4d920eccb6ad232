from redshift_grants.models import IntrospectionSource
from redshift_grants.models import ObjectKind
from redshift_grants.models import RecordScope
from redshift_grants.normalizer import map_row
from redshift_grants.normalizer import merge
from redshift_grants.normalizer import normalize


def direct_row(privilege_type, object_name='orders', privilege_scope='TABLE', **overrides):
    row = {
        'database_name': 'dev',
        'schema_name': 'sales',
        'object_name': object_name,
        'object_type': 'TABLE',
        'privilege_type': privilege_type,
        'identity_name': 'alice',
        'identity_type': 'user',
        'admin_option': False,
        'privilege_scope': privilege_scope,
    }
    row.update(overrides)
    return row


def catalog_row(privilege_type, table_name='orders', **overrides):
    row = {
        'table_schema': 'sales',
        'table_name': table_name,
        'object_type': 'TABLE',
        'grantee': 'alice',
        'privilege_type': privilege_type,
        'is_grantable': 'NO',
    }
    row.update(overrides)
    return row


def default_row(privilege_type, **overrides):
    row = {
        'schema_name': 'sales',
        'object_type': 'RELATION',
        'owner_name': 'etl',
        'owner_type': 'user',
        'privilege_type': privilege_type,
        'grantee_name': 'alice',
        'grantee_type': 'user',
        'admin_option': False,
    }
    row.update(overrides)
    return row


def test_direct_rows_group_by_object() -> None:
    records = normalize(
        IntrospectionSource.DIRECT_PRIVILEGES,
        [
            direct_row('SELECT'),
            direct_row('INSERT'),
            direct_row('SELECT', object_name='customers'),
            direct_row('SELECT'),
        ],
    )

    assert [(r.object_name, r.privileges) for r in records] == [
        ('orders', {'SELECT', 'INSERT'}),
        ('customers', {'SELECT'}),
    ]
    assert records[0].scope == RecordScope.RELATION
    assert records[0].object_kind == ObjectKind.TABLE
    assert records[0].schema == 'sales'


def test_direct_schema_and_database_rows() -> None:
    schema_record, database_record = normalize(
        IntrospectionSource.DIRECT_PRIVILEGES,
        [
            direct_row('USAGE', privilege_scope='SCHEMA', object_name='sales', object_type='SCHEMA'),
            direct_row('TEMP', privilege_scope='DATABASE', schema_name=None, object_name='dev', object_type='DATABASE'),
        ],
    )

    assert schema_record.key == ('alice', 'sales', ObjectKind.SCHEMA)
    assert schema_record.scope == RecordScope.SCHEMA
    assert database_record.key == ('alice', 'dev', ObjectKind.DATABASE)
    assert database_record.scope == RecordScope.DATABASE
    assert database_record.privileges == {'TEMPORARY'}


def test_views_and_tables_with_the_same_name_are_separate_records() -> None:
    records = normalize(
        IntrospectionSource.DIRECT_PRIVILEGES,
        [direct_row('SELECT'), direct_row('SELECT', object_type='VIEW')],
    )
    assert [r.object_kind for r in records] == [ObjectKind.TABLE, ObjectKind.VIEW]


def test_admin_option_is_ored() -> None:
    (record,) = normalize(
        IntrospectionSource.CATALOG_PRIVILEGES,
        [catalog_row('SELECT', is_grantable='NO'), catalog_row('INSERT', is_grantable='YES')],
    )
    assert record.admin_option is True
    assert record.privileges == {'SELECT', 'INSERT'}


def test_catalog_rows() -> None:
    records = normalize(
        IntrospectionSource.CATALOG_PRIVILEGES,
        [
            catalog_row('SELECT', object_type='VIEW', table_name='orders_v'),
            catalog_row('USAGE', object_type='SCHEMA', table_name='sales'),
            catalog_row('CREATE', object_type='DATABASE', table_schema=None, table_name='dev'),
        ],
    )
    assert [(r.object_kind, r.scope, r.schema) for r in records] == [
        (ObjectKind.VIEW, RecordScope.RELATION, 'sales'),
        (ObjectKind.SCHEMA, RecordScope.SCHEMA, 'sales'),
        (ObjectKind.DATABASE, RecordScope.DATABASE, None),
    ]


def test_excluded_privileges_are_dropped_for_every_source() -> None:
    sources_rows = [
        (IntrospectionSource.DIRECT_PRIVILEGES, [direct_row('SELECT'), direct_row('RULE'), direct_row('TRIGGER')]),
        (IntrospectionSource.CATALOG_PRIVILEGES, [catalog_row('TRIGGER'), catalog_row('SELECT')]),
        (IntrospectionSource.DEFAULT_PRIVILEGES, [default_row('RULE'), default_row('SELECT'), default_row('trigger')]),
    ]
    for source, rows in sources_rows:
        records = normalize(source, rows)
        assert records
        for record in records:
            assert not record.privileges & {'RULE', 'TRIGGER'}


def test_rows_with_only_excluded_privileges_produce_no_record() -> None:
    assert normalize(IntrospectionSource.DEFAULT_PRIVILEGES, [default_row('RULE')]) == []


def test_default_privileges_keyed_per_schema() -> None:
    records = normalize(
        IntrospectionSource.DEFAULT_PRIVILEGES,
        [
            default_row('SELECT'),
            default_row('INSERT', admin_option='t'),
            default_row('SELECT', schema_name='crm'),
        ],
    )
    assert [(r.object_name, r.privileges, r.admin_option) for r in records] == [
        ('sales', {'SELECT', 'INSERT'}, True),
        ('crm', {'SELECT'}, False),
    ]
    assert records[0].scope == RecordScope.DEFAULT
    assert records[0].owner == 'etl'
    assert records[0].owner_kind == 'user'


def test_role_membership_rows() -> None:
    row = {'member_name': 'bob', 'member_type': 'user', 'role_name': 'readonly', 'admin_option': True}
    mapped = map_row(IntrospectionSource.ROLE_MEMBERSHIP, row)
    assert mapped.privilege == 'MEMBER'
    assert mapped.object_kind == ObjectKind.ROLE

    (record,) = normalize(IntrospectionSource.ROLE_MEMBERSHIP, [row, row])
    assert record.key == ('bob', 'readonly', ObjectKind.ROLE)
    assert record.scope == RecordScope.ROLE
    assert record.privileges == {'MEMBER'}
    assert record.admin_option is True


def test_merge_collapses_shared_keys() -> None:
    first = normalize(IntrospectionSource.DIRECT_PRIVILEGES, [direct_row('SELECT')])
    second = normalize(
        IntrospectionSource.DIRECT_PRIVILEGES,
        [direct_row('INSERT', admin_option=True), direct_row('SELECT', object_name='customers')],
    )
    merged = merge(first, second)
    assert [(r.object_name, r.privileges, r.admin_option) for r in merged] == [
        ('orders', {'SELECT', 'INSERT'}, True),
        ('customers', {'SELECT'}, False),
    ]
