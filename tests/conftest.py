import uuid

import pytest
import sqlalchemy as sa

try:
    # psycopg2
    import psycopg2  # noqa: F401

    engine_type = 'postgresql+psycopg2'
except ImportError:
    # psycopg3
    import psycopg  # noqa: F401

    engine_type = 'postgresql+psycopg'

from redshift_grants.adapters.base import DatabaseAdapter
from redshift_grants.config import get_settings
from redshift_grants.errors import IntrospectionUnavailable

# The default/root database that comes with the PostgreSQL Docker image
ROOT_DATABASE_NAME = 'postgres'

# We make and drop a database in each test to keep them isolated
TEST_DATABASE_NAME = 'redshift_grants_test'


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def root_engine():
    engine = sa.create_engine(f'{engine_type}://postgres:postgres@127.0.0.1:5432/{ROOT_DATABASE_NAME}')
    try:
        with engine.connect():
            pass
    except sa.exc.OperationalError:
        engine.dispose()
        pytest.skip('PostgreSQL is not reachable on 127.0.0.1:5432')
    yield engine
    engine.dispose()


@pytest.fixture
def test_engine(root_engine):
    granting_user = f'test_granting_user_{uuid.uuid4().hex}'

    def drop_database_if_exists(conn):
        # Recent versions of PostgreSQL have a `WITH (force)` option to DROP DATABASE which kills
        # conections, but we run tests on older versions that don't support this.
        conn.execute(
            sa.text(f"""
            SELECT pg_terminate_backend(pg_stat_activity.pid)
            FROM pg_stat_activity
            WHERE pg_stat_activity.datname = '{TEST_DATABASE_NAME}'
            AND pid != pg_backend_pid();
        """),
        )
        conn.execute(sa.text(f'DROP DATABASE IF EXISTS {TEST_DATABASE_NAME}'))
        memberships = conn.execute(
            sa.text("""
            SELECT roleid::regrole, member::regrole
            FROM pg_auth_members
            WHERE member::regrole::text LIKE 'test\\_%'
        """),
        ).fetchall()
        for role, member in memberships:
            conn.execute(sa.text(f'REVOKE {role} FROM {member} CASCADE'))

        roles = conn.execute(sa.text("SELECT rolname FROM pg_roles WHERE rolname LIKE 'test\\_%'")).fetchall()
        for (role,) in roles:
            conn.execute(sa.text(f'REVOKE ALL PRIVILEGES ON DATABASE {ROOT_DATABASE_NAME} FROM {role}'))
            conn.execute(sa.text(f'DROP ROLE {role}'))

    with root_engine.connect() as conn:
        conn.execution_options(isolation_level='AUTOCOMMIT')
        drop_database_if_exists(conn)
        conn.execute(sa.text(f'CREATE DATABASE {TEST_DATABASE_NAME}'))
        conn.execute(sa.text(f'REVOKE CONNECT ON DATABASE {TEST_DATABASE_NAME} FROM PUBLIC'))

    with root_engine.begin() as conn:
        conn.execute(sa.text(f"CREATE ROLE {granting_user} WITH CREATEROLE LOGIN PASSWORD 'password'"))
        conn.execute(sa.text(f'ALTER DATABASE {TEST_DATABASE_NAME} OWNER TO {granting_user}'))

    # The NullPool prevents default connection pooling, which interfers with dropping the database
    engine = sa.create_engine(
        f'{engine_type}://{granting_user}:password@127.0.0.1:5432/{TEST_DATABASE_NAME}',
        poolclass=sa.pool.NullPool,
    )
    yield engine
    engine.dispose()

    with root_engine.connect() as conn:
        conn.execution_options(isolation_level='AUTOCOMMIT')
        drop_database_if_exists(conn)


@pytest.fixture
def test_table(root_engine, test_engine):
    schema_name = f'test_schema_{uuid.uuid4().hex}'
    table_name = f'test_table_{uuid.uuid4().hex}'

    with test_engine.begin() as conn:
        conn.execute(sa.text(f'CREATE SCHEMA {schema_name}'))
        conn.execute(sa.text(f'CREATE TABLE {schema_name}.{table_name} (id int)'))

    return schema_name, table_name


@pytest.fixture
def test_view(test_engine, test_table):
    schema_name, table_name = test_table

    view_name = f'test_view_{uuid.uuid4().hex}'

    with test_engine.begin() as conn:
        conn.execute(sa.text(f'CREATE VIEW {schema_name}.{view_name} AS SELECT * FROM {schema_name}.{table_name}'))

    return schema_name, view_name


@pytest.fixture
def create_test_user(test_engine):
    def _create_test_user(login=True):
        name = f'test_user_{uuid.uuid4().hex}' if login else f'test_role_{uuid.uuid4().hex}'
        with test_engine.begin() as conn:
            conn.execute(sa.text(f'CREATE ROLE {name} {"LOGIN" if login else "NOLOGIN"}'))
            conn.execute(sa.text(f'GRANT CONNECT ON DATABASE {TEST_DATABASE_NAME} TO {name}'))
        return name

    return _create_test_user


@pytest.fixture
def test_sqlite_engine():
    engine = sa.create_engine('sqlite:///:memory:')
    yield engine
    engine.dispose()


class FakeAdapter(DatabaseAdapter):
    """In-memory adapter serving canned rows.

    `privileges` maps (scope, identity name) to rows, or to an exception to
    raise. The direct variant of every query raises IntrospectionUnavailable
    when `has_system_views` is False.
    """

    def __init__(
        self,
        privileges=None,
        default_privileges=None,
        role_memberships=None,
        has_system_views=True,
        database='dev',
    ):
        self.privileges = privileges or {}
        self.default_privileges = default_privileges if default_privileges is not None else []
        self.role_memberships = role_memberships or {}
        self.has_system_views = has_system_views
        self.database = database
        self.calls = []

    def _serve(self, value, catalog):
        if not catalog and not self.has_system_views:
            raise IntrospectionUnavailable('relation "svv_fake" does not exist', relation='svv_fake')
        if isinstance(value, BaseException):
            raise value
        return value

    def get_current_database(self):
        return self.database

    def get_privileges(self, scope, identity_name, *, catalog=False):
        self.calls.append(('privileges', scope, identity_name, catalog))
        return self._serve(self.privileges.get((scope, identity_name), []), catalog)

    def get_default_privileges(self, identity_names, *, catalog=False):
        self.calls.append(('default_privileges', tuple(identity_names), catalog))
        return self._serve(self.default_privileges, catalog)

    def get_role_memberships(self, member_kind, *, catalog=False):
        self.calls.append(('role_memberships', member_kind, catalog))
        return self._serve(self.role_memberships.get(member_kind, []), catalog)

    def get_users(self):
        return []

    def get_groups(self):
        return []

    def get_roles(self, *, catalog=False):
        return []

    def get_role_targets(self, *, catalog=False):
        return []

    def get_object_hierarchy(self, limit, *, catalog=False):
        return []


@pytest.fixture
def fake_adapter_class():
    return FakeAdapter
