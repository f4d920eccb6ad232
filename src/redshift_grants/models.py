"""Grant selection, introspection and execution models."""

from dataclasses import dataclass
from dataclasses import field
from enum import Enum

from redshift_grants.errors import PerIdentityQueryFailure
from redshift_grants.errors import StatementExecutionFailure


class IdentityKind(Enum):
    """Kind of principal that privileges can be granted to."""

    USER = 'user'
    GROUP = 'group'
    ROLE = 'role'


class ObjectKind(Enum):
    """Kind of object that privileges can be granted on."""

    SCHEMA = 'schema'
    TABLE = 'table'
    VIEW = 'view'
    DATABASE = 'database'
    ROLE = 'role'


RELATION_KINDS = (ObjectKind.TABLE, ObjectKind.VIEW)


class Scope(Enum):
    """Privilege domain. Drives the shape of the generated statements."""

    TABLE_PRIVILEGES = 'table_privileges'
    """Privileges on individual tables and views, or on all tables in a schema."""
    DEFAULT_PRIVILEGES = 'default_privileges'
    """Privileges applied to tables created in a schema in the future."""
    SCHEMA_PRIVILEGES = 'schema_privileges'
    """Privileges on the schema itself."""
    DATABASE_PRIVILEGES = 'database_privileges'
    """Privileges on the currently connected database."""
    ROLE_ASSIGNMENT = 'role_assignment'
    """Membership of an identity in a role."""


class Direction(Enum):
    GRANT = 'grant'
    REVOKE = 'revoke'


class RecordScope(Enum):
    """Where a privilege reported by introspection applies."""

    SCHEMA = 'schema'
    RELATION = 'relation'
    DATABASE = 'database'
    DEFAULT = 'default'
    ROLE = 'role'


class IntrospectionSource(Enum):
    """Row shape produced by an introspection query.

    Each member has exactly one row mapping in the normalizer.
    """

    DIRECT_PRIVILEGES = 1
    """Redshift svv_relation/schema/database_privileges views."""
    CATALOG_PRIVILEGES = 2
    """Standard catalog fallback (information_schema and pg_catalog ACLs)."""
    DEFAULT_PRIVILEGES = 3
    """svv_default_privileges or pg_default_acl."""
    ROLE_MEMBERSHIP = 4
    """svv_user_grants/svv_role_grants or pg_auth_members."""


class ExecutorState(Enum):
    IDLE = 1
    EXECUTING = 2
    COMMITTED = 3
    ROLLED_BACK = 4


@dataclass(frozen=True)
class Identity:
    """A user, group or role as listed by the directory.

    Attributes:
        name (str): The identity name as stored in the catalog.
        kind (IdentityKind): Whether the identity is a user, group or role.
    """

    name: str
    kind: IdentityKind = IdentityKind.USER


@dataclass(frozen=True)
class GrantableObject:
    """An object that privileges can be granted on.

    Attributes:
        name (str): Name of the object. For a whole-schema selection this is
            the schema name.
        kind (ObjectKind): The kind of object.
        parent_schema (str | None): Schema that contains a table or view.
        whole_schema (bool): Selects every current and future table and view
            in the schema `name`. Only meaningful for table privileges.
    """

    name: str
    kind: ObjectKind
    parent_schema: str | None = None
    whole_schema: bool = False

    @property
    def qualified_name(self) -> str:
        if self.parent_schema:
            return f'{self.parent_schema}.{self.name}'
        return self.name


@dataclass(frozen=True)
class StatementRequest:
    """The operator's selection, built fresh for every preview.

    Attributes:
        scope (Scope): The privilege scope.
        direction (Direction): Grant or revoke.
        identities (tuple[Identity, ...]): Grantees, in the order statements are emitted.
        objects (tuple[GrantableObject, ...]): Objects to grant on. Empty for
            database privileges and role assignment.
        targets (tuple[Identity, ...]): Roles to assign, role assignment only.
        permissions (tuple[str, ...]): Privilege kinds. Ignored for role assignment.
        grant_option (bool): Append WITH GRANT OPTION to single-table and database grants.
        database (str | None): Name of the connected database, required for
            database privileges.
    """

    scope: Scope
    direction: Direction
    identities: tuple[Identity, ...]
    objects: tuple[GrantableObject, ...] = ()
    targets: tuple[Identity, ...] = ()
    permissions: tuple[str, ...] = ()
    grant_option: bool = False
    database: str | None = None


@dataclass
class CurrentPrivilegeRecord:
    """What privileges an identity currently holds on one object.

    There is one record per (identity, object_name, object_kind); privileges
    from every matching introspection row accumulate into it.
    """

    identity: str
    object_name: str
    object_kind: ObjectKind
    scope: RecordScope
    schema: str | None = None
    privileges: set[str] = field(default_factory=set)
    admin_option: bool = False
    owner: str | None = None
    owner_kind: str | None = None

    @property
    def key(self) -> tuple[str, str, ObjectKind]:
        return (self.identity, self.object_name, self.object_kind)


@dataclass(frozen=True)
class StatementResult:
    statement: str
    ok: bool
    error: str | None = None

    @property
    def display(self) -> str:
        if self.ok:
            return f'✓ {self.statement}'
        return f'✗ {self.statement} - {self.error}'


@dataclass(frozen=True)
class BatchResult:
    """Outcome of running a batch of statements in one transaction.

    Attributes:
        committed (bool): True only if every statement succeeded and the
            transaction was committed.
        results (tuple[StatementResult, ...]): One entry per attempted
            statement, in execution order.
    """

    committed: bool
    results: tuple[StatementResult, ...]

    @property
    def failures(self) -> tuple[StatementExecutionFailure, ...]:
        return tuple(
            StatementExecutionFailure(result.statement, result.error or '')
            for result in self.results
            if not result.ok
        )

    def as_dict(self) -> dict:
        return {
            'committed': self.committed,
            'results': [result.display for result in self.results],
        }


@dataclass(frozen=True)
class ReconciliationResult:
    """Canonical privilege records plus the identities that could not be queried."""

    records: tuple[CurrentPrivilegeRecord, ...]
    failures: tuple[PerIdentityQueryFailure, ...] = ()
    identity_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def summary(self) -> str:
        failed = len({failure.identity for failure in self.failures})
        return f'{self.identity_count - failed} of {self.identity_count} identities reconciled'
