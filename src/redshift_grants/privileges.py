"""Which privilege kinds are legal in each scope."""

from redshift_grants.models import CurrentPrivilegeRecord
from redshift_grants.models import Scope

RELATION_PRIVILEGES = frozenset({'SELECT', 'INSERT', 'UPDATE', 'DELETE', 'DROP', 'TRUNCATE', 'ALTER', 'REFERENCES'})
SCHEMA_PRIVILEGES = frozenset({'USAGE', 'CREATE', 'DROP', 'ALTER'})
DATABASE_PRIVILEGES = frozenset({'CREATE', 'ALTER', 'TEMPORARY'})

# Obsolete kinds that are never offered, granted or displayed
EXCLUDED_PRIVILEGES = frozenset({'RULE', 'TRIGGER'})

_PRIVILEGE_ALIASES = {
    'TEMP': 'TEMPORARY',
}

_LEGAL_PERMISSIONS: dict[Scope, frozenset[str]] = {
    Scope.TABLE_PRIVILEGES: RELATION_PRIVILEGES,
    Scope.DEFAULT_PRIVILEGES: RELATION_PRIVILEGES,
    Scope.SCHEMA_PRIVILEGES: SCHEMA_PRIVILEGES,
    Scope.DATABASE_PRIVILEGES: DATABASE_PRIVILEGES,
    Scope.ROLE_ASSIGNMENT: frozenset(),
}


def legal_permissions(scope: Scope) -> frozenset[str]:
    """Return the privilege kinds that may be requested in `scope`.

    Role assignment has none: membership is binary.
    """
    return _LEGAL_PERMISSIONS[scope]


def normalize_privilege(kind: str) -> str:
    """Upper-case a privilege kind and resolve abbreviations such as TEMP."""
    kind = kind.strip().upper()
    return _PRIVILEGE_ALIASES.get(kind, kind)


def is_excluded(kind: str) -> bool:
    return normalize_privilege(kind) in EXCLUDED_PRIVILEGES


def has_all_privileges(record: CurrentPrivilegeRecord, scope: Scope) -> bool:
    """Whether `record` holds exactly every legal privilege of `scope`.

    Used for presentation ("ALL" badges). Always computed from the record,
    never stored on it.
    """
    legal = legal_permissions(scope)
    return bool(legal) and record.privileges == legal
