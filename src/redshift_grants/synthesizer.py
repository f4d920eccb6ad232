"""Turn an operator's selection into GRANT/REVOKE statements.

Everything in this module is pure: no connection is touched, and the same
request always produces the same statements, byte for byte.
"""

import logging
import re
from collections.abc import Iterable

from redshift_grants.errors import ConflictError
from redshift_grants.errors import ValidationError
from redshift_grants.models import RELATION_KINDS
from redshift_grants.models import Direction
from redshift_grants.models import GrantableObject
from redshift_grants.models import Identity
from redshift_grants.models import IdentityKind
from redshift_grants.models import ObjectKind
from redshift_grants.models import Scope
from redshift_grants.models import StatementRequest
from redshift_grants.privileges import legal_permissions
from redshift_grants.privileges import normalize_privilege

log = logging.getLogger(__name__)

_PLAIN_IDENTIFIER = re.compile(r'[a-z_][a-z0-9_$]*')

# Words that must be quoted to be used as a name
_RESERVED_WORDS = frozenset({
    'all', 'alter', 'and', 'any', 'as', 'asc', 'authorization', 'between', 'both', 'case', 'cast', 'check',
    'column', 'constraint', 'create', 'cross', 'current_date', 'current_time', 'current_timestamp',
    'current_user', 'database', 'default', 'delete', 'desc', 'distinct', 'do', 'else', 'end', 'except',
    'false', 'for', 'foreign', 'from', 'full', 'grant', 'group', 'having', 'in', 'inner', 'insert',
    'intersect', 'into', 'is', 'join', 'leading', 'left', 'like', 'limit', 'natural', 'not', 'null', 'offset',
    'on', 'only', 'or', 'order', 'outer', 'primary', 'references', 'revoke', 'right', 'role', 'schema',
    'select', 'session_user', 'table', 'then', 'to', 'trailing', 'true', 'union', 'unique', 'update', 'user',
    'using', 'when', 'where', 'with',
})

_GRANTEE_PREFIXES = {
    IdentityKind.USER: '',
    IdentityKind.GROUP: 'GROUP ',
    IdentityKind.ROLE: 'ROLE ',
}


def quote_identifier(name: str) -> str:
    """Quote `name` only when it would not survive as a bare identifier."""
    if _PLAIN_IDENTIFIER.fullmatch(name) and name not in _RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def _grantee(identity: Identity) -> str:
    return _GRANTEE_PREFIXES[identity.kind] + quote_identifier(identity.name)


def _relation_ref(obj: GrantableObject) -> str:
    if obj.parent_schema:
        return f'{quote_identifier(obj.parent_schema)}.{quote_identifier(obj.name)}'
    return quote_identifier(obj.name)


def _unique_permissions(permissions: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for permission in permissions:
        seen.setdefault(normalize_privilege(permission), None)
    return tuple(seen)


def validate_request(req: StatementRequest) -> None:
    """Check a request against the privilege catalog and the scope's rules.

    Args:
        req: The request to check.

    Raises:
        ValidationError: if a permission is not legal for the scope, or the
            identities, objects or targets do not fit the scope, or the
            grant option is requested for a group or role grantee.
        ConflictError: if a whole-schema selection overlaps an individually
            selected table or view of the same schema.
    """
    if not req.identities:
        raise ValidationError('At least one identity must be selected')

    if req.scope == Scope.ROLE_ASSIGNMENT:
        # Membership is binary, so permissions are ignored
        groups = [identity.name for identity in req.identities if identity.kind == IdentityKind.GROUP]
        if groups:
            raise ValidationError(f'Roles cannot be assigned to groups, got: {", ".join(groups)}')
        not_roles = [target.name for target in req.targets if target.kind != IdentityKind.ROLE]
        if not_roles:
            raise ValidationError(f'Role assignment targets must be roles, got: {", ".join(not_roles)}')
        return

    permissions = _unique_permissions(req.permissions)
    if not permissions:
        raise ValidationError(f'At least one permission must be selected for {req.scope.value}')
    legal = legal_permissions(req.scope)
    illegal = [permission for permission in permissions if permission not in legal]
    if illegal:
        raise ValidationError(
            f'Permissions not allowed for {req.scope.value}: {", ".join(illegal)}. '
            f'Allowed: {", ".join(sorted(legal))}',
        )

    if req.direction == Direction.GRANT and req.grant_option:
        _validate_grant_option(req)

    if req.scope == Scope.DATABASE_PRIVILEGES:
        if req.objects:
            raise ValidationError('Database privileges apply to the connected database; objects must be empty')
        return

    misplaced_markers = [obj.name for obj in req.objects if obj.whole_schema and req.scope != Scope.TABLE_PRIVILEGES]
    if misplaced_markers:
        raise ValidationError(
            f'Whole-schema selection is only valid for table privileges, got: {", ".join(misplaced_markers)}',
        )

    if req.scope == Scope.TABLE_PRIVILEGES:
        _validate_table_objects(req.objects)
    else:
        not_schemas = [obj.qualified_name for obj in req.objects if obj.kind != ObjectKind.SCHEMA]
        if not_schemas:
            raise ValidationError(f'{req.scope.value} can only be applied to schemas, got: {", ".join(not_schemas)}')


def _validate_grant_option(req: StatementRequest) -> None:
    # Only single-table and database grants carry the grant option, and only to users
    if req.scope == Scope.TABLE_PRIVILEGES:
        if not any(obj.kind in RELATION_KINDS for obj in req.objects):
            return
    elif req.scope != Scope.DATABASE_PRIVILEGES:
        return
    not_users = [identity.name for identity in req.identities if identity.kind != IdentityKind.USER]
    if not_users:
        raise ValidationError(f'WITH GRANT OPTION can only be granted to users, got: {", ".join(not_users)}')


def _validate_table_objects(objects: tuple[GrantableObject, ...]) -> None:
    whole_schemas = {obj.name for obj in objects if obj.kind == ObjectKind.SCHEMA and obj.whole_schema}

    misplaced_markers = [obj.qualified_name for obj in objects if obj.whole_schema and obj.kind != ObjectKind.SCHEMA]
    if misplaced_markers:
        raise ValidationError(
            f'Only schemas can be selected as all tables in a schema, got: {", ".join(misplaced_markers)}',
        )

    invalid = [
        obj.qualified_name
        for obj in objects
        if not (obj.kind in RELATION_KINDS or (obj.kind == ObjectKind.SCHEMA and obj.whole_schema))
    ]
    if invalid:
        raise ValidationError(
            'Table privileges apply to tables, views or all tables in a schema, got: ' + ', '.join(invalid),
        )

    overlapping = [
        obj.qualified_name for obj in objects if obj.kind in RELATION_KINDS and obj.parent_schema in whole_schemas
    ]
    if overlapping:
        raise ConflictError(
            'Objects are selected both individually and through all tables in their schema: '
            + ', '.join(overlapping),
        )


def synthesize(req: StatementRequest) -> list[str]:
    """Generate the ordered statements for a request.

    Statements are emitted identity by identity in the order supplied, then
    object by object (target by target for role assignment). Each statement
    carries every requested permission for its (identity, object) pair.

    Args:
        req: The operator's selection.

    Returns:
        list[str]: SQL statements, each terminated with a semicolon.

    Raises:
        ValidationError: see `validate_request`. Also raised for database
            privileges when the request has no database name.
        ConflictError: see `validate_request`.
    """
    validate_request(req)

    if req.scope == Scope.ROLE_ASSIGNMENT:
        statements = [
            _role_statement(req.direction, identity, target) for identity in req.identities for target in req.targets
        ]
        log.debug('Generated %d statements for %s', len(statements), req.scope.value)
        return statements

    privs = ', '.join(_unique_permissions(req.permissions))
    grant_option = ' WITH GRANT OPTION' if req.direction == Direction.GRANT and req.grant_option else ''

    if req.scope == Scope.DATABASE_PRIVILEGES:
        if not req.database:
            raise ValidationError('The connected database name is required for database privileges')
        statements = [
            _privilege_statement(req.direction, privs, f'DATABASE {quote_identifier(req.database)}', identity)
            + grant_option
            + ';'
            for identity in req.identities
        ]
        log.debug('Generated %d statements for %s', len(statements), req.scope.value)
        return statements

    statements = []
    for identity in req.identities:
        for obj in req.objects:
            if req.scope == Scope.DEFAULT_PRIVILEGES:
                statement = (
                    f'ALTER DEFAULT PRIVILEGES IN SCHEMA {quote_identifier(obj.name)} '
                    + _privilege_statement(req.direction, privs, 'TABLES', identity)
                )
            elif req.scope == Scope.SCHEMA_PRIVILEGES:
                statement = _privilege_statement(
                    req.direction,
                    privs,
                    f'SCHEMA {quote_identifier(obj.name)}',
                    identity,
                )
            elif obj.kind == ObjectKind.SCHEMA and obj.whole_schema:
                statement = _privilege_statement(
                    req.direction,
                    privs,
                    f'ALL TABLES IN SCHEMA {quote_identifier(obj.name)}',
                    identity,
                )
            else:
                statement = (
                    _privilege_statement(req.direction, privs, f'TABLE {_relation_ref(obj)}', identity) + grant_option
                )
            statements.append(statement + ';')

    log.debug('Generated %d statements for %s', len(statements), req.scope.value)
    return statements


def _privilege_statement(direction: Direction, privs: str, on: str, identity: Identity) -> str:
    if direction == Direction.GRANT:
        return f'GRANT {privs} ON {on} TO {_grantee(identity)}'
    return f'REVOKE {privs} ON {on} FROM {_grantee(identity)}'


def _role_statement(direction: Direction, identity: Identity, target: Identity) -> str:
    if direction == Direction.GRANT:
        return f'GRANT ROLE {quote_identifier(target.name)} TO {_grantee(identity)};'
    return f'REVOKE ROLE {quote_identifier(target.name)} FROM {_grantee(identity)};'


def render_preview(statements: Iterable[str]) -> str:
    """Join statements the way the preview pane shows them."""
    return '\n'.join(statements)
