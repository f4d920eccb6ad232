"""Redshift Grants package."""

from redshift_grants.core import execute_statements
from redshift_grants.core import list_identities
from redshift_grants.core import list_object_hierarchy
from redshift_grants.core import list_roles
from redshift_grants.core import preview_statements
from redshift_grants.core import reconcile_privileges
from redshift_grants.errors import ConflictError
from redshift_grants.errors import ConnectionUnavailable
from redshift_grants.errors import GrantsError
from redshift_grants.errors import ValidationError
from redshift_grants.models import Direction
from redshift_grants.models import GrantableObject
from redshift_grants.models import Identity
from redshift_grants.models import IdentityKind
from redshift_grants.models import ObjectKind
from redshift_grants.models import Scope

GRANT = Direction.GRANT
REVOKE = Direction.REVOKE

TABLE_PRIVILEGES = Scope.TABLE_PRIVILEGES
DEFAULT_PRIVILEGES = Scope.DEFAULT_PRIVILEGES
SCHEMA_PRIVILEGES = Scope.SCHEMA_PRIVILEGES
DATABASE_PRIVILEGES = Scope.DATABASE_PRIVILEGES
ROLE_ASSIGNMENT = Scope.ROLE_ASSIGNMENT
