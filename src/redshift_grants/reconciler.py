"""Build the current-privileges view for a selection of identities.

Queries the system views first and falls back to the standard catalog when a
view is missing. A query that fails for any other reason marks only the
identities it was run for as failed; everything else is still reconciled.
"""

import logging
from collections.abc import Callable
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

import sqlalchemy as sa

from redshift_grants.adapters.base import DatabaseAdapter
from redshift_grants.adapters.base import error_message
from redshift_grants.config import get_settings
from redshift_grants.errors import IntrospectionUnavailable
from redshift_grants.errors import PerIdentityQueryFailure
from redshift_grants.errors import ValidationError
from redshift_grants.models import RELATION_KINDS
from redshift_grants.models import CurrentPrivilegeRecord
from redshift_grants.models import GrantableObject
from redshift_grants.models import Identity
from redshift_grants.models import IdentityKind
from redshift_grants.models import IntrospectionSource
from redshift_grants.models import ObjectKind
from redshift_grants.models import RecordScope
from redshift_grants.models import ReconciliationResult
from redshift_grants.models import Scope
from redshift_grants.normalizer import merge
from redshift_grants.normalizer import normalize

log = logging.getLogger(__name__)

T = TypeVar('T')

# Errors that fail the identities a query was run for, without stopping reconciliation
_QUERY_ERRORS = (sa.exc.SQLAlchemyError, IntrospectionUnavailable)

_RECORD_SCOPES = {
    Scope.TABLE_PRIVILEGES: RecordScope.RELATION,
    Scope.SCHEMA_PRIVILEGES: RecordScope.SCHEMA,
    Scope.DATABASE_PRIVILEGES: RecordScope.DATABASE,
    Scope.DEFAULT_PRIVILEGES: RecordScope.DEFAULT,
    Scope.ROLE_ASSIGNMENT: RecordScope.ROLE,
}


def with_fallback(fetch: Callable[[bool], T], description: str) -> tuple[T, bool]:
    """Run `fetch(catalog=False)`, retrying with `catalog=True` if a system view is missing.

    Returns:
        tuple: The fetched value and whether the catalog query produced it.
    """
    try:
        return fetch(False), False
    except IntrospectionUnavailable as e:
        log.info('%s: %s is unavailable, falling back to the catalog', description, e.relation or e)
    return fetch(True), True


def reconcile(
    adapter: DatabaseAdapter,
    identities: Iterable[Identity],
    objects: Iterable[GrantableObject] = (),
    scope: Scope = Scope.TABLE_PRIVILEGES,
    whole_schemas: Iterable[str] = (),
    max_workers: int | None = None,
) -> ReconciliationResult:
    """Fetch and normalize the privileges currently held by `identities`.

    Args:
        adapter: Database adapter to query through.
        identities: Identities to reconcile. Duplicates are ignored.
        objects: Selected objects used to filter the records. For role
            assignment these are the target roles. Nothing selected keeps
            every record of the scope.
        scope: Privilege scope to reconcile.
        whole_schemas: Schemas whose every table and view is selected, in
            addition to whole-schema entries of `objects`.
        max_workers: Bound on concurrent per-identity queries. Defaults to
            the max_workers setting.

    Returns:
        ReconciliationResult: Records in identity input order, plus one
        failure per identity whose query failed after any fallback.

    Raises:
        ValidationError: if no identity is given, or a group is given for role
            assignment.
        ConnectionUnavailable: if the database cannot be reached.
    """
    identities = tuple(dict.fromkeys(identities))
    if not identities:
        raise ValidationError('At least one identity must be selected')
    objects = tuple(objects)
    if scope == Scope.ROLE_ASSIGNMENT:
        groups = [identity.name for identity in identities if identity.kind == IdentityKind.GROUP]
        if groups:
            raise ValidationError(f'Groups cannot hold role memberships, got: {", ".join(groups)}')

    if scope == Scope.DEFAULT_PRIVILEGES:
        records, failures = _reconcile_default_privileges(adapter, identities)
    elif scope == Scope.ROLE_ASSIGNMENT:
        records, failures = _reconcile_role_memberships(adapter, identities)
    else:
        records, failures = _reconcile_per_identity(
            adapter,
            identities,
            scope,
            max_workers or get_settings().max_workers,
        )

    keep = _object_filter(scope, objects, tuple(whole_schemas))
    result = ReconciliationResult(
        records=tuple(record for record in records if keep(record)),
        failures=tuple(failures),
        identity_count=len(identities),
    )
    log.info('%s: %s', scope.value, result.summary)
    return result


def _fail(identities: Iterable[Identity], error: BaseException) -> list[PerIdentityQueryFailure]:
    message = error_message(error)
    failures = []
    for identity in identities:
        log.warning('Unable to fetch privileges of %s: %s', identity.name, message)
        failures.append(PerIdentityQueryFailure(identity, message))
    return failures


def _fetch_identity_privileges(adapter: DatabaseAdapter, scope: Scope, identity: Identity):
    rows, from_catalog = with_fallback(
        lambda catalog: adapter.get_privileges(scope, identity.name, catalog=catalog),
        f'{scope.value} of {identity.name}',
    )
    source = IntrospectionSource.CATALOG_PRIVILEGES if from_catalog else IntrospectionSource.DIRECT_PRIVILEGES
    return normalize(source, rows)


def _reconcile_per_identity(adapter, identities, scope, max_workers):
    records: list[CurrentPrivilegeRecord] = []
    failures: list[PerIdentityQueryFailure] = []

    # Leaving the with block waits for every submitted query, even when one raises
    with ThreadPoolExecutor(max_workers=min(max_workers, len(identities))) as pool:
        futures = [pool.submit(_fetch_identity_privileges, adapter, scope, identity) for identity in identities]
        for identity, future in zip(identities, futures):
            try:
                records.extend(future.result())
            except _QUERY_ERRORS as e:
                failures.extend(_fail((identity,), e))

    return records, failures


def _reconcile_default_privileges(adapter, identities):
    names = tuple(identity.name for identity in identities)
    try:
        rows, _ = with_fallback(
            lambda catalog: adapter.get_default_privileges(names, catalog=catalog),
            'default privileges',
        )
    except _QUERY_ERRORS as e:
        return [], _fail(identities, e)
    return normalize(IntrospectionSource.DEFAULT_PRIVILEGES, rows), []


def _reconcile_role_memberships(adapter, identities):
    records: list[CurrentPrivilegeRecord] = []
    failures: list[PerIdentityQueryFailure] = []

    # Users are members through the user query, roles through the role query
    by_member_kind = {
        IdentityKind.USER: tuple(i for i in identities if i.kind == IdentityKind.USER),
        IdentityKind.ROLE: tuple(i for i in identities if i.kind == IdentityKind.ROLE),
    }
    for member_kind, members in by_member_kind.items():
        if not members:
            continue
        try:
            rows, _ = with_fallback(
                lambda catalog, kind=member_kind: adapter.get_role_memberships(kind, catalog=catalog),
                f'{member_kind.value} role memberships',
            )
        except _QUERY_ERRORS as e:
            failures.extend(_fail(members, e))
            continue
        names = {member.name for member in members}
        records = merge(
            records,
            [record for record in normalize(IntrospectionSource.ROLE_MEMBERSHIP, rows) if record.identity in names],
        )

    # Emit in identity input order, as for the other scopes
    order = {identity.name: index for index, identity in enumerate(identities)}
    records.sort(key=lambda record: order.get(record.identity, len(order)))
    return records, failures


def _object_filter(
    scope: Scope,
    objects: tuple[GrantableObject, ...],
    whole_schemas: tuple[str, ...],
) -> Callable[[CurrentPrivilegeRecord], bool]:
    record_scope = _RECORD_SCOPES[scope]

    if scope == Scope.TABLE_PRIVILEGES:
        schemas = set(whole_schemas) | {obj.name for obj in objects if obj.whole_schema}
        relations = {(obj.parent_schema, obj.name) for obj in objects if obj.kind in RELATION_KINDS}
        if not schemas and not relations:
            return lambda record: record.scope == record_scope

        def keep_relation(record: CurrentPrivilegeRecord) -> bool:
            return record.scope == record_scope and (
                record.schema in schemas
                or (record.schema, record.object_name) in relations
                or (None, record.object_name) in relations
            )

        return keep_relation

    if scope in (Scope.SCHEMA_PRIVILEGES, Scope.DEFAULT_PRIVILEGES):
        names = {obj.name for obj in objects if obj.kind == ObjectKind.SCHEMA}
    elif scope == Scope.ROLE_ASSIGNMENT:
        names = {obj.name for obj in objects}
    else:
        names = set()

    if not names:
        return lambda record: record.scope == record_scope
    return lambda record: record.scope == record_scope and record.object_name in names
