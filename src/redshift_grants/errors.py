"""Errors raised or collected by redshift_grants."""


class GrantsError(Exception):
    """Base class for all redshift_grants errors."""


class ValidationError(GrantsError, ValueError):
    """The selection is not valid for the requested scope.

    Raised before any statement is generated or any query is issued.
    """


class ConflictError(ValidationError):
    """A whole-schema selection overlaps an individually selected table or view."""


class ConnectionUnavailable(GrantsError):
    """No live database session could be obtained."""


class IntrospectionUnavailable(GrantsError):
    """A system view or catalog relation used for introspection does not exist.

    Attributes:
        relation (str | None): Name of the missing relation, when it can be parsed
            from the database error.
    """

    def __init__(self, message: str, relation: str | None = None):
        super().__init__(message)
        self.relation = relation


class PerIdentityQueryFailure(GrantsError):
    """Introspection for one identity failed, after any fallback.

    Collected in ReconciliationResult.failures rather than raised.
    """

    def __init__(self, identity, error: str):
        super().__init__(f'{identity.name}: {error}')
        self.identity = identity
        self.error = error


class StatementExecutionFailure(GrantsError):
    """One statement of a batch failed. Collected in BatchResult.failures."""

    def __init__(self, statement: str, error: str):
        super().__init__(f'{statement} - {error}')
        self.statement = statement
        self.error = error
