"""Run a batch of statements in one all-or-nothing transaction."""

import logging
from collections.abc import Iterable

import sqlalchemy as sa

from redshift_grants.adapters.base import DatabaseAdapter
from redshift_grants.adapters.base import error_message
from redshift_grants.errors import ConnectionUnavailable
from redshift_grants.errors import ValidationError
from redshift_grants.models import BatchResult
from redshift_grants.models import ExecutorState
from redshift_grants.models import StatementResult

log = logging.getLogger(__name__)

_QUOTES = ('\'', '"')


def split_statements(blob: str) -> list[str]:
    """Split a block of SQL into statements.

    Semicolons end a statement unless they are inside a quoted string or
    identifier, so a statement may span several lines. A block without any
    such semicolon holds one statement per line. Blank statements are dropped
    and every statement comes back terminated with a semicolon.
    """
    separator = ';' if _has_separator(blob, ';') else '\n'
    statements = []
    current: list[str] = []
    quote = None

    def flush():
        statement = ''.join(current).strip()
        if statement:
            statements.append(statement + ';')
        current.clear()

    for char in blob:
        if quote:
            # A doubled quote closes and immediately reopens, which keeps it inside
            if char == quote:
                quote = None
            current.append(char)
        elif char in _QUOTES:
            quote = char
            current.append(char)
        elif char == separator:
            flush()
        else:
            current.append(char)
    flush()

    return statements


def _has_separator(blob: str, separator: str) -> bool:
    quote = None
    for char in blob:
        if quote:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == separator:
            return True
    return False


class BatchExecutor:
    """Executes statements in order inside a single transaction.

    Every statement is attempted, even after one fails, so the result carries
    a diagnostic for each of them. The transaction is committed only if all
    of them succeed. An executor runs one batch: IDLE -> EXECUTING ->
    COMMITTED or ROLLED_BACK.
    """

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter
        self.state = ExecutorState.IDLE

    def execute(self, statements: Iterable[str]) -> BatchResult:
        """Execute the statements and commit or roll back as a whole.

        Args:
            statements: SQL statements, in execution order.

        Returns:
            BatchResult: `committed` is True only if every statement succeeded.

        Raises:
            ValidationError: if there are no statements.
            ConnectionUnavailable: if the database cannot be reached, or the
                connection is lost mid-batch. The transaction is rolled back.
        """
        if self.state != ExecutorState.IDLE:
            raise RuntimeError(f'Executor has already run a batch ({self.state.name})')

        statements = [statement for statement in statements if statement.strip()]
        if not statements:
            raise ValidationError('No SQL statements to execute')

        self.state = ExecutorState.EXECUTING
        results: list[StatementResult] = []
        try:
            with self.adapter.transaction() as txn:
                for statement in statements:
                    results.append(self._execute_one(txn, statement))
                committed = all(result.ok for result in results)
                if not committed:
                    txn.set_rollback_only()
        except BaseException:
            self.state = ExecutorState.ROLLED_BACK
            log.warning('Batch aborted after %d of %d statements, rolled back', len(results), len(statements))
            raise

        if committed:
            self.state = ExecutorState.COMMITTED
            log.info('Committed %d statements', len(results))
        else:
            self.state = ExecutorState.ROLLED_BACK
            log.info(
                'Rolled back %d statements, %d failed',
                len(results),
                sum(not result.ok for result in results),
            )

        return BatchResult(committed=committed, results=tuple(results))

    def _execute_one(self, txn, statement: str) -> StatementResult:
        try:
            txn.execute(statement)
        except sa.exc.DBAPIError as e:
            if e.connection_invalidated:
                raise ConnectionUnavailable(f'Connection lost while executing: {error_message(e)}') from e
            message = error_message(e)
            log.warning('Statement failed: %s - %s', statement, message)
            return StatementResult(statement=statement, ok=False, error=message)
        return StatementResult(statement=statement, ok=True)
