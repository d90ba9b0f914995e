"""
Athena query execution with polling.

A QueryExecutor is bound to one query context (database, catalog, workgroup,
output location). execute() submits the statement and blocks until Athena
reports a terminal state. There is no overall deadline: callers that need
one must wrap the call, and giving up on the wait does not cancel the
remote execution.
"""
import time
from typing import Callable, Iterator, List, Optional

from .catalog import CatalogClient
from .config import POLL_INITIAL_MS, POLL_MAX_MS, POLL_STEP_MS, get_logger
from .errors import QueryFailedError

logger = get_logger(__name__)

PENDING_STATES = ("QUEUED", "RUNNING")


def backoff_schedule(initial_ms: int = POLL_INITIAL_MS, step_ms: int = POLL_STEP_MS,
                     max_ms: int = POLL_MAX_MS) -> Iterator[int]:
    """Yield the wait before each poll in milliseconds: 100, 200, ... capped at 1000."""
    wait = initial_ms
    while True:
        yield min(wait, max_ms)
        wait += step_ms


class QueryExecutor:
    """
    Runs SQL through Athena in a fixed query context.

    Every call to execute() creates a new query execution, so it is not
    idempotent.
    """

    def __init__(
        self,
        client: CatalogClient,
        output: str,
        catalog: str,
        workgroup: str,
        database: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.output = output
        self.catalog = catalog
        self.workgroup = workgroup
        self.database = database
        self._sleep = sleep

    def execute(self, sql: str, want_results: bool = False) -> Optional[List[List[Optional[str]]]]:
        """
        Submit `sql` and poll until it finishes.

        Returns the result rows when `want_results` is set, otherwise None.

        Raises:
            QueryFailedError: FAILED, CANCELLED or an unknown state
        """
        logger.debug("SQL [%s]:\n%s", self.database or self.catalog, sql)
        execution_id = self.client.submit_query(
            sql, self.database, self.catalog, self.workgroup, self.output
        )
        logger.debug("QueryExecutionId: %s", execution_id)

        for wait_ms in backoff_schedule():
            self._sleep(wait_ms / 1000.0)
            status = self.client.get_query_status(execution_id)

            if status.state in PENDING_STATES:
                continue
            if status.state == "SUCCEEDED":
                break
            if status.state == "FAILED":
                raise QueryFailedError(
                    "FAILED", status.reason or "No reason provided", execution_id, sql
                )
            if status.state == "CANCELLED":
                raise QueryFailedError(
                    "CANCELLED", status.reason or "Query has been cancelled", execution_id, sql
                )
            raise QueryFailedError(
                status.state, f"Unexpected query state {status.state!r}", execution_id, sql
            )

        if want_results:
            return self.client.get_query_results(execution_id)
        return None
