import logging
import math
import threading
import time
from collections import Counter
from typing import Any, List, Optional, Tuple

from .db_client import DatabaseClient
from .errors import QueryError, QueryTimeoutError
from .models import ExecutionResult, QueryCase
from .preflight import hint_from_error
from .sqltext import has_order_by

logger = logging.getLogger(__name__)


def run_variant(
    client: DatabaseClient,
    case: QueryCase,
    variant: str,
    timeout_seconds: float = 30.0,
    iterations: int = 1,
) -> ExecutionResult:
    """
    Run one variant of a case `iterations` times and return its result.

    Raises QueryError when the engine rejects the SQL and QueryTimeoutError
    when a run exceeds `timeout_seconds` (<= 0 disables the bound).
    """
    sql = case.sql_for(variant)
    ordered = has_order_by(sql)
    samples_ms: List[float] = []
    rows: Tuple[Tuple[Any, ...], ...] = ()
    columns: Tuple[str, ...] = ()

    for iteration in range(max(1, iterations)):
        elapsed_ms, run_rows, run_columns = execute_once(client, sql, timeout_seconds)
        if iteration and not _same_rows(run_rows, rows, ordered):
            logger.warning(
                "%s/%s returned different rows on run %s; dataset changed or query is non-deterministic",
                case.id,
                variant,
                iteration + 1,
            )
        samples_ms.append(elapsed_ms)
        rows, columns = run_rows, run_columns

    logger.debug("%s/%s: %s rows, samples %s", case.id, variant, len(rows), samples_ms)
    return ExecutionResult(
        case_id=case.id,
        variant=variant,
        elapsed_ms=sum(samples_ms) / len(samples_ms),
        row_count=len(rows),
        rows=rows,
        columns=columns,
        samples_ms=tuple(samples_ms),
    )


def execute_once(
    client: DatabaseClient, sql: str, timeout_seconds: float
) -> Tuple[float, Tuple[Tuple[Any, ...], ...], Tuple[str, ...]]:
    """
    Execute `sql` on a fresh connection. Timing covers execute + fetch only.
    """
    with client.connection() as conn:
        cursor = conn.cursor()
        timed_out = threading.Event()
        timer: Optional[threading.Timer] = None
        if timeout_seconds and timeout_seconds > 0:
            timer = threading.Timer(
                timeout_seconds, _cancel, args=(client, conn, timed_out)
            )
            timer.daemon = True
            timer.start()
        start = time.perf_counter()
        try:
            cursor.execute(sql)
            fetched = cursor.fetchall() if cursor.description else []
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            columns = tuple(desc[0] for desc in cursor.description or ())
        except Exception as exc:  # pylint: disable=broad-except
            if timed_out.is_set():
                raise QueryTimeoutError(timeout_seconds) from exc
            message = str(exc).strip() or exc.__class__.__name__
            raise QueryError(message, hint=hint_from_error(message)) from exc
        finally:
            if timer:
                timer.cancel()
            try:
                cursor.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug("Closing cursor failed: %s", exc)
        if timed_out.is_set():
            # the engine finished before honouring the cancel
            raise QueryTimeoutError(timeout_seconds)
        rows = tuple(tuple(row) for row in fetched)
    return elapsed_ms, rows, columns


def _same_rows(first, second, ordered: bool) -> bool:
    if ordered:
        return first == second
    # repr keeps unhashable values (arrays, json) countable
    return Counter(map(repr, first)) == Counter(map(repr, second))


def _cancel(client: DatabaseClient, conn: Any, timed_out: threading.Event) -> None:
    timed_out.set()
    try:
        client.cancel(conn)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Cancelling query failed: %s", exc)


def percentile(data: List[float], pct: float) -> float:
    if not data:
        return 0.0
    ordered = sorted(data)
    k = (len(ordered) - 1) * (pct / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return ordered[int(k)]
    d0 = ordered[int(f)] * (c - k)
    d1 = ordered[int(c)] * (k - f)
    return d0 + d1
