import importlib
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from .config import DatabaseConfig

logger = logging.getLogger(__name__)

_INSTALL_HINTS = {
    "psycopg2": "pip install psycopg2-binary",
    "oracledb": "pip install oracledb",
}


class DatabaseClient:
    """
    Thin DB-API wrapper over psycopg2 / python-oracledb / sqlite3.

    Every execution gets its own connection so the two variants of a case can
    run side by side without sharing state.
    """

    def __init__(self, config: DatabaseConfig, driver: Any = None) -> None:
        self.config = config
        self._driver = driver

    @property
    def driver_name(self) -> str:
        return self.config.driver

    @property
    def driver(self) -> Any:
        return self._load_driver()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn = self._connect_with_retry()
        try:
            yield conn
        finally:
            try:
                conn.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Closing connection failed: %s", exc)

    def cancel(self, conn: Any) -> None:
        """
        Ask the engine to abort whatever is running on `conn`.
        Safe to call from another thread.
        """
        if self.config.driver == "sqlite3" or hasattr(conn, "interrupt"):
            conn.interrupt()
        else:
            conn.cancel()

    def explain_sql(self, sql: str) -> str:
        if self.config.driver == "sqlite3":
            return "EXPLAIN QUERY PLAN " + sql
        if self.config.driver == "oracledb":
            return "EXPLAIN PLAN FOR " + sql
        return "EXPLAIN " + sql

    def explain(self, sql: str) -> Optional[str]:
        """
        Return the plan text for `sql` without executing it. Driver errors propagate.
        """
        with self.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(self.explain_sql(sql))
                if self.config.driver == "oracledb":
                    cursor.execute(
                        "SELECT plan_table_output FROM TABLE(DBMS_XPLAN.DISPLAY())"
                    )
                rows = cursor.fetchall() if cursor.description else []
            finally:
                cursor.close()
        return "\n".join(" ".join(str(col) for col in row) for row in rows)

    def _connect_with_retry(self) -> Any:
        driver = self._load_driver()
        transient = getattr(driver, "OperationalError", None)
        attempts = max(0, self.config.connect_retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._connect(driver)
            except Exception as exc:  # pylint: disable=broad-except
                if transient is None or not isinstance(exc, transient) or attempt >= attempts:
                    raise
                delay = 0.5 * attempt
                logger.warning(
                    "Connection attempt %s/%s failed (%s), retrying in %.1f s",
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                time.sleep(delay)
        raise RuntimeError("unreachable")

    def _connect(self, driver: Any) -> Any:
        cfg = self.config
        if cfg.driver == "sqlite3":
            # cancel() runs on the timer thread
            return driver.connect(cfg.dsn, timeout=cfg.connect_timeout, check_same_thread=False)
        if cfg.driver == "oracledb":
            conn = driver.connect(user=cfg.user, password=cfg.password, dsn=cfg.dsn)
            if cfg.schema:
                cursor = conn.cursor()
                try:
                    cursor.execute(
                        "ALTER SESSION SET CURRENT_SCHEMA = %s" % cfg.schema
                    )
                finally:
                    cursor.close()
            return conn
        conn = driver.connect(
            host=cfg.host,
            port=cfg.port or 5432,
            dbname=cfg.database,
            user=cfg.user,
            password=cfg.password,
            connect_timeout=cfg.connect_timeout,
        )
        # read-only comparisons, no transaction bookkeeping needed
        conn.autocommit = True
        if cfg.schema:
            cursor = conn.cursor()
            try:
                cursor.execute("SET search_path TO %s, public" % cfg.schema)
            finally:
                cursor.close()
        return conn

    def _load_driver(self) -> Any:
        if self._driver:
            return self._driver
        name = self.config.driver
        try:
            driver = importlib.import_module(name)
        except ImportError as exc:
            raise ImportError(
                "Install the %s driver to use DatabaseClient (%s)."
                % (name, _INSTALL_HINTS.get(name, "bundled with CPython"))
            ) from exc
        self._driver = driver
        return driver
