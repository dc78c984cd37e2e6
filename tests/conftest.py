"""Shared fixtures: an on-disk SQLite copy of the dataset and a fake DB-API driver."""

import sqlite3
import threading
import time
from pathlib import Path

import pytest

from heuristic_bench.config import DatabaseConfig
from heuristic_bench.db_client import DatabaseClient
from heuristic_bench.registry import load_cases

ROOT = Path(__file__).resolve().parent.parent
FIXTURE_SQL = ROOT / "cases" / "fixture.sql"
CASES_FILE = ROOT / "cases" / "mapas_culturais.json"


@pytest.fixture
def dataset_path(tmp_path):
    path = tmp_path / "mapas.sqlite"
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(FIXTURE_SQL.read_text(encoding="utf-8"))
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def client(dataset_path):
    return DatabaseClient(DatabaseConfig(driver="sqlite3", dsn=str(dataset_path)))


@pytest.fixture
def registry():
    return load_cases(str(CASES_FILE))


class FakeOperationalError(Exception):
    pass


class FakeProgrammingError(Exception):
    pass


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.closed = False

    def execute(self, sql, params=None):
        self.conn.executed.append(sql)
        if "syntax" in sql:
            raise FakeProgrammingError('syntax error at or near "syntax"')
        deadline = time.perf_counter() + self.conn.driver.delay
        while time.perf_counter() < deadline:
            if self.conn.cancelled.is_set():
                raise FakeOperationalError("canceling statement due to user request")
            time.sleep(0.005)
        self.description = (("n", None, None, None, None, None, None),)

    def fetchall(self):
        return self.conn.driver.next_rows()

    def close(self):
        self.closed = True
        self.conn.cursors_closed += 1


class FakeConnection:
    def __init__(self, driver):
        self.driver = driver
        self.executed = []
        self.cancelled = threading.Event()
        self.closed = False
        self.cursors_closed = 0
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self)

    def cancel(self):
        self.cancelled.set()

    def close(self):
        self.closed = True


class FakeDriver:
    """Module-like stand-in for psycopg2 with an adjustable per-query delay."""

    OperationalError = FakeOperationalError
    ProgrammingError = FakeProgrammingError

    def __init__(self, delay=0.0, connect_failures=0, results=None):
        self.delay = delay
        self.results = list(results or [])
        self.connect_failures = connect_failures
        self.connect_calls = 0
        self.connections = []

    def connect(self, **kwargs):
        self.connect_calls += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise FakeOperationalError("could not connect to server")
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    def next_rows(self):
        if self.results:
            return self.results.pop(0)
        return [(1,), (2,)]


@pytest.fixture
def make_fake_client():
    def _make(delay=0.0, connect_failures=0, connect_retries=2, results=None):
        driver = FakeDriver(delay=delay, connect_failures=connect_failures, results=results)
        config = DatabaseConfig(
            driver="psycopg2",
            host="db",
            database="mapas",
            user="u",
            connect_retries=connect_retries,
        )
        return DatabaseClient(config, driver=driver), driver

    return _make
