import configparser
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

DRIVERS = ("psycopg2", "oracledb", "sqlite3")
COMPARE_MODES = ("set", "bag")
REPORT_FORMATS = ("markdown", "text", "json")


@dataclass
class DatabaseConfig:
    driver: str = "psycopg2"
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    dsn: Optional[str] = None
    schema: Optional[str] = None
    connect_timeout: int = 15
    connect_retries: int = 2


@dataclass
class RunnerConfig:
    timeout_seconds: float = 30.0
    iterations: int = 1
    parallel: bool = False


@dataclass
class CompareConfig:
    mode: str = "set"
    float_digits: int = 9
    max_diff_rows: int = 10
    strip_whitespace: bool = False


@dataclass
class ReportConfig:
    format: str = "markdown"
    output: Optional[str] = None


@dataclass
class ToolConfig:
    database: DatabaseConfig
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    compare: CompareConfig = field(default_factory=CompareConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    log_level: str = "INFO"


def load_config(path: str) -> ToolConfig:
    parser = configparser.ConfigParser()
    read = parser.read(path, encoding="utf-8")
    if not read:
        raise FileNotFoundError("Config file not found: %s" % path)

    db_raw = _section_to_dict(parser, "database")
    runner_raw = _section_to_dict(parser, "runner")
    compare_raw = _section_to_dict(parser, "compare")
    report_raw = _section_to_dict(parser, "report")
    logging_raw = _section_to_dict(parser, "logging")

    _require_keys(db_raw, ["driver"], "database")
    driver = db_raw["driver"].strip()
    if driver not in DRIVERS:
        raise ValueError(
            "Unsupported driver in database: %s (expected one of %s)"
            % (driver, ", ".join(DRIVERS))
        )
    if driver == "sqlite3":
        _require_keys(db_raw, ["dsn"], "database")
    elif driver == "oracledb":
        _require_keys(db_raw, ["dsn", "user", "password"], "database")
    else:
        _require_keys(db_raw, ["host", "database", "user"], "database")

    database = DatabaseConfig(
        driver=driver,
        host=db_raw.get("host"),
        port=int(db_raw["port"]) if "port" in db_raw else None,
        database=db_raw.get("database"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        dsn=db_raw.get("dsn"),
        schema=db_raw.get("schema"),
        connect_timeout=int(db_raw.get("connect_timeout", 15)),
        connect_retries=int(db_raw.get("connect_retries", 2)),
    )

    runner = RunnerConfig(
        timeout_seconds=float(runner_raw.get("timeout_seconds", 30)),
        iterations=max(1, int(runner_raw.get("iterations", 1))),
        parallel=_to_bool(runner_raw.get("parallel", "false")),
    )

    compare = CompareConfig(
        mode=_choice(compare_raw.get("mode", "set"), COMPARE_MODES, "compare.mode"),
        float_digits=int(compare_raw.get("float_digits", 9)),
        max_diff_rows=int(compare_raw.get("max_diff_rows", 10)),
        strip_whitespace=_to_bool(compare_raw.get("strip_whitespace", "false")),
    )

    report = ReportConfig(
        format=_choice(report_raw.get("format", "markdown"), REPORT_FORMATS, "report.format"),
        output=report_raw.get("output") or None,
    )

    return ToolConfig(
        database=database,
        runner=runner,
        compare=compare,
        report=report,
        log_level=logging_raw.get("level", "INFO").upper(),
    )


def _section_to_dict(parser: configparser.ConfigParser, section: str) -> Dict[str, str]:
    if not parser.has_section(section):
        return {}
    return {k: v for k, v in parser.items(section)}


def _require_keys(data: Dict[str, Any], keys: Any, section: str) -> None:
    missing = [k for k in keys if k not in data]
    if missing:
        raise ValueError(
            "Missing required config keys in %s: %s" % (section, ", ".join(missing))
        )


def _choice(value: str, choices: Any, name: str) -> str:
    value = value.strip().lower()
    if value not in choices:
        raise ValueError("Invalid %s: %s (expected one of %s)" % (name, value, ", ".join(choices)))
    return value


def env_override(config: ToolConfig) -> ToolConfig:
    """
    Allow env overrides for credentials to avoid committing secrets.
    """
    password = os.environ.get("QH_DB_PASSWORD")
    driver = os.environ.get("QH_DB_DRIVER")
    dsn = os.environ.get("QH_DB_DSN")
    timeout = os.environ.get("QH_TIMEOUT_SECONDS")
    if password:
        config.database.password = password
    if driver:
        config.database.driver = _choice(driver, DRIVERS, "QH_DB_DRIVER")
    if dsn:
        config.database.dsn = dsn
    if timeout:
        config.runner.timeout_seconds = float(timeout)
    return config


def _to_bool(value: str) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")
