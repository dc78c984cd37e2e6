import argparse
import logging
import sys
from typing import Optional

from . import comparator, heuristics, preflight, reporting
from .config import env_override, load_config
from .db_client import DatabaseClient
from .errors import CaseFileError, CaseNotFoundError
from .models import PreflightResult
from .registry import load_cases

logger = logging.getLogger(__name__)


def main(argv: Optional[list] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "advise":
        _setup_logging("DEBUG" if args.verbose else "WARNING")
        return _run_advise(args)

    if args.command in ("list", "show"):
        _setup_logging("DEBUG" if args.verbose else "WARNING")
        registry = _load_registry(args.cases)
        if args.command == "list":
            for case in registry:
                tags = " [%s]" % ", ".join(case.heuristics) if case.heuristics else ""
                print("%s: %s%s" % (case.id, case.question, tags))
            return 0
        try:
            print(reporting.format_case(registry.get(args.case)))
        except CaseNotFoundError as exc:
            print("ERROR: %s" % exc, file=sys.stderr)
            return 1
        return 0

    if args.command not in ("run", "check"):
        parser.print_help()
        return 0

    cfg = env_override(load_config(args.config))
    _setup_logging("DEBUG" if args.verbose else cfg.log_level)
    registry = _load_registry(args.cases)
    client = DatabaseClient(cfg.database)

    if args.command == "check":
        return _run_check(client, registry, args)

    if args.timeout is not None:
        cfg.runner.timeout_seconds = args.timeout
    if args.iterations is not None:
        cfg.runner.iterations = max(1, args.iterations)
    if args.parallel:
        cfg.runner.parallel = True
    if args.mode:
        cfg.compare.mode = args.mode

    reports = comparator.compare_all(
        client,
        registry,
        case_ids=args.case,
        runner=cfg.runner,
        compare=cfg.compare,
    )
    output = reporting.render(reports, fmt=args.format or cfg.report.format, title=args.title)
    target = args.output or cfg.report.output
    if target:
        with open(target, "w", encoding="utf-8") as fp:
            fp.write(output)
        print("Relatório gravado em %s (%s casos)." % (target, len(reports)))
    else:
        print(output)
    return 0 if all(r.is_equivalent for r in reports) else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Comparação de consultas heurísticas e consultas base",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default="config.ini",
        help="Path to config (INI) with database credentials and runner settings.",
    )
    parser.add_argument(
        "--cases",
        default="cases/mapas_culturais.json",
        help="Case file (JSON Lines or JSON array).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="Lista os casos cadastrados.")

    show = sub.add_parser(
        "show",
        help="Mostra as duas consultas de um caso.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Exemplo:
  python3 run.py show --case capacidade-200""",
    )
    show.add_argument("--case", required=True, help="Case id.")

    run_cmd = sub.add_parser(
        "run",
        help="Executa as duas variantes, verifica equivalência e mede o tempo.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Exemplos:
  python3 run.py run
  python3 run.py run --case capacidade-200 --case agentes-fortaleza --iterations 5
  python3 run.py run --parallel --format text
  python3 run.py run --output RESULTADOS.md""",
    )
    run_cmd.add_argument(
        "--case",
        action="append",
        help="Case id to run (repeatable). Default: every case in the file.",
    )
    run_cmd.add_argument("--iterations", type=int, help="Runs per variant.")
    run_cmd.add_argument("--timeout", type=float, help="Per-query timeout in seconds (0 = none).")
    run_cmd.add_argument(
        "--parallel",
        action="store_true",
        help="Run both variants of a case concurrently on separate connections.",
    )
    run_cmd.add_argument(
        "--mode",
        choices=["set", "bag"],
        help="set: ignore duplicate rows; bag: duplicate counts must match.",
    )
    run_cmd.add_argument(
        "--format",
        choices=["markdown", "text", "json"],
        help="Report format (default from config, markdown).",
    )
    run_cmd.add_argument("--output", help="Write the report to this file instead of stdout.")
    run_cmd.add_argument("--title", help="Markdown report title.")

    check_cmd = sub.add_parser(
        "check",
        help="Valida as consultas com EXPLAIN, sem executá-las.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Exemplos:
  python3 run.py check
  python3 run.py check --case group-by-cidade""",
    )
    check_cmd.add_argument("--case", action="append", help="Case id (repeatable).")

    advise_cmd = sub.add_parser(
        "advise",
        help="Sugere heurísticas de reescrita para uma consulta.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Exemplos:
  python3 run.py advise --sql "select name from space where capacidade/2 = 100"
  python3 run.py advise --sql-file /tmp/consulta.sql""",
    )
    advise_cmd.add_argument("--sql", help="SQL text.")
    advise_cmd.add_argument("--sql-file", help="Read SQL from file.")

    return parser


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _load_registry(path: str):
    try:
        return load_cases(path)
    except (CaseFileError, FileNotFoundError) as exc:
        raise SystemExit("ERROR: %s" % exc) from exc


def _read_sql(args) -> str:
    if args.sql:
        return args.sql.strip()
    if args.sql_file:
        with open(args.sql_file, "r", encoding="utf-8") as fp:
            return fp.read().strip()
    raise SystemExit("Provide --sql or --sql-file.")


def _run_advise(args) -> int:
    sql = _read_sql(args)
    tips = heuristics.advise(sql)
    print("SQL:", sql)
    if not tips:
        print("Nenhum padrão conhecido encontrado.")
        return 0
    print("Sugestões:")
    for idx, tip in enumerate(tips, start=1):
        print("%s. [%s] %s" % (idx, tip.tag, tip.message))
    return 0


def _run_check(client: DatabaseClient, registry, args) -> int:
    failed = 0
    for case_id in args.case or registry.ids():
        try:
            case = registry.get(case_id)
        except CaseNotFoundError as exc:
            logger.error("%s", exc)
            print(reporting.format_preflight(
                PreflightResult(case_id=case_id, variant="-", ok=False, error_message=str(exc))
            ))
            failed += 1
            continue
        for result in preflight.check_case(client, case):
            print(reporting.format_preflight(result))
            print()
            if not result.ok:
                failed += 1
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
