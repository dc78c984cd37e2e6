"""
Entry point: wraps heuristic_bench.cli so it can be run from a checkout.

Usage:
  python3 run.py list
  python3 run.py run --case capacidade-200 --iterations 5
  python3 run.py advise --sql "select * from space where capacidade/2 = 100"

Environment:
- QH_CONFIG: config file (default config.ini in the current directory).
- QH_CASES: case file (default cases/mapas_culturais.json).
- QH_DB_PASSWORD overrides database.password, so credentials stay out of the file.
"""

import os
import sys

from heuristic_bench.cli import main as cli_main

DEFAULTS = (
    ("--config", "QH_CONFIG", "config.ini"),
    ("--cases", "QH_CASES", "cases/mapas_culturais.json"),
)


def _given(option, args):
    return any(arg == option or arg.startswith(option + "=") for arg in args)


def _inject_defaults(args, environ=None):
    """Put global options the caller left out in front of the subcommand."""
    environ = os.environ if environ is None else environ
    injected = []
    for option, variable, fallback in DEFAULTS:
        if not _given(option, args):
            injected += [option, environ.get(variable, fallback)]
    return injected + list(args)


if __name__ == "__main__":
    sys.exit(cli_main(_inject_defaults(sys.argv[1:])))
