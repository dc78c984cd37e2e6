"""
Side-by-side runner for heuristic and baseline SQL formulations.

Each case pairs a rewritten query with its naive equivalent; the package runs
both against the same dataset, checks the answers match and records timings.
"""

__all__ = [
    "config",
    "errors",
    "models",
    "registry",
    "db_client",
    "sqltext",
    "runner",
    "comparator",
    "preflight",
    "heuristics",
    "reporting",
    "cli",
]
