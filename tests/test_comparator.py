"""Tests for result-set normalization, equivalence and batch comparison."""

from decimal import Decimal

import pytest

from heuristic_bench.comparator import (
    EquivalenceChecker,
    compare_all,
    compare_case,
    has_order_by,
)
from heuristic_bench.config import CompareConfig, RunnerConfig
from heuristic_bench.errors import MismatchError
from heuristic_bench.models import (
    BASELINE,
    EQUIVALENT,
    ERROR,
    HEURISTIC,
    MISMATCH,
    NOT_FOUND,
    ExecutionResult,
    QueryCase,
    VariantFailure,
)
from heuristic_bench.runner import run_variant


def _result(rows, variant=HEURISTIC, columns=None):
    rows = tuple(tuple(row) for row in rows)
    width = len(rows[0]) if rows else 1
    return ExecutionResult(
        case_id="t",
        variant=variant,
        elapsed_ms=1.0,
        row_count=len(rows),
        rows=rows,
        columns=columns or tuple("c%s" % i for i in range(width)),
    )


# --- ORDER BY detection -----------------------------------------------------

def test_has_order_by_top_level():
    assert has_order_by("SELECT name FROM space ORDER BY capacidade DESC")
    assert has_order_by("select name from space\norder   by 1")


def test_has_order_by_ignores_subqueries_and_windows():
    assert not has_order_by("SELECT * FROM (SELECT name FROM space ORDER BY name) t")
    assert not has_order_by("SELECT name, ROW_NUMBER() OVER (ORDER BY capacidade) FROM space")


def test_has_order_by_ignores_literals_and_comments():
    assert not has_order_by("SELECT 'order by' FROM space")
    assert not has_order_by("SELECT name FROM space -- order by name")
    assert not has_order_by("SELECT name /* order by */ FROM space")
    assert not has_order_by('SELECT "order by" FROM space')


def test_has_order_by_sees_past_comment_markers_in_literals():
    assert has_order_by("SELECT '--' AS x, name FROM space ORDER BY name")
    assert has_order_by("SELECT '/*' AS a, '*/' AS b FROM space ORDER BY a")
    assert not has_order_by("SELECT '--' AS x FROM space -- ORDER BY x")


# --- normalization ----------------------------------------------------------

def test_numbers_of_different_types_normalize_equal():
    checker = EquivalenceChecker()
    assert checker.normalize_value(200) == checker.normalize_value(200.0)
    assert checker.normalize_value(Decimal("200")) == checker.normalize_value(200)
    assert checker.normalize_value(0.1 + 0.2) == checker.normalize_value(0.3)
    assert checker.normalize_value(None) != checker.normalize_value("None")
    assert checker.normalize_value("200") != checker.normalize_value(200)
    assert checker.normalize_value(float("nan")) == checker.normalize_value(float("nan"))


def test_strings_keep_surrounding_whitespace_unless_configured():
    assert EquivalenceChecker().normalize_value("Ana ") != EquivalenceChecker().normalize_value("Ana")
    relaxed = EquivalenceChecker(strip_whitespace=True)
    assert relaxed.normalize_value("Ana ") == relaxed.normalize_value(" Ana")


def test_unordered_rows_are_sorted():
    checker = EquivalenceChecker()
    rows = [("b", 2), ("a", 1)]
    assert checker.normalize_rows(rows, ordered=False) == sorted(
        checker.normalize_row(row) for row in rows
    )
    assert checker.normalize_rows(rows, ordered=True)[0] == checker.normalize_row(("b", 2))


# --- equivalence --------------------------------------------------------------

def test_set_mode_ignores_order_and_duplicates():
    checker = EquivalenceChecker(mode="set")
    checker.check("t", _result([("a",), ("b",)]), _result([("b",), ("a",), ("a",)], BASELINE))


def test_bag_mode_counts_duplicates():
    checker = EquivalenceChecker(mode="bag")
    with pytest.raises(MismatchError) as exc_info:
        checker.check("t", _result([("a",), ("b",)]), _result([("b",), ("a",), ("a",)], BASELINE))
    diff = exc_info.value.diff
    assert diff.only_in_baseline == [("a",)]
    assert diff.only_in_heuristic == []


def test_ordered_comparison_reports_first_difference():
    checker = EquivalenceChecker()
    with pytest.raises(MismatchError) as exc_info:
        checker.check(
            "t",
            _result([("a",), ("b",)]),
            _result([("b",), ("a",)], BASELINE),
            ordered=True,
        )
    diff = exc_info.value.diff
    assert diff.ordered
    assert diff.first_difference == 0
    assert diff.only_in_heuristic == [] and diff.only_in_baseline == []


def test_column_count_mismatch():
    checker = EquivalenceChecker()
    diff = checker.diff(_result([]), _result([], BASELINE, columns=("a", "b")))
    assert diff is not None
    assert diff.column_count_differs


def test_diff_rows_are_capped_and_original():
    checker = EquivalenceChecker(max_diff_rows=2)
    diff = checker.diff(_result([(i,) for i in range(5)]), _result([(10.0,)], BASELINE))
    assert diff.only_in_heuristic == [(0,), (1,)]
    assert diff.only_in_baseline == [(10.0,)]
    assert "5 vs 1 rows" in diff.summary()


# --- scenarios against the dataset ------------------------------------------

def test_capacity_variants_agree(client, registry):
    report = compare_case(client, registry.get("capacidade-200"))
    assert report.verdict == EQUIVALENT
    assert report.heuristic.rows == report.baseline.rows == (("Theatro José de Alencar",),)
    assert report.delta_ms == pytest.approx(
        report.baseline.elapsed_ms - report.heuristic.elapsed_ms
    )
    assert "same 1 rows" in report.narrative


def test_fortaleza_heuristic_has_no_duplicates(client, registry):
    case = registry.get("agentes-fortaleza")
    result = run_variant(client, case, HEURISTIC)
    assert len(set(result.rows)) == len(result.rows)
    assert set(result.rows) == {
        ("Ana Lima", "ana@cultura.ce.gov.br"),
        ("Bruno Sales", "bruno@cultura.ce.gov.br"),
    }


def test_fortaleza_known_issue_is_surfaced_as_mismatch(client, registry):
    report = compare_case(client, registry.get("agentes-fortaleza"))
    assert report.verdict == MISMATCH
    assert report.diff.only_in_heuristic == [("Bruno Sales", "bruno@cultura.ce.gov.br")]
    assert "Known issue" in report.narrative
    assert not report.is_equivalent


def test_group_by_example_is_not_a_false_success(client, registry):
    report = compare_case(client, registry.get("group-by-cidade"))
    # SQLite accepts the bare column, PostgreSQL rejects it
    assert report.verdict in (MISMATCH, ERROR)
    assert not report.is_equivalent


@pytest.mark.parametrize(
    "case_id",
    ["capacidade-200", "eventos-por-espaco", "agentes-sem-evento", "agentes-interior", "maiores-espacos"],
)
def test_equivalent_cases(client, registry, case_id):
    report = compare_case(client, registry.get(case_id))
    assert report.verdict == EQUIVALENT, report.narrative


def test_ordered_case_preserves_order(client, registry):
    report = compare_case(client, registry.get("maiores-espacos"))
    assert [row[1] for row in report.heuristic.rows] == [300, 200, 150]


def test_parallel_run_matches_sequential(client, registry):
    case = registry.get("eventos-por-espaco")
    sequential = compare_case(client, case, runner=RunnerConfig(parallel=False))
    parallel = compare_case(client, case, runner=RunnerConfig(parallel=True))
    assert sequential.verdict == parallel.verdict == EQUIVALENT
    assert sorted(sequential.heuristic.rows) == sorted(parallel.heuristic.rows)


def test_bag_mode_flags_duplicate_rows(client):
    case = QueryCase(
        id="donos",
        question="Donos de espaços",
        heuristic_sql="SELECT DISTINCT a.name FROM agent a JOIN space s ON s.agent_id = a.id",
        baseline_sql="SELECT a.name FROM agent a JOIN space s ON s.agent_id = a.id",
    )
    assert compare_case(client, case).verdict == EQUIVALENT
    assert compare_case(client, case, compare=CompareConfig(mode="bag")).verdict == MISMATCH


def test_trailing_whitespace_is_a_mismatch(client):
    case = QueryCase(
        id="espacos",
        question="Nome do agente 1",
        heuristic_sql="SELECT name FROM agent WHERE id = 1",
        baseline_sql="SELECT name || '   ' FROM agent WHERE id = 1",
    )
    assert compare_case(client, case).verdict == MISMATCH
    relaxed = CompareConfig(strip_whitespace=True)
    assert compare_case(client, case, compare=relaxed).verdict == EQUIVALENT


def test_query_error_recorded_as_failed_variant(client):
    case = QueryCase(
        id="quebrada",
        question="q",
        heuristic_sql="SELECT name FROM agent",
        baseline_sql="SELECT nome FROM agente",
    )
    report = compare_case(client, case)
    assert report.verdict == ERROR
    assert report.delta_ms is None
    assert isinstance(report.baseline, VariantFailure)
    assert report.baseline.kind == "query"
    assert report.heuristic.success
    assert "baseline" in report.error


def test_timeout_recorded_as_failed_variant(client):
    case = QueryCase(
        id="lenta",
        question="q",
        heuristic_sql="SELECT 1",
        baseline_sql=(
            "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) "
            "SELECT COUNT(*) FROM c"
        ),
    )
    report = compare_case(client, case, runner=RunnerConfig(timeout_seconds=0.2))
    assert report.verdict == ERROR
    assert report.baseline.kind == "timeout"
    assert "timed out" in report.narrative


def test_batch_continues_past_unknown_ids(client, registry):
    reports = compare_all(client, registry, case_ids=["capacidade-200", "nao-existe", "agentes-interior"])
    assert [r.case_id for r in reports] == ["capacidade-200", "nao-existe", "agentes-interior"]
    assert [r.verdict for r in reports] == [EQUIVALENT, NOT_FOUND, EQUIVALENT]
    assert "nao-existe" in reports[1].error


def test_batch_defaults_to_every_case(client, registry):
    reports = compare_all(client, registry)
    assert [r.case_id for r in reports] == registry.ids()
    assert all(r.verdict in (EQUIVALENT, MISMATCH, ERROR) for r in reports)
