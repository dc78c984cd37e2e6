import logging
import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import CompareConfig, RunnerConfig
from .db_client import DatabaseClient
from .errors import CaseNotFoundError, MismatchError, QueryError, QueryTimeoutError
from .models import (
    BASELINE,
    EQUIVALENT,
    ERROR,
    HEURISTIC,
    MISMATCH,
    NOT_FOUND,
    ComparisonReport,
    ExecutionResult,
    MismatchDiff,
    QueryCase,
    VariantFailure,
    VariantOutcome,
)
from .registry import QueryRegistry
from .runner import run_variant
from .sqltext import has_order_by

logger = logging.getLogger(__name__)


class EquivalenceChecker:
    """Checks equivalence between the result sets of two variants.

    Supports:
    - set comparison (duplicates ignored)
    - bag comparison (duplicate counts must match)
    - ordered, position-by-position comparison
    """

    def __init__(
        self,
        mode: str = "set",
        float_digits: int = 9,
        max_diff_rows: int = 10,
        strip_whitespace: bool = False,
    ):
        self.mode = mode
        self.strip_whitespace = strip_whitespace
        self.float_digits = float_digits
        self.max_diff_rows = max_diff_rows

    def normalize_value(self, value: Any) -> str:
        """Normalize a value into a sortable string.

        Numbers of different types compare equal when their values do
        (200, 200.0 and Decimal('200') all normalize the same way).
        """
        if value is None:
            return "~null"
        if isinstance(value, bool):
            return "b:%s" % value
        if isinstance(value, int):
            return "n:%d" % value
        if isinstance(value, (float, Decimal)):
            number = float(value)
            if math.isnan(number):
                return "n:nan"
            if math.isinf(number):
                return "n:%sinf" % ("+" if number > 0 else "-")
            if number.is_integer() and abs(number) < 1e15:
                return "n:%d" % int(number)
            text = "%.*f" % (self.float_digits, round(number, self.float_digits))
            return "n:%s" % text.rstrip("0").rstrip(".")
        if isinstance(value, str):
            if self.strip_whitespace:
                value = value.strip()
            return "s:%s" % value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return "x:%s" % bytes(value).hex()
        return "o:%s" % value

    def normalize_row(self, row: Sequence[Any]) -> Tuple[str, ...]:
        return tuple(self.normalize_value(value) for value in row)

    def normalize_rows(self, rows: Iterable[Sequence[Any]], ordered: bool) -> List[Tuple[str, ...]]:
        normalized = [self.normalize_row(row) for row in rows]
        if not ordered:
            normalized.sort()
        return normalized

    def check(
        self,
        case_id: str,
        heuristic: ExecutionResult,
        baseline: ExecutionResult,
        ordered: bool = False,
    ) -> None:
        """Raise MismatchError when the two results are not equivalent."""
        diff = self.diff(heuristic, baseline, ordered)
        if diff is not None:
            raise MismatchError(case_id, diff)

    def diff(
        self, heuristic: ExecutionResult, baseline: ExecutionResult, ordered: bool = False
    ) -> Optional[MismatchDiff]:
        h_rows = self.normalize_rows(heuristic.rows, ordered)
        b_rows = self.normalize_rows(baseline.rows, ordered)
        originals: Dict[Tuple[str, ...], Tuple[Any, ...]] = {}
        for row in list(heuristic.rows) + list(baseline.rows):
            originals.setdefault(self.normalize_row(row), tuple(row))

        column_count_differs = _width(heuristic) != _width(baseline)
        first_difference = None
        if ordered:
            equal = h_rows == b_rows
            if not equal:
                first_difference = next(
                    (idx for idx, (h, b) in enumerate(zip(h_rows, b_rows)) if h != b),
                    min(len(h_rows), len(b_rows)),
                )
        elif self.mode == "bag":
            equal = Counter(h_rows) == Counter(b_rows)
        else:
            equal = set(h_rows) == set(b_rows)

        if equal and not column_count_differs:
            return None

        if self.mode == "set" and not ordered:
            only_h = sorted(set(h_rows) - set(b_rows))
            only_b = sorted(set(b_rows) - set(h_rows))
        else:
            only_h = sorted((Counter(h_rows) - Counter(b_rows)).elements())
            only_b = sorted((Counter(b_rows) - Counter(h_rows)).elements())

        return MismatchDiff(
            ordered=ordered,
            heuristic_rows=len(h_rows),
            baseline_rows=len(b_rows),
            only_in_heuristic=[originals[row] for row in only_h[: self.max_diff_rows]],
            only_in_baseline=[originals[row] for row in only_b[: self.max_diff_rows]],
            column_count_differs=column_count_differs,
            first_difference=first_difference,
        )


def _width(result: ExecutionResult) -> Optional[int]:
    if result.columns:
        return len(result.columns)
    if result.rows:
        return len(result.rows[0])
    return None


def compare_case(
    client: DatabaseClient,
    case: QueryCase,
    runner: Optional[RunnerConfig] = None,
    compare: Optional[CompareConfig] = None,
) -> ComparisonReport:
    """
    Run both variants of `case`, check their results are equivalent and
    build the report. Mismatches and failed runs end up in the report.
    """
    runner = runner or RunnerConfig()
    compare = compare or CompareConfig()

    if runner.parallel:
        # independent connections, read-only queries
        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = {
                variant: pool.submit(_run_outcome, client, case, variant, runner)
                for variant in (HEURISTIC, BASELINE)
            }
            heuristic = futures[HEURISTIC].result()
            baseline = futures[BASELINE].result()
    else:
        heuristic = _run_outcome(client, case, HEURISTIC, runner)
        baseline = _run_outcome(client, case, BASELINE, runner)

    if isinstance(heuristic, VariantFailure) or isinstance(baseline, VariantFailure):
        failures = [o for o in (heuristic, baseline) if isinstance(o, VariantFailure)]
        error = "; ".join("%s %s: %s" % (f.variant, f.kind, f.message) for f in failures)
        return ComparisonReport(
            case_id=case.id,
            verdict=ERROR,
            heuristic=heuristic,
            baseline=baseline,
            narrative=_narrative(case, ERROR, heuristic, baseline, None, failures),
            error=error,
            case=case,
        )

    assert isinstance(heuristic, ExecutionResult) and isinstance(baseline, ExecutionResult)
    checker = EquivalenceChecker(
        compare.mode, compare.float_digits, compare.max_diff_rows, compare.strip_whitespace
    )
    ordered = has_order_by(case.heuristic_sql) and has_order_by(case.baseline_sql)
    delta_ms = baseline.elapsed_ms - heuristic.elapsed_ms
    try:
        checker.check(case.id, heuristic, baseline, ordered=ordered)
    except MismatchError as exc:
        logger.warning("%s", exc)
        return ComparisonReport(
            case_id=case.id,
            verdict=MISMATCH,
            heuristic=heuristic,
            baseline=baseline,
            delta_ms=delta_ms,
            narrative=_narrative(case, MISMATCH, heuristic, baseline, exc.diff, []),
            diff=exc.diff,
            error=str(exc),
            case=case,
        )

    return ComparisonReport(
        case_id=case.id,
        verdict=EQUIVALENT,
        heuristic=heuristic,
        baseline=baseline,
        delta_ms=delta_ms,
        narrative=_narrative(case, EQUIVALENT, heuristic, baseline, None, []),
        case=case,
    )


def compare_all(
    client: DatabaseClient,
    registry: QueryRegistry,
    case_ids: Optional[Sequence[str]] = None,
    runner: Optional[RunnerConfig] = None,
    compare: Optional[CompareConfig] = None,
) -> List[ComparisonReport]:
    """
    Compare every requested case (all of them by default). Every id yields
    exactly one report; unknown ids are reported as not found.
    """
    reports: List[ComparisonReport] = []
    for case_id in case_ids or registry.ids():
        try:
            case = registry.get(case_id)
        except CaseNotFoundError as exc:
            logger.error("%s", exc)
            reports.append(
                ComparisonReport(case_id=case_id, verdict=NOT_FOUND, error=str(exc), narrative=str(exc))
            )
            continue
        logger.info("Comparing %s", case.id)
        reports.append(compare_case(client, case, runner=runner, compare=compare))
    return reports


def _run_outcome(
    client: DatabaseClient, case: QueryCase, variant: str, runner: RunnerConfig
) -> VariantOutcome:
    try:
        return run_variant(
            client,
            case,
            variant,
            timeout_seconds=runner.timeout_seconds,
            iterations=runner.iterations,
        )
    except QueryTimeoutError as exc:
        logger.error("%s/%s timed out: %s", case.id, variant, exc.message)
        return VariantFailure(case.id, variant, "timeout", exc.message, exc.hint)
    except QueryError as exc:
        logger.error("%s/%s failed: %s", case.id, variant, exc.message)
        return VariantFailure(case.id, variant, "query", exc.message, exc.hint)


def _narrative(
    case: QueryCase,
    verdict: str,
    heuristic: VariantOutcome,
    baseline: VariantOutcome,
    diff: Optional[MismatchDiff],
    failures: List[VariantFailure],
) -> str:
    parts: List[str] = []
    if verdict == ERROR:
        for failure in failures:
            parts.append(
                "The %s variant %s: %s."
                % (
                    failure.variant,
                    "timed out" if failure.kind == "timeout" else "was rejected",
                    failure.message.rstrip("."),
                )
            )
        parts.append("No equivalence verdict is possible.")
    else:
        assert isinstance(heuristic, ExecutionResult) and isinstance(baseline, ExecutionResult)
        if verdict == EQUIVALENT:
            parts.append("Both variants return the same %s rows." % heuristic.row_count)
        else:
            parts.append(
                "The variants return different results (%s), so one of them answers "
                "a different question." % diff.summary()
            )
        parts.append(_speed_sentence(heuristic.elapsed_ms, baseline.elapsed_ms))
    if case.known_issue:
        parts.append("Known issue: %s" % case.known_issue)
    if case.notes:
        parts.append(case.notes)
    return " ".join(parts)


def _speed_sentence(heuristic_ms: float, baseline_ms: float) -> str:
    timing = "Heuristic %.2f ms vs baseline %.2f ms" % (heuristic_ms, baseline_ms)
    if heuristic_ms <= 0 or baseline_ms <= 0:
        return timing + "."
    ratio = baseline_ms / heuristic_ms
    if ratio >= 1:
        return "%s (%.2fx faster)." % (timing, ratio)
    return "%s (%.2fx slower)." % (timing, 1 / ratio)
