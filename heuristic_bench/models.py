from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

HEURISTIC = "heuristic"
BASELINE = "baseline"
VARIANTS = (HEURISTIC, BASELINE)

EQUIVALENT = "equivalent"
MISMATCH = "mismatch"
ERROR = "error"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class QueryCase:
    id: str
    question: str
    heuristic_sql: str
    baseline_sql: str
    heuristics: Tuple[str, ...] = ()
    notes: Optional[str] = None
    known_issue: Optional[str] = None

    def sql_for(self, variant: str) -> str:
        if variant == HEURISTIC:
            return self.heuristic_sql
        if variant == BASELINE:
            return self.baseline_sql
        raise ValueError("Unknown variant: %s" % variant)


@dataclass(frozen=True)
class ExecutionResult:
    case_id: str
    variant: str
    elapsed_ms: float
    row_count: int
    rows: Tuple[Tuple[Any, ...], ...]
    columns: Tuple[str, ...] = ()
    samples_ms: Tuple[float, ...] = ()
    success: bool = True


@dataclass(frozen=True)
class VariantFailure:
    case_id: str
    variant: str
    kind: str
    message: str
    hint: Optional[str] = None
    success: bool = False


VariantOutcome = Union[ExecutionResult, VariantFailure]


@dataclass
class MismatchDiff:
    ordered: bool
    heuristic_rows: int
    baseline_rows: int
    only_in_heuristic: List[Tuple[Any, ...]] = field(default_factory=list)
    only_in_baseline: List[Tuple[Any, ...]] = field(default_factory=list)
    column_count_differs: bool = False
    first_difference: Optional[int] = None

    def summary(self) -> str:
        parts = ["%s vs %s rows" % (self.heuristic_rows, self.baseline_rows)]
        if self.column_count_differs:
            parts.append("column count differs")
        if self.first_difference is not None:
            parts.append("first differing position %s" % self.first_difference)
        if self.only_in_heuristic:
            parts.append("%s only in heuristic" % len(self.only_in_heuristic))
        if self.only_in_baseline:
            parts.append("%s only in baseline" % len(self.only_in_baseline))
        return ", ".join(parts)


@dataclass
class ComparisonReport:
    case_id: str
    verdict: str
    heuristic: Optional[VariantOutcome] = None
    baseline: Optional[VariantOutcome] = None
    delta_ms: Optional[float] = None
    narrative: str = ""
    diff: Optional[MismatchDiff] = None
    error: Optional[str] = None
    case: Optional[QueryCase] = None

    @property
    def is_equivalent(self) -> bool:
        return self.verdict == EQUIVALENT


@dataclass
class PreflightResult:
    case_id: str
    variant: str
    ok: bool
    error_message: Optional[str] = None
    hint: Optional[str] = None
    plan: Optional[str] = None


@dataclass
class Suggestion:
    tag: str
    message: str
