import json
from typing import Any, List, Optional, Sequence

from .models import (
    BASELINE,
    HEURISTIC,
    ComparisonReport,
    ExecutionResult,
    PreflightResult,
    QueryCase,
    VariantFailure,
)
from .runner import percentile

VERDICT_LABELS = {
    "equivalent": "equivalent",
    "mismatch": "MISMATCH",
    "error": "ERROR",
    "not_found": "NOT FOUND",
}


def render(reports: Sequence[ComparisonReport], fmt: str = "markdown", title: Optional[str] = None) -> str:
    if fmt == "json":
        return to_json(list(reports))
    if fmt == "text":
        return "\n\n".join(format_text(report) for report in reports)
    return format_markdown(reports, title=title)


def format_markdown(reports: Sequence[ComparisonReport], title: Optional[str] = None) -> str:
    """
    One section per question with both queries and their timings, followed
    by a summary table.
    """
    lines: List[str] = ["# %s" % (title or "Heuristic vs baseline queries"), ""]
    for idx, report in enumerate(reports, start=1):
        lines.extend(_markdown_section(idx, report))
    lines.extend(_markdown_summary(reports))
    return "\n".join(lines).rstrip() + "\n"


def _markdown_section(idx: int, report: ComparisonReport) -> List[str]:
    case = report.case
    heading = case.question if case else report.case_id
    lines = ["## %s. %s" % (idx, heading), ""]
    lines.append("- Case: `%s`" % report.case_id)
    lines.append("- Verdict: **%s**" % VERDICT_LABELS.get(report.verdict, report.verdict))
    if case and case.heuristics:
        lines.append("- Heuristics: %s" % ", ".join(case.heuristics))
    if report.delta_ms is not None:
        lines.append("- Delta (baseline - heuristic): %+.2f ms" % report.delta_ms)
    lines.append("")
    if case:
        for variant, label in ((HEURISTIC, "Heuristic query"), (BASELINE, "Baseline query")):
            outcome = report.heuristic if variant == HEURISTIC else report.baseline
            lines.append("### %s (%s)" % (label, _outcome_label(outcome)))
            lines.append("")
            lines.append("```sql")
            lines.append(case.sql_for(variant))
            lines.append("```")
            lines.append("")
    if report.narrative:
        lines.append(report.narrative)
        lines.append("")
    if report.diff:
        lines.append("Differences: %s" % report.diff.summary())
        for label, rows in (
            ("only in heuristic", report.diff.only_in_heuristic),
            ("only in baseline", report.diff.only_in_baseline),
        ):
            for row in rows:
                lines.append("- %s: `%s`" % (label, _row_text(row)))
        lines.append("")
    return lines


def _markdown_summary(reports: Sequence[ComparisonReport]) -> List[str]:
    lines = [
        "## Summary",
        "",
        "| Case | Heuristic | Baseline | Delta | Verdict |",
        "| --- | ---: | ---: | ---: | --- |",
    ]
    for report in reports:
        delta = "%+.2f ms" % report.delta_ms if report.delta_ms is not None else "-"
        lines.append(
            "| %s | %s | %s | %s | %s |"
            % (
                report.case_id,
                _outcome_label(report.heuristic),
                _outcome_label(report.baseline),
                delta,
                VERDICT_LABELS.get(report.verdict, report.verdict),
            )
        )
    lines.append("")
    return lines


def _outcome_label(outcome: Any) -> str:
    if outcome is None:
        return "not run"
    if isinstance(outcome, VariantFailure):
        return "timeout" if outcome.kind == "timeout" else "error"
    return "%.2f ms, %s rows" % (outcome.elapsed_ms, outcome.row_count)


def format_text(report: ComparisonReport) -> str:
    parts = [
        "Case: %s" % report.case_id,
        "Verdict: %s" % VERDICT_LABELS.get(report.verdict, report.verdict),
    ]
    if report.case:
        parts.append("Question: %s" % report.case.question)
    for label, outcome in (("Heuristic", report.heuristic), ("Baseline", report.baseline)):
        if isinstance(outcome, ExecutionResult):
            line = "%s: %.2f ms, %s rows" % (label, outcome.elapsed_ms, outcome.row_count)
            if len(outcome.samples_ms) > 1:
                line += " (runs: %s, P95: %.2f ms)" % (
                    len(outcome.samples_ms),
                    percentile(list(outcome.samples_ms), 95),
                )
            parts.append(line)
        elif isinstance(outcome, VariantFailure):
            parts.append("%s: %s: %s" % (label, outcome.kind, outcome.message))
            if outcome.hint:
                parts.append("  Hint: %s" % outcome.hint)
    if report.delta_ms is not None:
        parts.append("Delta: %+0.2f ms" % report.delta_ms)
    if report.diff:
        parts.append("Diff: %s" % report.diff.summary())
    if report.narrative:
        parts.append(report.narrative)
    return "\n".join(parts)


def format_preflight(result: PreflightResult) -> str:
    parts = [
        "Case: %s (%s)" % (result.case_id, result.variant),
        "Valid: %s" % ("YES" if result.ok else "NO"),
    ]
    if result.error_message:
        parts.append("Error: %s" % result.error_message.strip())
    if result.hint:
        parts.append("Hint: %s" % result.hint)
    if result.plan:
        parts.append("Plan:\n%s" % result.plan.strip())
    return "\n".join(parts)


def format_case(case: QueryCase) -> str:
    parts = ["[%s] %s" % (case.id, case.question)]
    if case.heuristics:
        parts.append("Heuristics: %s" % ", ".join(case.heuristics))
    parts.append("Heuristic SQL:\n%s" % case.heuristic_sql)
    parts.append("Baseline SQL:\n%s" % case.baseline_sql)
    if case.known_issue:
        parts.append("Known issue: %s" % case.known_issue)
    if case.notes:
        parts.append("Notes: %s" % case.notes)
    return "\n".join(parts)


def to_json(data: Any) -> str:
    return json.dumps(_to_dict(data), ensure_ascii=False, indent=2, default=str)


def _to_dict(data: Any) -> Any:
    if hasattr(data, "__dict__"):
        return {
            key: _to_dict(value)
            for key, value in data.__dict__.items()
            if not key.startswith("_")
        }
    if isinstance(data, (list, tuple)):
        return [_to_dict(item) for item in data]
    return data


def _row_text(row: Sequence[Any]) -> str:
    return ", ".join("NULL" if value is None else str(value) for value in row)
