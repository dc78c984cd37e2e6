import json
import logging
import os
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import CaseFileError, CaseNotFoundError
from .models import QueryCase

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("id", "question", "heuristic_sql", "baseline_sql")


class QueryRegistry:
    """
    Ordered, read-only collection of query cases.
    """

    def __init__(self, cases: Iterable[QueryCase]) -> None:
        ordered: List[QueryCase] = []
        index: Dict[str, QueryCase] = {}
        for case in cases:
            if case.id in index:
                raise CaseFileError("Duplicate case id: %s" % case.id)
            index[case.id] = case
            ordered.append(case)
        self._cases: Tuple[QueryCase, ...] = tuple(ordered)
        self._index = index

    def get(self, case_id: str) -> QueryCase:
        try:
            return self._index[case_id]
        except KeyError:
            raise CaseNotFoundError(case_id) from None

    def ids(self) -> List[str]:
        return [case.id for case in self._cases]

    def __iter__(self) -> Iterator[QueryCase]:
        return iter(self._cases)

    def __len__(self) -> int:
        return len(self._cases)

    def __contains__(self, case_id: object) -> bool:
        return case_id in self._index


def load_cases(path: str) -> QueryRegistry:
    """
    Load cases from a JSON Lines file (one case per line, `#` comments allowed)
    or, for a `.json` file, from a JSON array of case objects.

    SQL fields may be a string or a list of lines.
    """
    if not os.path.exists(path):
        raise FileNotFoundError("Case file not found: %s" % path)
    if path.endswith(".json"):
        records = _read_json_array(path)
    else:
        records = _read_jsonl(path)
    cases = []
    first_seen: Dict[str, str] = {}
    for where, record in records:
        case = _to_case(record, where)
        if case.id in first_seen:
            raise CaseFileError(
                "%s: duplicate case id %s (first defined at %s)" % (where, case.id, first_seen[case.id])
            )
        first_seen[case.id] = where
        cases.append(case)
    logger.info("Loaded %s cases from %s", len(cases), path)
    return QueryRegistry(cases)


def _read_jsonl(path: str) -> List[Tuple[str, Dict[str, Any]]]:
    records = []
    with open(path, "r", encoding="utf-8") as fp:
        for lineno, line in enumerate(fp, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            where = "%s:%s" % (path, lineno)
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                raise CaseFileError("%s: invalid JSON (%s)" % (where, exc)) from exc
            records.append((where, obj))
    return records


def _read_json_array(path: str) -> List[Tuple[str, Dict[str, Any]]]:
    with open(path, "r", encoding="utf-8") as fp:
        try:
            data = json.load(fp)
        except json.JSONDecodeError as exc:
            raise CaseFileError("%s: invalid JSON (%s)" % (path, exc)) from exc
    if not isinstance(data, list):
        raise CaseFileError("%s: expected a JSON array of cases" % path)
    return [("%s[%s]" % (path, idx), obj) for idx, obj in enumerate(data)]


def _to_case(obj: Any, where: str) -> QueryCase:
    if not isinstance(obj, dict):
        raise CaseFileError("%s: expected an object" % where)
    missing = [k for k in REQUIRED_KEYS if not obj.get(k)]
    if missing:
        raise CaseFileError("%s: missing %s" % (where, ", ".join(missing)))
    return QueryCase(
        id=str(obj["id"]).strip(),
        question=str(obj["question"]).strip(),
        heuristic_sql=_sql_text(obj["heuristic_sql"]),
        baseline_sql=_sql_text(obj["baseline_sql"]),
        heuristics=_tags(obj.get("heuristics")),
        notes=_optional_text(obj.get("notes")),
        known_issue=_optional_text(obj.get("known_issue")),
    )


def _sql_text(value: Any) -> str:
    if isinstance(value, list):
        value = "\n".join(str(line) for line in value)
    return str(value).strip().rstrip(";").strip()


def _tags(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(tag).strip() for tag in value if str(tag).strip())


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        value = " ".join(str(part) for part in value)
    return str(value).strip() or None
