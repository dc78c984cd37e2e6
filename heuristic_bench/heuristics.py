import re
from typing import List, Optional, Set, Tuple

from .models import Suggestion

SELECT_STAR = "select-star"
ARITHMETIC_ON_COLUMN = "arithmetic-on-column"
FUNCTION_ON_COLUMN = "function-on-column"
LEADING_WILDCARD_LIKE = "leading-wildcard-like"
OR_CHAIN = "or-chain"
NOT_IN_SUBQUERY = "not-in-subquery"
CORRELATED_SUBQUERY = "correlated-subquery"
DISTINCT_WITH_GROUP_BY = "distinct-with-group-by"
HAVING_WITHOUT_AGGREGATE = "having-without-aggregate"

MESSAGES = {
    SELECT_STAR: "Avoid SELECT *; project only the columns the question needs.",
    ARITHMETIC_ON_COLUMN: (
        "Arithmetic on a column in WHERE (e.g. capacidade/2 = 100) hides it from "
        "indexes; move the arithmetic to the constant side (capacidade = 200)."
    ),
    FUNCTION_ON_COLUMN: (
        "A function wraps a filtered column; compare the raw column or use an "
        "expression index."
    ),
    LEADING_WILDCARD_LIKE: "LIKE '%...' cannot use a prefix index; anchor the pattern if possible.",
    OR_CHAIN: "Several ORs on the same column; rewrite as a single IN list.",
    NOT_IN_SUBQUERY: "NOT IN (SELECT ...) misbehaves with NULLs and plans poorly; use NOT EXISTS.",
    CORRELATED_SUBQUERY: (
        "Correlated subquery is re-evaluated per outer row; rewrite as a JOIN "
        "or a grouped derived table."
    ),
    DISTINCT_WITH_GROUP_BY: "DISTINCT on a grouped result is redundant.",
    HAVING_WITHOUT_AGGREGATE: (
        "HAVING filters on a plain column; move the condition to WHERE so it "
        "applies before grouping."
    ),
}

_AGGREGATES = r"(count|sum|avg|min|max)\s*\("


def advise(sql: str) -> List[Suggestion]:
    """
    Detect well-known query-rewriting opportunities in `sql`.
    Purely textual: the SQL is never parsed, executed or rewritten.
    """
    return [Suggestion(tag, MESSAGES[tag]) for tag in detect_tags(sql)]


def detect_tags(sql: str) -> List[str]:
    lowered = _strip_literals(sql.lower())
    where = _where_clause(lowered)
    tags: List[str] = []

    if re.search(r"select\s+(distinct\s+)?(\w+\.)?\*", lowered):
        tags.append(SELECT_STAR)

    if where and re.search(
        r"[a-z_][\w\.]*\s*[\*/+\-]\s*\d+(\.\d+)?\s*(=|<>|!=|<=|>=|<|>)", where
    ):
        tags.append(ARITHMETIC_ON_COLUMN)

    if where and re.search(
        r"\b(upper|lower|trim|substr|substring|to_char|cast|date|extract)\s*\([a-z_][\w\.]*[^)]*\)\s*(=|<>|<|>|like|in)",
        where,
    ):
        tags.append(FUNCTION_ON_COLUMN)

    if re.search(r"like\s+'%", sql.lower()):
        tags.append(LEADING_WILDCARD_LIKE)

    if where and _has_or_chain(where):
        tags.append(OR_CHAIN)

    if re.search(r"not\s+in\s*\(\s*select\b", lowered):
        tags.append(NOT_IN_SUBQUERY)

    if _has_correlated_subquery(lowered):
        tags.append(CORRELATED_SUBQUERY)

    if re.search(r"select\s+distinct\b", lowered) and re.search(r"\bgroup\s+by\b", lowered):
        tags.append(DISTINCT_WITH_GROUP_BY)

    having = re.search(r"\bhaving\b(.+?)(\border\s+by\b|\blimit\b|$)", lowered, re.DOTALL)
    if having and not re.search(_AGGREGATES, having.group(1)):
        tags.append(HAVING_WITHOUT_AGGREGATE)

    return tags


def _where_clause(sql: str) -> Optional[str]:
    match = re.search(
        r"\bwhere\b(.+?)(\bgroup\s+by\b|\border\s+by\b|\bhaving\b|\blimit\b|$)",
        sql,
        re.DOTALL,
    )
    return match.group(1) if match else None


_EQUALITY_TERM = re.compile(r"^\s*\(?\s*([a-z_][\w\.]*)\s*=")


def _has_or_chain(where: str) -> bool:
    terms = re.split(r"\bor\b", where)
    if len(terms) < 2:
        return False
    seen = {}
    for term in terms:
        match = _EQUALITY_TERM.match(term)
        if match:
            seen[match.group(1)] = seen.get(match.group(1), 0) + 1
    return any(count >= 2 for count in seen.values())


_KEYWORDS = {"where", "on", "group", "order", "inner", "left", "right", "join", "limit", "as"}
_JOIN_ITEM = re.compile(r"\bjoin\s+([a-z_][\w\.]*)(?:\s+(?:as\s+)?([a-z_]\w*))?")
_FROM_LIST = re.compile(
    r"\bfrom\b(.*?)(?=\bwhere\b|\b(?:inner|left|right|full|cross|natural|join)\b"
    r"|\bgroup\b|\border\b|\bhaving\b|\blimit\b|\bunion\b|\bon\b|[()]|$)",
    re.DOTALL,
)
_FROM_ITEM = re.compile(r"^\s*([a-z_][\w\.]*)(?:\s+(?:as\s+)?([a-z_]\w*))?\s*$")


def _has_correlated_subquery(sql: str) -> bool:
    for start, end in _subquery_spans(sql):
        inner = sql[start:end]
        outer = sql[:start] + sql[end:]
        outer_names = _relation_names(outer) - _relation_names(inner) - _KEYWORDS
        for name in outer_names:
            if re.search(r"\b%s\.\w+" % re.escape(name), inner):
                return True
    return False


def _relation_names(sql: str) -> Set[str]:
    names: Set[str] = set()
    items = _JOIN_ITEM.findall(sql)
    for from_list in _FROM_LIST.findall(sql):
        # comma joins: FROM agent a, space s
        for entry in from_list.split(","):
            match = _FROM_ITEM.match(entry)
            if match:
                items.append(match.groups(""))
    for table, alias in items:
        names.add(table.split(".")[-1])
        if alias:
            names.add(alias)
    return names


def _subquery_spans(sql: str) -> List[Tuple[int, int]]:
    spans = []
    for match in re.finditer(r"\(\s*select\b", sql):
        depth = 0
        for idx in range(match.start(), len(sql)):
            if sql[idx] == "(":
                depth += 1
            elif sql[idx] == ")":
                depth -= 1
                if depth == 0:
                    spans.append((match.start() + 1, idx))
                    break
    return spans


def _strip_literals(sql: str) -> str:
    return re.sub(r"'(?:[^']|'')*'", "''", sql)
