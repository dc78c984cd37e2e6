import re

_TOKENS = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|--[^\n]*"
    r"|/\*.*?\*/",
    re.DOTALL,
)
_ORDER_BY = re.compile(r"\border\s+by\b", re.IGNORECASE)


def mask_sql(sql: str) -> str:
    """
    Blank out string literals, quoted identifiers and comments, scanning
    left to right so a `--` inside a literal is not taken for a comment.
    """

    def _mask(match):
        token = match.group(0)
        if token.startswith("'"):
            return "''"
        if token.startswith('"'):
            return '""'
        return " "

    return _TOKENS.sub(_mask, sql)


def has_order_by(sql: str) -> bool:
    """
    True when the outermost query has an ORDER BY. Comments, literals and
    anything inside parentheses (subqueries, OVER clauses) are ignored.
    """
    depth = 0
    outer = []
    for ch in mask_sql(sql):
        if ch == "(":
            depth += 1
            outer.append(" ")
        elif ch == ")":
            depth = max(0, depth - 1)
            outer.append(" ")
        else:
            outer.append(ch if depth == 0 else " ")
    return bool(_ORDER_BY.search("".join(outer)))
