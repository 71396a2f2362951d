"""
SANITIZER - gate for model-written ad-hoc SQL

Purpose:
    The registry covers the common questions. When it does not, the model may
    write its own SELECT. This module decides whether that SELECT may run.

Rules (first failure wins):
    1. Must start with SELECT
    2. No write/DDL keyword anywhere (whole words)
    3. No comments, stacked statements, UNION SELECT or xp_/sp_ procedures
    4. Only allow-listed tables in FROM / JOIN
    5. LIMIT appended when missing

A rejected query is never repaired and never executed.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from order_insights.core.config import settings
from order_insights.core.errors import SanitizationRejected

ALLOWED_TABLES = ["orders"]

BLOCKED_KEYWORDS = [
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "TRUNCATE",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
    "INTO",
]

BLOCKED_PATTERNS = [
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r";\s*\S"),
    re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE),
    re.compile(r"\b(xp|sp)_\w*", re.IGNORECASE),
]

# Words that can follow a table name without being an alias
CLAUSE_WORDS = {
    "where", "group", "order", "limit", "offset", "having", "join", "inner",
    "left", "right", "full", "cross", "outer", "natural", "on", "using",
    "union", "except", "intersect", "window", "fetch", "for", "lateral",
}

_TABLE_KEYWORD = re.compile(r"\b(FROM|JOIN)\s+", re.IGNORECASE)
_IDENTIFIER = re.compile(r'(?:"[^"]+"|\w+)(?:\.(?:"[^"]+"|\w+))?')
_ALIAS = re.compile(r"\s+(?:AS\s+)?(\w+)", re.IGNORECASE)
_LIST_SEPARATOR = re.compile(r"\s*,\s*")
# Alternation order matters: a double-quoted identifier or an E'...' escape
# string is consumed whole before a bare ' can open a plain literal
_QUOTED = re.compile(
    r"""
    "(?:[^"]|"")*"
    | (?<!\w)[Ee]'(?:[^'\\]|\\.|'')*'
    | '(?:[^']|'')*'
    """,
    re.VERBOSE,
)
_RAW_TABLE_KEYWORD = re.compile(r"\b(?:FROM|JOIN)\s+\S", re.IGNORECASE)


@dataclass
class SanitizeResult:
    valid: bool
    query: str = ""
    error: Optional[str] = None


def _mask_literals(sql: str) -> str:
    """Blank out string literals so 'from x' inside a value is not a table."""

    def blank(match):
        token = match.group(0)
        if token.startswith('"'):
            return token
        opening = token.index("'") + 1
        return token[:opening] + " " * (len(token) - opening - 1) + "'"

    return _QUOTED.sub(blank, sql)


def _reject_hidden_references(sql: str, masked: str) -> None:
    # A FROM / JOIN the raw text shows but masking blanked out is never
    # checked or tenant-scoped, so it may not run at all
    for match in _RAW_TABLE_KEYWORD.finditer(sql):
        if not _TABLE_KEYWORD.match(masked, match.start()):
            raise SanitizationRejected("FROM / JOIN inside quoted text is not allowed")


def _enclosing_paren(sql: str, position: int) -> Optional[int]:
    stack = []
    for index, char in enumerate(sql[:position]):
        if char == "(":
            stack.append(index)
        elif char == ")" and stack:
            stack.pop()
    return stack[-1] if stack else None


def _is_function_argument(sql: str, position: int) -> bool:
    # EXTRACT(MONTH FROM order_date), SUBSTRING(x FROM 1 FOR 2), TRIM(...)
    paren = _enclosing_paren(sql, position)
    if paren is None:
        return False
    return not re.match(r"\s*SELECT\b", sql[paren + 1:], re.IGNORECASE)


def _table_name(identifier: str) -> str:
    return identifier.replace('"', "").lower()


def find_table_references(sql: str) -> List[Tuple[int, int, str]]:
    """
    Every table referenced by FROM / JOIN as (start, end, lowercase name).

    Handles comma-separated FROM lists and subqueries; skips the FROM
    keyword inside function arguments. Raises SanitizationRejected when a
    table position holds something that is not a plain identifier.
    """
    masked = _mask_literals(sql)
    _reject_hidden_references(sql, masked)
    references = []

    for keyword in _TABLE_KEYWORD.finditer(masked):
        if _is_function_argument(masked, keyword.start()):
            continue

        position = keyword.end()
        while True:
            if masked.startswith("(", position):
                if not re.match(r"\(\s*SELECT\b", masked[position:], re.IGNORECASE):
                    raise SanitizationRejected("Only subqueries may follow FROM / JOIN in parentheses")
                # Its own FROM is matched by the outer loop
                break

            identifier = _IDENTIFIER.match(masked, position)
            if not identifier:
                raise SanitizationRejected(
                    f"Could not read table reference after {keyword.group(1).upper()}"
                )
            references.append((identifier.start(), identifier.end(), _table_name(identifier.group(0))))
            position = identifier.end()

            if keyword.group(1).upper() != "FROM":
                break

            alias = _ALIAS.match(masked, position)
            if alias and alias.group(1).lower() not in CLAUSE_WORDS:
                position = alias.end()

            separator = _LIST_SEPARATOR.match(masked, position)
            if not separator:
                break
            position = separator.end()

    return references


def sanitize_sql(raw_sql: str) -> SanitizeResult:
    """
    Validate a model-written query and return the runnable form.

    Example:
        sanitize_sql("SELECT status, COUNT(*) FROM orders GROUP BY status;")
        -> SanitizeResult(valid=True,
                          query="SELECT status, COUNT(*) FROM orders GROUP BY status LIMIT 1000")
    """
    trimmed = (raw_sql or "").strip()

    if not re.match(r"^SELECT\b", trimmed, re.IGNORECASE):
        return SanitizeResult(valid=False, error="Only SELECT queries are allowed")

    cleaned = re.sub(r";\s*$", "", trimmed)

    for keyword in BLOCKED_KEYWORDS:
        if re.search(rf"\b{keyword}\b", cleaned, re.IGNORECASE):
            return SanitizeResult(valid=False, error=f'Operation "{keyword}" is not allowed')

    for pattern in BLOCKED_PATTERNS:
        if pattern.search(cleaned):
            return SanitizeResult(valid=False, error="Potentially dangerous SQL pattern detected")

    try:
        references = find_table_references(cleaned)
    except SanitizationRejected as error:
        return SanitizeResult(valid=False, error=error.message)

    for _start, _end, table in references:
        if table not in ALLOWED_TABLES:
            return SanitizeResult(valid=False, error=f'Table "{table}" is not accessible')

    if not re.search(r"\bLIMIT\b", cleaned, re.IGNORECASE):
        cleaned = f"{cleaned} LIMIT {settings.ADHOC_ROW_LIMIT}"

    return SanitizeResult(valid=True, query=cleaned)


def require_safe_sql(raw_sql: str) -> str:
    result = sanitize_sql(raw_sql)
    if not result.valid:
        raise SanitizationRejected(result.error or "Query rejected")
    return result.query
