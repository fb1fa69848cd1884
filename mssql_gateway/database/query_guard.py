"""
Query Guard - Ensures SQL text is read-only before it reaches the server.

This module provides:
- Statement classification (allow-list of leading tokens, deny-list scan,
  paired session option directives)
- Row-limit injection (TOP n)
- Per-query timeout application

The checks are a heuristic, defense-in-depth layer built from regular
expressions. They are not a SQL parser and do not prove a statement is
safe; profiles should still use read-only logins and ApplicationIntent=ReadOnly.

The allow-list and deny-list are plain data below so they can be audited
and extended without touching control flow.
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from mssql_gateway.core.exceptions import RejectedStatementError
from mssql_gateway.core.logging_config import get_logger

logger = get_logger(__name__)

# Leading tokens a statement may start with
ALLOWED_LEADING_PATTERNS = (
    r"SELECT\b",
    r"WITH\b",
    r"EXPLAIN\b",
    # Plan inspection directives only; any other leading SET is rejected
    r"SET STATISTICS (?:IO|TIME|XML|PROFILE) (?:ON|OFF)\b",
    r"SET SHOWPLAN_(?:TEXT|ALL|XML) (?:ON|OFF)\b",
)

# Whole words that must never appear anywhere in the text
FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "TRUNCATE", "ALTER", "CREATE",
    "EXEC", "EXECUTE", "MERGE", "GRANT", "REVOKE",
    # Dynamic SQL / shell execution procedures
    "SP_EXECUTESQL", "XP_CMDSHELL",
)

# Structural patterns that disguise a write behind a SELECT
FORBIDDEN_PATTERNS = {
    # SELECT ... INTO NewTable creates a table
    "INTO <identifier>": r"\bINTO\s+[\[\"#@\w]",
    # UPDATE-style assignment
    "SET <identifier> =": r"\bSET\s+[\[\]\"@#\w.]+\s*=",
}

MAX_QUERY_LENGTH = 50000

_LEADING_REGEX = re.compile(r"^(?:" + "|".join(ALLOWED_LEADING_PATTERNS) + r")")
_FORBIDDEN_REGEX = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b")
_PATTERN_REGEX = {name: re.compile(pattern) for name, pattern in FORBIDDEN_PATTERNS.items()}

# Row limit detection / insertion
_TOP_AFTER_SELECT_REGEX = re.compile(r"\s+TOP\b", re.IGNORECASE)
# Tokens that matter when looking for the outermost SELECT
_SELECT_SCAN_REGEX = re.compile(
    r"'(?:[^']|'')*'"          # string literal
    r"|--[^\n]*"               # line comment
    r"|/\*.*?\*/"              # block comment
    r"|\[[^\]]*\]"             # bracketed identifier
    r"|[()]"
    r"|\bSELECT\b(?:\s+(?:DISTINCT|ALL)\b)?"
    r"|\bOFFSET\b|\bFETCH\b",
    re.IGNORECASE | re.DOTALL,
)

# Session options a statement may toggle, e.g. SET STATISTICS IO ON
_SET_REGEX = re.compile(r"\bSET\b")
_SESSION_DIRECTIVE_REGEX = re.compile(
    r"\bSET (STATISTICS (?:IO|TIME|XML|PROFILE)|SHOWPLAN_(?:TEXT|ALL|XML)) (ON|OFF)\b"
)


@dataclass(frozen=True)
class StatementClassification:
    """Verdict on a piece of SQL text. Never carries a rewritten statement."""
    allowed: bool
    reason: Optional[str] = None
    matched: Optional[str] = None


def normalize_sql(sql_text: str) -> str:
    """Collapse whitespace and uppercase the text."""
    return re.sub(r"\s+", " ", sql_text).strip().upper()


def classify(sql_text: str, max_length: int = MAX_QUERY_LENGTH) -> StatementClassification:
    """
    Decide whether SQL text is a read-only statement.

    All checks must pass; the statement is rejected when any fails:
    1. The text must begin with an allowed leading token.
    2. The whole text must not contain a forbidden keyword or pattern.
    3. Every session option turned ON must be turned OFF again.

    The deny scan runs over the entire text, so batches such as
    "SELECT 1; DROP TABLE t" and writes hidden in comments are caught
    even though the text starts with SELECT.

    Args:
        sql_text: Raw SQL text, typically produced by a language model
        max_length: Longest text accepted

    Returns:
        StatementClassification
    """
    if not sql_text or not sql_text.strip():
        return StatementClassification(allowed=False, reason="Empty SQL query")

    if len(sql_text) > max_length:
        return StatementClassification(
            allowed=False,
            reason=f"Query exceeds maximum length of {max_length} characters",
        )

    normalized = normalize_sql(sql_text)

    keyword_match = _FORBIDDEN_REGEX.search(normalized)
    if keyword_match:
        keyword = keyword_match.group(1)
        logger.warning(f"Forbidden keyword detected: {keyword}")
        return StatementClassification(
            allowed=False,
            reason=f"Forbidden SQL keyword detected: {keyword}. Only read-only queries are allowed",
            matched=keyword,
        )

    for name, regex in _PATTERN_REGEX.items():
        pattern_match = regex.search(normalized)
        if pattern_match:
            logger.warning(f"Forbidden pattern detected: {name}")
            return StatementClassification(
                allowed=False,
                reason=f"Forbidden pattern detected: {name}. Only read-only queries are allowed",
                matched=pattern_match.group(0),
            )

    if not _LEADING_REGEX.match(normalized):
        return StatementClassification(
            allowed=False,
            reason="Query must start with SELECT, WITH, or EXPLAIN",
        )

    return _check_session_options(normalized)


def _check_session_options(normalized: str) -> StatementClassification:
    """
    Reject SET directives that would outlive the statement.

    Session options stay set on the pooled connection after the batch ends,
    so every option a statement turns ON must be turned OFF again later in
    the same text. Any other SET is rejected outright.
    """
    directives = list(_SESSION_DIRECTIVE_REGEX.finditer(normalized))
    if len(_SET_REGEX.findall(normalized)) != len(directives):
        return StatementClassification(
            allowed=False,
            reason="Only SET STATISTICS and SET SHOWPLAN directives are allowed",
            matched="SET",
        )

    enabled = []
    for directive in directives:
        option, state = directive.group(1), directive.group(2)
        if state == "ON":
            if option not in enabled:
                enabled.append(option)
        elif option in enabled:
            enabled.remove(option)

    if enabled:
        logger.warning(f"Session option left enabled: {enabled[0]}")
        return StatementClassification(
            allowed=False,
            reason=f"SET {enabled[0]} ON must be followed by SET {enabled[0]} OFF in the same statement",
            matched=f"SET {enabled[0]} ON",
        )

    return StatementClassification(allowed=True)


def ensure_read_only(sql_text: str, max_length: int = MAX_QUERY_LENGTH) -> StatementClassification:
    """
    Classify SQL text and raise when it is not allowed.

    Raises:
        RejectedStatementError: With the classification reason. The caller
            must not rewrite and resubmit the statement.
    """
    verdict = classify(sql_text, max_length=max_length)
    if not verdict.allowed:
        raise RejectedStatementError(verdict.reason, matched=verdict.matched)
    return verdict


def has_row_limit(sql_text: str) -> bool:
    """
    Check whether the outer query limits its rows.

    Only the SELECT that apply_row_limit() would target counts: a TOP inside
    a subquery or CTE does not limit what the statement returns. OFFSET ...
    FETCH counts only outside parentheses.
    """
    position, paginated = _scan_outer_select(sql_text)
    if paginated:
        return True
    if position is None:
        return False
    return bool(_TOP_AFTER_SELECT_REGEX.match(sql_text, position))


def _scan_outer_select(sql_text: str) -> Tuple[Optional[int], bool]:
    """
    Find the SELECT [DISTINCT|ALL] that should carry TOP.

    Prefers the first SELECT outside any parentheses (the outer query of a
    CTE), falling back to the first SELECT anywhere.

    Returns:
        Tuple of (offset right after that SELECT or None,
                  whether OFFSET and FETCH both appear outside parentheses)
    """
    depth = 0
    outer = None
    first_any = None
    outer_offset = outer_fetch = False
    for match in _SELECT_SCAN_REGEX.finditer(sql_text):
        token = match.group(0)
        keyword = token.upper()
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(depth - 1, 0)
        elif keyword.startswith("SELECT"):
            if depth == 0 and outer is None:
                outer = match.end()
            if first_any is None:
                first_any = match.end()
        elif depth == 0 and keyword == "OFFSET":
            outer_offset = True
        elif depth == 0 and keyword == "FETCH":
            outer_fetch = True
    position = outer if outer is not None else first_any
    return position, outer_offset and outer_fetch


def apply_row_limit(sql_text: str, max_rows: int) -> str:
    """
    Add a TOP qualifier unless the text already limits its rows.

    Idempotent: the presence check short-circuits a second insertion.

    Args:
        sql_text: SQL text already accepted by classify()
        max_rows: Maximum rows to return

    Returns:
        SQL text with "SELECT TOP n" or the unchanged text
    """
    if max_rows < 1:
        raise ValueError("max_rows must be a positive integer")

    if has_row_limit(sql_text):
        return sql_text

    position, _ = _scan_outer_select(sql_text)
    if position is None:
        return sql_text

    logger.debug(f"Added TOP {max_rows} to query")
    return f"{sql_text[:position]} TOP {max_rows}{sql_text[position:]}"


def apply_timeout(connection, seconds: int) -> None:
    """
    Set the execution deadline on the driver connection behind a SQLAlchemy connection.

    pyodbc applies Connection.timeout to every statement executed on that
    connection afterwards; expiry surfaces as SQLSTATE HYT00.

    Args:
        connection: SQLAlchemy Connection about to run the query
        seconds: Timeout in whole seconds
    """
    if seconds <= 0:
        raise ValueError("Query timeout must be a positive number of seconds")
    connection.connection.driver_connection.timeout = int(seconds)
