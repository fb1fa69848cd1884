"""
Query Diagnostics - Estimated plans and syntax checks without running a query.

This module provides:
- explain_query(): SHOWPLAN_XML estimated plan with cost and row estimates
- validate_syntax(): PARSEONLY syntax check

Both pass the text through the query guard first and use the pool's
execute_with_session_option(), which switches the option OFF again on the
same connection before it returns.
"""
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

from mssql_gateway.core.exceptions import DatabaseError
from mssql_gateway.core.logging_config import get_logger
from mssql_gateway.database.query_guard import MAX_QUERY_LENGTH, ensure_read_only

logger = get_logger(__name__)

SHOWPLAN_NAMESPACE = "{http://schemas.microsoft.com/sqlserver/2004/07/showplan}"
_XML_DECLARATION_REGEX = re.compile(r"^\s*<\?xml[^>]*\?>")


@dataclass
class ExecutionPlan:
    """
    Estimated execution plan.

    Attributes:
        plan_xml: Raw SHOWPLAN_XML document
        estimated_cost: Sum of StatementSubTreeCost over all statements
        estimated_rows: Row estimate of the last statement
        statement_count: Number of statements in the plan
        warnings: Plan warnings, e.g. missing indexes
    """
    plan_xml: str
    estimated_cost: float = 0.0
    estimated_rows: Optional[float] = None
    statement_count: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "plan_xml": self.plan_xml,
            "estimated_cost": self.estimated_cost,
            "estimated_rows": self.estimated_rows,
            "statement_count": self.statement_count,
            "warnings": self.warnings,
        }


@dataclass
class SyntaxCheck:
    """Outcome of a PARSEONLY check."""
    valid: bool
    errors: List[str] = field(default_factory=list)


def parse_showplan(plan_xml: str) -> ExecutionPlan:
    """
    Read cost and row estimates out of a SHOWPLAN_XML document.

    Raises:
        DatabaseError: If the document is not well-formed XML
    """
    # A str cannot honour an encoding declaration such as utf-16
    try:
        root = ET.fromstring(_XML_DECLARATION_REGEX.sub("", plan_xml, count=1))
    except ET.ParseError as e:
        raise DatabaseError(f"Server returned an unreadable execution plan: {e}") from e

    plan = ExecutionPlan(plan_xml=plan_xml)
    for statement in root.iter(f"{SHOWPLAN_NAMESPACE}StmtSimple"):
        plan.statement_count += 1
        cost = statement.get("StatementSubTreeCost")
        if cost is not None:
            plan.estimated_cost += float(cost)
        rows = statement.get("StatementEstRows")
        if rows is not None:
            plan.estimated_rows = float(rows)

    for details in root.iter(f"{SHOWPLAN_NAMESPACE}MissingIndexGroup"):
        impact = details.get("Impact")
        plan.warnings.append(f"Missing index (estimated impact {impact}%)" if impact else "Missing index")
    for warnings in root.iter(f"{SHOWPLAN_NAMESPACE}Warnings"):
        for warning in warnings:
            plan.warnings.append(warning.tag.replace(SHOWPLAN_NAMESPACE, ""))

    return plan


class QueryDiagnostics:
    """
    Asks the server about a statement without executing it.

    Example:
        >>> diagnostics = QueryDiagnostics()
        >>> plan = diagnostics.explain_query(pool, "SELECT * FROM dbo.Orders")
        >>> plan.estimated_cost
        0.0032831
    """

    def __init__(self, timeout_seconds: Optional[int] = None, max_query_length: int = MAX_QUERY_LENGTH):
        self.timeout_seconds = timeout_seconds
        self.max_query_length = max_query_length

    def explain_query(self, pool, sql: str, timeout_seconds: Optional[int] = None) -> ExecutionPlan:
        """
        Get the estimated execution plan of a read-only statement.

        Args:
            pool: ConnectionPool to ask
            sql: Raw SQL text
            timeout_seconds: Deadline for this call

        Returns:
            ExecutionPlan

        Raises:
            RejectedStatementError: If the text is not read-only
            QueryTimeoutError: If the deadline expires
            DatabaseError: If the server returns no plan or fails
        """
        ensure_read_only(sql, max_length=self.max_query_length)

        logger.info(f"Explaining query: {sql[:100]}...")
        columns, rows = pool.execute_with_session_option(
            "SHOWPLAN_XML", sql, timeout_seconds=timeout_seconds or self.timeout_seconds
        )
        if not rows or not columns:
            raise DatabaseError("Server returned no execution plan")

        plan = parse_showplan(str(rows[0][columns[0]]))
        logger.debug(f"Plan: {plan.statement_count} statement(s), cost {plan.estimated_cost}")
        return plan

    def validate_syntax(self, pool, sql: str) -> SyntaxCheck:
        """
        Check that a read-only statement parses.

        A server-side parse error is the expected negative answer and comes
        back as SyntaxCheck(valid=False). Guard rejections, timeouts and
        connection failures are raised.

        Raises:
            RejectedStatementError: If the text is not read-only
        """
        ensure_read_only(sql, max_length=self.max_query_length)

        try:
            pool.execute_with_session_option("PARSEONLY", sql, timeout_seconds=self.timeout_seconds)
        except DatabaseError as e:
            # A dropped connection is not a verdict on the text
            if not getattr(pool, "connected", True):
                raise
            logger.info(f"Syntax check failed: {e.message}")
            return SyntaxCheck(valid=False, errors=[e.message])
        return SyntaxCheck(valid=True)
