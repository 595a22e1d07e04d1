"""Classify column expressions into transformation kinds using sqlglot."""

from functools import lru_cache
from typing import Optional

import sqlglot
import sqlglot.expressions as exp
from sqlglot.errors import SqlglotError

from ..core.models import TransformationKind
from .logging_config import get_logger

logger = get_logger('expression_classifier')

ARITHMETIC_NODES = (exp.Add, exp.Sub, exp.Mul, exp.Div, exp.Mod, exp.IntDiv)
CONCAT_NODES = (exp.DPipe, exp.Concat, exp.ConcatWs)
CONDITIONAL_NODES = (exp.Case, exp.If)


def _unwrap(node: exp.Expression) -> exp.Expression:
    while isinstance(node, (exp.Alias, exp.Paren)):
        node = node.this
    return node


@lru_cache(maxsize=4096)
def classify_expression(expression: Optional[str], dialect: Optional[str] = None) -> TransformationKind:
    """
    Classify how an output column is derived from its inputs.

    Checks run from the most to the least specific construct, so
    ``SUM(a) OVER (...)`` is a window function and ``SUM(a + b)`` an aggregate.

    Args:
        expression: SQL expression text, optionally with an alias
        dialect: sqlglot dialect to parse with

    Returns:
        The matching TransformationKind, UNKNOWN when the text cannot be parsed
    """
    if not expression or not expression.strip():
        return TransformationKind.UNKNOWN

    try:
        parsed = sqlglot.parse_one(expression, dialect=dialect)
    except SqlglotError as e:
        logger.debug(f"Could not parse expression '{expression}': {e}")
        return TransformationKind.UNKNOWN

    if parsed is None:
        return TransformationKind.UNKNOWN
    root = _unwrap(parsed)

    if root.find(exp.Subquery, exp.Select):
        return TransformationKind.SUBQUERY_DERIVED
    if root.find(exp.Window):
        return TransformationKind.WINDOW_FUNCTION
    if root.find(exp.AggFunc):
        return TransformationKind.AGGREGATE
    if root.find(*CONDITIONAL_NODES):
        return TransformationKind.CASE_EXPRESSION
    if isinstance(root, exp.Cast):
        return TransformationKind.CAST
    if root.find(*CONCAT_NODES):
        return TransformationKind.CONCATENATION
    if root.find(*ARITHMETIC_NODES):
        return TransformationKind.ARITHMETIC
    if isinstance(root, exp.Column):
        return TransformationKind.DIRECT
    if root.find(exp.Cast):
        return TransformationKind.CAST
    return TransformationKind.UNKNOWN
