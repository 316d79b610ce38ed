"""
Parser for LogMiner redo SQL.

Turns one reconstructed INSERT, UPDATE or DELETE statement into before and
after column maps. Only the DML shapes LogMiner emits are understood:

    insert into "HR"."EMP"("ID","NAME") values ('1','Smith')
    update "HR"."EMP" set "NAME" = 'Jones' where "ID" = '1' and "NAME" = 'Smith'
    delete from "HR"."EMP" where "ID" = '1' and "NOTE" IS NULL

Statements are parsed with sqlglot's Oracle dialect. Values are kept as
text; no type coercion is attempted.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from core.exceptions import UnparsableStatementError
from core.models import Operation

DIALECT = "oracle"

NULL_MARKER = "= NULL"

_TIMESTAMP_PREFIX_RE = re.compile(r"^TIMESTAMP\s+", re.IGNORECASE)

# Typed literals such as TIMESTAMP '...' or DATE '...' parse to these nodes
_TYPED_LITERALS = (exp.Cast, exp.TimeStrToTime, exp.DateStrToDate)


@dataclass
class ParsedStatement:
    """Result of parsing one redo statement."""

    kind: Operation
    seg_owner: str
    table_name: str
    before: dict[str, str] = field(default_factory=dict)
    after: dict[str, str] = field(default_factory=dict)


def clean_string(value: str) -> str:
    """
    Normalize a redo SQL literal or identifier to plain text.

    Strips a leading TIMESTAMP keyword and one pair of surrounding quotes,
    and rewrites an unquoted IS NULL marker to ``= NULL``.
    """
    text = _TIMESTAMP_PREFIX_RE.sub("", value.strip(), count=1)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        quote = text[0]
        return text[1:-1].replace(quote * 2, quote).strip()
    return text.replace("IS NULL", NULL_MARKER).strip()


def value_text(node: exp.Expression) -> str:
    """Render a value expression as the text stored in a column map."""
    if isinstance(node, exp.Literal):
        return node.this.strip() if node.is_string else node.this
    if isinstance(node, exp.National):
        return node.this.strip()
    if isinstance(node, exp.Null):
        return "NULL"
    if (
        isinstance(node, _TYPED_LITERALS)
        and isinstance(node.this, exp.Literal)
        and node.this.is_string
    ):
        return node.this.this.strip()
    return clean_string(node.sql(dialect=DIALECT))


def _column_key(node: exp.Expression) -> str:
    if isinstance(node, (exp.Column, exp.Identifier)):
        return node.name
    return clean_string(node.sql(dialect=DIALECT))


def collect_equalities(condition: Optional[exp.Expression]) -> dict[str, str]:
    """
    Collect ``column = value`` pairs from the top-level conjunction.

    ``col IS NULL`` counts as an equality with the value ``= NULL``. Anything
    under OR or NOT, and any other predicate form, is ignored.
    """
    found: dict[str, str] = {}

    def walk(node: Optional[exp.Expression]) -> None:
        if isinstance(node, exp.Where):
            walk(node.this)
        elif isinstance(node, exp.Paren):
            walk(node.this)
        elif isinstance(node, exp.And):
            walk(node.this)
            walk(node.expression)
        elif isinstance(node, exp.EQ):
            if node.this is not None and node.expression is not None:
                found[_column_key(node.this)] = value_text(node.expression)
        elif isinstance(node, exp.Is) and isinstance(node.expression, exp.Null):
            found[_column_key(node.this)] = NULL_MARKER

    walk(condition)
    return found


def parse_statement(sql: str) -> exp.Expression:
    """
    Parse redo SQL into a sqlglot INSERT, UPDATE or DELETE expression.

    Raises:
        UnparsableStatementError: If the text does not parse or is another
            kind of statement
    """
    if sql is None or not sql.strip():
        raise UnparsableStatementError("Empty redo statement", sql=sql or "")

    try:
        statement = sqlglot.parse_one(sql, read=DIALECT)
    except SqlglotError as e:
        raise UnparsableStatementError(f"Invalid redo SQL: {e}", sql=sql) from e

    if not isinstance(statement, (exp.Insert, exp.Update, exp.Delete)):
        raise UnparsableStatementError(
            f"Expected INSERT, UPDATE or DELETE, got {statement.key.upper()}", sql=sql
        )
    return statement


def _table_of(statement: exp.Expression, sql: str) -> exp.Table:
    target = statement.this
    if isinstance(target, exp.Schema):
        target = target.this
    if not isinstance(target, exp.Table):
        raise UnparsableStatementError("Statement has no target table", sql=sql)
    return target


def _insert_after(statement: exp.Insert, sql: str) -> dict[str, str]:
    schema = statement.this
    columns = schema.expressions if isinstance(schema, exp.Schema) else []
    source = statement.expression

    if not columns:
        raise UnparsableStatementError("INSERT has no column list", sql=sql)
    if not isinstance(source, exp.Values) or len(source.expressions) != 1:
        raise UnparsableStatementError("INSERT must have a single VALUES row", sql=sql)

    row = source.expressions[0]
    values = row.expressions if isinstance(row, exp.Tuple) else [row]
    if len(columns) != len(values):
        raise UnparsableStatementError(
            f"INSERT has {len(columns)} columns but {len(values)} values", sql=sql
        )
    return {column.name: value_text(value) for column, value in zip(columns, values)}


def _update_after(statement: exp.Update, sql: str) -> dict[str, str]:
    assignments = statement.expressions
    if not assignments:
        raise UnparsableStatementError("UPDATE has no SET clause", sql=sql)

    after = {}
    for assignment in assignments:
        if not isinstance(assignment, exp.EQ) or assignment.expression is None:
            raise UnparsableStatementError(
                f"Unsupported SET item: {assignment.sql(dialect=DIALECT)}", sql=sql
            )
        after[_column_key(assignment.this)] = value_text(assignment.expression)
    return after


def parse(sql: str) -> ParsedStatement:
    """
    Parse a redo statement into before/after column maps.

    Args:
        sql: Reconstructed redo SQL (continuation fragments already joined)

    Returns:
        ParsedStatement with the statement kind, table and column maps

    Raises:
        UnparsableStatementError: If the text is not a single INSERT,
            UPDATE or DELETE
    """
    statement = parse_statement(sql)
    table = _table_of(statement, sql)

    if isinstance(statement, exp.Insert):
        return ParsedStatement(
            Operation.INSERT, table.db, table.name, after=_insert_after(statement, sql)
        )

    before = collect_equalities(statement.args.get("where"))
    if isinstance(statement, exp.Update):
        return ParsedStatement(
            Operation.UPDATE,
            table.db,
            table.name,
            before=before,
            after=_update_after(statement, sql),
        )
    return ParsedStatement(Operation.DELETE, table.db, table.name, before=before)
