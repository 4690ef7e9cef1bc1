"""
Composable WHERE-clause builder for task listings.
Each supplied column becomes `"column" = %s` with its value bound as a parameter;
filtering always happens in the database.
"""
from dataclasses import dataclass
from typing import Any, Mapping, Tuple

from psycopg import sql

# Columns callers may filter on.
FILTERABLE_COLUMNS = frozenset({"state", "type"})


@dataclass(frozen=True)
class WhereClause:
    clause: sql.Composable
    columns: Tuple[str, ...]
    params: Tuple[Any, ...]

    def __bool__(self) -> bool:
        return bool(self.columns)


def build_where(predicates: Mapping[str, Any]) -> WhereClause:
    """
    Build a WHERE clause from an ordered mapping of column -> value.

    An empty mapping yields an empty clause, so the query is unrestricted.
    Unknown columns raise ValueError rather than reaching the SQL.
    """
    unknown = set(predicates) - FILTERABLE_COLUMNS
    if unknown:
        raise ValueError(f"cannot filter on: {', '.join(sorted(unknown))}")

    columns = tuple(predicates.keys())
    params = tuple(predicates[c] for c in columns)
    if not columns:
        return WhereClause(clause=sql.SQL(""), columns=(), params=())

    conditions = [
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder())
        for column in columns
    ]
    clause = sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions)
    return WhereClause(clause=clause, columns=columns, params=params)
