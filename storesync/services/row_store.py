"""
Relational Row Store
Upsert / delete / paginated select against the Postgres (Supabase) tables
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

import sqlalchemy as sa
import structlog
from sqlalchemy.dialects.postgresql import JSONB, insert as pg_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from storesync.exceptions import RowStoreError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RowFilter:
    """One WHERE predicate: column <op> value. op is eq, gte, lte, gt or lt."""

    column: str
    op: str
    value: Any


_OPERATORS = {
    "eq": lambda col, value: col == value,
    "gte": lambda col, value: col >= value,
    "lte": lambda col, value: col <= value,
    "gt": lambda col, value: col > value,
    "lt": lambda col, value: col < value,
}


class RowStore(ABC):
    """Relational store operations the sync core depends on."""

    @abstractmethod
    def upsert(self, table: str, rows: Sequence[Dict[str, Any]], id_column: str = "id") -> int:
        """Insert or update rows keyed by id_column. Returns number of rows written."""

    @abstractmethod
    def delete_ids(self, table: str, ids: Sequence[str], id_column: str = "id") -> int:
        """Delete rows whose id_column is in ids. Returns number of rows deleted."""

    @abstractmethod
    def select_page(
        self,
        table: str,
        filters: Sequence[RowFilter] = (),
        offset: int = 0,
        limit: int = 1000,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        """Return one page of rows matching all filters."""


def _column_type(values: Sequence[Any]) -> Optional[sa.types.TypeEngine]:
    if any(isinstance(v, (dict, list)) for v in values):
        return JSONB()
    return None


class PostgresRowStore(RowStore):
    """
    RowStore over a SQLAlchemy engine.

    Tables are addressed by name with lightweight table clauses so that the
    statement only references the columns a payload actually carries; the
    destination schema is never reflected. Driver errors are re-raised as
    RowStoreError with the SQLSTATE code and the database message.
    """

    def __init__(self, engine: Engine, schema: Optional[str] = None):
        """
        Initialize row store.

        Args:
            engine: SQLAlchemy engine created once at process start
            schema: Optional Postgres schema (defaults to search_path)
        """
        self.engine = engine
        self.schema = schema
        self.logger = logger.bind(service="row_store")

    def _table(self, name: str, columns: Dict[str, Optional[sa.types.TypeEngine]]) -> sa.TableClause:
        cols = [sa.column(col_name, col_type) if col_type is not None else sa.column(col_name)
                for col_name, col_type in columns.items()]
        return sa.table(name, *cols, schema=self.schema)

    def _raise(self, table: str, error: SQLAlchemyError) -> None:
        if isinstance(error, DBAPIError) and error.orig is not None:
            code = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
            raise RowStoreError(str(error.orig).strip(), table=table, code=code) from error
        raise RowStoreError(str(error), table=table) from error

    def _upsert_statement(self, table: str, rows: List[Dict[str, Any]], id_column: str):
        column_names = list(rows[0])
        columns = {name: _column_type([row[name] for row in rows]) for name in column_names}
        target = self._table(table, columns)

        stmt = pg_insert(target).values(rows)
        update_columns = {name: stmt.excluded[name] for name in column_names if name != id_column}
        if update_columns:
            return stmt.on_conflict_do_update(index_elements=[id_column], set_=update_columns)
        return stmt.on_conflict_do_nothing(index_elements=[id_column])

    def upsert(self, table: str, rows: Sequence[Dict[str, Any]], id_column: str = "id") -> int:
        if not rows:
            return 0

        # One statement per key set, so an absent key never becomes an explicit NULL
        groups: Dict[FrozenSet[str], List[Dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(frozenset(row), []).append(row)
        statements = [
            self._upsert_statement(table, [{name: row[name] for name in group[0]} for row in group], id_column)
            for group in groups.values()
        ]

        try:
            with self.engine.begin() as conn:
                for stmt in statements:
                    conn.execute(stmt)
        except SQLAlchemyError as e:
            self._raise(table, e)

        return len(rows)

    def delete_ids(self, table: str, ids: Sequence[str], id_column: str = "id") -> int:
        if not ids:
            return 0

        target = self._table(table, {id_column: None})
        stmt = sa.delete(target).where(target.c[id_column].in_(list(ids)))

        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            self._raise(table, e)

        return result.rowcount

    def select_page(
        self,
        table: str,
        filters: Sequence[RowFilter] = (),
        offset: int = 0,
        limit: int = 1000,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        column_names = {f.column: None for f in filters}
        column_names[order_by] = None
        target = self._table(table, column_names)

        stmt = sa.select(sa.literal_column("*")).select_from(target)
        for f in filters:
            try:
                compare = _OPERATORS[f.op]
            except KeyError:
                raise ValueError(f"Unsupported filter operator: {f.op}") from None
            stmt = stmt.where(compare(target.c[f.column], f.value))
        stmt = stmt.order_by(target.c[order_by]).offset(offset).limit(limit)

        try:
            with self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            self._raise(table, e)
