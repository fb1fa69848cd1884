"""
Schema Assembler - Build table metadata from SQL Server catalog views.

This module reads sys.* catalog views to describe:
- Columns with type, nullability, identity and default metadata
- Primary keys and indexes (key and included columns)
- Foreign keys in both directions
- Triggers

describe_table() issues six independent catalog queries and merges them
by name into one TableDescription. The queries do not share a snapshot,
so a schema change between two of them can leave a dangling reference;
that case is raised as MetadataInconsistencyError instead of being dropped.

All catalog queries are parameterized; schema and object names are never
interpolated into SQL text.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from mssql_gateway.core.exceptions import MetadataInconsistencyError, NotFoundError
from mssql_gateway.core.logging_config import LoggerMixin, get_logger

logger = get_logger(__name__)


COLUMNS_SQL = """
SELECT
    c.name,
    t.name AS data_type,
    c.max_length,
    c.precision,
    c.scale,
    c.is_nullable,
    c.is_identity,
    dc.definition AS default_value,
    c.column_id
FROM sys.columns c
INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
INNER JOIN sys.tables tb ON c.object_id = tb.object_id
INNER JOIN sys.schemas s ON tb.schema_id = s.schema_id
LEFT JOIN sys.default_constraints dc ON c.default_object_id = dc.object_id
WHERE s.name = :schema AND tb.name = :table
ORDER BY c.column_id
"""

PRIMARY_KEY_SQL = """
SELECT c.name, ic.key_ordinal
FROM sys.indexes i
INNER JOIN sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
INNER JOIN sys.columns c ON ic.object_id = c.object_id AND ic.column_id = c.column_id
INNER JOIN sys.tables t ON i.object_id = t.object_id
INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
WHERE s.name = :schema AND t.name = :table AND i.is_primary_key = 1
ORDER BY ic.key_ordinal
"""

# One row per index column; indexes are merged by name afterwards
INDEXES_SQL = """
SELECT
    i.name AS index_name,
    i.type_desc,
    i.is_unique,
    i.is_primary_key,
    i.filter_definition,
    c.name AS column_name,
    ic.key_ordinal,
    ic.index_column_id,
    ic.is_included_column
FROM sys.indexes i
INNER JOIN sys.tables t ON i.object_id = t.object_id
INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
LEFT JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
LEFT JOIN sys.columns c ON ic.object_id = c.object_id AND ic.column_id = c.column_id
WHERE s.name = :schema AND t.name = :table AND i.type > 0
ORDER BY i.name, ic.is_included_column, ic.key_ordinal, ic.index_column_id
"""

# One row per foreign key column pair; the WHERE clause picks the direction
_FOREIGN_KEYS_SQL = """
SELECT
    fk.name,
    SCHEMA_NAME(tp.schema_id) AS owner_schema,
    tp.name AS owner_table,
    cp.name AS owner_column,
    SCHEMA_NAME(tr.schema_id) AS target_schema,
    tr.name AS target_table,
    cr.name AS target_column,
    fkc.constraint_column_id,
    fk.delete_referential_action_desc AS on_delete,
    fk.update_referential_action_desc AS on_update
FROM sys.foreign_keys fk
INNER JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
INNER JOIN sys.tables tp ON fk.parent_object_id = tp.object_id
INNER JOIN sys.tables tr ON fk.referenced_object_id = tr.object_id
INNER JOIN sys.columns cp ON fkc.parent_object_id = cp.object_id AND fkc.parent_column_id = cp.column_id
INNER JOIN sys.columns cr ON fkc.referenced_object_id = cr.object_id AND fkc.referenced_column_id = cr.column_id
WHERE {where}
ORDER BY owner_schema, owner_table, fk.name, fkc.constraint_column_id
"""

OUTBOUND_FOREIGN_KEYS_SQL = _FOREIGN_KEYS_SQL.format(
    where="SCHEMA_NAME(tp.schema_id) = :schema AND tp.name = :table"
)
INBOUND_FOREIGN_KEYS_SQL = _FOREIGN_KEYS_SQL.format(
    where="SCHEMA_NAME(tr.schema_id) = :schema AND tr.name = :table"
)
RELATIONSHIPS_SQL = _FOREIGN_KEYS_SQL.format(where="1 = 1")
TABLE_RELATIONSHIPS_SQL = _FOREIGN_KEYS_SQL.format(
    where="(tp.name = :table AND (:schema IS NULL OR SCHEMA_NAME(tp.schema_id) = :schema))"
    " OR (tr.name = :table AND (:schema IS NULL OR SCHEMA_NAME(tr.schema_id) = :schema))"
)

TRIGGERS_SQL = """
SELECT tr.name
FROM sys.triggers tr
INNER JOIN sys.tables t ON tr.parent_id = t.object_id
INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
WHERE s.name = :schema AND t.name = :table
ORDER BY tr.name
"""

DATABASES_SQL = """
SELECT
    d.name,
    (SELECT SUM(mf.size) * 8.0 / 1024 FROM sys.master_files mf WHERE mf.database_id = d.database_id) AS size_mb,
    d.state_desc AS status,
    d.recovery_model_desc AS recovery_model
FROM sys.databases d
WHERE :include_system = 1 OR d.name NOT IN ('master', 'tempdb', 'model', 'msdb')
ORDER BY d.name
"""

LIST_TABLES_SQL = """
SELECT
    s.name AS [schema],
    t.name AS name,
    ISNULL(SUM(p.rows), 0) AS row_count,
    t.create_date AS creation_date
FROM sys.tables t
INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
LEFT JOIN sys.partitions p ON t.object_id = p.object_id AND p.index_id IN (0, 1)
WHERE t.is_ms_shipped = 0
    AND (:schema IS NULL OR s.name = :schema)
    AND (:include_system = 1 OR s.name NOT IN ('sys', 'INFORMATION_SCHEMA'))
GROUP BY s.name, t.name, t.create_date
ORDER BY s.name, t.name
"""

LIST_VIEWS_SQL = """
SELECT
    s.name AS [schema],
    v.name,
    v.create_date AS created_date,
    v.modify_date AS modified_date
FROM sys.views v
INNER JOIN sys.schemas s ON v.schema_id = s.schema_id
WHERE v.is_ms_shipped = 0
    AND (:schema IS NULL OR s.name = :schema)
ORDER BY s.name, v.name
"""

LIST_PROCEDURES_SQL = """
SELECT
    s.name AS [schema],
    p.name,
    p.create_date AS created_date,
    p.modify_date AS modified_date
FROM sys.procedures p
INNER JOIN sys.schemas s ON p.schema_id = s.schema_id
WHERE p.is_ms_shipped = 0
    AND (:schema IS NULL OR s.name = :schema)
    AND (:pattern IS NULL OR p.name LIKE :pattern)
ORDER BY s.name, p.name
"""

OBJECT_DEFINITION_SQL = """
SELECT OBJECT_DEFINITION(OBJECT_ID(QUOTENAME(:schema) + '.' + QUOTENAME(:name))) AS definition
"""


@dataclass(frozen=True)
class ColumnDescriptor:
    """Information about a table column."""
    name: str
    data_type: str
    nullable: bool
    is_identity: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    default_expression: Optional[str] = None


@dataclass(frozen=True)
class IndexDescriptor:
    """Information about an index, with key columns in key order."""
    name: str
    kind: str
    is_unique: bool
    is_primary_key: bool
    key_columns: Tuple[str, ...] = ()
    included_columns: Tuple[str, ...] = ()
    filter_expression: Optional[str] = None


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    """A foreign key; owner and target columns are positionally paired."""
    name: str
    owner_schema: str
    owner_table: str
    owner_columns: Tuple[str, ...]
    target_schema: str
    target_table: str
    target_columns: Tuple[str, ...]
    on_delete: str = "NO_ACTION"
    on_update: str = "NO_ACTION"

    def __post_init__(self):
        if len(self.owner_columns) != len(self.target_columns):
            raise ValueError(
                f"Foreign key {self.name} pairs {len(self.owner_columns)} owner columns "
                f"with {len(self.target_columns)} target columns"
            )

    @property
    def column_pairs(self) -> List[Tuple[str, str]]:
        return list(zip(self.owner_columns, self.target_columns))


@dataclass(frozen=True)
class TableDescription:
    """
    Complete metadata for one table.

    Built fresh from the live catalog on every call and read-only for
    consumers such as code and documentation generators.
    """
    schema: str
    table: str
    columns: Tuple[ColumnDescriptor, ...]
    primary_key_column_names: FrozenSet[str] = frozenset()
    indexes: Tuple[IndexDescriptor, ...] = ()
    outbound_foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()
    inbound_foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()
    trigger_names: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    def get_column_names(self) -> List[str]:
        """Get list of column names in column order."""
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnDescriptor]:
        for col in self.columns:
            if col.name == name:
                return col
        return None


def _as_bool(value: Any) -> bool:
    return bool(value) if value is not None else False


def merge_columns(rows: Iterable[Dict[str, Any]]) -> Dict[str, ColumnDescriptor]:
    """Merge column rows by name, ordered by column_id."""
    ordered = sorted(rows, key=lambda r: (r.get("column_id") or 0))
    columns: Dict[str, ColumnDescriptor] = {}
    for row in ordered:
        columns[row["name"]] = ColumnDescriptor(
            name=row["name"],
            data_type=row["data_type"],
            nullable=_as_bool(row.get("is_nullable")),
            is_identity=_as_bool(row.get("is_identity")),
            max_length=row.get("max_length"),
            precision=row.get("precision"),
            scale=row.get("scale"),
            default_expression=row.get("default_value"),
        )
    return columns


def merge_indexes(rows: Iterable[Dict[str, Any]]) -> Tuple[List[IndexDescriptor], List[str]]:
    """
    Merge per-column index rows into IndexDescriptors keyed by index name.

    Returns:
        Tuple of (indexes sorted by name, problems found while merging)
    """
    grouped: Dict[str, Dict[str, Any]] = {}
    problems: List[str] = []

    for row in rows:
        name = row["index_name"]
        entry = grouped.setdefault(name, {
            "kind": row.get("type_desc"),
            "is_unique": _as_bool(row.get("is_unique")),
            "is_primary_key": _as_bool(row.get("is_primary_key")),
            "filter": row.get("filter_definition"),
            "keys": [],
            "included": [],
        })
        if row.get("index_column_id") is None:
            continue
        column = row.get("column_name")
        if column is None:
            problems.append(f"index {name} references a column missing from sys.columns")
            continue
        if _as_bool(row.get("is_included_column")):
            entry["included"].append((row.get("index_column_id") or 0, column))
        else:
            entry["keys"].append((row.get("key_ordinal") or 0, column))

    indexes = [
        IndexDescriptor(
            name=name,
            kind=entry["kind"],
            is_unique=entry["is_unique"],
            is_primary_key=entry["is_primary_key"],
            key_columns=tuple(col for _, col in sorted(entry["keys"])),
            included_columns=tuple(col for _, col in sorted(entry["included"])),
            filter_expression=entry["filter"],
        )
        for name, entry in sorted(grouped.items())
    ]
    return indexes, problems


def merge_foreign_keys(rows: Iterable[Dict[str, Any]]) -> List[ForeignKeyDescriptor]:
    """Merge per-column-pair foreign key rows by constraint name."""
    grouped: Dict[Tuple[str, str, str], Dict[str, Any]] = {}

    for row in rows:
        # Constraint names are unique per schema
        key = (row["owner_schema"], row["owner_table"], row["name"])
        entry = grouped.setdefault(key, {"row": row, "pairs": []})
        entry["pairs"].append((row.get("constraint_column_id") or 0, row["owner_column"], row["target_column"]))

    foreign_keys = []
    for (_, _, name), entry in sorted(grouped.items()):
        first = entry["row"]
        pairs = sorted(entry["pairs"])
        foreign_keys.append(ForeignKeyDescriptor(
            name=name,
            owner_schema=first["owner_schema"],
            owner_table=first["owner_table"],
            owner_columns=tuple(owner for _, owner, _ in pairs),
            target_schema=first["target_schema"],
            target_table=first["target_table"],
            target_columns=tuple(target for _, _, target in pairs),
            on_delete=first.get("on_delete") or "NO_ACTION",
            on_update=first.get("on_update") or "NO_ACTION",
        ))
    return foreign_keys


def find_dangling_references(
    column_names: Iterable[str],
    primary_keys: Iterable[str],
    indexes: Iterable[IndexDescriptor],
    outbound: Iterable[ForeignKeyDescriptor],
    inbound: Iterable[ForeignKeyDescriptor],
) -> List[str]:
    """List every reference to a column the columns query did not return."""
    known = set(column_names)
    problems = []

    missing_pk = sorted(set(primary_keys) - known)
    if missing_pk:
        problems.append(f"primary key references unknown column(s): {', '.join(missing_pk)}")

    for index in indexes:
        missing = [c for c in index.key_columns + index.included_columns if c not in known]
        if missing:
            problems.append(f"index {index.name} references unknown column(s): {', '.join(missing)}")

    for fk in outbound:
        missing = [c for c in fk.owner_columns if c not in known]
        if missing:
            problems.append(f"foreign key {fk.name} references unknown column(s): {', '.join(missing)}")

    for fk in inbound:
        missing = [c for c in fk.target_columns if c not in known]
        if missing:
            problems.append(f"foreign key {fk.name} targets unknown column(s): {', '.join(missing)}")

    return problems


class SchemaAssembler(LoggerMixin):
    """
    Assembles a TableDescription from several catalog queries.

    Holds no state between calls; every describe_table() re-reads the
    live catalog through the pool it is given.

    Example:
        >>> assembler = SchemaAssembler()
        >>> description = assembler.describe_table(pool, "dbo", "Orders")
        >>> description.primary_key_column_names
        frozenset({'OrderId'})
    """

    def describe_table(self, pool, schema: str, table: str) -> TableDescription:
        """
        Describe one table.

        Sub-queries run in a fixed order: columns, primary key, indexes,
        outbound foreign keys, inbound foreign keys, triggers.

        Args:
            pool: ConnectionPool (anything with fetch_all(sql, params))
            schema: Schema name, e.g. "dbo"
            table: Table name

        Returns:
            TableDescription

        Raises:
            NotFoundError: If the table has no columns in the catalog
            MetadataInconsistencyError: If sub-query results disagree
        """
        params = {"schema": schema, "table": table}
        qualified = f"{schema}.{table}"

        column_rows = pool.fetch_all(COLUMNS_SQL, params)
        if not column_rows:
            raise NotFoundError("Table", qualified)
        columns = merge_columns(column_rows)

        primary_keys = [row["name"] for row in sorted(
            pool.fetch_all(PRIMARY_KEY_SQL, params), key=lambda r: (r.get("key_ordinal") or 0)
        )]
        indexes, problems = merge_indexes(pool.fetch_all(INDEXES_SQL, params))
        outbound = merge_foreign_keys(pool.fetch_all(OUTBOUND_FOREIGN_KEYS_SQL, params))
        inbound = merge_foreign_keys(pool.fetch_all(INBOUND_FOREIGN_KEYS_SQL, params))
        triggers = [row["name"] for row in pool.fetch_all(TRIGGERS_SQL, params)]

        problems.extend(find_dangling_references(columns, primary_keys, indexes, outbound, inbound))
        if problems:
            self.logger.warning(f"Inconsistent catalog metadata for {qualified}: {problems}")
            raise MetadataInconsistencyError(qualified, problems)

        description = TableDescription(
            schema=schema,
            table=table,
            columns=tuple(columns.values()),
            primary_key_column_names=frozenset(primary_keys),
            indexes=tuple(indexes),
            outbound_foreign_keys=tuple(outbound),
            inbound_foreign_keys=tuple(inbound),
            trigger_names=frozenset(triggers),
        )

        self.logger.debug(
            f"Table '{qualified}': {len(description.columns)} columns, "
            f"{len(description.indexes)} indexes, "
            f"{len(outbound)}/{len(inbound)} outbound/inbound foreign keys"
        )
        return description


class CatalogInspector:
    """
    Lists schema objects and reads their definitions.

    Example:
        >>> inspector = CatalogInspector()
        >>> for row in inspector.list_tables(pool, schema="dbo"):
        ...     print(row["name"], row["row_count"])
    """

    def list_databases(self, pool, include_system: bool = False) -> List[Dict[str, Any]]:
        """List databases on the server; master, tempdb, model and msdb only with include_system."""
        return pool.fetch_all(DATABASES_SQL, {"include_system": 1 if include_system else 0})

    def list_tables(self, pool, schema: Optional[str] = None, include_system: bool = False) -> List[Dict[str, Any]]:
        """List user tables with approximate row counts."""
        rows = pool.fetch_all(LIST_TABLES_SQL, {"schema": schema, "include_system": 1 if include_system else 0})
        logger.info(f"Found {len(rows)} tables")
        return rows

    def list_views(self, pool, schema: Optional[str] = None) -> List[Dict[str, Any]]:
        """List user views."""
        return pool.fetch_all(LIST_VIEWS_SQL, {"schema": schema})

    def list_procedures(
        self,
        pool,
        schema: Optional[str] = None,
        pattern: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List stored procedures, optionally filtered by a LIKE pattern."""
        return pool.fetch_all(LIST_PROCEDURES_SQL, {"schema": schema, "pattern": pattern})

    def get_object_definition(self, pool, schema: str, name: str) -> str:
        """
        Get the T-SQL source of a view, procedure, function or trigger.

        Raises:
            NotFoundError: If the object does not exist or has no visible definition
        """
        rows = pool.fetch_all(OBJECT_DEFINITION_SQL, {"schema": schema, "name": name})
        if not rows or not rows[0].get("definition"):
            raise NotFoundError("Object", f"{schema}.{name}")
        return rows[0]["definition"]

    def get_relationships(
        self,
        pool,
        table: Optional[str] = None,
        schema: Optional[str] = None
    ) -> List[ForeignKeyDescriptor]:
        """
        Foreign keys across the database, or those touching one table.

        schema narrows a table filter to that schema; without it a table name
        matches in every schema. schema is ignored when table is None.
        """
        if table:
            rows = pool.fetch_all(TABLE_RELATIONSHIPS_SQL, {"table": table, "schema": schema})
        else:
            rows = pool.fetch_all(RELATIONSHIPS_SQL, {})
        return merge_foreign_keys(rows)
