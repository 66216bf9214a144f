"""Type and constraint vocabulary shared by the parser and the generator."""

import re
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple


class DataType(str, Enum):
    """Column data types recognized by the designer."""
    UUID = "UUID"
    SERIAL = "SERIAL"
    INTEGER = "INTEGER"
    INT = "INT"
    INT4 = "INT4"
    INT8 = "INT8"
    BIGINT = "BIGINT"
    SMALLINT = "SMALLINT"
    DECIMAL = "DECIMAL"
    NUMERIC = "NUMERIC"
    REAL = "REAL"
    FLOAT = "FLOAT"
    DOUBLE_PRECISION = "DOUBLE PRECISION"
    VARCHAR = "VARCHAR"
    CHAR = "CHAR"
    TEXT = "TEXT"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    BOOL = "BOOL"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMPTZ = "TIMESTAMPTZ"
    JSON = "JSON"
    JSONB = "JSONB"
    ARRAY = "ARRAY"
    BYTEA = "BYTEA"
    INET = "INET"
    CIDR = "CIDR"
    MACADDR = "MACADDR"
    EMAIL = "EMAIL"
    ENUM = "ENUM"


# Order used by the field editor's type picker
DATA_TYPES: List[DataType] = [
    DataType.UUID, DataType.TEXT, DataType.VARCHAR, DataType.STRING,
    DataType.INT, DataType.INTEGER, DataType.INT4, DataType.INT8,
    DataType.BIGINT, DataType.SERIAL, DataType.BOOLEAN, DataType.BOOL,
    DataType.TIMESTAMP, DataType.TIMESTAMPTZ, DataType.DATE, DataType.TIME,
    DataType.JSON, DataType.JSONB, DataType.DECIMAL, DataType.NUMERIC,
    DataType.FLOAT, DataType.REAL, DataType.EMAIL, DataType.ENUM,
    DataType.ARRAY, DataType.BYTEA,
]

DATA_TYPE_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "STRING": ("VARCHAR", "CHAR", "TEXT", "STRING", "EMAIL", "ENUM"),
    "NUMBER": ("SERIAL", "INTEGER", "INT", "INT4", "INT8", "BIGINT", "SMALLINT",
               "DECIMAL", "NUMERIC", "REAL", "FLOAT", "DOUBLE PRECISION"),
    "BOOLEAN": ("BOOLEAN", "BOOL"),
    "DATE": ("DATE", "TIME", "TIMESTAMP", "TIMESTAMPTZ"),
    "UUID": ("UUID",),
    "JSON": ("JSON", "JSONB"),
    "BINARY": ("BYTEA", "ARRAY"),
    "NETWORK": ("INET", "CIDR", "MACADDR"),
}

ReferentialAction = Literal["CASCADE", "SET NULL", "RESTRICT", "NO ACTION"]
REFERENTIAL_ACTIONS: Tuple[str, ...] = ("CASCADE", "SET NULL", "RESTRICT", "NO ACTION")

IndexType = Literal["BTREE", "HASH", "GIN", "GIST", "SPGIST", "BRIN"]
INDEX_TYPES: Tuple[str, ...] = ("BTREE", "HASH", "GIN", "GIST", "SPGIST", "BRIN")

TriggerEvent = Literal["INSERT", "UPDATE", "DELETE", "TRUNCATE"]
TRIGGER_EVENTS: Tuple[str, ...] = ("INSERT", "UPDATE", "DELETE", "TRUNCATE")

TriggerTiming = Literal["BEFORE", "AFTER", "INSTEAD OF"]
TRIGGER_TIMINGS: Tuple[str, ...] = ("BEFORE", "AFTER", "INSTEAD OF")

PolicyCommand = Literal["SELECT", "INSERT", "UPDATE", "DELETE", "ALL"]
POLICY_COMMANDS: Tuple[str, ...] = ("SELECT", "INSERT", "UPDATE", "DELETE", "ALL")

FunctionType = Literal["plpgsql", "edge", "cron"]

ConstraintType = Literal["CHECK", "UNIQUE"]

# Keywords that end a column's type and start its modifiers
COLUMN_CONSTRAINT_KEYWORDS = frozenset({
    "NOT", "NULL", "PRIMARY", "UNIQUE", "DEFAULT", "REFERENCES", "CHECK",
    "CONSTRAINT", "COLLATE", "GENERATED", "DEFERRABLE", "INITIALLY",
})

# Leading keywords of a table-level constraint clause
TABLE_CONSTRAINT_KEYWORDS = frozenset({
    "CONSTRAINT", "PRIMARY", "FOREIGN", "UNIQUE", "CHECK", "EXCLUDE", "LIKE",
})

# Names that must be quoted when used as identifiers
RESERVED_WORDS = frozenset({
    "ALL", "ANALYSE", "ANALYZE", "AND", "ANY", "ARRAY", "AS", "ASC",
    "ASYMMETRIC", "BOTH", "CASE", "CAST", "CHECK", "COLLATE", "COLUMN",
    "CONSTRAINT", "CREATE", "CURRENT_CATALOG", "CURRENT_DATE", "CURRENT_ROLE",
    "CURRENT_TIME", "CURRENT_TIMESTAMP", "CURRENT_USER", "DEFAULT",
    "DEFERRABLE", "DESC", "DISTINCT", "DO", "ELSE", "END", "EXCEPT", "FALSE",
    "FETCH", "FOR", "FOREIGN", "FROM", "GRANT", "GROUP", "HAVING", "IN",
    "INITIALLY", "INTERSECT", "INTO", "LATERAL", "LEADING", "LIMIT",
    "LOCALTIME", "LOCALTIMESTAMP", "NOT", "NULL", "OFFSET", "ON", "ONLY",
    "OR", "ORDER", "PLACING", "PRIMARY", "REFERENCES", "RETURNING", "SELECT",
    "SESSION_USER", "SOME", "SYMMETRIC", "TABLE", "THEN", "TO", "TRAILING",
    "TRUE", "UNION", "UNIQUE", "USER", "USING", "VARIADIC", "WHEN", "WHERE",
    "WINDOW", "WITH",
    # Type and function name keywords
    "AUTHORIZATION", "BINARY", "COLLATION", "CONCURRENTLY", "CROSS",
    "CURRENT_SCHEMA", "FREEZE", "FULL", "ILIKE", "INNER", "IS", "ISNULL",
    "JOIN", "LEFT", "LIKE", "NATURAL", "NOTNULL", "OUTER", "OVERLAPS", "RIGHT",
    "SIMILAR", "TABLESAMPLE", "VERBOSE",
}) | TABLE_CONSTRAINT_KEYWORDS

# Spellings that name a recognized type without being its keyword
_SPELLED_FORMS: Dict[str, DataType] = {
    "TIMESTAMP WITH TIME ZONE": DataType.TIMESTAMPTZ,
    "TIMESTAMP WITHOUT TIME ZONE": DataType.TIMESTAMP,
    "TIME WITHOUT TIME ZONE": DataType.TIME,
    "CHARACTER VARYING": DataType.VARCHAR,
    "CHARACTER": DataType.CHAR,
    "FLOAT4": DataType.REAL,
    "FLOAT8": DataType.DOUBLE_PRECISION,
    "INT2": DataType.SMALLINT,
    "BIGSERIAL": DataType.SERIAL,
    "SMALLSERIAL": DataType.SERIAL,
}

_COLOR_OVERRIDES = {
    "DOUBLE PRECISION": "color-double-precision",
}

_WHITESPACE = re.compile(r"\s+")
_PARAMETERS = re.compile(r"\([^()]*\)")


def normalize_data_type(raw: str) -> str:
    """Normalize the case and spacing of a type declaration.

    Keywords are upper-cased, parameters are preserved (``decimal (10, 2)``
    becomes ``DECIMAL(10,2)``), array suffixes are kept and quoted type names
    are left as written. Aliases are not collapsed: ``INT`` stays ``INT``.
    """
    text = _WHITESPACE.sub(" ", (raw or "").strip())
    if not text or text.startswith('"'):
        return text

    out: List[str] = []
    depth = 0
    for char in text:
        if char in "([":
            while out and out[-1] == " ":
                out.pop()
            depth += 1
            out.append(char)
        elif char in ")]":
            while out and out[-1] == " ":
                out.pop()
            depth = max(depth - 1, 0)
            out.append(char)
        elif char == " " and depth > 0:
            continue
        else:
            out.append(char.upper() if depth == 0 else char)
    return "".join(out)


def base_data_type(type_name: str) -> Optional[DataType]:
    """Return the recognized base type of a declaration, if any."""
    normalized = normalize_data_type(type_name)
    if normalized.endswith("]"):
        return DataType.ARRAY
    base = _WHITESPACE.sub(" ", _PARAMETERS.sub("", normalized)).strip()
    if base in _SPELLED_FORMS:
        return _SPELLED_FORMS[base]
    try:
        return DataType(base)
    except ValueError:
        return None


def is_recognized_type(type_name: str) -> bool:
    return base_data_type(type_name) is not None


def get_data_type_category(type_name: str) -> str:
    """Category used to group types in the editor; STRING for unknown types."""
    data_type = base_data_type(type_name)
    if data_type is None:
        return "STRING"
    for category, members in DATA_TYPE_CATEGORIES.items():
        if data_type.value in members:
            return category
    return "STRING"


def get_data_type_color(type_name: str) -> str:
    """CSS color variable for a type pill."""
    data_type = base_data_type(type_name)
    if data_type is None:
        return "color-string"
    if data_type.value in _COLOR_OVERRIDES:
        return _COLOR_OVERRIDES[data_type.value]
    return f"color-{data_type.value.lower()}"


# =============================================================================
# CONSTRAINT NAMING (Postgres defaults)
# =============================================================================


def primary_key_name(table: str) -> str:
    return f"{table}_pkey"


def foreign_key_name(table: str, columns: List[str]) -> str:
    return f"{table}_{'_'.join(columns)}_fkey"


def unique_constraint_name(table: str, columns: List[str]) -> str:
    return f"{table}_{'_'.join(columns)}_key"


def index_name(table: str, columns: List[str]) -> str:
    return f"{table}_{'_'.join(columns)}_idx"
