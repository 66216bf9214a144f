"""SQL schema round-trip for the JetSchema designer."""

from .errors import ConflictError, DuplicateColumnError, GenerationError, JetSchemaError, ParseError
from .events import ChangeBus, SchemaChange
from .importer import import_sql, merge_tables
from .schema_converter import convert_parse_result, convert_parsed_tables_to_database
from .sql_exporter import SqlExporter, SqlExportOptions
from .sql_generator import GeneratorOptions, generate_all_tables_sql, generate_table_sql
from .sql_parser import parse_create_table_statements, parse_sql
from .validation import (
    detect_duplicate_columns,
    detect_table_name_conflicts,
    lint_schema,
    lint_tables,
    suggest_fix,
    validate_tables,
)
from .workspace import SchemaWorkspace

__version__ = "0.1.0"

__all__ = [
    "ChangeBus",
    "ConflictError",
    "DuplicateColumnError",
    "GenerationError",
    "GeneratorOptions",
    "JetSchemaError",
    "ParseError",
    "SchemaChange",
    "SchemaWorkspace",
    "SqlExportOptions",
    "SqlExporter",
    "convert_parse_result",
    "convert_parsed_tables_to_database",
    "detect_duplicate_columns",
    "detect_table_name_conflicts",
    "generate_all_tables_sql",
    "generate_table_sql",
    "import_sql",
    "lint_schema",
    "lint_tables",
    "merge_tables",
    "parse_create_table_statements",
    "parse_sql",
    "suggest_fix",
    "validate_tables",
]
