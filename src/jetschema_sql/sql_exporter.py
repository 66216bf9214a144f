"""
SQL export for JetSchema projects.

Composes the generator into production-ready scripts, either the full
database or a single section. The export order is fixed: extensions, tables,
indexes, functions, triggers, row level security, grants.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel

from .schema_model import DatabaseSchema, DatabaseTrigger
from .sql_generator import (
    GeneratorOptions,
    generate_enable_rls_sql,
    generate_function_sql,
    generate_index_sql,
    generate_policy_sql,
    generate_table_sql,
    generate_trigger_sql,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("uuid-ossp", "pgcrypto")
GRANT_ROLE = "authenticated"

_RULE = "-- " + "=" * 53


class SqlExportOptions(BaseModel):
    include_tables: bool = True
    include_indexes: bool = True
    include_functions: bool = True
    include_triggers: bool = True
    include_policies: bool = True
    include_comments: bool = True
    include_grants: bool = True
    specific_tables: Optional[List[str]] = None
    schema_name: str = "public"


def _banner(title: str) -> str:
    return f"\n{_RULE}\n-- {title}\n{_RULE}\n\n"


class SqlExporter:
    """Generates export scripts from a populated schema.

    The exporter only reads the schema it is given.
    """

    def __init__(self, schema: DatabaseSchema, options: Optional[SqlExportOptions] = None):
        self.schema = schema
        self.options = options or SqlExportOptions()

    def _generator_options(self, options: SqlExportOptions) -> GeneratorOptions:
        return GeneratorOptions(
            include_comments=options.include_comments,
            schema_name=options.schema_name,
            if_not_exists=True,
        )

    def _selected(self, table_name: str, options: SqlExportOptions) -> bool:
        return not options.specific_tables or table_name in options.specific_tables

    def generate_full_export(self, options: Optional[SqlExportOptions] = None) -> str:
        """Generate the complete script for the project."""
        options = options or self.options
        sections = [self.generate_header(), self.generate_extensions()]
        if options.include_tables:
            sections.append(self.generate_tables_sql(options))
        if options.include_indexes:
            sections.append(self.generate_indexes_sql(options))
        if options.include_functions:
            sections.append(self.generate_functions_sql(options))
        if options.include_triggers:
            sections.append(self.generate_triggers_sql(options))
        if options.include_policies:
            sections.append(self.generate_policies_sql(options))
        sections.append(self.generate_footer(options))

        logger.info(
            "Exported %d tables, %d indexes, %d functions, %d triggers, %d policies",
            len(self.schema.tables), len(self.schema.indexes), len(self.schema.functions),
            len(self.schema.triggers), len(self.schema.policies),
        )
        return "".join(sections)

    def generate_header(self) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        return f"{_RULE}\n-- JetSchema Database Export\n-- Generated: {timestamp}\n{_RULE}\n\n"

    def generate_extensions(self) -> str:
        sql = "-- Enable required extensions\n"
        extensions = list(DEFAULT_EXTENSIONS)
        for extension in self.schema.extensions:
            if extension not in extensions:
                extensions.append(extension)
        for extension in extensions:
            sql += f'CREATE EXTENSION IF NOT EXISTS "{extension}";\n'
        return sql + "\n"

    def generate_tables_sql(self, options: Optional[SqlExportOptions] = None) -> str:
        options = options or self.options
        generator_options = self._generator_options(options)
        tables = [table for table in self.schema.tables if self._selected(table.name, options)]

        sql = _banner("TABLE DEFINITIONS")
        for table in tables:
            sql += f"-- Table: {table.name}\n"
            if table.comment:
                sql += f"-- Description: {table.comment}\n"
            sql += generate_table_sql(table, self.schema.tables, generator_options) + "\n\n"
        return sql

    def generate_indexes_sql(self, options: Optional[SqlExportOptions] = None) -> str:
        options = options or self.options
        generator_options = self._generator_options(options)

        sql = _banner("INDEX DEFINITIONS")
        for index in self.schema.indexes:
            if not self._selected(index.table_name, options):
                continue
            sql += f"-- Index: {index.name}\n"
            sql += generate_index_sql(index, generator_options) + "\n\n"
        return sql

    def generate_functions_sql(self, options: Optional[SqlExportOptions] = None) -> str:
        options = options or self.options
        generator_options = self._generator_options(options)

        sql = _banner("FUNCTION DEFINITIONS")
        for function in self.schema.functions:
            sql += f"-- Function: {function.name}\n"
            if function.description:
                sql += f"-- Description: {function.description}\n"
            sql += generate_function_sql(function, generator_options) + "\n\n"
        return sql

    def _resolve_function(self, trigger: DatabaseTrigger) -> DatabaseTrigger:
        """Fill in the function name of a trigger that only carries an id."""
        if trigger.function_name or not trigger.function_id:
            return trigger
        for function in self.schema.functions:
            if function.id == trigger.function_id:
                return trigger.model_copy(update={"function_name": function.name})
        return trigger

    def generate_triggers_sql(self, options: Optional[SqlExportOptions] = None) -> str:
        options = options or self.options
        generator_options = self._generator_options(options)

        sql = _banner("TRIGGER DEFINITIONS")
        for trigger in self.schema.triggers:
            if not self._selected(trigger.table_name, options):
                continue
            sql += f"-- Trigger: {trigger.name}\n"
            if trigger.description:
                sql += f"-- Description: {trigger.description}\n"
            sql += generate_trigger_sql(self._resolve_function(trigger), generator_options) + "\n\n"
        return sql

    def generate_policies_sql(self, options: Optional[SqlExportOptions] = None) -> str:
        """Enable RLS per table, then emit that table's policies."""
        options = options or self.options
        generator_options = self._generator_options(options)

        by_table = {}
        for table_name in self.schema.rls_tables:
            by_table.setdefault(table_name, [])
        for policy in self.schema.policies:
            by_table.setdefault(policy.table_name, []).append(policy)

        sql = _banner("ROW LEVEL SECURITY POLICIES")
        for table_name, policies in by_table.items():
            if not self._selected(table_name, options):
                continue
            sql += f"-- Enable RLS on {table_name}\n"
            sql += generate_enable_rls_sql(table_name, generator_options) + "\n\n"
            for policy in policies:
                sql += f"-- Policy: {policy.name}\n"
                sql += generate_policy_sql(policy, generator_options) + "\n\n"
        return sql

    def generate_footer(self, options: Optional[SqlExportOptions] = None) -> str:
        options = options or self.options
        sql = f"{_RULE}\n-- Export Complete\n{_RULE}\n"
        if not options.include_grants:
            return sql
        schema = options.schema_name
        return sql + (
            f"\n-- Grant permissions to {GRANT_ROLE} users\n"
            f"GRANT USAGE ON SCHEMA {schema} TO {GRANT_ROLE};\n"
            f"GRANT ALL ON ALL TABLES IN SCHEMA {schema} TO {GRANT_ROLE};\n"
            f"GRANT ALL ON ALL SEQUENCES IN SCHEMA {schema} TO {GRANT_ROLE};\n"
            f"GRANT ALL ON ALL FUNCTIONS IN SCHEMA {schema} TO {GRANT_ROLE};\n"
        )


# Convenience functions for common export scenarios


def _section(
    schema: DatabaseSchema,
    table_names: Optional[List[str]],
    render: Callable[[SqlExporter], str],
) -> str:
    exporter = SqlExporter(schema, SqlExportOptions(specific_tables=table_names))
    return render(exporter)


def export_full_database(schema: DatabaseSchema, options: Optional[SqlExportOptions] = None) -> str:
    return SqlExporter(schema, options).generate_full_export()


def export_tables_only(schema: DatabaseSchema, table_names: Optional[List[str]] = None) -> str:
    return _section(schema, table_names, SqlExporter.generate_tables_sql)


def export_indexes_only(schema: DatabaseSchema, table_names: Optional[List[str]] = None) -> str:
    return _section(schema, table_names, SqlExporter.generate_indexes_sql)


def export_functions_only(schema: DatabaseSchema) -> str:
    return SqlExporter(schema).generate_functions_sql()


def export_triggers_only(schema: DatabaseSchema, table_names: Optional[List[str]] = None) -> str:
    return _section(schema, table_names, SqlExporter.generate_triggers_sql)


def export_policies_only(schema: DatabaseSchema, table_names: Optional[List[str]] = None) -> str:
    return _section(schema, table_names, SqlExporter.generate_policies_sql)
