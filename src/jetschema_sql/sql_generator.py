"""Generate PostgreSQL DDL from the canonical schema model.

Output is deterministic: tables keep their input order, fields keep field
order and column modifiers always come out as ``TYPE NOT NULL DEFAULT ...
UNIQUE``. Primary and foreign keys are emitted as trailing table constraints
so the parser reads them back unchanged.
"""

import re
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from .errors import GenerationError
from .schema_model import (
    DatabaseField,
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseTable,
    DatabaseTrigger,
    TableConstraint,
)
from .validation import (
    check_function_invariants,
    check_index_invariants,
    check_policy_invariants,
    check_table_invariants,
    check_trigger_invariants,
)
from .vocabulary import (
    RESERVED_WORDS,
    foreign_key_name,
    primary_key_name,
    unique_constraint_name,
)

_SIMPLE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")
_INDEX_ORDERING = frozenset({"ASC", "DESC", "NULLS", "FIRST", "LAST"})
_INDENT = "    "


class GeneratorOptions(BaseModel):
    include_comments: bool = True
    schema_name: Optional[str] = None  # Qualify object names, e.g. "public"
    if_not_exists: bool = False


def quote_identifier(name: str) -> str:
    """Double-quote a name unless it is a lower-case, non-reserved identifier."""
    if _SIMPLE_IDENTIFIER.match(name) and name.upper() not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _options(options: Optional[GeneratorOptions]) -> GeneratorOptions:
    return options or GeneratorOptions()


def _qualified(name: str, options: GeneratorOptions) -> str:
    if options.schema_name:
        return f"{quote_identifier(options.schema_name)}.{quote_identifier(name)}"
    return quote_identifier(name)


def _column_list(names: Sequence[str]) -> str:
    return ", ".join(quote_identifier(name) for name in names)


def _require(entity: str, violations: List[str]) -> None:
    if violations:
        raise GenerationError(entity, violations)


# =============================================================================
# TABLES
# =============================================================================


def _column_definition(field: DatabaseField) -> str:
    parts = [quote_identifier(field.name), field.type]
    if not field.nullable:
        parts.append("NOT NULL")
    if field.default_value is not None and field.default_value != "":
        parts.append(f"DEFAULT {field.default_value}")
    if field.generated:
        parts.append(field.generated)
    if field.unique and not field.primary_key:
        parts.append("UNIQUE")
    return " ".join(parts)


def _table_constraint(table: DatabaseTable, constraint: TableConstraint) -> str:
    if constraint.constraint_type == "UNIQUE":
        name = constraint.name or unique_constraint_name(table.name, constraint.columns)
        return f"CONSTRAINT {quote_identifier(name)} UNIQUE ({_column_list(constraint.columns)})"
    clause = f"CHECK ({constraint.expression})"
    if constraint.name:
        return f"CONSTRAINT {quote_identifier(constraint.name)} {clause}"
    return clause


def _foreign_key_groups(table: DatabaseTable) -> List[List[DatabaseField]]:
    """Fields grouped into foreign key constraints, in field order."""
    groups: Dict[str, List[DatabaseField]] = {}
    for field in table.fields:
        if field.foreign_key is None:
            continue
        name = field.foreign_key.constraint_name or foreign_key_name(table.name, [field.name])
        groups.setdefault(name, []).append(field)
    return list(groups.values())


def _foreign_key_constraint(
    table: DatabaseTable,
    fields: List[DatabaseField],
    options: GeneratorOptions,
) -> str:
    key = fields[0].foreign_key
    columns = [field.name for field in fields]
    name = key.constraint_name or foreign_key_name(table.name, columns)
    targets = [field.foreign_key.field for field in fields]
    clause = (
        f"CONSTRAINT {quote_identifier(name)} FOREIGN KEY ({_column_list(columns)}) "
        f"REFERENCES {_qualified(key.table, options)}({_column_list(targets)})"
    )
    if key.on_delete and key.on_delete != "NO ACTION":
        clause += f" ON DELETE {key.on_delete}"
    if key.on_update and key.on_update != "NO ACTION":
        clause += f" ON UPDATE {key.on_update}"
    return clause


def _comment_statements(table: DatabaseTable, options: GeneratorOptions) -> List[str]:
    statements = []
    qualified = _qualified(table.name, options)
    if table.comment:
        statements.append(f"COMMENT ON TABLE {qualified} IS {quote_literal(table.comment)};")
    for field in table.fields:
        if field.comment:
            statements.append(
                f"COMMENT ON COLUMN {qualified}.{quote_identifier(field.name)} IS {quote_literal(field.comment)};"
            )
    return statements


def generate_table_sql(
    table: DatabaseTable,
    all_tables: Optional[Sequence[DatabaseTable]] = None,
    options: Optional[GeneratorOptions] = None,
) -> str:
    """Generate the CREATE TABLE statement (and comments) for one table.

    Args:
        table: Table to emit
        all_tables: The surrounding table set. When given, foreign keys to
            tables outside it are flagged with a ``--`` warning line.
        options: Generator options

    Raises:
        GenerationError: If the table breaks a model invariant
    """
    options = _options(options)
    _require(f"table {table.name}", check_table_invariants(table))

    lines = []
    if all_tables is not None:
        known = {other.name for other in all_tables}
        for field in table.fields:
            if field.foreign_key is not None and field.foreign_key.table not in known:
                lines.append(
                    f"-- Warning: {table.name}.{field.name} references table "
                    f"{field.foreign_key.table}, which is not defined here"
                )

    definitions = [_column_definition(field) for field in table.fields]
    primary_key = table.primary_key_columns()
    if primary_key:
        definitions.append(
            f"CONSTRAINT {quote_identifier(primary_key_name(table.name))} PRIMARY KEY ({_column_list(primary_key)})"
        )
    definitions.extend(_table_constraint(table, constraint) for constraint in table.constraints)
    definitions.extend(
        _foreign_key_constraint(table, fields, options) for fields in _foreign_key_groups(table)
    )

    if_not_exists = "IF NOT EXISTS " if options.if_not_exists else ""
    lines.append(f"CREATE TABLE {if_not_exists}{_qualified(table.name, options)} (")
    lines.append(",\n".join(_INDENT + definition for definition in definitions))
    lines.append(");")

    if options.include_comments:
        lines.extend(_comment_statements(table, options))
    return "\n".join(lines)


def generate_all_tables_sql(
    tables: Sequence[DatabaseTable],
    options: Optional[GeneratorOptions] = None,
) -> str:
    """Generate every table in input order, separated by blank lines."""
    if not tables:
        return "-- No tables defined"
    return "\n\n".join(generate_table_sql(table, tables, options) for table in tables)


# =============================================================================
# INDEXES, FUNCTIONS, TRIGGERS, POLICIES
# =============================================================================


def _index_column(column: str) -> str:
    parts = column.split()
    if "(" not in column and parts and all(word.upper() in _INDEX_ORDERING for word in parts[1:]):
        return " ".join([quote_identifier(parts[0])] + [word.upper() for word in parts[1:]])
    return column


def generate_index_sql(index: DatabaseIndex, options: Optional[GeneratorOptions] = None) -> str:
    options = _options(options)
    _require(f"index {index.name}", check_index_invariants(index))

    unique = "UNIQUE " if index.is_unique else ""
    if_not_exists = "IF NOT EXISTS " if options.if_not_exists else ""
    sql = f"CREATE {unique}INDEX {if_not_exists}{quote_identifier(index.name)} ON {_qualified(index.table_name, options)}"
    if index.index_type != "BTREE":
        sql += f" USING {index.index_type.lower()}"
    sql += f" ({', '.join(_index_column(column) for column in index.columns)})"
    if index.is_partial and index.where_clause:
        sql += f" WHERE {index.where_clause}"
    return sql + ";"


def generate_indexes_sql(indexes: Sequence[DatabaseIndex], options: Optional[GeneratorOptions] = None) -> str:
    return "\n\n".join(generate_index_sql(index, options) for index in indexes)


def _dollar_quote(body: str) -> str:
    tag = "$$"
    counter = 0
    while tag in body:
        counter += 1
        tag = f"$body{counter if counter > 1 else ''}$"
    return f"{tag}\n{body}\n{tag}"


def generate_function_sql(function: DatabaseFunction, options: Optional[GeneratorOptions] = None) -> str:
    """Generate CREATE OR REPLACE FUNCTION.

    Edge functions live outside the database and produce a comment stub.
    Enabled cron functions are followed by their ``cron.schedule`` call.
    """
    options = _options(options)
    _require(f"function {function.name}", check_function_invariants(function))

    if function.function_type == "edge" or function.is_edge_function:
        return (
            f"-- Edge function: {function.edge_function_name or function.name}\n"
            "-- Deployed separately; no SQL definition"
        )

    parameters = []
    for parameter in function.parameters:
        text = f"{quote_identifier(parameter.name)} {parameter.type}" if parameter.name else parameter.type
        if parameter.default:
            text += f" DEFAULT {parameter.default}"
        parameters.append(text)

    qualified = _qualified(function.name, options)
    lines = [
        f"CREATE OR REPLACE FUNCTION {qualified}({', '.join(parameters)})",
        f"RETURNS {function.return_type or 'void'}",
        f"LANGUAGE {function.language}",
    ]
    if function.security_definer:
        lines.append("SECURITY DEFINER")
    lines.append(f"AS {_dollar_quote(function.function_body)};")

    if function.function_type == "cron" and function.is_cron_enabled:
        command = quote_literal(f"SELECT {qualified}()")
        lines.append(
            f"SELECT cron.schedule({quote_literal(function.name)}, {quote_literal(function.cron_schedule)}, {command});"
        )
    return "\n".join(lines)


def generate_functions_sql(functions: Sequence[DatabaseFunction], options: Optional[GeneratorOptions] = None) -> str:
    return "\n\n".join(generate_function_sql(function, options) for function in functions)


def generate_trigger_sql(trigger: DatabaseTrigger, options: Optional[GeneratorOptions] = None) -> str:
    options = _options(options)
    _require(f"trigger {trigger.name}", check_trigger_invariants(trigger))

    table = _qualified(trigger.table_name, options)
    lines = [
        f"CREATE TRIGGER {quote_identifier(trigger.name)}",
        f"{_INDENT}{trigger.trigger_timing} {trigger.trigger_event}",
        f"{_INDENT}ON {table}",
        f"{_INDENT}FOR EACH {trigger.for_each}",
    ]
    if trigger.conditions:
        lines.append(f"{_INDENT}WHEN ({trigger.conditions})")
    lines.append(f"{_INDENT}EXECUTE FUNCTION {_qualified(trigger.function_name, options)}();")
    if not trigger.is_active:
        lines.append(f"ALTER TABLE {table} DISABLE TRIGGER {quote_identifier(trigger.name)};")
    return "\n".join(lines)


def generate_triggers_sql(triggers: Sequence[DatabaseTrigger], options: Optional[GeneratorOptions] = None) -> str:
    return "\n\n".join(generate_trigger_sql(trigger, options) for trigger in triggers)


def generate_enable_rls_sql(table_name: str, options: Optional[GeneratorOptions] = None) -> str:
    return f"ALTER TABLE {_qualified(table_name, _options(options))} ENABLE ROW LEVEL SECURITY;"


def generate_policy_sql(policy: DatabasePolicy, options: Optional[GeneratorOptions] = None) -> str:
    options = _options(options)
    _require(f"policy {policy.name}", check_policy_invariants(policy))

    name = '"' + policy.name.replace('"', '""') + '"'
    lines = [f"CREATE POLICY {name} ON {_qualified(policy.table_name, options)}"]
    if not policy.is_permissive:
        lines.append(f"{_INDENT}AS RESTRICTIVE")
    lines.append(f"{_INDENT}FOR {policy.command} TO {policy.role}")
    if policy.using_expression:
        lines.append(f"{_INDENT}USING ({policy.using_expression})")
    if policy.with_check_expression:
        lines.append(f"{_INDENT}WITH CHECK ({policy.with_check_expression})")
    return "\n".join(lines) + ";"


def generate_policies_sql(policies: Sequence[DatabasePolicy], options: Optional[GeneratorOptions] = None) -> str:
    """Enable RLS once per table, then emit that table's policies."""
    by_table: Dict[str, List[DatabasePolicy]] = {}
    for policy in policies:
        by_table.setdefault(policy.table_name, []).append(policy)

    blocks = []
    for table_name, table_policies in by_table.items():
        blocks.append(generate_enable_rls_sql(table_name, options))
        blocks.extend(generate_policy_sql(policy, options) for policy in table_policies)
    return "\n\n".join(blocks)
