"""Conflict detection, model invariants and schema linting.

The detectors report; they never rename, drop or merge anything. The functions
accept parsed tables (``columns``) and canonical tables (``fields``) alike.

Lint messages carry a severity (error, warning, info) and a suggested fix. They
describe naming conventions and likely design mistakes, and never block an
import or generation.
"""

import re
from typing import Collection, Dict, Iterable, List, Optional, Sequence, Union

from .schema_model import (
    DatabaseField,
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseSchema,
    DatabaseTable,
    DatabaseTrigger,
    LintMessage,
    LintReport,
    ParsedTable,
    Severity,
    UnresolvedReferenceWarning,
    ValidationReport,
)
from .vocabulary import (
    RESERVED_WORDS,
    foreign_key_name,
    index_name,
    normalize_data_type,
    primary_key_name,
    unique_constraint_name,
)

AnyTable = Union[DatabaseTable, ParsedTable]


def _columns(table: AnyTable) -> list:
    return table.fields if isinstance(table, DatabaseTable) else table.columns


def _duplicates(names: Iterable[str]) -> List[str]:
    seen = set()
    reported = []
    for name in names:
        if name in seen and name not in reported:
            reported.append(name)
        seen.add(name)
    return reported


def detect_table_name_conflicts(
    tables: Sequence[AnyTable],
    existing: Optional[Sequence[AnyTable]] = None,
) -> List[str]:
    """Names defined twice in ``tables`` or already present in ``existing``.

    Comparison is case-sensitive. Each name is listed once, in the order it
    first appears in ``tables``.
    """
    existing_names = {table.name for table in existing or ()}
    conflicts = []
    seen = set()
    for table in tables:
        name = table.name
        if (name in seen or name in existing_names) and name not in conflicts:
            conflicts.append(name)
        seen.add(name)
    return conflicts


def detect_duplicate_columns(table: AnyTable) -> List[str]:
    """Column names that appear more than once in a table."""
    return _duplicates(column.name for column in _columns(table))


def detect_unresolved_references(
    tables: Sequence[AnyTable],
    known_tables: Iterable[AnyTable] = (),
) -> List[UnresolvedReferenceWarning]:
    """Foreign keys whose target table or column is not defined anywhere known."""
    columns_by_table: Dict[str, set] = {}
    for table in list(known_tables) + list(tables):
        columns_by_table[table.name] = {column.name for column in _columns(table)}

    warnings = []
    for table in tables:
        for column in _columns(table):
            reference = column.foreign_key
            if reference is None:
                continue
            target_columns = columns_by_table.get(reference.table)
            if target_columns is None:
                message = f"{table.name}.{column.name} references unknown table {reference.table}"
            elif reference.field is not None and reference.field not in target_columns:
                message = f"{table.name}.{column.name} references unknown column {reference.table}.{reference.field}"
            else:
                continue
            warnings.append(UnresolvedReferenceWarning(
                table=table.name,
                column=column.name,
                target_table=reference.table,
                target_field=reference.field,
                message=message,
            ))
    return warnings


def validate_tables(
    tables: Sequence[AnyTable],
    existing: Sequence[AnyTable] = (),
) -> ValidationReport:
    """Run every detector over an import batch."""
    duplicate_columns = {}
    for table in tables:
        duplicates = detect_duplicate_columns(table)
        if duplicates:
            duplicate_columns[table.name] = duplicates

    return ValidationReport(
        conflicts=detect_table_name_conflicts(tables, existing),
        duplicate_columns=duplicate_columns,
        warnings=detect_unresolved_references(tables, existing),
        lint=lint_tables(tables, existing).messages,
    )


# =============================================================================
# INVARIANTS (checked before generating SQL)
# =============================================================================


def check_field_invariants(field: DatabaseField) -> List[str]:
    violations = []
    label = field.name or "<unnamed>"
    if not field.name:
        violations.append("field name must not be empty")
    if not field.type:
        violations.append(f"field {label} has no type")
    if field.primary_key and field.nullable:
        violations.append(f"primary key field {label} must not be nullable")
    if field.primary_key and not field.unique:
        violations.append(f"primary key field {label} must be unique")
    if field.generated and field.default_value:
        violations.append(f"field {label} cannot have both a default and a generated clause")
    if field.foreign_key is not None and not (field.foreign_key.table and field.foreign_key.field):
        violations.append(f"foreign key on field {label} needs a target table and field")
    return violations


def check_table_invariants(table: DatabaseTable) -> List[str]:
    """Every invariant the table breaks, including those of its fields."""
    violations = []
    if not table.name:
        violations.append("table name must not be empty")
    if not table.fields:
        violations.append(f"table {table.name} has no fields")
    for name in detect_duplicate_columns(table):
        violations.append(f"field name {name} is used more than once")
    for field in table.fields:
        violations.extend(check_field_invariants(field))

    field_names = set(table.field_names())
    for constraint in table.constraints:
        if constraint.constraint_type == "UNIQUE":
            if not constraint.columns:
                violations.append("UNIQUE constraint needs at least one column")
            for column in constraint.columns:
                if column not in field_names:
                    violations.append(f"UNIQUE constraint references unknown field {column}")
        elif not constraint.expression:
            violations.append("CHECK constraint needs an expression")

    # Fields sharing a constraint name form one multi-column foreign key
    targets: Dict[str, set] = {}
    for field in table.fields:
        if field.foreign_key is not None and field.foreign_key.constraint_name:
            key = field.foreign_key
            targets.setdefault(key.constraint_name, set()).add((key.table, key.on_delete, key.on_update))
    for name, shapes in targets.items():
        if len(shapes) > 1:
            violations.append(f"foreign key constraint {name} mixes targets or actions")
    return violations


def check_index_invariants(index: DatabaseIndex) -> List[str]:
    violations = []
    if not index.name:
        violations.append("index name must not be empty")
    if not index.table_name:
        violations.append(f"index {index.name} has no table")
    if not index.columns:
        violations.append(f"index {index.name} has no columns")
    if index.is_partial and not (index.where_clause or "").strip():
        violations.append(f"partial index {index.name} needs a WHERE clause")
    return violations


def check_function_invariants(function: DatabaseFunction) -> List[str]:
    violations = []
    if not function.name:
        violations.append("function name must not be empty")
    if function.function_type == "cron" and function.is_cron_enabled and not function.cron_schedule:
        violations.append(f"cron function {function.name} is enabled without a schedule")
    if function.function_type != "edge" and not function.is_edge_function and not function.function_body.strip():
        violations.append(f"function {function.name} has no body")
    return violations


def check_trigger_invariants(trigger: DatabaseTrigger) -> List[str]:
    violations = []
    if not trigger.name:
        violations.append("trigger name must not be empty")
    if not trigger.table_name:
        violations.append(f"trigger {trigger.name} has no table")
    if not trigger.function_name:
        violations.append(f"trigger {trigger.name} has no function")
    if trigger.trigger_timing == "INSTEAD OF" and trigger.for_each != "ROW":
        violations.append(f"INSTEAD OF trigger {trigger.name} must fire for each row")
    return violations


def check_policy_invariants(policy: DatabasePolicy) -> List[str]:
    violations = []
    if not policy.name:
        violations.append("policy name must not be empty")
    if not policy.table_name:
        violations.append(f"policy {policy.name} has no table")
    if policy.command == "INSERT" and policy.using_expression:
        violations.append(f"INSERT policy {policy.name} only accepts a WITH CHECK expression")
    if policy.command in ("SELECT", "DELETE") and policy.with_check_expression:
        violations.append(f"{policy.command} policy {policy.name} only accepts a USING expression")
    return violations


# =============================================================================
# LINTING
# =============================================================================

_SNAKE_CASE = re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$")
_VALID_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")
_PLAIN_COLUMN = re.compile(r'^(?:"([^"]+)"|([A-Za-z_][A-Za-z0-9_$]*))(?:\s+(?:ASC|DESC))?$', re.IGNORECASE)
_TYPE_PARAMETERS = re.compile(r"\([^()]*\)")

_PLURAL_ENDINGS = ("s", "data", "info")
_SENSITIVE_WORDS = ("user", "email", "password", "address", "phone", "credit", "ssn", "secret")
_OWNER_COLUMNS = ("user_id", "tenant_id", "organization_id")
_UUID_DEFAULTS = ("gen_random_uuid()", "uuid_generate_v4()")
_BOOLEAN_DEFAULTS = ("true", "false", "null")

# Statements that have no place inside a policy expression
_DANGEROUS_EXPRESSIONS = (
    re.compile(r";\s*drop\s+table", re.IGNORECASE),
    re.compile(r"\bdelete\s+from\b", re.IGNORECASE),
    re.compile(r"\btruncate\b", re.IGNORECASE),
    re.compile(r"\balter\s+table\b", re.IGNORECASE),
)

# Spellings that store the same values as far as a foreign key is concerned
_TYPE_FAMILIES = {
    "INT": "INTEGER",
    "INT4": "INTEGER",
    "SERIAL": "INTEGER",
    "SERIAL4": "INTEGER",
    "INT8": "BIGINT",
    "BIGSERIAL": "BIGINT",
    "SERIAL8": "BIGINT",
    "INT2": "SMALLINT",
    "SMALLSERIAL": "SMALLINT",
    "BOOL": "BOOLEAN",
    "CHARACTER VARYING": "TEXT",
    "VARCHAR": "TEXT",
    "STRING": "TEXT",
    "EMAIL": "TEXT",
    "TIMESTAMP WITH TIME ZONE": "TIMESTAMPTZ",
    "TIMESTAMP WITHOUT TIME ZONE": "TIMESTAMP",
    "FLOAT4": "REAL",
    "FLOAT8": "DOUBLE PRECISION",
    "DECIMAL": "NUMERIC",
}

_FIXES = {
    "name_invalid": "Consider renaming to '{snake}'",
    "name_not_snake_case": "Consider renaming to '{snake}'",
    "table_not_plural": "Consider renaming to '{subject}s'",
    "table_name_reserved": "Consider renaming to '{subject}_table' or another non-reserved name",
    "column_name_reserved": "Consider renaming to '{subject}_value' or another non-reserved name",
    "table_no_fields": "Add at least one field",
    "table_no_primary_key": "Add a primary key for better performance and data integrity",
    "primary_key_name": "Consider renaming to 'id' or '{table}_id'",
    "foreign_key_suffix": "Consider renaming to '{subject}_id'",
    "foreign_key_type_mismatch": "Change the field type to match the referenced field",
    "foreign_key_target_not_unique": "Reference a primary key or add a UNIQUE constraint to the target",
    "boolean_default": "Use true or false as the default",
    "nullable_identifier": "Mark the field NOT NULL",
    "uuid_default": "Use gen_random_uuid() as the default",
    "missing_rls": "Enable RLS and create policies that restrict rows to the user who owns them",
    "index_hash_multicolumn": "Use a BTREE index for multi-column lookups",
    "policy_dangerous_expression": "Policy expressions must be boolean conditions",
    "policy_uid_not_compared": "Compare auth.uid() with the owner column, e.g. auth.uid() = user_id",
    "policy_allows_all": "Restrict the expression to the rows the role may see",
}


def is_snake_case(name: str) -> bool:
    return bool(_SNAKE_CASE.match(name))


def to_snake_case(name: str) -> str:
    """``displayName`` and ``Display Name`` both become ``display_name``."""
    spaced = _CAMEL_BOUNDARY.sub("_", name.strip())
    return _NON_WORD.sub("_", spaced.lower()).strip("_")


def suggest_fix(message: LintMessage) -> Optional[str]:
    """A suggested fix for a lint message, or None when there is no usual fix."""
    template = _FIXES.get(message.code)
    if template is None:
        return None
    return template.format(
        subject=message.subject,
        snake=to_snake_case(message.subject),
        table=message.table or "",
    )


def _lint(
    severity: Severity,
    code: str,
    message: str,
    subject: str,
    table: Optional[str] = None,
    field: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> LintMessage:
    lint = LintMessage(severity=severity, code=code, message=message, subject=subject, table=table, field=field)
    lint.suggestion = suggestion or suggest_fix(lint)
    return lint


def _type_family(type_name: str) -> str:
    base = " ".join(_TYPE_PARAMETERS.sub("", normalize_data_type(type_name)).split())
    return _TYPE_FAMILIES.get(base, base)


def _name_lints(name: str, kind: str, table: Optional[str] = None, field: Optional[str] = None) -> List[LintMessage]:
    if not name:
        return []
    messages = []
    if not _VALID_NAME.match(name):
        messages.append(_lint(
            "error", "name_invalid",
            f"{kind.capitalize()} name '{name}' must start with a letter and contain only "
            "letters, numbers, and underscores",
            name, table, field,
        ))
    elif not is_snake_case(name):
        messages.append(_lint(
            "warning", "name_not_snake_case",
            f"{kind.capitalize()} name '{name}' should be snake_case",
            name, table, field,
        ))
    if name.upper() in RESERVED_WORDS:
        messages.append(_lint(
            "error", f"{kind}_name_reserved",
            f"{kind.capitalize()} name '{name}' is a reserved word in SQL and should be avoided",
            name, table, field,
        ))
    return messages


def lint_table_name(name: str) -> List[LintMessage]:
    """Naming conventions for a table: snake_case, plural, not reserved."""
    messages = _name_lints(name, "table", table=name)
    if name and not name.lower().endswith(_PLURAL_ENDINGS):
        messages.append(_lint(
            "info", "table_not_plural",
            f"Table name '{name}' should typically be plural (e.g., 'users' instead of 'user')",
            name, name,
        ))
    return messages


def lint_column_name(table_name: str, name: str) -> List[LintMessage]:
    return _name_lints(name, "column", table=table_name, field=name)


def lint_data_type_constraints(table_name: str, column) -> List[LintMessage]:
    """Defaults and nullability that do not suit the column's type."""
    messages = []
    family = _type_family(column.type)
    default = (column.default_value or "").strip()

    if family == "BOOLEAN" and default and default.lower() not in _BOOLEAN_DEFAULTS:
        messages.append(_lint(
            "error", "boolean_default",
            f"Boolean field '{column.name}' has default {default}, expected true or false",
            column.name, table_name, column.name,
        ))
    if normalize_data_type(column.type) in ("SERIAL", "UUID") and column.nullable:
        messages.append(_lint(
            "warning", "nullable_identifier",
            f"{normalize_data_type(column.type)} field '{column.name}' is typically not nullable",
            column.name, table_name, column.name,
        ))
    if family == "UUID" and default and default.lower() not in _UUID_DEFAULTS:
        messages.append(_lint(
            "warning", "uuid_default",
            f"UUID field '{column.name}' has default {default}; gen_random_uuid() is the usual default",
            column.name, table_name, column.name,
        ))
    return messages


def _target_column(reference, target: Optional[AnyTable]):
    if target is None:
        return None
    field_name = reference.field
    if field_name is None:
        # REFERENCES t without columns targets the primary key
        keys = [column for column in _columns(target) if column.primary_key]
        return keys[0] if len(keys) == 1 else None
    for column in _columns(target):
        if column.name == field_name:
            return column
    return None


def lint_foreign_key(table: AnyTable, column, tables_by_name: Dict[str, AnyTable]) -> List[LintMessage]:
    """Naming, type compatibility and target uniqueness of one foreign key.

    Missing targets are reported by ``detect_unresolved_references``.
    """
    reference = column.foreign_key
    messages = []
    if not column.name.endswith("_id"):
        messages.append(_lint(
            "info", "foreign_key_suffix",
            f"Foreign key column '{column.name}' should end with '_id' suffix",
            column.name, table.name, column.name,
        ))
    if reference.constraint_name and not reference.constraint_name.endswith("_fkey"):
        expected = foreign_key_name(table.name, [column.name])
        messages.append(_lint(
            "info", "foreign_key_constraint_name",
            f"Foreign key constraint '{reference.constraint_name}' should end with '_fkey' (e.g., '{expected}')",
            reference.constraint_name, table.name, column.name,
            suggestion=f"Consider renaming to '{expected}'",
        ))

    target = tables_by_name.get(reference.table)
    target_column = _target_column(reference, target)
    if target_column is None:
        return messages

    label = f"{reference.table}.{target_column.name}"
    if _type_family(column.type) != _type_family(target_column.type):
        messages.append(_lint(
            "error", "foreign_key_type_mismatch",
            f"Foreign key type {column.type} of '{column.name}' does not match {target_column.type} of {label}",
            column.name, table.name, column.name,
        ))
    unique_sets = [
        constraint.columns for constraint in target.constraints
        if constraint.constraint_type == "UNIQUE"
    ]
    if not (target_column.primary_key or target_column.unique or [target_column.name] in unique_sets):
        messages.append(_lint(
            "warning", "foreign_key_target_not_unique",
            f"Foreign key '{column.name}' references {label}, which is neither a primary key nor unique",
            column.name, table.name, column.name,
        ))
    return messages


def _constraint_name_lints(table: AnyTable) -> List[LintMessage]:
    messages = []
    for constraint in table.constraints:
        if not constraint.name:
            continue
        if constraint.constraint_type == "UNIQUE" and not constraint.name.endswith("_key"):
            expected = unique_constraint_name(table.name, constraint.columns)
        elif constraint.constraint_type == "CHECK" and not constraint.name.endswith("_check"):
            expected = f"{table.name}_check"
        else:
            continue
        messages.append(_lint(
            "info", "constraint_name",
            f"{constraint.constraint_type} constraint '{constraint.name}' should follow the '{expected}' pattern",
            constraint.name, table.name,
            suggestion=f"Consider renaming to '{expected}'",
        ))
    return messages


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return lowered in _OWNER_COLUMNS or any(word in lowered for word in _SENSITIVE_WORDS)


def lint_table(
    table: AnyTable,
    all_tables: Sequence[AnyTable] = (),
    rls_tables: Optional[Collection[str]] = None,
) -> List[LintMessage]:
    """Every lint message for one table and its fields.

    Args:
        table: Table to check
        all_tables: Tables that foreign keys may point at
        rls_tables: Names of tables with row level security; None skips the check
    """
    columns = _columns(table)
    messages = lint_table_name(table.name)
    if not columns:
        messages.append(_lint("warning", "table_no_fields", f"Table '{table.name}' has no fields defined",
                              table.name, table.name))
    elif not any(column.primary_key for column in columns):
        messages.append(_lint("warning", "table_no_primary_key", f"Table '{table.name}' has no primary key defined",
                              table.name, table.name))

    tables_by_name = {other.name: other for other in all_tables}
    tables_by_name.setdefault(table.name, table)
    composite_key = sum(1 for column in columns if column.primary_key) > 1
    for column in columns:
        messages.extend(lint_column_name(table.name, column.name))
        if column.primary_key and not composite_key:
            if column.name not in ("id", primary_key_name(table.name)) and not column.name.endswith("_id"):
                messages.append(_lint(
                    "info", "primary_key_name",
                    f"Primary key '{column.name}' should follow standard naming convention "
                    f"(e.g., 'id' or '{table.name}_id')",
                    column.name, table.name, column.name,
                ))
        messages.extend(lint_data_type_constraints(table.name, column))
        if column.foreign_key is not None:
            messages.extend(lint_foreign_key(table, column, tables_by_name))
    messages.extend(_constraint_name_lints(table))

    if rls_tables is not None and table.name not in rls_tables:
        sensitive = [column.name for column in columns if _is_sensitive(column.name)]
        if sensitive:
            messages.append(_lint(
                "warning", "missing_rls",
                f"Table '{table.name}' holds sensitive or user-owned data ({', '.join(sensitive)}) "
                "but does not have Row-Level Security enabled",
                table.name, table.name,
            ))
    return messages


def lint_index(index: DatabaseIndex, tables: Sequence[AnyTable]) -> List[LintMessage]:
    """Index names, its table and plain columns, and HASH restrictions."""
    messages = []
    if index.name and not _VALID_NAME.match(index.name):
        messages.append(_lint(
            "error", "name_invalid",
            f"Index name '{index.name}' must start with a letter and contain only letters, numbers, and underscores",
            index.name, index.table_name,
        ))
    if not index.columns:
        messages.append(_lint("error", "index_no_columns", f"Index '{index.name}' has no columns",
                              index.name, index.table_name))

    table = next((candidate for candidate in tables if candidate.name == index.table_name), None)
    if table is None:
        messages.append(_lint(
            "error", "index_table_missing",
            f"Index '{index.name}' is on table '{index.table_name}', which does not exist",
            index.name, index.table_name,
        ))
    else:
        field_names = {column.name for column in _columns(table)}
        for entry in index.columns:
            # Expressions such as lower(email) are not checked
            match = _PLAIN_COLUMN.match(entry.strip())
            name = (match.group(1) or match.group(2)) if match else None
            if name is not None and name not in field_names:
                messages.append(_lint(
                    "error", "index_column_missing",
                    f"Index '{index.name}' uses column '{name}', which is not in table '{index.table_name}'",
                    index.name, index.table_name, name,
                ))

    if index.index_type == "HASH" and len(index.columns) > 1:
        messages.append(_lint(
            "warning", "index_hash_multicolumn",
            f"HASH index '{index.name}' cannot cover more than one column",
            index.name, index.table_name,
        ))
    if index.name and not (
        index.name.startswith("idx_")
        or index.name.endswith("_idx")
        or (index.is_unique and index.name.endswith("_key"))
    ):
        plain = [column for column in index.columns if _VALID_NAME.match(column)]
        expected = index_name(index.table_name, plain or ["expr"])
        messages.append(_lint(
            "info", "index_name",
            f"Index name '{index.name}' should follow standard naming convention (e.g., '{expected}')",
            index.name, index.table_name,
            suggestion=f"Consider renaming to '{expected}'",
        ))
    return messages


def lint_policy_expression(policy: DatabasePolicy, expression: Optional[str]) -> List[LintMessage]:
    """Checks one USING or WITH CHECK expression for unsafe or permissive content."""
    text = (expression or "").strip()
    if not text:
        return []
    messages = []
    if any(pattern.search(text) for pattern in _DANGEROUS_EXPRESSIONS):
        messages.append(_lint(
            "error", "policy_dangerous_expression",
            f"Policy '{policy.name}' expression contains a data-modifying statement",
            policy.name, policy.table_name,
        ))
    if "auth.uid()" in text.lower() and "=" not in text:
        messages.append(_lint(
            "warning", "policy_uid_not_compared",
            f"Policy '{policy.name}' uses auth.uid() without comparing it to a column",
            policy.name, policy.table_name,
        ))
    if text.lower() in ("true", "(true)"):
        messages.append(_lint(
            "warning", "policy_allows_all",
            f"Policy '{policy.name}' allows every row",
            policy.name, policy.table_name,
        ))
    return messages


def lint_policy(policy: DatabasePolicy, tables: Sequence[AnyTable]) -> List[LintMessage]:
    messages = []
    if not any(table.name == policy.table_name for table in tables):
        messages.append(_lint(
            "error", "policy_table_missing",
            f"Policy '{policy.name}' is on table '{policy.table_name}', which does not exist",
            policy.name, policy.table_name,
        ))
    messages.extend(lint_policy_expression(policy, policy.using_expression))
    messages.extend(lint_policy_expression(policy, policy.with_check_expression))
    return messages


def lint_tables(tables: Sequence[AnyTable], existing: Sequence[AnyTable] = ()) -> LintReport:
    """Lint an import batch; foreign keys may point into ``existing``."""
    known = list(existing) + list(tables)
    messages = []
    for table in tables:
        messages.extend(lint_table(table, known))
    return LintReport(messages=messages)


def lint_schema(schema: DatabaseSchema) -> LintReport:
    """Lint a whole project, including indexes, policies and row level security."""
    rls_tables = set(schema.rls_tables) | {policy.table_name for policy in schema.policies}
    messages = []
    for table in schema.tables:
        messages.extend(lint_table(table, schema.tables, rls_tables))
    for index in schema.indexes:
        messages.extend(lint_index(index, schema.tables))
    for policy in schema.policies:
        messages.extend(lint_policy(policy, schema.tables))
    return LintReport(messages=messages)
