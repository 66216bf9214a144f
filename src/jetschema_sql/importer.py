"""Import SQL into a project's table set.

Flow: parse the script, check the batch against the existing tables, convert,
then merge according to the caller's choice. Without a choice, an import with
conflicting table names is rejected and the conflicts are returned so the
caller can ask the user whether to add or overwrite. Tables with duplicate
column names are rejected whatever the choice.
"""

import logging
from typing import List, Literal, Optional, Sequence

from .schema_converter import convert_parsed_tables_to_database, grid_position
from .schema_model import DatabaseTable, ImportResult
from .sql_parser import parse_sql
from .validation import detect_table_name_conflicts, validate_tables

logger = logging.getLogger(__name__)

ImportAction = Literal["add", "overwrite"]


def merge_tables(
    existing: Sequence[DatabaseTable],
    incoming: Sequence[DatabaseTable],
    action: ImportAction,
) -> List[DatabaseTable]:
    """Merge imported tables into an existing set.

    ``add`` appends every incoming table, duplicate names included.
    ``overwrite`` replaces existing tables with the same name in place (the
    replacement keeps the old canvas position) and appends the new ones.
    """
    if action == "add":
        return list(existing) + list(incoming)
    if action != "overwrite":
        raise ValueError(f"Unknown import action: {action}")

    # The last incoming table with a given name wins
    by_name = {table.name: table for table in incoming}
    merged = []
    replaced = set()
    for table in existing:
        replacement = by_name.get(table.name)
        if replacement is None:
            merged.append(table)
        elif table.name not in replaced:
            merged.append(replacement.model_copy(update={"position": table.position}))
            replaced.add(table.name)

    appended = set()
    for table in incoming:
        if table.name in replaced or table.name in appended:
            continue
        merged.append(by_name[table.name])
        appended.add(table.name)
    return merged


def import_sql(
    sql: str,
    existing: Sequence[DatabaseTable] = (),
    action: Optional[ImportAction] = None,
    fold_identifiers: Optional[bool] = None,
) -> ImportResult:
    """Parse SQL and merge its tables into ``existing``.

    Args:
        sql: Script to import
        existing: Tables already in the project
        action: How to resolve name conflicts; None rejects conflicting imports
        fold_identifiers: Lower-case unquoted identifiers while parsing

    Returns:
        ImportResult; ``merged`` is None when the import was rejected
    """
    parsed = parse_sql(sql, fold_identifiers=fold_identifiers)
    tables = convert_parsed_tables_to_database(parsed.tables)

    # New tables go to the canvas slots after the existing ones
    for offset, table in enumerate(tables):
        table.position = grid_position(len(existing) + offset)

    report = validate_tables(tables, existing)
    result = ImportResult(
        action=action,
        tables=tables,
        parse_errors=parsed.errors,
        conflicts=report.conflicts,
        duplicate_columns=report.duplicate_columns,
        warnings=report.warnings,
        lint=report.lint,
    )

    if report.duplicate_columns:
        # No resolution applies; the tables could never be generated
        logger.info("Import rejected, duplicate columns in: %s", ", ".join(report.duplicate_columns))
        return result
    if report.conflicts and action is None:
        logger.info("Import rejected, conflicting tables: %s", ", ".join(report.conflicts))
        return result

    result.merged = merge_tables(existing, tables, action or "add")
    if action == "add":
        # Adding is non-destructive, so report what is duplicated after the merge
        result.conflicts = detect_table_name_conflicts(result.merged)
        if result.conflicts:
            logger.warning("Import added duplicate tables: %s", ", ".join(result.conflicts))
    elif action == "overwrite":
        result.conflicts = []
    logger.info("Imported %d tables (%s)", len(tables), action or "no conflicts")
    return result
