"""Map parsed DDL onto the canonical schema model."""

import uuid
from typing import Dict, List, Optional

from .schema_model import (
    DatabaseField,
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseSchema,
    DatabaseTable,
    DatabaseTrigger,
    ForeignKey,
    ParsedColumn,
    ParsedTable,
    ParseResult,
    Position,
)
from .vocabulary import normalize_data_type

# Canvas grid for imported tables
GRID_COLUMNS = 3
GRID_ORIGIN = 100
GRID_SPACING_X = 300
GRID_SPACING_Y = 200


def _new_id() -> str:
    return str(uuid.uuid4())


def grid_position(index: int) -> Position:
    """Canvas slot of the ``index``-th imported table."""
    return Position(
        x=GRID_ORIGIN + (index % GRID_COLUMNS) * GRID_SPACING_X,
        y=GRID_ORIGIN + (index // GRID_COLUMNS) * GRID_SPACING_Y,
    )


def _primary_keys(parsed: List[ParsedTable]) -> Dict[str, List[str]]:
    keys: Dict[str, List[str]] = {}
    for table in parsed:
        # Later definitions of the same name win, like they would in the database
        keys[table.name] = [column.name for column in table.columns if column.primary_key]
    return keys


def _convert_column(column: ParsedColumn, primary_keys: Dict[str, List[str]]) -> DatabaseField:
    foreign_key: Optional[ForeignKey] = None
    if column.foreign_key is not None:
        reference = column.foreign_key
        target_field = reference.field
        if target_field is None:
            target_keys = primary_keys.get(reference.table, [])
            target_field = target_keys[0] if len(target_keys) == 1 else "id"
        foreign_key = ForeignKey(
            table=reference.table,
            field=target_field,
            on_delete=reference.on_delete,
            on_update=reference.on_update,
            constraint_name=reference.constraint_name,
        )

    return DatabaseField(
        id=_new_id(),
        name=column.name,
        type=normalize_data_type(column.type),
        nullable=column.nullable and not column.primary_key,
        primary_key=column.primary_key,
        unique=column.unique or column.primary_key,
        default_value=column.default_value,
        generated=column.generated,
        comment=column.comment,
        foreign_key=foreign_key,
    )


def convert_parsed_tables_to_database(parsed: List[ParsedTable]) -> List[DatabaseTable]:
    """Convert parsed tables into canonical tables.

    Every table and field gets a fresh id and imported tables are laid out on
    a grid, three per row. A foreign key written without a target column
    points at the target's primary key when that table is part of the same
    batch and has a single-column key, otherwise at ``id``.

    The input is not modified.
    """
    primary_keys = _primary_keys(parsed)
    tables = []
    for index, table in enumerate(parsed):
        tables.append(DatabaseTable(
            id=_new_id(),
            name=table.name,
            fields=[_convert_column(column, primary_keys) for column in table.columns],
            position=grid_position(index),
            comment=table.comment,
            constraints=[constraint.model_copy(deep=True) for constraint in table.constraints],
        ))
    return tables


def _with_id(items):
    return [item.model_copy(update={"id": item.id or _new_id()}, deep=True) for item in items]


def convert_parse_result(result: ParseResult) -> DatabaseSchema:
    """Convert everything a script defined into a ``DatabaseSchema``.

    Triggers are linked to functions defined in the same script by name.
    """
    functions: List[DatabaseFunction] = _with_id(result.functions)
    function_ids = {function.name: function.id for function in functions}

    triggers: List[DatabaseTrigger] = []
    for trigger in _with_id(result.triggers):
        if trigger.function_id is None and trigger.function_name in function_ids:
            trigger.function_id = function_ids[trigger.function_name]
        triggers.append(trigger)

    indexes: List[DatabaseIndex] = _with_id(result.indexes)
    policies: List[DatabasePolicy] = _with_id(result.policies)
    return DatabaseSchema(
        tables=convert_parsed_tables_to_database(result.tables),
        indexes=indexes,
        functions=functions,
        triggers=triggers,
        policies=policies,
        rls_tables=list(result.rls_tables),
    )
