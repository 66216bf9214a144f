"""Data models for database schema specifications."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from .errors import ConflictError, DuplicateColumnError
from .vocabulary import (
    ConstraintType,
    FunctionType,
    IndexType,
    PolicyCommand,
    ReferentialAction,
    TriggerEvent,
    TriggerTiming,
)


class CamelModel(BaseModel):
    """Model serialized with the camelCase keys the designer UI persists."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _upper(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


# =============================================================================
# CANONICAL MODEL
# =============================================================================


class ForeignKey(CamelModel):
    """Reference from a column to a column of another table."""
    table: str
    field: str
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None
    constraint_name: Optional[str] = None  # Only for custom or multi-column constraints

    @field_validator("on_delete", "on_update", mode="before")
    @classmethod
    def normalize_actions(cls, value):
        return _upper(value)


class Position(BaseModel):
    x: float = 0
    y: float = 0


class DatabaseField(CamelModel):
    """Database column specification."""
    id: str
    name: str
    type: str  # DataType keyword plus parameters, e.g. "VARCHAR(255)"
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default_value: Optional[str] = None
    generated: Optional[str] = None  # Identity or generated-column clause, e.g. "GENERATED ALWAYS AS IDENTITY"
    comment: Optional[str] = None
    foreign_key: Optional[ForeignKey] = None


class TableConstraint(CamelModel):
    """Table-level CHECK or multi-column UNIQUE constraint."""
    name: Optional[str] = None
    constraint_type: ConstraintType
    columns: List[str] = Field(default_factory=list)
    expression: Optional[str] = None  # CHECK body, without the outer parentheses

    @field_validator("constraint_type", mode="before")
    @classmethod
    def normalize_constraint_type(cls, value):
        return _upper(value)


class DatabaseTable(CamelModel):
    """Database table specification."""
    id: str
    name: str
    fields: List[DatabaseField] = Field(default_factory=list)
    position: Position = Field(default_factory=Position)
    width: Optional[float] = None
    height: Optional[float] = None
    color: Optional[str] = None
    comment: Optional[str] = None
    constraints: List[TableConstraint] = Field(default_factory=list)

    def field_names(self) -> List[str]:
        return [field.name for field in self.fields]

    def primary_key_columns(self) -> List[str]:
        """Names of the primary-key fields, in field order."""
        return [field.name for field in self.fields if field.primary_key]

    def find_field(self, name: str) -> Optional[DatabaseField]:
        """Find a field by name."""
        for field in self.fields:
            if field.name == name:
                return field
        return None


class DatabaseIndex(BaseModel):
    """Database index specification."""
    id: Optional[str] = None
    name: str
    table_name: str
    columns: List[str] = Field(default_factory=list)
    index_type: IndexType = "BTREE"
    is_unique: bool = False
    is_partial: bool = False
    where_clause: Optional[str] = None
    description: Optional[str] = None

    @field_validator("index_type", mode="before")
    @classmethod
    def normalize_index_type(cls, value):
        return _upper(value)


class FunctionParameter(BaseModel):
    name: str
    type: str
    default: Optional[str] = None


class DatabaseFunction(BaseModel):
    """Database function; the body is opaque text."""
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    function_type: FunctionType = "plpgsql"
    parameters: List[FunctionParameter] = Field(default_factory=list)
    return_type: Optional[str] = None
    language: str = "plpgsql"
    function_body: str = ""
    security_definer: bool = False
    is_edge_function: bool = False
    edge_function_name: Optional[str] = None
    cron_schedule: Optional[str] = None
    is_cron_enabled: bool = False


class DatabaseTrigger(BaseModel):
    """Database trigger specification."""
    id: Optional[str] = None
    name: str
    table_name: str
    trigger_event: TriggerEvent = "INSERT"
    trigger_timing: TriggerTiming = "BEFORE"
    function_id: Optional[str] = None
    function_name: Optional[str] = None
    for_each: Literal["ROW", "STATEMENT"] = "ROW"
    is_active: bool = True
    conditions: Optional[str] = None  # WHEN clause body
    description: Optional[str] = None

    @field_validator("trigger_event", "trigger_timing", "for_each", mode="before")
    @classmethod
    def normalize_keywords(cls, value):
        return _upper(value)


class DatabasePolicy(BaseModel):
    """Row-level security policy."""
    id: Optional[str] = None
    name: str
    table_name: str
    command: PolicyCommand = "ALL"
    role: str = "public"
    using_expression: Optional[str] = None
    with_check_expression: Optional[str] = None
    is_permissive: bool = True
    description: Optional[str] = None

    @field_validator("command", mode="before")
    @classmethod
    def normalize_command(cls, value):
        return _upper(value)


class DatabaseSchema(BaseModel):
    """Complete database schema of one project."""
    tables: List[DatabaseTable] = Field(default_factory=list)
    indexes: List[DatabaseIndex] = Field(default_factory=list)
    functions: List[DatabaseFunction] = Field(default_factory=list)
    triggers: List[DatabaseTrigger] = Field(default_factory=list)
    policies: List[DatabasePolicy] = Field(default_factory=list)
    rls_tables: List[str] = Field(default_factory=list)  # RLS enabled without policies
    extensions: List[str] = Field(default_factory=list)  # Postgres extensions like "uuid-ossp"

    def get_table_names(self) -> List[str]:
        """Get list of all table names."""
        return [table.name for table in self.tables]

    def find_table(self, name: str) -> Optional[DatabaseTable]:
        """Find a table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def find_function(self, name: str) -> Optional[DatabaseFunction]:
        for function in self.functions:
            if function.name == name:
                return function
        return None


# =============================================================================
# PARSED MODEL
# =============================================================================


class ParsedForeignKey(CamelModel):
    """Foreign key as written; the target field may be implied."""
    table: str
    field: Optional[str] = None
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None
    constraint_name: Optional[str] = None


class ParsedColumn(CamelModel):
    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    default_value: Optional[str] = None
    generated: Optional[str] = None
    foreign_key: Optional[ParsedForeignKey] = None
    comment: Optional[str] = None


class ParsedTable(CamelModel):
    """One CREATE TABLE statement."""
    name: str
    schema_name: Optional[str] = None
    columns: List[ParsedColumn] = Field(default_factory=list)
    constraints: List[TableConstraint] = Field(default_factory=list)
    comment: Optional[str] = None

    def find_column(self, name: str) -> Optional[ParsedColumn]:
        for column in self.columns:
            if column.name == name:
                return column
        return None


# =============================================================================
# RESULTS AND REPORTS
# =============================================================================


class StatementError(BaseModel):
    """A statement that failed to parse; the others are unaffected."""
    statement_index: int
    message: str
    statement: str


class ParseResult(BaseModel):
    """Everything recognized in a SQL script, plus per-statement errors."""
    tables: List[ParsedTable] = Field(default_factory=list)
    indexes: List[DatabaseIndex] = Field(default_factory=list)
    functions: List[DatabaseFunction] = Field(default_factory=list)
    triggers: List[DatabaseTrigger] = Field(default_factory=list)
    policies: List[DatabasePolicy] = Field(default_factory=list)
    rls_tables: List[str] = Field(default_factory=list)
    errors: List[StatementError] = Field(default_factory=list)

    @computed_field
    @property
    def ok(self) -> bool:
        return not self.errors


class UnresolvedReferenceWarning(BaseModel):
    """Foreign key to a table or column that is not known yet."""
    table: str
    column: str
    target_table: str
    target_field: Optional[str] = None
    message: str


Severity = Literal["error", "warning", "info"]


class LintMessage(BaseModel):
    """A naming or design finding about one table, field, index or policy."""
    severity: Severity
    code: str
    message: str
    subject: str  # The name the finding is about
    table: Optional[str] = None
    field: Optional[str] = None
    suggestion: Optional[str] = None


class LintReport(BaseModel):
    messages: List[LintMessage] = Field(default_factory=list)

    def _count(self, severity: str) -> int:
        return sum(1 for message in self.messages if message.severity == severity)

    @computed_field
    @property
    def error_count(self) -> int:
        return self._count("error")

    @computed_field
    @property
    def warning_count(self) -> int:
        return self._count("warning")

    @computed_field
    @property
    def info_count(self) -> int:
        return self._count("info")

    @computed_field
    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    def for_table(self, name: str) -> List[LintMessage]:
        return [message for message in self.messages if message.table == name]


class ValidationReport(BaseModel):
    conflicts: List[str] = Field(default_factory=list)
    duplicate_columns: Dict[str, List[str]] = Field(default_factory=dict)
    warnings: List[UnresolvedReferenceWarning] = Field(default_factory=list)
    lint: List[LintMessage] = Field(default_factory=list)  # Advisory, never affects ok

    @computed_field
    @property
    def ok(self) -> bool:
        return not self.conflicts and not self.duplicate_columns


class ImportResult(BaseModel):
    """Outcome of importing SQL into a project's table set."""
    action: Optional[Literal["add", "overwrite"]] = None
    tables: List[DatabaseTable] = Field(default_factory=list)
    merged: Optional[List[DatabaseTable]] = None  # None when the import was rejected
    parse_errors: List[StatementError] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    duplicate_columns: Dict[str, List[str]] = Field(default_factory=dict)
    warnings: List[UnresolvedReferenceWarning] = Field(default_factory=list)
    lint: List[LintMessage] = Field(default_factory=list)

    @computed_field
    @property
    def accepted(self) -> bool:
        return self.merged is not None

    def raise_for_conflicts(self) -> None:
        """Raise ConflictError if table names collide."""
        if self.conflicts:
            raise ConflictError(self.conflicts)

    def raise_for_rejection(self) -> None:
        """Raise the error that explains why the import was not merged."""
        if self.duplicate_columns:
            raise DuplicateColumnError(self.duplicate_columns)
        self.raise_for_conflicts()
