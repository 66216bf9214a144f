"""API request/response models."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .schema_model import DatabaseSchema, DatabaseTable, ParseResult, ValidationReport
from .sql_exporter import SqlExportOptions


class ParseRequest(BaseModel):
    """Request for the parse endpoint."""
    sql: str = Field(..., description="SQL script to parse")
    strict: bool = Field(default=False, description="Fail on the first malformed table statement")
    fold_identifiers: Optional[bool] = Field(default=None, description="Lower-case unquoted identifiers")


class ParseResponse(BaseModel):
    """Parsed script and its canonical schema."""
    parsed: ParseResult
    database: DatabaseSchema


class ValidateRequest(BaseModel):
    """Request for the validate endpoint."""
    sql: str = Field(..., description="SQL script to check")
    existing_tables: List[DatabaseTable] = Field(default_factory=list, description="Tables already in the project")
    fold_identifiers: Optional[bool] = Field(default=None, description="Lower-case unquoted identifiers")


class ValidateResponse(BaseModel):
    report: ValidationReport
    parse_errors: int = Field(..., description="Number of statements that failed to parse")


class LintRequest(BaseModel):
    """Request for the lint endpoint."""
    database: DatabaseSchema = Field(..., description="Project schema to check")


class ImportRequest(BaseModel):
    """Request for the import endpoint."""
    sql: str = Field(..., description="SQL script to import")
    existing_tables: List[DatabaseTable] = Field(default_factory=list, description="Tables already in the project")
    action: Optional[Literal["add", "overwrite"]] = Field(
        default=None, description="Conflict resolution: 'add' or 'overwrite'; omit to reject conflicts"
    )
    fold_identifiers: Optional[bool] = Field(default=None, description="Lower-case unquoted identifiers")


class GenerateRequest(BaseModel):
    """Request for the table generation endpoint."""
    tables: List[DatabaseTable] = Field(..., description="Tables to generate, in output order")
    include_comments: Optional[bool] = Field(default=None, description="Emit COMMENT ON statements")
    schema_name: Optional[str] = Field(default=None, description="Schema used to qualify names")
    if_not_exists: bool = Field(default=False, description="Emit CREATE TABLE IF NOT EXISTS")


class ExportRequest(BaseModel):
    """Request for the full export endpoint."""
    database: DatabaseSchema = Field(..., description="Project schema to export")
    options: SqlExportOptions = Field(default_factory=SqlExportOptions, description="Export options")


class SqlResponse(BaseModel):
    sql: str = Field(..., description="Generated SQL")


class DataTypeInfo(BaseModel):
    name: str
    category: str
    color: str


class VocabularyResponse(BaseModel):
    """Vocabulary for the field editor."""
    types: List[DataTypeInfo]
    index_types: List[str]
    referential_actions: List[str]
    policy_commands: List[str]
