"""FastAPI application for the JetSchema SQL round-trip."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .api_models import (
    DataTypeInfo,
    ExportRequest,
    GenerateRequest,
    ImportRequest,
    LintRequest,
    ParseRequest,
    ParseResponse,
    SqlResponse,
    ValidateRequest,
    ValidateResponse,
    VocabularyResponse,
)
from .config import configure_logging, get_settings
from .errors import ConflictError, DuplicateColumnError, GenerationError, ParseError
from .importer import import_sql
from .schema_converter import convert_parse_result, convert_parsed_tables_to_database
from .schema_model import ImportResult, LintReport, ParseResult
from .sql_exporter import SqlExporter
from .sql_generator import GeneratorOptions, generate_all_tables_sql
from .sql_parser import parse_create_table_statements, parse_sql
from .validation import lint_schema, validate_tables
from .vocabulary import (
    DATA_TYPES,
    INDEX_TYPES,
    POLICY_COMMANDS,
    REFERENTIAL_ACTIONS,
    get_data_type_category,
    get_data_type_color,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    # Startup
    configure_logging()
    settings = get_settings()
    logger.info(
        "JetSchema SQL API starting (schema=%s, fold_identifiers=%s)",
        settings.schema_name, settings.fold_identifiers,
    )

    yield


# Create FastAPI app
app = FastAPI(
    title="JetSchema SQL API",
    description="Parse, validate, import and generate PostgreSQL DDL for JetSchema projects",
    version="0.1.0",
    lifespan=lifespan
)

# Configure CORS
frontend_origin = get_settings().frontend_origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin, "http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _parse_error(exc: ParseError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"message": exc.message, "statement_index": exc.statement_index, "position": exc.position},
    )


def _generation_error(exc: GenerationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": str(exc), "entity": exc.entity, "violations": exc.violations},
    )


@app.post("/api/sql/parse", response_model=ParseResponse)
async def parse_endpoint(request: ParseRequest):
    """
    Parse a SQL script into the parsed and canonical models.

    Lenient by default: statements that fail are reported in ``parsed.errors``.
    With ``strict`` set, the first malformed table statement fails the request.
    """
    try:
        if request.strict:
            tables = parse_create_table_statements(request.sql, fold_identifiers=request.fold_identifiers)
            parsed = ParseResult(tables=tables)
        else:
            parsed = parse_sql(request.sql, fold_identifiers=request.fold_identifiers)
        return ParseResponse(parsed=parsed, database=convert_parse_result(parsed))

    except ParseError as e:
        raise _parse_error(e)
    except Exception as e:
        logger.exception("Parse failed")
        raise HTTPException(status_code=500, detail=f"Failed to parse SQL: {str(e)}")


@app.post("/api/sql/validate", response_model=ValidateResponse)
async def validate_endpoint(request: ValidateRequest):
    """Check a script for table name conflicts, duplicate columns and dangling references."""
    try:
        parsed = parse_sql(request.sql, fold_identifiers=request.fold_identifiers)
        report = validate_tables(convert_parsed_tables_to_database(parsed.tables), request.existing_tables)
        return ValidateResponse(report=report, parse_errors=len(parsed.errors))

    except Exception as e:
        logger.exception("Validation failed")
        raise HTTPException(status_code=500, detail=f"Failed to validate SQL: {str(e)}")


@app.post("/api/schema/lint", response_model=LintReport)
async def lint_endpoint(request: LintRequest):
    """Naming conventions and design advice for a project schema, by severity."""
    try:
        return lint_schema(request.database)

    except Exception as e:
        logger.exception("Lint failed")
        raise HTTPException(status_code=500, detail=f"Failed to lint schema: {str(e)}")


@app.post("/api/sql/import", response_model=ImportResult)
async def import_endpoint(request: ImportRequest):
    """
    Import a script into the given table set.

    Conflicting table names without an ``action`` are rejected with 409 and
    the list of conflicts, so the UI can offer add or overwrite. Duplicate
    column names are rejected with 422.
    """
    try:
        result = import_sql(
            request.sql,
            request.existing_tables,
            action=request.action,
            fold_identifiers=request.fold_identifiers,
        )
        if not result.accepted:
            result.raise_for_rejection()
        return result

    except ConflictError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "conflicts": e.names})
    except DuplicateColumnError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "duplicate_columns": e.duplicates})
    except Exception as e:
        logger.exception("Import failed")
        raise HTTPException(status_code=500, detail=f"Failed to import SQL: {str(e)}")


@app.post("/api/sql/generate", response_model=SqlResponse)
async def generate_endpoint(request: GenerateRequest):
    """Generate CREATE TABLE statements for the given tables."""
    settings = get_settings()
    options = GeneratorOptions(
        include_comments=settings.include_comments if request.include_comments is None else request.include_comments,
        schema_name=request.schema_name,
        if_not_exists=request.if_not_exists,
    )
    try:
        return SqlResponse(sql=generate_all_tables_sql(request.tables, options))

    except GenerationError as e:
        raise _generation_error(e)
    except Exception as e:
        logger.exception("Generation failed")
        raise HTTPException(status_code=500, detail=f"Failed to generate SQL: {str(e)}")


@app.post("/api/sql/export", response_model=SqlResponse)
async def export_endpoint(request: ExportRequest):
    """Generate the full export script for a project schema."""
    try:
        return SqlResponse(sql=SqlExporter(request.database, request.options).generate_full_export())

    except GenerationError as e:
        raise _generation_error(e)
    except Exception as e:
        logger.exception("Export failed")
        raise HTTPException(status_code=500, detail=f"Failed to export SQL: {str(e)}")


@app.get("/api/vocabulary/types", response_model=VocabularyResponse)
async def vocabulary():
    """Data types with their editor category and color."""
    return VocabularyResponse(
        types=[
            DataTypeInfo(
                name=data_type.value,
                category=get_data_type_category(data_type.value),
                color=get_data_type_color(data_type.value),
            )
            for data_type in DATA_TYPES
        ],
        index_types=list(INDEX_TYPES),
        referential_actions=list(REFERENTIAL_ACTIONS),
        policy_commands=list(POLICY_COMMANDS),
    )


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "schema_name": get_settings().schema_name,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8005)
