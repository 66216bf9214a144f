"""
Pytest configuration and fixtures for testing.

This module provides:
- Sample SQL scripts
- Canonical tables and a populated project schema
- Test client for the FastAPI app
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from jetschema_sql.api import app
from jetschema_sql.config import get_settings
from jetschema_sql.schema_model import (
    DatabaseField,
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseSchema,
    DatabaseTable,
    DatabaseTrigger,
    ForeignKey,
)

USERS_POSTS_SQL = """
CREATE TABLE users (id UUID PRIMARY KEY DEFAULT gen_random_uuid(), email VARCHAR(255) UNIQUE NOT NULL);
CREATE TABLE posts (id UUID PRIMARY KEY DEFAULT gen_random_uuid(), user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE);
"""

# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch) -> Generator[None, None, None]:
    """Run every test against default settings."""
    for name in (
        "JETSCHEMA_SCHEMA_NAME",
        "JETSCHEMA_FOLD_IDENTIFIERS",
        "JETSCHEMA_MAX_NESTING_DEPTH",
        "JETSCHEMA_INCLUDE_COMMENTS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# SQL FIXTURES
# =============================================================================


@pytest.fixture
def users_posts_sql() -> str:
    return USERS_POSTS_SQL


@pytest.fixture
def project_sql() -> str:
    """A script using every statement kind the parser reads."""
    return """
-- Project schema
CREATE TABLE IF NOT EXISTS public.users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) NOT NULL UNIQUE,
    "displayName" TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT now() NOT NULL
);

CREATE TABLE public.posts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    title TEXT NOT NULL CHECK (char_length(title) > 0),
    tags TEXT[] DEFAULT '{}',
    CONSTRAINT posts_author_fkey FOREIGN KEY (user_id) REFERENCES public.users (id) ON DELETE CASCADE
);

COMMENT ON TABLE public.users IS 'Application''s users';
COMMENT ON COLUMN public.users.email IS 'Login email';

CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_idx ON public.users (lower(email));
CREATE INDEX posts_tags_idx ON public.posts USING gin (tags);

CREATE OR REPLACE FUNCTION public.touch_updated_at()
RETURNS trigger
LANGUAGE plpgsql
AS $$
BEGIN
    NEW.updated_at = now(); -- keep in sync
    RETURN NEW;
END;
$$;

CREATE TRIGGER posts_touch
    BEFORE UPDATE
    ON public.posts
    FOR EACH ROW
    EXECUTE FUNCTION public.touch_updated_at();

ALTER TABLE public.posts ENABLE ROW LEVEL SECURITY;

CREATE POLICY "Authors manage posts" ON public.posts
    FOR ALL TO authenticated
    USING (auth.uid() = user_id)
    WITH CHECK (auth.uid() = user_id);

GRANT USAGE ON SCHEMA public TO authenticated;
"""


# =============================================================================
# MODEL FIXTURES
# =============================================================================


@pytest.fixture
def users_table() -> DatabaseTable:
    return DatabaseTable(
        id="table-users",
        name="users",
        comment="It's the users table",
        fields=[
            DatabaseField(id="f-users-id", name="id", type="UUID", nullable=False,
                          primary_key=True, unique=True, default_value="gen_random_uuid()"),
            DatabaseField(id="f-users-email", name="email", type="VARCHAR(255)", nullable=False,
                          unique=True, comment="Login email"),
            DatabaseField(id="f-users-name", name="displayName", type="TEXT"),
        ],
    )


@pytest.fixture
def posts_table() -> DatabaseTable:
    return DatabaseTable(
        id="table-posts",
        name="posts",
        fields=[
            DatabaseField(id="f-posts-id", name="id", type="UUID", nullable=False,
                          primary_key=True, unique=True, default_value="gen_random_uuid()"),
            DatabaseField(id="f-posts-user", name="user_id", type="UUID", nullable=False,
                          foreign_key=ForeignKey(table="users", field="id", on_delete="CASCADE")),
            DatabaseField(id="f-posts-title", name="title", type="TEXT", nullable=False),
        ],
    )


@pytest.fixture
def sample_schema(users_table, posts_table) -> DatabaseSchema:
    """A project with one object of every kind."""
    return DatabaseSchema(
        tables=[users_table, posts_table],
        indexes=[
            DatabaseIndex(id="idx-1", name="posts_user_id_idx", table_name="posts", columns=["user_id"]),
        ],
        functions=[
            DatabaseFunction(
                id="fn-1",
                name="touch_updated_at",
                description="Keeps updated_at current",
                return_type="trigger",
                function_body="BEGIN\n    NEW.updated_at = now();\n    RETURN NEW;\nEND;",
            ),
        ],
        triggers=[
            DatabaseTrigger(
                id="trg-1",
                name="posts_touch",
                table_name="posts",
                trigger_event="UPDATE",
                trigger_timing="BEFORE",
                function_id="fn-1",
            ),
        ],
        policies=[
            DatabasePolicy(
                id="pol-1",
                name="Authors read posts",
                table_name="posts",
                command="SELECT",
                role="authenticated",
                using_expression="auth.uid() = user_id",
            ),
        ],
    )


# =============================================================================
# TEST CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a synchronous test client for the FastAPI app."""
    with TestClient(app) as test_client:
        yield test_client
