"""
Tests for the DDL generator.

These tests verify:
- Column definitions and trailing key constraints
- Identifier quoting and literal escaping
- Generator options (comments, schema qualification, IF NOT EXISTS)
- Index, function, trigger and policy statements
- Invariant violations raise GenerationError
"""

import pytest

from jetschema_sql.errors import GenerationError
from jetschema_sql.schema_model import (
    DatabaseField,
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseTable,
    DatabaseTrigger,
    ForeignKey,
    FunctionParameter,
    TableConstraint,
)
from jetschema_sql.sql_generator import (
    GeneratorOptions,
    generate_all_tables_sql,
    generate_function_sql,
    generate_index_sql,
    generate_policies_sql,
    generate_policy_sql,
    generate_table_sql,
    generate_trigger_sql,
    quote_identifier,
    quote_literal,
)


class TestQuoting:
    """Test suite for identifier and literal quoting."""

    @pytest.mark.parametrize("name, expected", [
        ("users", "users"),
        ("user_id2", "user_id2"),
        ("displayName", '"displayName"'),
        ("order", '"order"'),
        ("user", '"user"'),
        ("like", '"like"'),
        ("exclude", '"exclude"'),
        ("join", '"join"'),
        ("has space", '"has space"'),
        ('say"hi', '"say""hi"'),
        ("1st", '"1st"'),
    ])
    def test_quote_identifier(self, name, expected):
        assert quote_identifier(name) == expected

    def test_quote_literal(self):
        assert quote_literal("It's") == "'It''s'"


class TestGenerateTable:
    """Test suite for CREATE TABLE output."""

    def test_users_table(self, users_table):
        assert generate_table_sql(users_table) == (
            "CREATE TABLE users (\n"
            "    id UUID NOT NULL DEFAULT gen_random_uuid(),\n"
            "    email VARCHAR(255) NOT NULL UNIQUE,\n"
            '    "displayName" TEXT,\n'
            "    CONSTRAINT users_pkey PRIMARY KEY (id)\n"
            ");\n"
            "COMMENT ON TABLE users IS 'It''s the users table';\n"
            "COMMENT ON COLUMN users.email IS 'Login email';"
        )

    def test_foreign_key_constraint(self, posts_table):
        sql = generate_table_sql(posts_table)

        assert (
            "CONSTRAINT posts_user_id_fkey FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE"
            in sql
        )
        assert "REFERENCES" not in sql.split("CONSTRAINT posts_pkey")[0]

    def test_no_action_is_omitted(self, posts_table):
        posts_table.fields[1].foreign_key.on_delete = "NO ACTION"
        posts_table.fields[1].foreign_key.on_update = "NO ACTION"

        sql = generate_table_sql(posts_table)

        assert "REFERENCES users(id)\n" in sql
        assert "NO ACTION" not in sql

    def test_without_comments(self, users_table):
        sql = generate_table_sql(users_table, options=GeneratorOptions(include_comments=False))

        assert "COMMENT ON" not in sql
        assert sql.endswith(");")

    def test_schema_and_if_not_exists(self, posts_table):
        options = GeneratorOptions(schema_name="public", if_not_exists=True)
        sql = generate_table_sql(posts_table, options=options)

        assert sql.startswith("CREATE TABLE IF NOT EXISTS public.posts (")
        assert "REFERENCES public.users(id)" in sql

    def test_composite_keys(self):
        table = DatabaseTable(
            id="t",
            name="members",
            fields=[
                DatabaseField(id="1", name="team_id", type="UUID", nullable=False, primary_key=True, unique=True,
                              foreign_key=ForeignKey(table="teams", field="id")),
                DatabaseField(id="2", name="user_id", type="UUID", nullable=False, primary_key=True, unique=True),
                DatabaseField(id="3", name="org", type="TEXT",
                              foreign_key=ForeignKey(table="orgs", field="code", constraint_name="members_org_fk")),
                DatabaseField(id="4", name="region", type="TEXT",
                              foreign_key=ForeignKey(table="orgs", field="region", constraint_name="members_org_fk")),
            ],
            constraints=[
                TableConstraint(constraint_type="UNIQUE", columns=["org", "region"]),
                TableConstraint(constraint_type="CHECK", expression="org <> ''"),
            ],
        )
        sql = generate_table_sql(table)

        assert "CONSTRAINT members_pkey PRIMARY KEY (team_id, user_id)" in sql
        assert "CONSTRAINT members_org_region_key UNIQUE (org, region)" in sql
        assert "    CHECK (org <> '')" in sql
        assert sql.count("members_org_fk") == 1
        assert "FOREIGN KEY (org, region) REFERENCES orgs(code, region)" in sql
        assert "CONSTRAINT members_team_id_fkey FOREIGN KEY (team_id) REFERENCES teams(id)" in sql

    def test_unknown_reference_warning(self, posts_table):
        sql = generate_table_sql(posts_table, all_tables=[posts_table])

        assert sql.splitlines()[0] == (
            "-- Warning: posts.user_id references table users, which is not defined here"
        )

    def test_no_warning_when_target_is_known(self, users_table, posts_table):
        sql = generate_table_sql(posts_table, all_tables=[users_table, posts_table])

        assert "-- Warning" not in sql

    def test_generated_clause(self):
        table = DatabaseTable(
            id="t",
            name="invoices",
            fields=[
                DatabaseField(id="1", name="id", type="BIGINT", nullable=False, primary_key=True, unique=True,
                              generated="GENERATED ALWAYS AS IDENTITY"),
                DatabaseField(id="2", name="total", type="NUMERIC", generated="GENERATED ALWAYS AS (a + b) STORED"),
            ],
        )

        sql = generate_table_sql(table)

        assert "    id BIGINT NOT NULL GENERATED ALWAYS AS IDENTITY,\n" in sql
        assert "    total NUMERIC GENERATED ALWAYS AS (a + b) STORED,\n" in sql

    def test_default_with_generated_clause_is_rejected(self):
        table = DatabaseTable(
            id="t",
            name="t",
            fields=[DatabaseField(id="1", name="n", type="INT", default_value="0",
                                  generated="GENERATED BY DEFAULT AS IDENTITY")],
        )

        with pytest.raises(GenerationError) as exc_info:
            generate_table_sql(table)

        assert exc_info.value.violations == ["field n cannot have both a default and a generated clause"]

    def test_nullable_primary_key_is_rejected(self, users_table):
        users_table.fields[0].nullable = True

        with pytest.raises(GenerationError) as exc_info:
            generate_table_sql(users_table)

        assert exc_info.value.entity == "table users"
        assert exc_info.value.violations == ["primary key field id must not be nullable"]


class TestGenerateAllTables:
    """Test suite for generate_all_tables_sql."""

    def test_empty(self):
        assert generate_all_tables_sql([]) == "-- No tables defined"

    def test_order_and_separation(self, users_table, posts_table):
        sql = generate_all_tables_sql([users_table, posts_table])
        first, second = sql.split("\n\nCREATE TABLE posts")

        assert first.startswith("CREATE TABLE users (")
        assert "-- Warning" not in sql


class TestOtherObjects:
    """Test suite for indexes, functions, triggers and policies."""

    def test_plain_index(self):
        index = DatabaseIndex(name="posts_user_id_idx", table_name="posts", columns=["user_id"])

        assert generate_index_sql(index) == "CREATE INDEX posts_user_id_idx ON posts (user_id);"

    def test_unique_partial_gin_index(self):
        index = DatabaseIndex(
            name="posts_tags_idx",
            table_name="posts",
            columns=["tags"],
            index_type="gin",
            is_unique=True,
            is_partial=True,
            where_clause="deleted_at IS NULL",
        )

        assert generate_index_sql(index, GeneratorOptions(schema_name="public", if_not_exists=True)) == (
            "CREATE UNIQUE INDEX IF NOT EXISTS posts_tags_idx ON public.posts USING gin (tags) "
            "WHERE deleted_at IS NULL;"
        )

    def test_index_expressions_and_ordering(self):
        index = DatabaseIndex(name="i", table_name="users", columns=["lower(email)", "createdAt desc"])

        assert generate_index_sql(index) == 'CREATE INDEX i ON users (lower(email), "createdAt" DESC);'

    def test_function(self):
        function = DatabaseFunction(
            name="add_points",
            parameters=[FunctionParameter(name="amount", type="INTEGER", default="1")],
            return_type="INTEGER",
            security_definer=True,
            function_body="BEGIN\n    RETURN amount;\nEND;",
        )

        assert generate_function_sql(function) == (
            "CREATE OR REPLACE FUNCTION add_points(amount INTEGER DEFAULT 1)\n"
            "RETURNS INTEGER\n"
            "LANGUAGE plpgsql\n"
            "SECURITY DEFINER\n"
            "AS $$\n"
            "BEGIN\n    RETURN amount;\nEND;\n"
            "$$;"
        )

    def test_body_containing_dollar_quotes(self):
        function = DatabaseFunction(name="f", language="sql", function_body="SELECT $$x$$;")
        sql = generate_function_sql(function)

        assert "RETURNS void" in sql
        assert "AS $body$\nSELECT $$x$$;\n$body$;" in sql

    def test_edge_function_stub(self):
        function = DatabaseFunction(name="notify", function_type="edge", edge_function_name="send-mail")

        assert generate_function_sql(function) == (
            "-- Edge function: send-mail\n-- Deployed separately; no SQL definition"
        )

    def test_cron_schedule(self):
        function = DatabaseFunction(
            name="cleanup",
            function_type="cron",
            cron_schedule="0 3 * * *",
            is_cron_enabled=True,
            function_body="DELETE FROM sessions;",
        )
        sql = generate_function_sql(function)

        assert sql.splitlines()[-1] == "SELECT cron.schedule('cleanup', '0 3 * * *', 'SELECT cleanup()');"

    def test_cron_without_schedule_is_rejected(self):
        function = DatabaseFunction(name="cleanup", function_type="cron", is_cron_enabled=True, function_body="x")

        with pytest.raises(GenerationError):
            generate_function_sql(function)

    def test_trigger(self):
        trigger = DatabaseTrigger(
            name="posts_touch",
            table_name="posts",
            trigger_event="update",
            trigger_timing="before",
            function_name="touch_updated_at",
            conditions="OLD.title IS DISTINCT FROM NEW.title",
        )

        assert generate_trigger_sql(trigger) == (
            "CREATE TRIGGER posts_touch\n"
            "    BEFORE UPDATE\n"
            "    ON posts\n"
            "    FOR EACH ROW\n"
            "    WHEN (OLD.title IS DISTINCT FROM NEW.title)\n"
            "    EXECUTE FUNCTION touch_updated_at();"
        )

    def test_inactive_trigger_is_disabled(self):
        trigger = DatabaseTrigger(name="t", table_name="posts", function_name="f", is_active=False)

        assert generate_trigger_sql(trigger).endswith("\nALTER TABLE posts DISABLE TRIGGER t;")

    def test_trigger_without_function_is_rejected(self):
        with pytest.raises(GenerationError):
            generate_trigger_sql(DatabaseTrigger(name="t", table_name="posts"))

    def test_policy(self):
        policy = DatabasePolicy(
            name="Authors manage posts",
            table_name="posts",
            role="authenticated",
            is_permissive=False,
            using_expression="auth.uid() = user_id",
            with_check_expression="auth.uid() = user_id",
        )

        assert generate_policy_sql(policy) == (
            'CREATE POLICY "Authors manage posts" ON posts\n'
            "    AS RESTRICTIVE\n"
            "    FOR ALL TO authenticated\n"
            "    USING (auth.uid() = user_id)\n"
            "    WITH CHECK (auth.uid() = user_id);"
        )

    def test_insert_policy_with_using_is_rejected(self):
        policy = DatabasePolicy(name="p", table_name="posts", command="INSERT", using_expression="true")

        with pytest.raises(GenerationError) as exc_info:
            generate_policy_sql(policy)

        assert "only accepts a WITH CHECK expression" in exc_info.value.violations[0]

    def test_policies_enable_rls_once_per_table(self):
        policies = [
            DatabasePolicy(name="read", table_name="posts", command="SELECT", using_expression="true"),
            DatabasePolicy(name="write", table_name="posts", command="INSERT", with_check_expression="true"),
        ]
        sql = generate_policies_sql(policies)

        assert sql.count("ENABLE ROW LEVEL SECURITY") == 1
        assert sql.startswith("ALTER TABLE posts ENABLE ROW LEVEL SECURITY;")
