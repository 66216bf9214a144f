"""
Tests for the SQL parser.

These tests verify:
- Comment stripping and statement/clause splitting respect literals
- CREATE TABLE columns, keys, defaults and constraints
- Identifier handling with and without case folding
- Strict and lenient error reporting
- Indexes, functions, triggers, policies and ALTER TABLE
"""

import pytest

from jetschema_sql.errors import ParseError
from jetschema_sql.sql_parser import (
    parse_create_table_statements,
    parse_sql,
    split_statements,
    split_top_level,
    strip_sql_comments,
    tokenize,
)


class TestScanning:
    """Test suite for comment stripping and splitting."""

    def test_strip_comments_keeps_literals(self):
        sql = "SELECT 1; -- drop me\n/* outer /* nested */ still comment */ SELECT '--kept', \"/*kept*/\";"
        stripped = strip_sql_comments(sql)

        assert "drop me" not in stripped
        assert "still comment" not in stripped
        assert "'--kept'" in stripped
        assert '"/*kept*/"' in stripped

    def test_strip_comments_keeps_dollar_bodies(self):
        sql = "AS $$ -- inside body\n $$; -- outside"
        stripped = strip_sql_comments(sql)

        assert "-- inside body" in stripped
        assert "outside" not in stripped

    def test_split_statements_ignores_quoted_semicolons(self):
        sql = "CREATE FUNCTION f() RETURNS int AS $$ SELECT 1; $$ LANGUAGE sql; SELECT ';'; ;"
        statements = split_statements(sql)

        assert len(statements) == 2
        assert statements[1] == "SELECT ';'"

    def test_split_top_level_respects_parentheses(self):
        parts = split_top_level("id INT, price DECIMAL(10,2) DEFAULT 0.00, note TEXT DEFAULT 'a,b'")

        assert parts == ["id INT", "price DECIMAL(10,2) DEFAULT 0.00", "note TEXT DEFAULT 'a,b'"]

    def test_tokenize_rejects_unbalanced_parentheses(self):
        with pytest.raises(ParseError, match="missing"):
            tokenize("CREATE TABLE t (id INT")
        with pytest.raises(ParseError, match="unexpected"):
            tokenize("CREATE TABLE t id INT)")

    def test_tokenize_limits_nesting(self):
        with pytest.raises(ParseError, match="nested deeper than 3"):
            tokenize("((((1))))", max_depth=3)


class TestCreateTable:
    """Test suite for CREATE TABLE parsing."""

    def test_empty_input_returns_no_tables(self):
        assert parse_create_table_statements("") == []
        assert parse_create_table_statements("-- nothing here\n/* at all */") == []
        assert parse_create_table_statements("SELECT 1;") == []

    def test_users_and_posts(self, users_posts_sql):
        """Test the two-table script with an inline foreign key."""
        users, posts = parse_create_table_statements(users_posts_sql)

        assert users.name == "users"
        assert [column.name for column in users.columns] == ["id", "email"]
        email = users.columns[1]
        assert email.type == "VARCHAR(255)"
        assert email.unique is True
        assert email.nullable is False

        user_id = posts.find_column("user_id")
        assert user_id.foreign_key.table == "users"
        assert user_id.foreign_key.field == "id"
        assert user_id.foreign_key.on_delete == "CASCADE"
        assert user_id.foreign_key.on_update is None
        assert user_id.foreign_key.constraint_name is None

    def test_primary_key_column(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE users (id UUID PRIMARY KEY DEFAULT gen_random_uuid());"
        )
        column = table.columns[0]

        assert column.primary_key is True
        assert column.nullable is False
        assert column.default_value == "gen_random_uuid()"

    def test_decimal_parameters_do_not_split_columns(self):
        (table,) = parse_create_table_statements("CREATE TABLE products (price DECIMAL(10,2) DEFAULT 0.00);")

        assert len(table.columns) == 1
        assert table.columns[0].type == "DECIMAL(10,2)"
        assert table.columns[0].default_value == "0.00"

    def test_nested_default_is_kept_verbatim(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE labels (label TEXT DEFAULT coalesce(nullif('a', ''), 'none') NOT NULL, "
            "status TEXT DEFAULT 'active'::text);"
        )

        assert table.columns[0].default_value == "coalesce(nullif('a', ''), 'none')"
        assert table.columns[0].nullable is False
        assert table.columns[1].default_value == "'active'::text"

    def test_default_null(self):
        (table,) = parse_create_table_statements("CREATE TABLE t (note TEXT DEFAULT NULL);")

        assert table.columns[0].default_value == "NULL"

    def test_default_null_with_cast(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE t (note CHARACTER VARYING DEFAULT NULL::character varying, "
            "flag BOOLEAN DEFAULT NULL NOT NULL);"
        )

        assert table.columns[0].default_value == "NULL::character varying"
        assert table.columns[1].default_value == "NULL"
        assert table.columns[1].nullable is False

    def test_serial_is_not_a_primary_key(self):
        (table,) = parse_create_table_statements("CREATE TABLE counters (id SERIAL, value INT);")

        assert table.columns[0].type == "SERIAL"
        assert table.columns[0].primary_key is False

    def test_table_level_composite_primary_key(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE memberships (team_id UUID, user_id UUID, role TEXT, PRIMARY KEY (team_id, user_id));"
        )

        assert [column.primary_key for column in table.columns] == [True, True, False]
        assert [column.nullable for column in table.columns] == [False, False, True]

    def test_inline_primary_keys_merge(self):
        """Test that several inline PRIMARY KEY modifiers form one composite key."""
        (table,) = parse_create_table_statements("CREATE TABLE pairs (a INT PRIMARY KEY, b INT PRIMARY KEY);")

        assert all(column.primary_key for column in table.columns)

    def test_table_level_foreign_key_wins(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE c (x INT REFERENCES a(id), FOREIGN KEY (x) REFERENCES b(id) ON DELETE SET NULL);"
        )
        key = table.columns[0].foreign_key

        assert key.table == "b"
        assert key.on_delete == "SET NULL"

    def test_multi_column_foreign_key(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE line_items (order_id INT, product_id INT, qty INT, "
            "CONSTRAINT line_items_order_fk FOREIGN KEY (order_id, product_id) "
            "REFERENCES order_products (order_id, product_id) ON UPDATE CASCADE);"
        )
        order_key = table.columns[0].foreign_key
        product_key = table.columns[1].foreign_key

        assert (order_key.table, order_key.field) == ("order_products", "order_id")
        assert (product_key.table, product_key.field) == ("order_products", "product_id")
        assert order_key.constraint_name == product_key.constraint_name == "line_items_order_fk"
        assert order_key.on_update == "CASCADE"
        assert table.columns[2].foreign_key is None

    def test_multi_column_foreign_key_needs_target_columns(self):
        with pytest.raises(ParseError, match="explicit referenced column list"):
            parse_create_table_statements(
                "CREATE TABLE t (a INT, b INT, FOREIGN KEY (a, b) REFERENCES other);"
            )

    def test_custom_single_column_constraint_name_is_kept(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE posts (author UUID CONSTRAINT posts_author_fk REFERENCES users);"
        )
        key = table.columns[0].foreign_key

        assert key.constraint_name == "posts_author_fk"
        assert key.field is None

    def test_foreign_key_to_unknown_table_is_accepted(self):
        (table,) = parse_create_table_statements("CREATE TABLE t (a INT REFERENCES later_table(id));")

        assert table.columns[0].foreign_key.table == "later_table"

    def test_unique_constraints(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE members (team_id INT, user_id INT, email TEXT, "
            "UNIQUE (email), UNIQUE (team_id, user_id));"
        )

        assert table.find_column("email").unique is True
        assert table.find_column("team_id").unique is False
        (constraint,) = table.constraints
        assert constraint.constraint_type == "UNIQUE"
        assert constraint.columns == ["team_id", "user_id"]
        assert constraint.name is None

    def test_check_constraints(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE products (price NUMERIC CHECK (price > 0), name TEXT, "
            "CONSTRAINT products_name_len CHECK (char_length(name) > 1));"
        )

        column_check, table_check = table.constraints
        assert column_check.name is None
        assert column_check.expression == "price > 0"
        assert table_check.name == "products_name_len"
        assert table_check.expression == "char_length(name) > 1"

    def test_generated_clauses_are_kept(self):
        (table,) = parse_create_table_statements(
            "CREATE TABLE t (id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY, "
            "seq INT GENERATED BY DEFAULT AS IDENTITY (START WITH 10), "
            "total NUMERIC GENERATED ALWAYS AS (a + b) STORED, "
            "name TEXT COLLATE \"C\" NOT NULL);"
        )

        assert table.columns[0].generated == "GENERATED ALWAYS AS IDENTITY"
        assert table.columns[0].primary_key is True
        assert table.columns[1].generated == "GENERATED BY DEFAULT AS IDENTITY (START WITH 10)"
        assert table.columns[2].generated == "GENERATED ALWAYS AS (a + b) STORED"
        assert table.columns[3].generated is None
        assert table.columns[3].nullable is False

    def test_schema_qualified_name(self):
        (table,) = parse_create_table_statements("CREATE TABLE IF NOT EXISTS public.users (id INT);")

        assert table.name == "users"
        assert table.schema_name == "public"


class TestIdentifiers:
    """Test suite for quoting and case handling."""

    def test_quoted_identifiers_keep_case(self):
        (table,) = parse_create_table_statements(
            'CREATE TABLE "UserProfiles" ("displayName" TEXT, "say ""hi""" TEXT);'
        )

        assert table.name == "UserProfiles"
        assert [column.name for column in table.columns] == ["displayName", 'say "hi"']

    def test_unquoted_identifiers_are_preserved_by_default(self):
        (table,) = parse_create_table_statements("CREATE TABLE Users (Id INT);")

        assert table.name == "Users"
        assert table.columns[0].name == "Id"

    def test_folding_lower_cases_unquoted_identifiers(self):
        (table,) = parse_create_table_statements(
            'CREATE TABLE Users (Id INT, "Keep" TEXT);', fold_identifiers=True
        )

        assert table.name == "users"
        assert [column.name for column in table.columns] == ["id", "Keep"]

    def test_folding_from_environment(self, monkeypatch):
        from jetschema_sql.config import get_settings

        monkeypatch.setenv("JETSCHEMA_FOLD_IDENTIFIERS", "true")
        get_settings.cache_clear()

        (table,) = parse_create_table_statements("CREATE TABLE Users (Id INT);")
        assert table.name == "users"


class TestParseErrors:
    """Test suite for malformed input."""

    @pytest.mark.parametrize("sql, message", [
        ("CREATE TABLE empty ();", "no columns"),
        ("CREATE TABLE (id INT);", "Missing table name"),
        ("CREATE TABLE t;", "Missing column list"),
        ("CREATE TABLE t (id INT;", "Unbalanced"),
        ("CREATE TABLE t (a TEXT DEFAULT 'oops);", "Unterminated string"),
        ("CREATE TABLE t (a INT REFERENCES b(id) ON DELETE EXPLODE);", "referential action"),
        ("CREATE TABLE t (a INT, PRIMARY KEY (missing));", "unknown column missing"),
        ("CREATE TABLE t (a INT,);", "Empty definition"),
    ])
    def test_strict_parse_raises(self, sql, message):
        with pytest.raises(ParseError, match=message):
            parse_create_table_statements(sql)

    def test_strict_error_reports_statement(self):
        with pytest.raises(ParseError) as exc_info:
            parse_create_table_statements("CREATE TABLE ok (id INT); CREATE TABLE bad ();")

        assert exc_info.value.statement_index == 1
        assert "statement 2" in str(exc_info.value)

    def test_lenient_parse_isolates_failures(self):
        result = parse_sql(
            "CREATE TABLE ok (id INT); CREATE TABLE bad (); CREATE TABLE later (id INT);"
        )

        assert [table.name for table in result.tables] == ["ok", "later"]
        assert result.ok is False
        (error,) = result.errors
        assert error.statement_index == 1
        assert "no columns" in error.message
        assert error.statement.startswith("CREATE TABLE bad")

    def test_nesting_guard(self):
        sql = "CREATE TABLE t (a INT DEFAULT " + "(" * 10 + "1" + ")" * 10 + ");"
        result = parse_sql(sql, max_depth=5)

        assert result.tables == []
        assert "nested deeper than 5" in result.errors[0].message


class TestOtherStatements:
    """Test suite for indexes, functions, triggers, policies and ALTER TABLE."""

    def test_project_script(self, project_sql):
        result = parse_sql(project_sql)

        assert result.errors == []
        assert [table.name for table in result.tables] == ["users", "posts"]
        assert result.rls_tables == ["posts"]

    def test_comments_are_applied(self, project_sql):
        users = parse_sql(project_sql).tables[0]

        assert users.comment == "Application's users"
        assert users.find_column("email").comment == "Login email"

    def test_array_and_check_columns(self, project_sql):
        posts = parse_sql(project_sql).tables[1]

        assert posts.find_column("tags").type == "TEXT[]"
        assert posts.find_column("tags").default_value == "'{}'"
        assert posts.constraints[0].expression == "char_length(title) > 0"
        assert posts.find_column("user_id").foreign_key.constraint_name == "posts_author_fkey"

    def test_indexes(self, project_sql):
        lower_email, tags = parse_sql(project_sql).indexes

        assert lower_email.name == "users_email_lower_idx"
        assert lower_email.is_unique is True
        assert lower_email.columns == ["lower(email)"]
        assert tags.index_type == "GIN"
        assert tags.table_name == "posts"
        assert tags.columns == ["tags"]

    def test_partial_index_and_default_name(self):
        (index,) = parse_sql("CREATE INDEX ON users (created_at DESC) WHERE deleted_at IS NULL;").indexes

        assert index.name == "users_created_at_idx"
        assert index.columns == ["created_at DESC"]
        assert index.is_partial is True
        assert index.where_clause == "deleted_at IS NULL"

    def test_function_body_is_opaque(self, project_sql):
        (function,) = parse_sql(project_sql).functions

        assert function.name == "touch_updated_at"
        assert function.return_type == "trigger"
        assert function.language == "plpgsql"
        assert function.function_body.startswith("BEGIN\n")
        assert "-- keep in sync" in function.function_body
        assert function.function_body.endswith("END;")

    def test_function_parameters(self):
        (function,) = parse_sql(
            "CREATE FUNCTION add(a integer, b integer DEFAULT 1, double precision) "
            "RETURNS integer AS 'SELECT a + b' LANGUAGE sql IMMUTABLE SECURITY DEFINER;"
        ).functions

        assert [(p.name, p.type, p.default) for p in function.parameters] == [
            ("a", "INTEGER", None),
            ("b", "INTEGER", "1"),
            ("", "DOUBLE PRECISION", None),
        ]
        assert function.function_body == "SELECT a + b"
        assert function.language == "sql"
        assert function.security_definer is True

    def test_trigger(self, project_sql):
        (trigger,) = parse_sql(project_sql).triggers

        assert trigger.name == "posts_touch"
        assert trigger.table_name == "posts"
        assert trigger.trigger_timing == "BEFORE"
        assert trigger.trigger_event == "UPDATE"
        assert trigger.for_each == "ROW"
        assert trigger.function_name == "touch_updated_at"
        assert trigger.is_active is True

    def test_trigger_with_several_events_is_rejected(self):
        result = parse_sql(
            "CREATE TRIGGER t AFTER INSERT OR UPDATE ON posts FOR EACH ROW EXECUTE FUNCTION f();"
        )

        assert result.triggers == []
        assert "only one event" in result.errors[0].message

    def test_disabled_trigger(self):
        result = parse_sql(
            "CREATE TABLE posts (id INT);"
            "CREATE TRIGGER t AFTER DELETE ON posts FOR EACH ROW WHEN (OLD.id > 0) EXECUTE PROCEDURE f();"
            "ALTER TABLE posts DISABLE TRIGGER t;"
        )
        (trigger,) = result.triggers

        assert trigger.conditions == "OLD.id > 0"
        assert trigger.is_active is False

    def test_policy(self, project_sql):
        (policy,) = parse_sql(project_sql).policies

        assert policy.name == "Authors manage posts"
        assert policy.table_name == "posts"
        assert policy.command == "ALL"
        assert policy.role == "authenticated"
        assert policy.using_expression == "auth.uid() = user_id"
        assert policy.with_check_expression == "auth.uid() = user_id"
        assert policy.is_permissive is True

    def test_restrictive_policy_with_roles(self):
        (policy,) = parse_sql(
            "CREATE POLICY p ON docs AS RESTRICTIVE FOR SELECT TO anon, authenticated USING (true);"
        ).policies

        assert policy.is_permissive is False
        assert policy.role == "anon, authenticated"

    def test_alter_table_add_constraint(self):
        result = parse_sql(
            "CREATE TABLE users (id UUID PRIMARY KEY);"
            "CREATE TABLE posts (id UUID, user_id UUID);"
            "ALTER TABLE ONLY posts ADD CONSTRAINT posts_pkey PRIMARY KEY (id), "
            "ADD CONSTRAINT posts_author_fkey FOREIGN KEY (user_id) REFERENCES users(id);"
            "ALTER TABLE posts ADD COLUMN title TEXT NOT NULL;"
        )
        posts = result.tables[1]

        assert result.errors == []
        assert posts.find_column("id").primary_key is True
        assert posts.find_column("user_id").foreign_key.constraint_name == "posts_author_fkey"
        assert posts.find_column("title").nullable is False

    def test_failed_alter_leaves_table_unchanged(self):
        result = parse_sql(
            "CREATE TABLE posts (id UUID);"
            "ALTER TABLE posts ADD COLUMN title TEXT, ADD PRIMARY KEY (missing);"
        )

        assert [column.name for column in result.tables[0].columns] == ["id"]
        assert len(result.errors) == 1

    def test_statements_on_tables_defined_elsewhere_are_skipped(self, caplog):
        sql = (
            "CREATE TABLE a (id INT);"
            "COMMENT ON TABLE b IS 'x';"
            "COMMENT ON COLUMN b.id IS 'y';"
            "ALTER TABLE b ADD COLUMN note TEXT;"
            "ALTER TABLE b ADD CONSTRAINT b_pkey PRIMARY KEY (id);"
        )

        with caplog.at_level("WARNING", logger="jetschema_sql.sql_parser"):
            tables = parse_create_table_statements(sql)
        result = parse_sql(sql)

        assert [table.name for table in tables] == ["a"]
        assert [column.name for column in tables[0].columns] == ["id"]
        assert result.errors == []
        assert "Skipping COMMENT ON b" in caplog.text
        assert "Skipping ALTER TABLE ADD on b" in caplog.text

    def test_rls_on_table_defined_elsewhere_is_recorded(self):
        result = parse_sql("ALTER TABLE profiles ENABLE ROW LEVEL SECURITY;")

        assert result.errors == []
        assert result.rls_tables == ["profiles"]

    def test_unsupported_statements_are_skipped(self):
        result = parse_sql(
            'CREATE EXTENSION IF NOT EXISTS "pgcrypto"; INSERT INTO users VALUES (1); '
            "GRANT ALL ON ALL TABLES IN SCHEMA public TO authenticated;"
        )

        assert result.errors == []
        assert result.tables == []
