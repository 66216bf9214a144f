"""PostgreSQL DDL parser.

Reads the subset of DDL the designer round-trips: ``CREATE TABLE`` (columns,
defaults, inline and table-level keys), ``ALTER TABLE ... ADD``, ``COMMENT ON``,
``CREATE INDEX``, ``CREATE FUNCTION``, ``CREATE TRIGGER`` and ``CREATE POLICY``.
Expressions (defaults, CHECK bodies, WHERE/USING clauses, function bodies) are
never interpreted; their source text is kept as written.

Each statement is parsed in isolation. ``parse_sql`` collects a
``StatementError`` for every statement it cannot read and keeps going;
``parse_create_table_statements`` raises ``ParseError`` instead.
"""

import logging
import re
from typing import Dict, List, NamedTuple, Optional, Tuple

from .config import get_settings
from .errors import ParseError
from .schema_model import (
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseTrigger,
    FunctionParameter,
    ParsedColumn,
    ParsedForeignKey,
    ParsedTable,
    ParseResult,
    StatementError,
    TableConstraint,
)
from .vocabulary import (
    COLUMN_CONSTRAINT_KEYWORDS,
    INDEX_TYPES,
    POLICY_COMMANDS,
    base_data_type,
    foreign_key_name,
    index_name,
    normalize_data_type,
    unique_constraint_name,
)

logger = logging.getLogger(__name__)

WORD = "word"
QUOTED = "quoted"
STRING = "string"
NUMBER = "number"
DOLLAR = "dollar"
PUNCT = "punct"
OP = "op"


class Token(NamedTuple):
    kind: str
    value: str  # quoted identifiers are unescaped, everything else is source text
    start: int
    end: int

    @property
    def keyword(self) -> Optional[str]:
        return self.value.upper() if self.kind == WORD else None


_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_NUMBER = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_WORD = re.compile(r"[^\W\d][\w$]*")
_WHITESPACE = re.compile(r"\s+")

_DEFAULT_STOP = COLUMN_CONSTRAINT_KEYWORDS - {"DEFAULT"}

_FUNCTION_OPTIONS = frozenset({
    "LANGUAGE", "AS", "SECURITY", "EXTERNAL", "IMMUTABLE", "STABLE", "VOLATILE",
    "STRICT", "CALLED", "SET", "COST", "ROWS", "PARALLEL", "LEAKPROOF", "NOT",
    "WINDOW", "SUPPORT", "TRANSFORM",
})
_FUNCTION_FLAGS = frozenset({"IMMUTABLE", "STABLE", "VOLATILE", "STRICT", "LEAKPROOF", "WINDOW"})
_FUNCTION_VALUED_OPTIONS = frozenset({"COST", "ROWS", "PARALLEL", "SUPPORT"})

_INDEX_ORDERING = frozenset({"ASC", "DESC", "NULLS", "FIRST", "LAST"})


# =============================================================================
# SCANNING
# =============================================================================


def _is_word_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


def _literal_end(text: str, pos: int, strict: bool) -> Optional[int]:
    """End offset of the string, quoted identifier or dollar body at ``pos``.

    Returns None when no literal starts there. Unterminated literals raise in
    strict mode and run to the end of the text otherwise.
    """
    char = text[pos]
    if char == "'":
        escapes = pos > 0 and text[pos - 1] in "eE" and (pos < 2 or not _is_word_char(text[pos - 2]))
        index = pos + 1
        while index < len(text):
            current = text[index]
            if escapes and current == "\\":
                index += 2
                continue
            if current == "'":
                if index + 1 < len(text) and text[index + 1] == "'":
                    index += 2
                    continue
                return index + 1
            index += 1
        if strict:
            raise ParseError("Unterminated string literal", position=pos)
        return len(text)

    if char == '"':
        index = pos + 1
        while True:
            close = text.find('"', index)
            if close == -1:
                if strict:
                    raise ParseError("Unterminated quoted identifier", position=pos)
                return len(text)
            if text.startswith('""', close):
                index = close + 2
                continue
            return close + 1

    if char == "$" and (pos == 0 or not _is_word_char(text[pos - 1])):
        match = _DOLLAR_TAG.match(text, pos)
        if match:
            delimiter = match.group(0)
            close = text.find(delimiter, match.end())
            if close == -1:
                if strict:
                    raise ParseError("Unterminated dollar-quoted string", position=pos)
                return len(text)
            return close + len(delimiter)
    return None


def _comment_end(text: str, pos: int, strict: bool) -> Optional[int]:
    """End offset of the comment starting at ``pos`` (line comments keep their newline)."""
    if text.startswith("--", pos):
        newline = text.find("\n", pos)
        return len(text) if newline == -1 else newline
    if text.startswith("/*", pos):
        depth = 0
        index = pos
        while index < len(text):
            if text.startswith("/*", index):
                depth += 1
                index += 2
            elif text.startswith("*/", index):
                depth -= 1
                index += 2
                if depth == 0:
                    return index
            else:
                index += 1
        if strict:
            raise ParseError("Unterminated block comment", position=pos)
        return len(text)
    return None


def strip_sql_comments(sql: str) -> str:
    """Remove ``--`` and ``/* */`` comments outside literals and quoted names."""
    pieces: List[str] = []
    index = start = 0
    while index < len(sql):
        end = _comment_end(sql, index, strict=False)
        if end is not None:
            pieces.append(sql[start:index])
            if sql.startswith("/*", index):
                pieces.append(" ")
            index = start = end
            continue
        end = _literal_end(sql, index, strict=False)
        index = end if end is not None else index + 1
    pieces.append(sql[start:])
    return "".join(pieces)


def split_statements(sql: str) -> List[str]:
    """Split a script at top-level semicolons."""
    statements: List[str] = []
    index = start = 0
    while index < len(sql):
        end = _comment_end(sql, index, strict=False)
        if end is None:
            end = _literal_end(sql, index, strict=False)
        if end is not None:
            index = end
            continue
        if sql[index] == ";":
            statements.append(sql[start:index])
            start = index + 1
        index += 1
    statements.append(sql[start:])
    return [statement.strip() for statement in statements if statement.strip()]


def tokenize(text: str, max_depth: int = 64) -> List[Token]:
    """Tokenize one statement, checking parenthesis balance and depth."""
    tokens: List[Token] = []
    index = 0
    depth = 0
    while index < len(text):
        char = text[index]
        if char.isspace():
            index += 1
            continue

        end = _comment_end(text, index, strict=True)
        if end is not None:
            index = end
            continue

        end = _literal_end(text, index, strict=True)
        if end is not None:
            if char == '"':
                tokens.append(Token(QUOTED, text[index + 1:end - 1].replace('""', '"'), index, end))
            else:
                tokens.append(Token(STRING if char == "'" else DOLLAR, text[index:end], index, end))
            index = end
            continue

        match = _WORD.match(text, index)
        if match:
            end = match.end()
            if match.group(0) in ("E", "e") and end < len(text) and text[end] == "'":
                end = _literal_end(text, end, strict=True)
                tokens.append(Token(STRING, text[index:end], index, end))
            else:
                tokens.append(Token(WORD, match.group(0), index, end))
            index = end
            continue

        match = _NUMBER.match(text, index)
        if match and match.end() > index:
            tokens.append(Token(NUMBER, match.group(0), index, match.end()))
            index = match.end()
            continue

        if char == "(":
            depth += 1
            if depth > max_depth:
                raise ParseError(f"Parentheses nested deeper than {max_depth} levels", position=index)
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ParseError("Unbalanced parentheses: unexpected ')'", position=index)

        if char in "(),;.":
            tokens.append(Token(PUNCT, char, index, index + 1))
            index += 1
        elif text.startswith("::", index):
            tokens.append(Token(OP, "::", index, index + 2))
            index += 2
        else:
            tokens.append(Token(OP, char, index, index + 1))
            index += 1

    if depth > 0:
        raise ParseError("Unbalanced parentheses: missing ')'", position=len(text))
    return tokens


def _split_tokens(tokens: List[Token]) -> List[List[Token]]:
    """Split tokens at commas that are not inside parentheses."""
    pieces: List[List[Token]] = [[]]
    depth = 0
    for token in tokens:
        if token.kind == PUNCT:
            if token.value == "(":
                depth += 1
            elif token.value == ")":
                depth -= 1
            elif token.value == "," and depth == 0:
                pieces.append([])
                continue
        pieces[-1].append(token)
    if len(pieces) == 1 and not pieces[0]:
        return []
    return pieces


def split_top_level(text: str) -> List[str]:
    """Split a clause list at top-level commas, e.g. a CREATE TABLE body."""
    return [
        text[piece[0].start:piece[-1].end]
        for piece in _split_tokens(tokenize(text))
        if piece
    ]


def _unquote_string(literal: str) -> str:
    if literal[:1] in ("E", "e"):
        body = literal[2:-1]
        body = re.sub(r"\\(.)", lambda match: {"n": "\n", "t": "\t", "r": "\r"}.get(match.group(1), match.group(1)), body)
        return body.replace("''", "'")
    return literal[1:-1].replace("''", "'")


def _dollar_body(literal: str) -> str:
    delimiter = _DOLLAR_TAG.match(literal).group(0)
    body = literal[len(delimiter):len(literal) - len(delimiter)]
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    if body.endswith("\r\n"):
        body = body[:-2]
    elif body.endswith("\n"):
        body = body[:-1]
    return body


def _snippet(statement: str, limit: int = 200) -> str:
    text = _WHITESPACE.sub(" ", statement).strip()
    return text if len(text) <= limit else text[:limit - 3] + "..."


# =============================================================================
# TOKEN CURSOR
# =============================================================================


class _Cursor:
    """Position in a token list, with keyword helpers."""

    def __init__(self, tokens: List[Token], text: str, fold: bool = False):
        self.tokens = tokens
        self.text = text
        self.fold = fold
        self.pos = 0

    def sub(self, tokens: List[Token]) -> "_Cursor":
        return _Cursor(tokens, self.text, self.fold)

    def peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def near(self) -> str:
        token = self.peek()
        return f" near '{token.value}'" if token else " at end of statement"

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise ParseError("Unexpected end of statement", position=len(self.text))
        self.pos += 1
        return token

    def remaining(self) -> List[Token]:
        return self.tokens[self.pos:]

    def at_keyword(self, *words: str) -> bool:
        for offset, word in enumerate(words):
            token = self.peek(offset)
            if token is None or token.keyword != word:
                return False
        return True

    def accept(self, *words: str) -> bool:
        if self.at_keyword(*words):
            self.pos += len(words)
            return True
        return False

    def expect(self, *words: str) -> None:
        if not self.accept(*words):
            raise ParseError(f"Expected {' '.join(words)}{self.near()}", position=self._offset())

    def at_punct(self, char: str) -> bool:
        token = self.peek()
        return token is not None and token.kind == PUNCT and token.value == char

    def accept_punct(self, char: str) -> bool:
        if self.at_punct(char):
            self.pos += 1
            return True
        return False

    def identifier(self, what: str = "identifier") -> str:
        token = self.peek()
        if token is None or token.kind not in (WORD, QUOTED):
            raise ParseError(f"Expected {what}{self.near()}", position=self._offset())
        self.pos += 1
        if token.kind == QUOTED:
            if not token.value:
                raise ParseError("Zero-length quoted identifier", position=token.start)
            return token.value
        return token.value.lower() if self.fold else token.value

    def qualified_name(self, what: str) -> Tuple[Optional[str], str]:
        """Read ``[schema.]name``; catalog qualifiers are dropped."""
        parts = [self.identifier(what)]
        while self.accept_punct("."):
            parts.append(self.identifier(what))
        return (parts[-2] if len(parts) > 1 else None), parts[-1]

    def group(self) -> Tuple[List[Token], str]:
        """Consume a parenthesized group; return its inner tokens and source text."""
        opening = self.peek()
        if not self.accept_punct("("):
            raise ParseError(f"Expected '('{self.near()}", position=self._offset())
        start = self.pos
        depth = 1
        while depth:
            token = self.advance()
            if token.kind == PUNCT and token.value == "(":
                depth += 1
            elif token.kind == PUNCT and token.value == ")":
                depth -= 1
        closing = self.tokens[self.pos - 1]
        return self.tokens[start:self.pos - 1], self.text[opening.end:closing.start].strip()

    def identifier_list(self, what: str) -> List[str]:
        inner, _ = self.group()
        names = []
        for piece in _split_tokens(inner):
            item = self.sub(piece)
            names.append(item.identifier(what))
            if not item.at_end():
                raise ParseError(f"Unexpected '{item.peek().value}' in {what} list", position=item.peek().start)
        if not names:
            raise ParseError(f"Empty {what} list", position=self._offset())
        return names

    def span(self, tokens: List[Token]) -> str:
        if not tokens:
            return ""
        return self.text[tokens[0].start:tokens[-1].end]

    def take_until(self, stop: frozenset) -> str:
        """Consume tokens up to a top-level keyword in ``stop``; return their text."""
        start = self.pos
        depth = 0
        while not self.at_end():
            token = self.peek()
            if depth == 0 and token.keyword in stop:
                break
            if token.kind == PUNCT and token.value == "(":
                depth += 1
            elif token.kind == PUNCT and token.value == ")":
                depth -= 1
            self.pos += 1
        return self.span(self.tokens[start:self.pos])

    def take_rest(self) -> str:
        return self.take_until(frozenset())

    def _offset(self) -> Optional[int]:
        token = self.peek()
        return token.start if token else len(self.text)


# =============================================================================
# STATEMENT PARSER
# =============================================================================


_STATEMENTS = [
    (re.compile(r"CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:(?:TEMP|TEMPORARY|UNLOGGED)\s+)?TABLE\b", re.I), "create_table"),
    (re.compile(r"ALTER\s+TABLE\b", re.I), "alter_table"),
    (re.compile(r"COMMENT\s+ON\s+(?:TABLE|COLUMN)\b", re.I), "comment_on"),
    (re.compile(r"CREATE\s+(?:UNIQUE\s+)?INDEX\b", re.I), "create_index"),
    (re.compile(r"CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\b", re.I), "create_function"),
    (re.compile(r"CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\b", re.I), "create_trigger"),
    (re.compile(r"CREATE\s+POLICY\b", re.I), "create_policy"),
]

_TABLE_STATEMENTS = frozenset({"create_table", "alter_table", "comment_on"})


class SqlScriptParser:
    """Parses a script statement by statement into a ``ParseResult``."""

    def __init__(self, fold_identifiers: bool = False, max_depth: int = 64):
        self.fold = fold_identifiers
        self.max_depth = max_depth
        self.result = ParseResult()
        self._tables: Dict[str, ParsedTable] = {}

    def parse(self, sql: str, strict: bool = False, tables_only: bool = False) -> ParseResult:
        statements = split_statements(strip_sql_comments(sql or ""))
        for index, statement in enumerate(statements):
            kind = self._classify(statement)
            if kind is None or (tables_only and kind not in _TABLE_STATEMENTS):
                logger.debug("Skipping statement %d: %s", index + 1, _snippet(statement, 60))
                continue
            try:
                cursor = _Cursor(tokenize(statement, self.max_depth), statement, self.fold)
                getattr(self, f"_{kind}")(cursor)
            except ParseError as exc:
                if strict:
                    raise ParseError(exc.message, statement_index=index, position=exc.position) from exc
                logger.warning("Statement %d could not be parsed: %s", index + 1, exc.message)
                self.result.errors.append(
                    StatementError(statement_index=index, message=exc.message, statement=_snippet(statement))
                )

        logger.debug(
            "Parsed %d tables, %d indexes, %d functions, %d triggers, %d policies (%d errors)",
            len(self.result.tables), len(self.result.indexes), len(self.result.functions),
            len(self.result.triggers), len(self.result.policies), len(self.result.errors),
        )
        return self.result

    @staticmethod
    def _classify(statement: str) -> Optional[str]:
        for pattern, kind in _STATEMENTS:
            if pattern.match(statement):
                return kind
        return None

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    def _create_table(self, cursor: _Cursor) -> None:
        cursor.expect("CREATE")
        if not cursor.accept("GLOBAL"):
            cursor.accept("LOCAL")
        for word in ("TEMP", "TEMPORARY", "UNLOGGED"):
            if cursor.accept(word):
                break
        cursor.expect("TABLE")
        cursor.accept("IF", "NOT", "EXISTS")

        if cursor.at_end() or cursor.at_punct("("):
            raise ParseError("Missing table name", position=cursor._offset())
        schema, name = cursor.qualified_name("table name")

        if cursor.at_keyword("AS") or cursor.at_keyword("OF") or cursor.at_keyword("PARTITION", "OF"):
            raise ParseError(f"Unsupported CREATE TABLE form for table {name}{cursor.near()}")
        if not cursor.at_punct("("):
            raise ParseError(f"Missing column list for table {name}", position=cursor._offset())

        inner, _ = cursor.group()
        table = ParsedTable(name=name, schema_name=schema)
        constraints = []
        for clause in _split_tokens(inner):
            if not clause:
                raise ParseError(f"Empty definition in table {name}")
            item = cursor.sub(clause)
            if self._is_table_constraint(item):
                constraints.append(item)
            else:
                self._column(item, table)

        if not table.columns:
            raise ParseError(f"Table {name} has no columns")

        # Table-level clauses apply after every column is known
        for item in constraints:
            self._table_constraint(item, table)

        self.result.tables.append(table)
        self._tables[table.name] = table

    @staticmethod
    def _is_table_constraint(cursor: _Cursor) -> bool:
        token = cursor.peek()
        if token is None or token.kind != WORD:
            return False
        word = token.keyword
        following = cursor.peek(1)
        if word in ("CONSTRAINT", "LIKE"):
            return True
        if word in ("PRIMARY", "FOREIGN"):
            return following is not None and following.keyword == "KEY"
        if word in ("UNIQUE", "CHECK", "EXCLUDE"):
            return following is not None and (
                following.value == "(" or following.keyword in ("NULLS", "USING")
            )
        return False

    def _column(self, cursor: _Cursor, table: ParsedTable) -> None:
        name = cursor.identifier("column name")
        type_text = cursor.take_until(COLUMN_CONSTRAINT_KEYWORDS)
        if not type_text:
            raise ParseError(f"Column {name} has no data type", position=cursor._offset())
        column = ParsedColumn(name=name, type=normalize_data_type(type_text))

        constraint_name = None
        while not cursor.at_end():
            if cursor.accept("CONSTRAINT"):
                constraint_name = cursor.identifier("constraint name")
                continue
            if cursor.accept("NOT", "NULL"):
                column.nullable = False
            elif cursor.accept("NOT", "DEFERRABLE") or cursor.accept("DEFERRABLE"):
                pass
            elif cursor.accept("INITIALLY"):
                cursor.advance()
            elif cursor.accept("NULL"):
                column.nullable = True
            elif cursor.accept("PRIMARY", "KEY"):
                column.primary_key = True
                column.nullable = False
            elif cursor.accept("UNIQUE"):
                column.unique = True
                if not cursor.accept("NULLS", "NOT", "DISTINCT"):
                    cursor.accept("NULLS", "DISTINCT")
            elif cursor.accept("DEFAULT"):
                column.default_value = self._default_expression(cursor, name)
            elif cursor.accept("REFERENCES"):
                column.foreign_key = self._references(cursor, table.name, [name], constraint_name)[0]
            elif cursor.accept("CHECK"):
                _, expression = cursor.group()
                table.constraints.append(
                    TableConstraint(name=constraint_name, constraint_type="CHECK", expression=expression)
                )
            elif cursor.accept("COLLATE"):
                cursor.qualified_name("collation")
            elif cursor.at_keyword("GENERATED"):
                column.generated = self._generated_clause(cursor)
            else:
                raise ParseError(f"Unexpected '{cursor.peek().value}' in column {name}", position=cursor._offset())
            constraint_name = None

        table.columns.append(column)

    @staticmethod
    def _default_expression(cursor: _Cursor, column: str) -> str:
        start = cursor.pos
        if cursor.accept("NULL"):
            following = cursor.peek()
            if following is None or following.keyword in _DEFAULT_STOP:
                return "NULL"
            # NULL::character varying and similar casts
            cursor.take_until(_DEFAULT_STOP)
            return cursor.span(cursor.tokens[start:cursor.pos])
        expression = cursor.take_until(_DEFAULT_STOP)
        if not expression:
            raise ParseError(f"DEFAULT without a value in column {column}", position=cursor._offset())
        return expression

    @staticmethod
    def _generated_clause(cursor: _Cursor) -> str:
        """Read an identity or generated-column clause; return it as written."""
        start = cursor.pos
        cursor.expect("GENERATED")
        if not (cursor.accept("ALWAYS") or cursor.accept("BY", "DEFAULT")):
            raise ParseError(f"Malformed GENERATED clause{cursor.near()}", position=cursor._offset())
        cursor.expect("AS")
        if cursor.accept("IDENTITY"):
            if cursor.at_punct("("):
                cursor.group()
        else:
            cursor.group()
            cursor.accept("STORED")
        return cursor.span(cursor.tokens[start:cursor.pos])

    @staticmethod
    def _action(cursor: _Cursor) -> str:
        for words in (("CASCADE",), ("RESTRICT",), ("NO", "ACTION"), ("SET", "NULL")):
            if cursor.accept(*words):
                return " ".join(words)
        raise ParseError(f"Unsupported referential action{cursor.near()}", position=cursor._offset())

    def _references(
        self,
        cursor: _Cursor,
        table: str,
        columns: List[str],
        constraint_name: Optional[str],
    ) -> List[ParsedForeignKey]:
        """Read ``REFERENCES target[(cols)] [actions]``; one descriptor per source column."""
        _, target = cursor.qualified_name("referenced table")
        target_fields = cursor.identifier_list("referenced column") if cursor.at_punct("(") else []

        on_delete = on_update = None
        while True:
            if cursor.accept("ON", "DELETE"):
                on_delete = self._action(cursor)
            elif cursor.accept("ON", "UPDATE"):
                on_update = self._action(cursor)
            elif cursor.accept("MATCH"):
                cursor.advance()
            elif cursor.accept("NOT", "DEFERRABLE") or cursor.accept("DEFERRABLE"):
                pass
            elif cursor.accept("INITIALLY"):
                cursor.advance()
            else:
                break

        if target_fields and len(target_fields) != len(columns):
            raise ParseError(
                f"Foreign key on {table}({', '.join(columns)}) references "
                f"{len(target_fields)} column(s) of {target}"
            )
        if not target_fields and len(columns) > 1:
            raise ParseError(f"Multi-column foreign key on {table} needs an explicit referenced column list")

        default_name = foreign_key_name(table, columns)
        if len(columns) > 1:
            stored_name = constraint_name or default_name
        elif constraint_name and constraint_name != default_name:
            stored_name = constraint_name
        else:
            stored_name = None

        return [
            ParsedForeignKey(
                table=target,
                field=target_fields[position] if target_fields else None,
                on_delete=on_delete,
                on_update=on_update,
                constraint_name=stored_name,
            )
            for position in range(len(columns))
        ]

    @staticmethod
    def _require_column(table: ParsedTable, name: str, clause: str) -> ParsedColumn:
        column = table.find_column(name)
        if column is None:
            raise ParseError(f"{clause} references unknown column {name} in table {table.name}")
        return column

    def _table_constraint(self, cursor: _Cursor, table: ParsedTable) -> None:
        constraint_name = cursor.identifier("constraint name") if cursor.accept("CONSTRAINT") else None

        if cursor.accept("PRIMARY", "KEY"):
            for name in cursor.identifier_list("primary key column"):
                column = self._require_column(table, name, "PRIMARY KEY")
                column.primary_key = True
                column.nullable = False
        elif cursor.accept("UNIQUE"):
            if not cursor.accept("NULLS", "NOT", "DISTINCT"):
                cursor.accept("NULLS", "DISTINCT")
            names = cursor.identifier_list("unique column")
            columns = [self._require_column(table, name, "UNIQUE") for name in names]
            if len(columns) == 1:
                columns[0].unique = True
            else:
                if constraint_name == unique_constraint_name(table.name, names):
                    constraint_name = None
                table.constraints.append(
                    TableConstraint(name=constraint_name, constraint_type="UNIQUE", columns=names)
                )
        elif cursor.accept("FOREIGN", "KEY"):
            names = cursor.identifier_list("foreign key column")
            cursor.expect("REFERENCES")
            keys = self._references(cursor, table.name, names, constraint_name)
            for name, key in zip(names, keys):
                # Table-level clauses override inline REFERENCES
                self._require_column(table, name, "FOREIGN KEY").foreign_key = key
        elif cursor.accept("CHECK"):
            _, expression = cursor.group()
            table.constraints.append(
                TableConstraint(name=constraint_name, constraint_type="CHECK", expression=expression)
            )
            cursor.accept("NO", "INHERIT")
        elif cursor.at_keyword("EXCLUDE") or cursor.at_keyword("LIKE"):
            logger.debug("Ignoring %s clause in table %s", cursor.peek().keyword, table.name)
            return
        else:
            raise ParseError(f"Unrecognized constraint in table {table.name}{cursor.near()}")

        while cursor.accept("NOT", "DEFERRABLE") or cursor.accept("DEFERRABLE") or cursor.accept("INITIALLY"):
            if cursor.tokens[cursor.pos - 1].keyword == "INITIALLY":
                cursor.advance()
        if not cursor.at_end():
            raise ParseError(
                f"Unexpected '{cursor.peek().value}' in constraint of table {table.name}",
                position=cursor._offset(),
            )

    def _alter_table(self, cursor: _Cursor) -> None:
        cursor.expect("ALTER", "TABLE")
        cursor.accept("IF", "EXISTS")
        cursor.accept("ONLY")
        _, name = cursor.qualified_name("table name")

        original = self._tables.get(name)
        working = original.model_copy(deep=True) if original is not None else None
        enable_rls = False
        trigger_states: Dict[str, bool] = {}

        for action in _split_tokens(cursor.remaining()):
            item = cursor.sub(action)
            if item.accept("ENABLE", "ROW", "LEVEL", "SECURITY") or item.accept("FORCE", "ROW", "LEVEL", "SECURITY"):
                enable_rls = True
            elif item.at_keyword("ENABLE", "TRIGGER") or item.at_keyword("DISABLE", "TRIGGER"):
                enabled = item.advance().keyword == "ENABLE"
                item.advance()
                trigger_states[item.identifier("trigger name")] = enabled
            elif item.accept("ADD"):
                if working is None:
                    logger.warning("Skipping ALTER TABLE ADD on %s, which is not defined in this script", name)
                    continue
                if self._is_table_constraint(item):
                    self._table_constraint(item, working)
                else:
                    item.accept("COLUMN")
                    item.accept("IF", "NOT", "EXISTS")
                    self._column(item, working)
            else:
                logger.debug("Ignoring ALTER TABLE action on %s%s", name, item.near())

        if working is not None:
            self._replace_table(original, working)
        if enable_rls and name not in self.result.rls_tables:
            self.result.rls_tables.append(name)
        for trigger in self.result.triggers:
            if trigger.table_name == name and trigger.name in trigger_states:
                trigger.is_active = trigger_states[trigger.name]

    def _replace_table(self, original: ParsedTable, replacement: ParsedTable) -> None:
        for index, table in enumerate(self.result.tables):
            if table is original:
                self.result.tables[index] = replacement
        self._tables[replacement.name] = replacement

    def _comment_on(self, cursor: _Cursor) -> None:
        cursor.expect("COMMENT", "ON")
        if cursor.accept("TABLE"):
            _, table_name = cursor.qualified_name("table name")
            column_name = None
        else:
            cursor.expect("COLUMN")
            parts = [cursor.identifier("column name")]
            while cursor.accept_punct("."):
                parts.append(cursor.identifier("column name"))
            if len(parts) < 2:
                raise ParseError("COMMENT ON COLUMN needs a table-qualified column name")
            table_name, column_name = parts[-2], parts[-1]

        cursor.expect("IS")
        token = cursor.advance()
        if token.keyword == "NULL":
            text = None
        elif token.kind == STRING:
            text = _unquote_string(token.value)
        else:
            raise ParseError(f"Expected a string literal after IS, got '{token.value}'", position=token.start)

        table = self._tables.get(table_name)
        if table is None:
            logger.warning("Skipping COMMENT ON %s, which is not defined in this script", table_name)
            return
        if column_name is None:
            table.comment = text
        else:
            self._require_column(table, column_name, "COMMENT ON COLUMN").comment = text

    # -------------------------------------------------------------------------
    # Indexes, functions, triggers, policies
    # -------------------------------------------------------------------------

    def _create_index(self, cursor: _Cursor) -> None:
        cursor.expect("CREATE")
        unique = cursor.accept("UNIQUE")
        cursor.expect("INDEX")
        cursor.accept("CONCURRENTLY")
        cursor.accept("IF", "NOT", "EXISTS")
        name = None
        if not cursor.at_keyword("ON"):
            _, name = cursor.qualified_name("index name")
        cursor.expect("ON")
        cursor.accept("ONLY")
        _, table_name = cursor.qualified_name("table name")

        method = "BTREE"
        if cursor.accept("USING"):
            method = cursor.advance().value.upper()
            if method not in INDEX_TYPES:
                raise ParseError(f"Unsupported index method {method}")
        if not cursor.at_punct("("):
            raise ParseError(f"Missing column list for index on {table_name}", position=cursor._offset())

        inner, _ = cursor.group()
        columns = [self._index_column(cursor.sub(piece)) for piece in _split_tokens(inner)]
        if not columns:
            raise ParseError(f"Index on {table_name} has no columns")

        where_clause = None
        while not cursor.at_end():
            if cursor.accept("INCLUDE") or cursor.accept("WITH"):
                cursor.group()
            elif cursor.accept("TABLESPACE"):
                cursor.identifier("tablespace")
            elif cursor.accept("NULLS", "NOT", "DISTINCT") or cursor.accept("NULLS", "DISTINCT"):
                pass
            elif cursor.accept("WHERE"):
                where_clause = cursor.take_rest()
                if not where_clause:
                    raise ParseError(f"Empty WHERE clause for index on {table_name}")
            else:
                raise ParseError(f"Unexpected{cursor.near()} in CREATE INDEX", position=cursor._offset())

        if name is None:
            plain = [column.split(" ")[0] for column in columns if "(" not in column]
            name = index_name(table_name, plain or ["expr"])

        self.result.indexes.append(DatabaseIndex(
            name=name,
            table_name=table_name,
            columns=columns,
            index_type=method,
            is_unique=unique,
            is_partial=where_clause is not None,
            where_clause=where_clause,
        ))

    @staticmethod
    def _index_column(cursor: _Cursor) -> str:
        """A plain column (with optional ordering) or an expression kept as text."""
        first = cursor.peek()
        if first is None:
            raise ParseError("Empty index column")
        following = cursor.peek(1)
        if first.kind in (WORD, QUOTED) and (following is None or following.keyword in _INDEX_ORDERING):
            name = cursor.identifier("index column")
            ordering = [token.value.upper() for token in cursor.remaining()]
            if any(word not in _INDEX_ORDERING for word in ordering):
                raise ParseError(f"Unexpected ordering for index column {name}")
            return " ".join([name] + ordering)
        return cursor.take_rest()

    def _create_function(self, cursor: _Cursor) -> None:
        cursor.expect("CREATE")
        cursor.accept("OR", "REPLACE")
        cursor.expect("FUNCTION")
        _, name = cursor.qualified_name("function name")
        if not cursor.at_punct("("):
            raise ParseError(f"Missing parameter list for function {name}", position=cursor._offset())
        inner, _ = cursor.group()
        parameters = [self._parameter(cursor.sub(piece)) for piece in _split_tokens(inner)]

        return_type = language = body = None
        security_definer = False
        while not cursor.at_end():
            if cursor.accept("RETURNS"):
                if cursor.accept("NULL", "ON", "NULL", "INPUT"):
                    continue
                return_type = _WHITESPACE.sub(" ", cursor.take_until(_FUNCTION_OPTIONS))
            elif cursor.accept("LANGUAGE"):
                token = cursor.advance()
                language = (_unquote_string(token.value) if token.kind == STRING else token.value).lower()
            elif cursor.accept("AS"):
                token = cursor.advance()
                if token.kind == DOLLAR:
                    body = _dollar_body(token.value)
                elif token.kind == STRING:
                    body = _unquote_string(token.value)
                else:
                    raise ParseError(f"Expected a function body after AS in function {name}", position=token.start)
                if cursor.accept_punct(","):
                    cursor.advance()
            elif cursor.accept("EXTERNAL") or cursor.at_keyword("SECURITY"):
                cursor.expect("SECURITY")
                security_definer = cursor.advance().keyword == "DEFINER"
            elif cursor.accept("CALLED", "ON", "NULL", "INPUT") or cursor.accept("NOT", "LEAKPROOF"):
                pass
            elif cursor.accept("SET"):
                cursor.take_until(_FUNCTION_OPTIONS)
            elif cursor.peek().keyword in _FUNCTION_VALUED_OPTIONS:
                cursor.advance()
                cursor.advance()
            elif cursor.peek().keyword in _FUNCTION_FLAGS:
                cursor.advance()
            else:
                raise ParseError(f"Unexpected{cursor.near()} in function {name}", position=cursor._offset())

        if body is None:
            raise ParseError(f"Function {name} has no body")

        self.result.functions.append(DatabaseFunction(
            name=name,
            parameters=parameters,
            return_type=return_type,
            language=language or "plpgsql",
            function_body=body,
            security_definer=security_definer,
        ))

    def _parameter(self, cursor: _Cursor) -> FunctionParameter:
        tokens = cursor.remaining()
        if len(tokens) > 1 and tokens[0].keyword in ("IN", "OUT", "INOUT", "VARIADIC"):
            tokens = tokens[1:]

        default = None
        depth = 0
        for position, token in enumerate(tokens):
            if token.kind == PUNCT and token.value in "()":
                depth += 1 if token.value == "(" else -1
            elif depth == 0 and (token.keyword == "DEFAULT" or (token.kind == OP and token.value == "=")):
                default = cursor.span(tokens[position + 1:])
                tokens = tokens[:position]
                break
        if not tokens:
            raise ParseError("Empty function parameter")

        name = ""
        if len(tokens) > 1 and tokens[0].kind in (WORD, QUOTED) and base_data_type(cursor.span(tokens)) is None:
            name = cursor.sub(tokens[:1]).identifier("parameter name")
            tokens = tokens[1:]
        return FunctionParameter(name=name, type=normalize_data_type(cursor.span(tokens)), default=default or None)

    def _create_trigger(self, cursor: _Cursor) -> None:
        cursor.expect("CREATE")
        cursor.accept("OR", "REPLACE")
        cursor.accept("CONSTRAINT")
        cursor.expect("TRIGGER")
        name = cursor.identifier("trigger name")

        if cursor.accept("INSTEAD", "OF"):
            timing = "INSTEAD OF"
        elif cursor.accept("BEFORE"):
            timing = "BEFORE"
        elif cursor.accept("AFTER"):
            timing = "AFTER"
        else:
            raise ParseError(f"Expected BEFORE, AFTER or INSTEAD OF{cursor.near()}", position=cursor._offset())

        events = [self._trigger_event(cursor)]
        while cursor.accept("OR"):
            events.append(self._trigger_event(cursor))
        if len(events) > 1:
            raise ParseError(f"Trigger {name} fires on {' OR '.join(events)}; only one event per trigger is supported")

        cursor.expect("ON")
        _, table_name = cursor.qualified_name("table name")

        for_each = "STATEMENT"
        conditions = function_name = None
        while not cursor.at_end():
            if cursor.accept("FOR"):
                cursor.accept("EACH")
                if cursor.accept("ROW"):
                    for_each = "ROW"
                else:
                    cursor.expect("STATEMENT")
                    for_each = "STATEMENT"
            elif cursor.accept("WHEN"):
                _, conditions = cursor.group()
            elif cursor.accept("EXECUTE"):
                if not cursor.accept("FUNCTION"):
                    cursor.expect("PROCEDURE")
                _, function_name = cursor.qualified_name("trigger function")
                if cursor.at_punct("("):
                    cursor.group()
            elif cursor.accept("FROM"):
                cursor.qualified_name("referenced table")
            elif cursor.accept("NOT", "DEFERRABLE") or cursor.accept("DEFERRABLE"):
                pass
            elif cursor.accept("INITIALLY"):
                cursor.advance()
            elif cursor.accept("REFERENCING"):
                while cursor.accept("OLD") or cursor.accept("NEW"):
                    cursor.expect("TABLE")
                    cursor.accept("AS")
                    cursor.identifier("transition relation")
            else:
                raise ParseError(f"Unexpected{cursor.near()} in trigger {name}", position=cursor._offset())

        if function_name is None:
            raise ParseError(f"Trigger {name} has no EXECUTE FUNCTION clause")

        self.result.triggers.append(DatabaseTrigger(
            name=name,
            table_name=table_name,
            trigger_event=events[0],
            trigger_timing=timing,
            function_name=function_name,
            for_each=for_each,
            conditions=conditions,
        ))

    @staticmethod
    def _trigger_event(cursor: _Cursor) -> str:
        token = cursor.advance()
        event = token.keyword
        if event not in ("INSERT", "UPDATE", "DELETE", "TRUNCATE"):
            raise ParseError(f"Unknown trigger event '{token.value}'", position=token.start)
        if event == "UPDATE" and cursor.accept("OF"):
            cursor.identifier("column name")
            while cursor.accept_punct(","):
                cursor.identifier("column name")
        return event

    def _create_policy(self, cursor: _Cursor) -> None:
        cursor.expect("CREATE", "POLICY")
        name = cursor.identifier("policy name")
        cursor.expect("ON")
        _, table_name = cursor.qualified_name("table name")

        permissive = True
        command = "ALL"
        roles: List[str] = []
        using_expression = with_check_expression = None
        while not cursor.at_end():
            if cursor.accept("AS"):
                if cursor.accept("RESTRICTIVE"):
                    permissive = False
                else:
                    cursor.expect("PERMISSIVE")
                    permissive = True
            elif cursor.accept("FOR"):
                token = cursor.advance()
                if token.keyword not in POLICY_COMMANDS:
                    raise ParseError(f"Unknown policy command '{token.value}'", position=token.start)
                command = token.keyword
            elif cursor.accept("TO"):
                roles = [cursor.identifier("role")]
                while cursor.accept_punct(","):
                    roles.append(cursor.identifier("role"))
            elif cursor.accept("USING"):
                _, using_expression = cursor.group()
            elif cursor.accept("WITH", "CHECK"):
                _, with_check_expression = cursor.group()
            else:
                raise ParseError(f"Unexpected{cursor.near()} in policy {name}", position=cursor._offset())

        self.result.policies.append(DatabasePolicy(
            name=name,
            table_name=table_name,
            command=command,
            role=", ".join(roles) or "public",
            using_expression=using_expression,
            with_check_expression=with_check_expression,
            is_permissive=permissive,
        ))


# =============================================================================
# PUBLIC API
# =============================================================================


def _make_parser(fold_identifiers: Optional[bool], max_depth: Optional[int]) -> SqlScriptParser:
    settings = get_settings()
    return SqlScriptParser(
        fold_identifiers=settings.fold_identifiers if fold_identifiers is None else fold_identifiers,
        max_depth=max_depth or settings.max_nesting_depth,
    )


def parse_sql(
    sql: str,
    fold_identifiers: Optional[bool] = None,
    max_depth: Optional[int] = None,
) -> ParseResult:
    """Parse a whole script, collecting one error per failed statement.

    Args:
        sql: SQL text with any number of statements
        fold_identifiers: Lower-case unquoted identifiers like Postgres does.
            Defaults to the ``JETSCHEMA_FOLD_IDENTIFIERS`` setting.
        max_depth: Maximum parenthesis nesting per statement

    Returns:
        ParseResult with every object that parsed, plus the errors
    """
    return _make_parser(fold_identifiers, max_depth).parse(sql)


def parse_create_table_statements(
    sql: str,
    fold_identifiers: Optional[bool] = None,
    max_depth: Optional[int] = None,
) -> List[ParsedTable]:
    """Parse the tables of a script.

    Returns an empty list when the text has no CREATE TABLE statements.

    Raises:
        ParseError: On the first table statement (CREATE TABLE, ALTER TABLE,
            COMMENT ON) that cannot be parsed
    """
    return _make_parser(fold_identifiers, max_depth).parse(sql, strict=True, tables_only=True).tables
