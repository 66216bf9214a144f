"""Exceptions raised by the SQL round-trip core."""

from typing import Dict, Iterable, List, Optional


class JetSchemaError(Exception):
    """Base class for schema round-trip errors."""
    pass


class ParseError(JetSchemaError):
    """Malformed DDL that cannot be read."""

    def __init__(
        self,
        message: str,
        statement_index: Optional[int] = None,
        position: Optional[int] = None,
    ):
        self.message = message
        self.statement_index = statement_index
        self.position = position
        super().__init__(self._format())

    def _format(self) -> str:
        location = []
        if self.statement_index is not None:
            location.append(f"statement {self.statement_index + 1}")
        if self.position is not None:
            location.append(f"offset {self.position}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class ConflictError(JetSchemaError):
    """Duplicate table names found while importing."""

    def __init__(self, names: Iterable[str]):
        self.names: List[str] = list(names)
        super().__init__(f"Conflicting table names: {', '.join(self.names)}")


class GenerationError(JetSchemaError):
    """The canonical model breaks an invariant and cannot be emitted."""

    def __init__(self, entity: str, violations: Iterable[str]):
        self.entity = entity
        self.violations: List[str] = list(violations)
        super().__init__(f"Cannot generate SQL for {entity}: {'; '.join(self.violations)}")


class DuplicateColumnError(JetSchemaError):
    """Imported tables define the same column name more than once."""

    def __init__(self, duplicates: Dict[str, List[str]]):
        self.duplicates = dict(duplicates)
        described = "; ".join(f"{table}: {', '.join(names)}" for table, names in self.duplicates.items())
        super().__init__(f"Duplicate column names: {described}")
