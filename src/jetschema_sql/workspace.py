"""In-memory schema of one project, with change notifications."""

import logging
import uuid
from typing import List, Optional

from .errors import ConflictError
from .events import ChangeBus, SchemaChange
from .importer import ImportAction, import_sql
from .schema_model import (
    DatabaseFunction,
    DatabaseIndex,
    DatabasePolicy,
    DatabaseSchema,
    DatabaseTrigger,
    ImportResult,
    LintReport,
)
from .sql_exporter import SqlExporter, SqlExportOptions
from .validation import lint_schema

logger = logging.getLogger(__name__)


class SchemaWorkspace:
    """Owns a project's schema and publishes every mutation on the bus."""

    def __init__(
        self,
        project_id: str,
        schema: Optional[DatabaseSchema] = None,
        bus: Optional[ChangeBus] = None,
    ):
        self.project_id = project_id
        self.schema = schema.model_copy(deep=True) if schema is not None else DatabaseSchema()
        self.bus = bus or ChangeBus()

    def _publish(self, entity: str, action: str, name: str) -> None:
        self.bus.publish(SchemaChange(project_id=self.project_id, entity=entity, action=action, name=name))

    def _require_table(self, table_name: str) -> None:
        if self.schema.find_table(table_name) is None:
            raise KeyError(f"Table not found: {table_name}")

    # Tables

    def import_sql(
        self,
        sql: str,
        action: Optional[ImportAction] = None,
        fold_identifiers: Optional[bool] = None,
    ) -> ImportResult:
        """Import tables from SQL; nothing changes if the import is rejected."""
        result = import_sql(sql, self.schema.tables, action=action, fold_identifiers=fold_identifiers)
        if result.merged is None:
            return result
        self.schema.tables = result.merged
        for table in result.tables:
            self._publish("table", "imported", table.name)
        return result

    def remove_table(self, table_name: str) -> None:
        """Remove a table along with its indexes, triggers and policies."""
        self._require_table(table_name)
        self.schema.tables = [table for table in self.schema.tables if table.name != table_name]
        self.schema.indexes = [index for index in self.schema.indexes if index.table_name != table_name]
        self.schema.triggers = [trigger for trigger in self.schema.triggers if trigger.table_name != table_name]
        self.schema.policies = [policy for policy in self.schema.policies if policy.table_name != table_name]
        self.schema.rls_tables = [name for name in self.schema.rls_tables if name != table_name]
        self._publish("table", "deleted", table_name)

    # Indexes

    def _find_index(self, index_id: str) -> DatabaseIndex:
        for index in self.schema.indexes:
            if index.id == index_id:
                return index
        raise KeyError(f"Index not found: {index_id}")

    def add_index(self, index: DatabaseIndex) -> DatabaseIndex:
        self._require_table(index.table_name)
        if any(existing.name == index.name for existing in self.schema.indexes):
            raise ConflictError([index.name])
        index = index.model_copy(update={"id": index.id or str(uuid.uuid4())})
        self.schema.indexes.append(index)
        self._publish("index", "created", index.name)
        return index

    def update_index(self, index_id: str, **changes) -> DatabaseIndex:
        current = self._find_index(index_id)
        updated = DatabaseIndex.model_validate({**current.model_dump(), **changes, "id": index_id})
        if updated.name != current.name and any(index.name == updated.name for index in self.schema.indexes):
            raise ConflictError([updated.name])
        self.schema.indexes = [updated if index.id == index_id else index for index in self.schema.indexes]
        self._publish("index", "updated", updated.name)
        return updated

    def remove_index(self, index_id: str) -> None:
        index = self._find_index(index_id)
        self.schema.indexes = [other for other in self.schema.indexes if other.id != index_id]
        self._publish("index", "deleted", index.name)

    # Functions, triggers, policies

    def add_function(self, function: DatabaseFunction) -> DatabaseFunction:
        function = function.model_copy(update={"id": function.id or str(uuid.uuid4())})
        self.schema.functions.append(function)
        self._publish("function", "created", function.name)
        return function

    def add_trigger(self, trigger: DatabaseTrigger) -> DatabaseTrigger:
        self._require_table(trigger.table_name)
        trigger = trigger.model_copy(update={"id": trigger.id or str(uuid.uuid4())})
        self.schema.triggers.append(trigger)
        self._publish("trigger", "created", trigger.name)
        return trigger

    def add_policy(self, policy: DatabasePolicy) -> DatabasePolicy:
        self._require_table(policy.table_name)
        policy = policy.model_copy(update={"id": policy.id or str(uuid.uuid4())})
        self.schema.policies.append(policy)
        self._publish("policy", "created", policy.name)
        return policy

    def remove_policy(self, policy_id: str) -> None:
        removed: List[DatabasePolicy] = [policy for policy in self.schema.policies if policy.id == policy_id]
        if not removed:
            raise KeyError(f"Policy not found: {policy_id}")
        self.schema.policies = [policy for policy in self.schema.policies if policy.id != policy_id]
        self._publish("policy", "deleted", removed[0].name)

    def export(self, options: Optional[SqlExportOptions] = None) -> str:
        """Full export script of the current schema."""
        return SqlExporter(self.schema, options).generate_full_export()

    def lint(self) -> LintReport:
        return lint_schema(self.schema)
