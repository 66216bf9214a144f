"""Publish/subscribe channel for schema changes, keyed by project id.

Independent consumers of the same project (index list, policy list, SQL
preview) subscribe to a shared ``ChangeBus`` so they can refresh when one of
them mutates the schema. The bus is created by the application and passed to
whoever needs it.
"""

import logging
from typing import Callable, Dict, List, Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EntityKind = Literal["table", "index", "function", "trigger", "policy"]
ChangeAction = Literal["created", "updated", "deleted", "imported"]


class SchemaChange(BaseModel):
    project_id: str
    entity: EntityKind
    action: ChangeAction
    name: str


Subscriber = Callable[[SchemaChange], None]


class ChangeBus:
    """Delivers ``SchemaChange`` events to the subscribers of a project."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def subscribe(self, project_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subscribers.setdefault(project_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(project_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(project_id, None)

        return unsubscribe

    def subscriber_count(self, project_id: str) -> int:
        return len(self._subscribers.get(project_id, []))

    def publish(self, event: SchemaChange) -> int:
        """Deliver an event; returns how many subscribers received it.

        A subscriber that raises is logged and skipped.
        """
        delivered = 0
        # Copy so callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers.get(event.project_id, [])):
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber failed on %s %s %s in project %s",
                    event.entity, event.name, event.action, event.project_id,
                )
        return delivered
