"""Bidirectional email <-> actor correlation store."""

import logging
from dataclasses import dataclass

from src.core.errors import CorrelationConflictError


logger = logging.getLogger(__name__)


def normalize_identifier(identifier: str) -> str:
    """Normalize an email so lookups are case- and whitespace-insensitive."""
    return identifier.strip().lower()


@dataclass(frozen=True)
class CorrelationEntry:
    """Links a submitted email to an actor and their verification surface."""

    identifier: str
    actor_id: str
    surface_id: str


class CorrelationStore:
    """In-memory email <-> actor mapping.

    Entries live for the lifetime of the process; there is no removal API.
    """

    def __init__(self) -> None:
        self._by_identifier: dict[str, CorrelationEntry] = {}
        self._by_actor: dict[str, str] = {}

    def link(self, *, identifier: str, actor_id: str, surface_id: str) -> CorrelationEntry:
        """Link an email to an actor.

        Re-linking the same email to the same actor is a no-op, apart from
        recording a new surface if the actor's surface changed.

        Raises:
            CorrelationConflictError: If the email is linked to a different actor
        """
        key = normalize_identifier(identifier)
        existing = self._by_identifier.get(key)
        if existing and existing.actor_id != actor_id:
            logger.warning(
                "Email already linked to another actor",
                extra={"actor_id": actor_id, "linked_actor_id": existing.actor_id},
            )
            raise CorrelationConflictError(f"Identifier already linked to actor {existing.actor_id}")

        entry = CorrelationEntry(identifier=key, actor_id=actor_id, surface_id=surface_id)
        if existing != entry:
            self._by_identifier[key] = entry
            logger.info("Linked email to actor", extra={"actor_id": actor_id, "surface_id": surface_id})
        self._by_actor[actor_id] = key
        return entry

    def by_identifier(self, identifier: str) -> CorrelationEntry | None:
        return self._by_identifier.get(normalize_identifier(identifier))

    def by_actor(self, actor_id: str) -> str | None:
        return self._by_actor.get(actor_id)

    def __len__(self) -> int:
        return len(self._by_identifier)
