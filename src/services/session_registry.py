"""In-memory registry of per-actor onboarding sessions.

All operations are synchronous, so each one is atomic with respect to the
event loop. Handlers that await between reading and writing a session must
write through ``update``/``transition`` with ``expected_stages`` so a stage
change made while they were suspended is detected instead of overwritten.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from src.core.errors import FieldOverwriteError, SessionAlreadyExistsError, SessionNotFoundError, StaleSessionError
from src.domain.session import STAGE_FIELDS, Session, SessionStage


logger = logging.getLogger(__name__)


class SessionRegistry:
    """Holds at most one live session per actor."""

    def __init__(self, *, expiry_hours: float | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._expiry = timedelta(hours=expiry_hours) if expiry_hours else None

    def _expires_at(self, now: datetime) -> datetime | None:
        return now + self._expiry if self._expiry else None

    def create(
        self,
        *,
        actor_id: str,
        surface_id: str,
        stage: SessionStage = SessionStage.AWAITING_START,
    ) -> Session:
        """Create a session for an actor.

        Raises:
            SessionAlreadyExistsError: If the actor already has a live session
        """
        if actor_id in self._sessions:
            raise SessionAlreadyExistsError(f"Session already exists for actor {actor_id}")

        now = datetime.now(UTC)
        session = Session(
            actor_id=actor_id,
            surface_id=surface_id,
            stage=stage,
            created_at=now,
            updated_at=now,
            expires_at=self._expires_at(now),
        )
        self._sessions[actor_id] = session
        logger.info("Created session", extra={"actor_id": actor_id, "stage": stage.value})
        return session.model_copy(deep=True)

    def replace(self, *, actor_id: str, surface_id: str) -> Session:
        """Drop any existing session for the actor and start a fresh one."""
        previous = self._sessions.pop(actor_id, None)
        if previous is not None:
            logger.info(
                "Replaced existing session",
                extra={"actor_id": actor_id, "previous_stage": previous.stage.value},
            )
        return self.create(actor_id=actor_id, surface_id=surface_id)

    def get(self, actor_id: str) -> Session | None:
        """Return a copy of the actor's session, or None."""
        session = self._sessions.get(actor_id)
        return session.model_copy(deep=True) if session else None

    def require(self, actor_id: str) -> Session:
        """Return a copy of the actor's session.

        Raises:
            SessionNotFoundError: If the actor has no live session
        """
        session = self.get(actor_id)
        if session is None:
            raise SessionNotFoundError(f"No session for actor {actor_id}")
        return session

    def update(
        self,
        actor_id: str,
        mutator: Callable[[Session], None],
        *,
        expected_stages: Iterable[SessionStage] | None = None,
    ) -> Session:
        """Apply ``mutator`` to the actor's session as one write.

        The mutator receives a copy; the copy replaces the stored session only
        if the stage guard and the append-only field rule both hold.

        Raises:
            SessionNotFoundError: If the actor has no live session
            StaleSessionError: If the live stage is not in ``expected_stages``
            FieldOverwriteError: If the mutator changed, removed or added a field the stage does not own
        """
        current = self._sessions.get(actor_id)
        if current is None:
            raise SessionNotFoundError(f"No session for actor {actor_id}")

        if expected_stages is not None:
            allowed = frozenset(expected_stages)
            if current.stage not in allowed:
                raise StaleSessionError(
                    f"Session for {actor_id} is {current.stage.value}, "
                    f"expected one of {sorted(stage.value for stage in allowed)}"
                )

        draft = current.model_copy(deep=True)
        mutator(draft)
        self._check_fields(current=current, draft=draft)

        now = datetime.now(UTC)
        draft.updated_at = now
        draft.expires_at = self._expires_at(now)
        self._sessions[actor_id] = draft

        if draft.stage != current.stage:
            logger.info(
                "Session stage changed",
                extra={"actor_id": actor_id, "from_stage": current.stage.value, "to_stage": draft.stage.value},
            )
        return draft.model_copy(deep=True)

    def transition(
        self,
        actor_id: str,
        *,
        from_stages: Iterable[SessionStage],
        to_stage: SessionStage,
        fields: dict[str, str] | None = None,
        **changes: Any,  # noqa: ANN401
    ) -> Session:
        """Compare-and-set stage change, optionally appending fields and setting attributes."""

        def _apply(session: Session) -> None:
            session.stage = to_stage
            if fields:
                session.collected_fields.update(fields)
            for name, value in changes.items():
                setattr(session, name, value)

        return self.update(actor_id, _apply, expected_stages=from_stages)

    def remove(self, actor_id: str) -> Session | None:
        """Remove the actor's session. Returns the removed session, if any."""
        session = self._sessions.pop(actor_id, None)
        if session is not None:
            logger.info("Removed session", extra={"actor_id": actor_id, "stage": session.stage.value})
        return session

    def expire_stale(self, now: datetime | None = None) -> list[Session]:
        """Expire and remove every non-terminal session past its expiry time."""
        now = now or datetime.now(UTC)
        expired: list[Session] = []
        for actor_id, session in list(self._sessions.items()):
            if session.is_terminal or not session.is_expired(now):
                continue
            del self._sessions[actor_id]
            expired.append(session.model_copy(update={"stage": SessionStage.EXPIRED, "updated_at": now}))
            logger.info("Expired session", extra={"actor_id": actor_id, "stage": session.stage.value})
        return expired

    def all(self) -> list[Session]:
        return [session.model_copy(deep=True) for session in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, actor_id: object) -> bool:
        return actor_id in self._sessions

    @staticmethod
    def _check_fields(*, current: Session, draft: Session) -> None:
        for name, value in current.collected_fields.items():
            if draft.collected_fields.get(name) != value:
                raise FieldOverwriteError(f"Field '{name}' is already collected and cannot change")

        added = set(draft.collected_fields) - set(current.collected_fields)
        owned = STAGE_FIELDS.get(current.stage, frozenset())
        foreign = added - owned
        if foreign:
            raise FieldOverwriteError(
                f"Stage {current.stage.value} cannot collect fields: {', '.join(sorted(foreign))}"
            )
