from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.services.capture.models import Session, SessionState
from scribe.services.errors import AlreadyActiveError, NoActiveSessionError
from scribe.services.manager import Manager

# -------------------------------------------------------------- #
# Session Registry
# -------------------------------------------------------------- #


class SessionRegistry(Manager):
    """
    Process-wide mapping of scope id to its active session.

    Check-and-create runs with no suspension point between the existence
    check and the insert, so on a single event loop two concurrent starts for
    the same scope can never both succeed. There is no lock: operations on
    different scopes never wait for each other.
    """

    def __init__(self, context: Context):
        super().__init__(context)
        self._sessions: dict[str, Session] = {}

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SessionRegistry started")

    # -------------------------------------------------------------- #
    # Registry Operations
    # -------------------------------------------------------------- #

    def try_start(self, scope_id: str) -> Session:
        """
        Atomically create the session for a scope.

        Args:
            scope_id: Unit of session exclusivity (e.g. a guild or room id)

        Returns:
            The new Session in RECORDING state

        Raises:
            AlreadyActiveError: A non-closed session already exists for the scope
        """
        existing = self._sessions.get(scope_id)
        if existing is not None and existing.state != SessionState.CLOSED:
            raise AlreadyActiveError(scope_id)

        session = Session(scope_id=scope_id)
        self._sessions[scope_id] = session
        return session

    def stop(self, scope_id: str) -> Session:
        """
        Move the active session for a scope into STOPPING.

        Only a RECORDING session can be stopped, so two concurrent stop
        requests resolve to exactly one winner.

        Raises:
            NoActiveSessionError: Nothing is recording for the scope
        """
        session = self._sessions.get(scope_id)
        if session is None or session.state != SessionState.RECORDING:
            raise NoActiveSessionError(scope_id)

        session.state = SessionState.STOPPING
        return session

    def close(self, session: Session) -> None:
        """Mark a session CLOSED and free its scope for future sessions."""
        session.state = SessionState.CLOSED
        if self._sessions.get(session.scope_id) is session:
            del self._sessions[session.scope_id]

    def get(self, scope_id: str) -> Session | None:
        """Get the non-closed session for a scope, if any."""
        return self._sessions.get(scope_id)

    def is_active(self, scope_id: str) -> bool:
        return scope_id in self._sessions

    def active_scopes(self) -> list[str]:
        return list(self._sessions.keys())
