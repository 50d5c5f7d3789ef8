"""In-memory bookkeeping of registered connections."""

import dataclasses
from typing import Dict, Iterator, List, Optional

from smartdb.db.models import DatabaseSession


class SessionRegistry:
    """
    Maps connection ids to session metadata.

    Holds no pools and does no I/O; the connection manager keeps it in step
    with its pool map.
    """

    def __init__(self):
        self._sessions: Dict[str, DatabaseSession] = {}

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def add(self, session: DatabaseSession) -> Optional[DatabaseSession]:
        """Store a session, returning the one it replaced, if any."""
        previous = self._sessions.get(session.id)
        self._sessions[session.id] = session
        return previous

    def get(self, connection_id: str) -> Optional[DatabaseSession]:
        return self._sessions.get(connection_id)

    def remove(self, connection_id: str) -> Optional[DatabaseSession]:
        return self._sessions.pop(connection_id, None)

    def touch(self, connection_id: str) -> None:
        session = self._sessions.get(connection_id)
        if session is not None:
            session.touch()

    def ids(self) -> List[str]:
        return list(self._sessions)

    def snapshot(self) -> List[DatabaseSession]:
        """Copies of every session in registration order; later changes don't show through."""
        return [dataclasses.replace(session) for session in self._sessions.values()]

    def clear(self) -> None:
        self._sessions.clear()
