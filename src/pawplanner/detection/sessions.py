"""Per-client photo sessions, each owning one CycleController."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pawplanner.detection.cycle import CycleController

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from pawplanner.detection.aggregator import Observation
    from pawplanner.detection.cycle import InferenceEngine

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    controller: CycleController[bytes]
    last_used: float


class SessionRegistry:
    """Creates, looks up, and evicts photo sessions.

    All methods are expected to be called from the event loop thread.
    """

    def __init__(
        self,
        engine: InferenceEngine[bytes],
        runner: Callable[..., Awaitable[Sequence[Observation]]] | None = None,
        *,
        max_sessions: int = 128,
        ttl: int = 1800,
    ) -> None:
        self._engine = engine
        self._runner = runner
        self._max_sessions = max_sessions
        self._ttl = ttl
        self._sessions: OrderedDict[str, _Session] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> CycleController[bytes] | None:
        """Return the controller for a session, or None if it does not exist."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        self._touch(session_id, session)
        return session.controller

    def get_or_create(self, session_id: str) -> CycleController[bytes]:
        """Return the controller for a session, creating the session if needed."""
        controller = self.get(session_id)
        if controller is not None:
            return controller

        controller = CycleController(self._engine, runner=self._runner)
        self._sessions[session_id] = _Session(controller=controller, last_used=time.monotonic())
        logger.info("Opened session %s", session_id)

        while len(self._sessions) > self._max_sessions:
            oldest_id, oldest = self._sessions.popitem(last=False)
            oldest.controller.close()
            logger.info("Evicted least recently used session %s", oldest_id)
        return controller

    def close(self, session_id: str) -> bool:
        """Tear down a session. Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.controller.close()
        logger.info("Closed session %s", session_id)
        return True

    def evict_idle(self) -> int:
        """Close sessions idle for longer than the TTL. Returns how many were closed."""
        if self._ttl == 0:
            return 0

        now = time.monotonic()
        expired = [sid for sid, session in self._sessions.items() if (now - session.last_used) > self._ttl]
        for sid in expired:
            self._sessions.pop(sid).controller.close()
            logger.info("Evicted idle session %s", sid)
        return len(expired)

    def shutdown(self) -> None:
        """Close every session."""
        for session in self._sessions.values():
            session.controller.close()
        self._sessions.clear()
        logger.info("All photo sessions closed")

    def _touch(self, session_id: str, session: _Session) -> None:
        session.last_used = time.monotonic()
        self._sessions.move_to_end(session_id)
