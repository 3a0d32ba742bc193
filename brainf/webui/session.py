from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from brainf.debugger import DebugSession
from brainf.vm import DEFAULT_TAPE_LENGTH

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 256


@dataclass
class SessionRecord:
    session_id: str
    session: DebugSession
    total_steps: int = 0
    total_steps_capped: bool = False
    # Serialises every use of ``session``; the step generator is not reentrant
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class SessionStore:
    """Thread-safe registry of DebugSession instances.

    The store keeps at most ``max_sessions`` records and evicts the least
    recently used one when a new session would exceed the cap.
    """

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, SessionRecord]" = OrderedDict()
        self._lock = threading.RLock()

    def create_session(
        self,
        *,
        program: bytes,
        input_template: bytes = b"",
        tape_length: int = DEFAULT_TAPE_LENGTH,
        tape_window: int = 10,
        max_steps: Optional[int] = None,
        history_limit: int = 200,
        total_steps: int = 0,
        total_steps_capped: bool = False,
    ) -> SessionRecord:
        session = DebugSession(
            program=program,
            input_template=input_template,
            tape_length=tape_length,
            tape_window=tape_window,
            max_steps=max_steps,
            history_limit=history_limit,
        )
        record = SessionRecord(
            session_id=uuid.uuid4().hex,
            session=session,
            total_steps=total_steps,
            total_steps_capped=total_steps_capped,
        )
        with self._lock:
            self._sessions[record.session_id] = record
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("evicted idle session %s", evicted)
        return record

    def get(self, session_id: str) -> SessionRecord:
        with self._lock:
            try:
                record = self._sessions[session_id]
            except KeyError as exc:
                raise KeyError(f"Unknown session id: {session_id}") from exc
            self._sessions.move_to_end(session_id)
            return record

    def reset(self, session_id: str) -> SessionRecord:
        record = self.get(session_id)
        with record.lock:
            record.session.clear_breakpoints()
            record.session.restart()
        return record

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["DEFAULT_MAX_SESSIONS", "SessionRecord", "SessionStore"]
