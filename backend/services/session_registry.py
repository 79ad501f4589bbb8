"""
Registry of live collaboration sessions and the broadcast fan-out.

The registry owns the mapping ``session_id -> SessionChannel``. Every
operation takes the registry lock; ``broadcast`` only holds it long enough
to snapshot the members, then delivers outside the lock. Delivery never
blocks: a closed channel is skipped and a full channel marks its session
as a slow consumer, which is evicted and closed.
"""

import asyncio
import threading
from typing import Dict, List, Optional, Union

from pydantic import BaseModel

from config.logging_config import LoggerMixin


class SessionConnectionError(Exception):
    """A send on one session's transport failed."""

    def __init__(self, session_id: str, message: str):
        super().__init__(f"Session {session_id}: {message}")
        self.session_id = session_id


class ChannelClosed(Exception):
    """Raised by ``SessionChannel.send`` once the channel was closed."""


class ChannelFull(Exception):
    """Raised by ``SessionChannel.send`` when the outbound queue is full."""


_CLOSE = object()


class SessionChannel:
    """Bounded outbound queue for a single session.

    ``send`` never waits; the session's writer task drains the queue with
    ``receive`` and stops once ``receive`` returns None.
    """

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def send(self, text: str) -> None:
        if self._closed:
            raise ChannelClosed()
        if self._queue.qsize() >= self.maxsize:
            raise ChannelFull()
        self._queue.put_nowait(text)

    def close(self) -> None:
        """Close the channel; idempotent. Queued messages are still delivered."""
        if self._closed:
            return
        self._closed = True
        # One slot is reserved above maxsize so the sentinel always fits
        self._queue.put_nowait(_CLOSE)

    async def receive(self) -> Optional[str]:
        item = await self._queue.get()
        if item is _CLOSE:
            return None
        return item

    def drain(self) -> List[str]:
        """Pop every queued message without waiting (used by tests and shutdown)."""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSE:
                items.append(item)
        return items


Event = Union[str, BaseModel]


def serialize_event(event: Event) -> str:
    """Raw text is relayed verbatim; models are dumped to JSON."""
    if isinstance(event, str):
        return event
    return event.model_dump_json()


class SessionRegistry(LoggerMixin):
    """Concurrent mapping from session id to outbound channel."""

    def __init__(self):
        self._sessions: Dict[str, SessionChannel] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get(self, session_id: str) -> Optional[SessionChannel]:
        with self._lock:
            return self._sessions.get(session_id)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def register(self, session_id: str, channel: SessionChannel,
                 limit: Optional[int] = None) -> bool:
        """Insert a session; an existing entry with the same id is replaced.

        With ``limit``, a new id is refused (returns False) once the registry
        already holds that many sessions. Check and insert happen under one
        hold of the lock.
        """
        with self._lock:
            previous = self._sessions.get(session_id)
            if limit is not None and previous is None and len(self._sessions) >= limit:
                return False
            self._sessions[session_id] = channel
            total = len(self._sessions)

        if previous is not None and previous is not channel:
            self.logger.warning("Session id reused, replacing channel", session_id=session_id)
            previous.close()
        self.logger.info("Session registered", session_id=session_id, sessions=total)
        return True

    def deregister(self, session_id: str) -> None:
        """Remove a session if present; removing an unknown id is a no-op."""
        with self._lock:
            channel = self._sessions.pop(session_id, None)
            total = len(self._sessions)

        if channel is None:
            return
        channel.close()
        self.logger.info("Session deregistered", session_id=session_id, sessions=total)

    def broadcast(self, event: Event, exclude_session_id: Optional[str] = None) -> None:
        """Deliver ``event`` to every session except ``exclude_session_id``.

        Fire-and-forget: delivery failures are logged, never raised.
        """
        text = serialize_event(event)

        with self._lock:
            recipients = [
                (session_id, channel)
                for session_id, channel in self._sessions.items()
                if session_id != exclude_session_id
            ]

        slow: List[tuple] = []
        for session_id, channel in recipients:
            try:
                channel.send(text)
            except ChannelClosed:
                self.logger.debug("Skipping closed channel", session_id=session_id)
            except ChannelFull:
                slow.append((session_id, channel))

        for session_id, channel in slow:
            self._evict(session_id, channel)

    def _evict(self, session_id: str, channel: SessionChannel) -> None:
        with self._lock:
            # Only evict if the id still maps to the channel that overflowed
            if self._sessions.get(session_id) is channel:
                del self._sessions[session_id]
            else:
                return
        channel.close()
        self.logger.warning(
            "Evicted slow consumer",
            session_id=session_id,
            queue_size=channel.maxsize,
        )

    def close_all(self) -> None:
        """Close every channel and empty the registry (server shutdown)."""
        with self._lock:
            channels = list(self._sessions.values())
            self._sessions.clear()
        for channel in channels:
            channel.close()
        if channels:
            self.logger.info("Closed all sessions", sessions=len(channels))
