"""
Per-connection coordinator for the collaboration socket.

Lifecycle: CONNECTING -> ACTIVE -> CLOSED. On activation the session is
registered and announced; cell updates received while active are relayed
verbatim to every other session; on close the session is deregistered and
its departure announced. Keepalive pings are answered by the ASGI server.
"""

import asyncio
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from config.logging_config import LoggerMixin
from config.websocket_config import WebSocketCloseCode, WebSocketConfig
from models.message_model import UserJoined, UserLeft, parse_cell_update
from models.session_model import Session
from .session_registry import SessionChannel, SessionConnectionError, SessionRegistry


class CollaborationGateway(LoggerMixin):
    """Drives one WebSocket connection from accept to close."""

    def __init__(self, websocket: WebSocket, registry: SessionRegistry,
                 config: Optional[WebSocketConfig] = None):
        self.websocket = websocket
        self.registry = registry
        self.config = config or WebSocketConfig()
        client = websocket.client
        self.session = Session(client_host=client.host if client else None)
        self.channel = SessionChannel(maxsize=self.config.message_queue_size)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    async def run(self) -> None:
        """Serve the connection until the client leaves or the server closes it."""
        # No await between the capacity check and the insert
        if not self.reserve():
            self.logger.warning(
                "Connection limit reached, refusing socket",
                max_connections=self.config.max_connections,
            )
            self.session.close()
            await self.websocket.close(code=WebSocketCloseCode.TRY_AGAIN_LATER)
            return

        try:
            await self.websocket.accept()
            self.activate()
            await self._serve()
        finally:
            self.close()

    async def _serve(self) -> None:
        reader = asyncio.create_task(self._read_loop())
        writer = asyncio.create_task(self._write_loop())
        try:
            done, pending = await asyncio.wait(
                {reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    self.logger.warning(
                        "Connection failed",
                        session_id=self.session_id,
                        error=str(exc),
                    )

            if writer in done:
                # Evicted, shut down, or the transport broke: drop the socket too
                await self._close_socket(WebSocketCloseCode.GOING_AWAY)
        finally:
            reader.cancel()
            writer.cancel()

    def reserve(self) -> bool:
        """Claim a registry slot; False when the server is at capacity."""
        return self.registry.register(
            self.session_id, self.channel, limit=self.config.max_connections)

    def activate(self) -> None:
        """Register the session (unless already reserved) and announce it."""
        if self.registry.get(self.session_id) is not self.channel:
            self.registry.register(self.session_id, self.channel)
        self.session.activate()
        self.registry.broadcast(UserJoined(user_id=self.session_id),
                                exclude_session_id=self.session_id)

    def handle_text(self, text: str) -> bool:
        """Relay a cell update to the other sessions; other shapes are ignored."""
        if not self.session.is_active:
            return False

        update = parse_cell_update(text)
        self.session.record_message(relayed=update is not None)
        if update is None:
            self.logger.debug("Ignoring unrecognised message", session_id=self.session_id)
            return False

        self.registry.broadcast(text, exclude_session_id=self.session_id)
        return True

    def close(self) -> None:
        """Deregister and announce departure; later calls do nothing."""
        was_active = self.session.is_active
        if not self.session.close():
            return
        self.registry.deregister(self.session_id)
        self.channel.close()
        if was_active:
            self.registry.broadcast(UserLeft(user_id=self.session_id),
                                    exclude_session_id=self.session_id)
        self.logger.info(
            "Session closed",
            session_id=self.session_id,
            messages_received=self.session.messages_received,
            messages_relayed=self.session.messages_relayed,
        )

    async def _read_loop(self) -> None:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            text = message.get("text")
            if text is not None:
                self.handle_text(text)
            # Binary frames are accepted and ignored

    async def _write_loop(self) -> None:
        while True:
            text = await self.channel.receive()
            if text is None:
                return
            try:
                await self.websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                raise SessionConnectionError(self.session_id, str(exc)) from exc

    async def _close_socket(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as exc:
            self.logger.debug("Socket already closed", session_id=self.session_id, error=str(exc))
