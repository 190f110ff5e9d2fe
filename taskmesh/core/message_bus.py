"""In-memory bus queuing typed agent messages and dispatching them by type."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List

from .models import AgentMessage, MessageType, generate_id, utcnow

logger = logging.getLogger(__name__)

MessageHandler = Callable[[AgentMessage], Awaitable[None]]
RecipientCheck = Callable[[str], bool]


class MessageBus:
    """Queue of agent messages with a per-type dispatch table.

    Every message is dispatched at most once: it leaves the queue before its
    handler runs, whether the handler succeeds or not.
    """

    def __init__(self, is_known_agent: RecipientCheck) -> None:
        self._is_known_agent = is_known_agent
        self._handlers: Dict[MessageType, MessageHandler] = {}
        self._queue: Deque[AgentMessage] = deque()
        self._lock = asyncio.Lock()

    def register(self, message_type: MessageType, handler: MessageHandler) -> None:
        self._handlers[message_type] = handler

    def __len__(self) -> int:
        return len(self._queue)

    def pending(self) -> List[AgentMessage]:
        return list(self._queue)

    async def send(self, message: AgentMessage, *, immediate: bool = True) -> str:
        """Stamp and enqueue the message, dispatching it right away unless deferred.

        Errors raised by an immediate dispatch propagate to the sender.
        """
        message.id = message.id or generate_id("msg")
        message.timestamp = message.timestamp or utcnow()
        self._queue.append(message)
        if immediate:
            self._queue.remove(message)
            await self._dispatch(message)
        return message.id

    async def drain(self) -> int:
        """Dispatch every queued message; failures are logged per message."""
        async with self._lock:
            batch = list(self._queue)
            self._queue.clear()

        dispatched = 0
        for message in batch:
            try:
                await self._dispatch(message)
                dispatched += 1
            except Exception:  # noqa: BLE001
                logger.exception("Failed to process message %s", message.id)
        return dispatched

    async def _dispatch(self, message: AgentMessage) -> None:
        if not self._is_known_agent(message.to_agent_id):
            logger.error(
                "Target agent %s not found, dropping message %s", message.to_agent_id, message.id
            )
            return

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning("No handler for message type %s, dropping %s", message.type, message.id)
            return
        await handler(message)
