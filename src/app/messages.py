import asyncio
import logging
from typing import Iterable, List, Optional

from .models import Message, agent_log_prefix


class MessageStore:
    """
    Global in-memory message log.

    Messages are only ever appended, marked read, or dropped by cleanup.
    Reads and read-marking happen under the same lock so a message appended
    concurrently is never marked read without having been returned.
    """

    def __init__(
        self,
        max_read_messages: int = 100,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger("MessageStore")
        self.max_read_messages = max_read_messages

        self._lock = asyncio.Lock()
        self._messages: List[Message] = []

    async def add(self, message: Message) -> None:
        async with self._lock:
            self._messages.append(message)
        self.logger.debug(f"Message stored: {message.id}")

    async def get_unread(self, recipient: str) -> List[Message]:
        async with self._lock:
            return self._unread(recipient)

    async def mark_read(self, recipient: str) -> int:
        """
        Mark every unread message addressed to the recipient as read.

        Returns:
            Number of messages marked
        """
        async with self._lock:
            marked = self._mark(self._unread(recipient))
        self.logger.debug(f"{agent_log_prefix(recipient)} Marked {marked} messages read")
        return marked

    async def take_unread(self, recipient: str, mark_as_read: bool = True) -> List[Message]:
        """
        Return the recipient's unread messages, marking them read in the same step.

        Args:
            recipient: Recipient agent id
            mark_as_read: Flip the returned messages to read

        Returns:
            Unread messages in insertion order
        """
        async with self._lock:
            unread = self._unread(recipient)
            snapshot = [message.model_copy() for message in unread]
            if mark_as_read:
                self._mark(unread)
        return snapshot

    async def has_unread(self, recipient: str) -> bool:
        async with self._lock:
            return any(self._is_unread_for(message, recipient) for message in self._messages)

    async def unread_count(self, recipient: str) -> int:
        async with self._lock:
            return len(self._unread(recipient))

    async def latest_unread_id(self, recipient: str) -> Optional[str]:
        async with self._lock:
            for message in reversed(self._messages):
                if self._is_unread_for(message, recipient):
                    return message.id
        return None

    async def cleanup(self, known_recipients: Optional[Iterable[str]] = None) -> int:
        """
        Bound memory use of the message log.

        Drops messages addressed to recipients that are no longer known, then
        trims the oldest read messages beyond ``max_read_messages``.

        Args:
            known_recipients: Agent ids still present, or None to skip that pass

        Returns:
            Number of messages removed
        """
        async with self._lock:
            before = len(self._messages)

            if known_recipients is not None:
                known = set(known_recipients)
                self._messages = [m for m in self._messages if m.recipient in known]

            read_count = sum(1 for m in self._messages if m.is_read)
            excess = read_count - self.max_read_messages
            if excess > 0:
                kept: List[Message] = []
                for message in self._messages:
                    if message.is_read and excess > 0:
                        excess -= 1
                        continue
                    kept.append(message)
                self._messages = kept

            removed = before - len(self._messages)

        if removed:
            self.logger.debug(f"[skwad] Cleaned up {removed} old messages")
        return removed

    def __len__(self) -> int:
        return len(self._messages)

    def _unread(self, recipient: str) -> List[Message]:
        return [m for m in self._messages if self._is_unread_for(m, recipient)]

    @staticmethod
    def _is_unread_for(message: Message, recipient: str) -> bool:
        return message.recipient == recipient and not message.is_read

    @staticmethod
    def _mark(messages: List[Message]) -> int:
        for message in messages:
            message.is_read = True
        return len(messages)
