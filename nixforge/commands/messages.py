"""Status messages sent from background workflows to the UI.

A workflow task owns the sending side of a `MessageChannel`; the UI drains
it in order. Consumers must ignore message types they do not handle.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ParsedError


class CommandMessage:
    """Base class for every status message."""

    __slots__ = ()


@dataclass(frozen=True)
class Stdout(CommandMessage):
    line: str


@dataclass(frozen=True)
class Stderr(CommandMessage):
    line: str


@dataclass(frozen=True)
class StepComplete(CommandMessage):
    step: str


@dataclass(frozen=True)
class StepFailed(CommandMessage):
    step: str
    error: ParsedError


@dataclass(frozen=True)
class StepSkipped(CommandMessage):
    step: str


@dataclass(frozen=True)
class Done(CommandMessage):
    success: bool


@dataclass(frozen=True)
class Cancelled(CommandMessage):
    pass


@dataclass(frozen=True)
class RebootRecommended(CommandMessage):
    reasons: Tuple[str, ...]


@dataclass(frozen=True)
class UpdatesAvailable(CommandMessage):
    """Result of the startup check for pending configuration updates."""

    nixos_config: bool
    app_profiles: bool
    commits: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CloneComplete(CommandMessage):
    success: bool


class MessageChannel:
    """Ordered, lossless channel of status messages.

    Thin wrapper over `asyncio.Queue` so senders have a single `send`
    call and consumers can iterate until a terminal message.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[CommandMessage]" = asyncio.Queue(maxsize=maxsize)

    async def send(self, message: CommandMessage) -> None:
        await self._queue.put(message)

    async def receive(self) -> CommandMessage:
        return await self._queue.get()

    def receive_nowait(self) -> Optional[CommandMessage]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> List[CommandMessage]:
        """Return every message currently queued, in order."""
        messages = []
        while True:
            message = self.receive_nowait()
            if message is None:
                return messages
            messages.append(message)

    def empty(self) -> bool:
        return self._queue.empty()


def is_terminal(message: CommandMessage) -> bool:
    """True for messages that end a workflow run.

    A clone ends with `CloneComplete` rather than `Done`.
    """
    return isinstance(message, (Done, Cancelled, CloneComplete))


async def out(tx: MessageChannel, line: str) -> None:
    """Send one narration line."""
    await tx.send(Stdout(line))
