"""Helpers for inspecting status messages in tests."""

from typing import List

from nixforge.commands.messages import CommandMessage, MessageChannel, Stdout


def collect(channel: MessageChannel) -> List[CommandMessage]:
    """Everything queued on the channel so far, in order."""
    return channel.drain()


def messages_of(messages: List[CommandMessage], kind: type) -> List[CommandMessage]:
    return [m for m in messages if isinstance(m, kind)]


def stdout_lines(messages: List[CommandMessage]) -> List[str]:
    return [m.line for m in messages if isinstance(m, Stdout)]


def step_events(messages: List[CommandMessage]) -> List[tuple]:
    """(message type name, step) for every step message, in order."""
    return [(type(m).__name__, m.step) for m in messages if hasattr(m, "step")]
