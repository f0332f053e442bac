"""
Interactive shell sessions.

Sessions keep a working directory and a bounded output history, run one
command at a time and stream that command's output to any number of
connected clients.
"""

from .broadcast import OutputBroadcaster, Subscriber
from .channel import SubscriptionChannel
from .dispatcher import CommandDispatcher, prompt_for
from .session import OutputBuffer, SessionRegistry, ShellSession

__all__ = [
    "OutputBroadcaster",
    "Subscriber",
    "SubscriptionChannel",
    "CommandDispatcher",
    "prompt_for",
    "OutputBuffer",
    "SessionRegistry",
    "ShellSession",
]
