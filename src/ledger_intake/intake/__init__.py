"""
Intake Queue Manager.

Accepts submitted files, uploads them to the file store and runs
recognition with bounded concurrency.
"""

from .queue import EnqueueReport, IncomingFile, IntakeQueue, RejectedFile
from .state_machine import (
    TRANSITIONS,
    DocumentState,
    Event,
    EventKind,
    InvalidTransition,
    QueuedDocument,
    transition,
)

__all__ = [
    "TRANSITIONS",
    "DocumentState",
    "EnqueueReport",
    "Event",
    "EventKind",
    "IncomingFile",
    "IntakeQueue",
    "InvalidTransition",
    "QueuedDocument",
    "RejectedFile",
    "transition",
]
