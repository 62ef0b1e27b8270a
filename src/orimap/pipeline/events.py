# src/orimap/pipeline/events.py

"""
This module defines the one-way progress channel of a map generation run.

The pipeline only emits events; how (and whether) they are consumed is up to
the sink. Sinks must not block the workers for long.
"""

from dataclasses import dataclass
from typing import List, Protocol, Union
import logging
import queue
import threading

log = logging.getLogger(__name__)

__all__ = [
    "ProgressStart",
    "ProgressIncrement",
    "ProgressFinish",
    "LogMessage",
    "TaskComplete",
    "ErrorEvent",
    "Event",
    "EventSink",
    "QueueSink",
    "LoggingSink",
    "CollectingSink"
]

@dataclass(frozen=True)
class ProgressStart:
    total: int = 0
    label: str = ""

@dataclass(frozen=True)
class ProgressIncrement:
    """Fraction of the run completed since the previous increment, in [0, 1]."""
    delta: float

    def __post_init__(self):
        if not 0.0 <= self.delta <= 1.0:
            raise ValueError(f"Progress increment must lie in [0, 1], got {self.delta}")

@dataclass(frozen=True)
class ProgressFinish:
    label: str = ""

@dataclass(frozen=True)
class LogMessage:
    text: str

@dataclass(frozen=True)
class TaskComplete:
    tag: str

@dataclass(frozen=True)
class ErrorEvent:
    text: str
    fatal: bool = False

Event = Union[ProgressStart, ProgressIncrement, ProgressFinish, LogMessage, TaskComplete, ErrorEvent]

class EventSink(Protocol):
    def emit(self, event: Event) -> None:
        ...

class QueueSink:
    """
    Puts every event on a queue.Queue for a consumer thread (e.g. a GUI) to drain.
    """

    def __init__(self, queue_obj: "queue.Queue" = None):
        self.queue = queue_obj if queue_obj is not None else queue.Queue()

    def emit(self, event: Event) -> None:
        self.queue.put(event)

class LoggingSink:
    """
    Forwards events to the logging module so nothing is lost without a consumer.
    """

    def __init__(self, logger: logging.Logger = None):
        self.log = logger or log
        self._progress = 0.0
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        if isinstance(event, ErrorEvent):
            if event.fatal:
                self.log.error(event.text)
            else:
                self.log.warning(event.text)
        elif isinstance(event, LogMessage):
            self.log.info(event.text)
        elif isinstance(event, ProgressStart):
            with self._lock:
                self._progress = 0.0
            self.log.info(f"Started {event.label or 'run'} ({event.total} tasks)")
        elif isinstance(event, ProgressIncrement):
            with self._lock:
                self._progress = min(1.0, self._progress + event.delta)
                progress = self._progress
            self.log.debug(f"Progress {progress * 100:.0f}%")
        elif isinstance(event, ProgressFinish):
            self.log.info(f"Finished {event.label or 'run'}")
        elif isinstance(event, TaskComplete):
            self.log.debug(f"Completed {event.tag}")

class CollectingSink:
    """
    Keeps every event in memory; used to inspect a run afterwards.
    """

    def __init__(self):
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, kind) -> List[Event]:
        with self._lock:
            return [e for e in self.events if isinstance(e, kind)]

    @property
    def errors(self) -> List[ErrorEvent]:
        return self.of_type(ErrorEvent)

    @property
    def progress(self) -> float:
        return sum(e.delta for e in self.of_type(ProgressIncrement))
