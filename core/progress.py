"""
Progress events and status sinks.

Extraction, LOD and pipeline code report ``(percent, message)`` pairs; the
bus wraps them as ``ProgressEvent`` objects and hands them to whatever the
host subscribed (terminal bar, status line, test recorder).  Delivery is
fire-and-forget: a failing observer never interrupts the work that reported
progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, TextIO, Union
import sys
import time

StatusSink = Callable[[str], None]
ProgressCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class ProgressEvent:
    """Immutable progress payload."""

    percent: int
    message: str
    stage: Optional[str] = None
    channel: str = "stage"  # "stage" for work inside a stage, "dag" for the stage runner
    timestamp: float = field(default_factory=time.time)


class ProgressObserver(Protocol):
    def on_progress(self, event: ProgressEvent) -> None:
        ...


Observer = Union[Callable[[ProgressEvent], None], ProgressObserver]


def _clamp_percent(percent) -> int:
    return max(0, min(100, int(percent)))


class ProgressBus:
    """Fan-out of progress events to subscribed observers."""

    def __init__(self) -> None:
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> "ProgressBus":
        self._observers.append(observer)
        return self

    def unsubscribe(self, observer: Observer) -> "ProgressBus":
        if observer in self._observers:
            self._observers.remove(observer)
        return self

    def emit(self, event: ProgressEvent) -> None:
        for observer in list(self._observers):
            handler = getattr(observer, "on_progress", observer)
            try:
                handler(event)
            except Exception as exc:
                print(f"[Progress] Observer {observer!r} failed: {exc}")

    def callback(self, stage: Optional[str] = None, channel: str = "stage") -> ProgressCallback:
        """A ``(percent, message)`` callback that emits on this bus."""
        def report(percent: int, message: str) -> None:
            self.emit(ProgressEvent(percent=_clamp_percent(percent), message=message,
                                    stage=stage, channel=channel))
        return report

    def stage_callback(self, stage: str) -> ProgressCallback:
        return self.callback(stage, "stage")

    def dag_callback(self) -> ProgressCallback:
        return self.callback(None, "dag")


class StatusSinkObserver:
    """
    Forward stage messages to a human-readable status sink, prefixed with
    their stage name.  Stage-runner events are dropped.
    """

    def __init__(self, sink: StatusSink) -> None:
        self._sink = sink

    def on_progress(self, event: ProgressEvent) -> None:
        if event.channel == "stage":
            self._sink(f"{event.stage}: {event.message}" if event.stage else event.message)


def emit_status(sink: Optional[StatusSink], message: str) -> None:
    """Best-effort status delivery; prints when no sink is attached."""
    if sink is None:
        print(message)
        return
    try:
        sink(message)
    except Exception as exc:
        print(f"[Status] Sink failed ({exc}): {message}")


class TerminalProgressObserver:
    """One redrawn bar per stage, one line per stage-runner step."""

    def __init__(self, bar_width: int = 30, stream: Optional[TextIO] = None) -> None:
        self.bar_width = bar_width
        self.stream = stream or sys.stdout

    def _bar(self, percent: int) -> str:
        filled = self.bar_width * percent // 100
        return "#" * filled + "." * (self.bar_width - filled)

    def on_progress(self, event: ProgressEvent) -> None:
        if event.channel == "dag":
            line = f"  [DAG {event.percent:3d}%] {event.message}\n"
        else:
            line = f"\r  [{event.stage or 'task'}] [{self._bar(event.percent)}] {event.percent:3d}%  {event.message:<48}"
            if event.percent >= 100:
                line += "\n"
        self.stream.write(line)
        self.stream.flush()


__all__ = [
    "StatusSink",
    "ProgressCallback",
    "ProgressEvent",
    "ProgressObserver",
    "ProgressBus",
    "StatusSinkObserver",
    "TerminalProgressObserver",
    "emit_status",
]
