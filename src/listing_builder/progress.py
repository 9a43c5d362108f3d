"""
Progress and outcome events emitted during a pipeline run.

Events are fire-and-forget: the pipeline hands them to a caller-supplied
callback in order and never waits for an acknowledgement.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass(frozen=True)
class ProgressEvent:
    message: str


@dataclass(frozen=True)
class CacheStatusEvent:
    count: int
    build_seconds: float
    is_cached: bool
    is_new_upload: bool


@dataclass(frozen=True)
class LinkSummaryEvent:
    links: tuple
    total_shipping: float


@dataclass(frozen=True)
class SuccessEvent:
    message: str
    listing_path: str
    csv_path: str
    item_count: int
    category_match_count: int


@dataclass(frozen=True)
class ErrorEvent:
    error: str


EventCallback = Callable[[object], None]


@dataclass
class ProgressReporter:
    """Yield-point helper: forwards events to the callback, if any."""
    callback: Optional[EventCallback] = None
    sent: list = field(default_factory=list, repr=False)

    def emit(self, event) -> None:
        self.sent.append(event)
        if self.callback is not None:
            self.callback(event)

    def status(self, message: str) -> None:
        self.emit(ProgressEvent(message))

    def every(self, position: int, interval: int, message: str) -> None:
        if interval > 0 and position % interval == 0:
            self.status(message)
