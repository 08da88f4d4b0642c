"""Scheduled task contract shared with the media server host."""

from dataclasses import dataclass
from typing import Callable, Protocol

from core.models import LocalUser, MediaItem, SyncResult, UserData

ProgressSink = Callable[[float], None]


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class LibraryProtocol(Protocol):
    def users(self) -> list[LocalUser]: ...
    def items_for(self, user: LocalUser) -> list[MediaItem]: ...
    def user_data(self, user: LocalUser, item: MediaItem) -> UserData | None: ...


@dataclass
class TaskTrigger:
    """When the host should start a task on its own."""
    kind: str  # "interval" or "daily"
    interval_hours: float | None = None
    time_of_day: str | None = None


class ScheduledTask(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def key(self) -> str: ...

    @property
    def category(self) -> str: ...

    @property
    def description(self) -> str: ...

    def default_triggers(self) -> list[TaskTrigger]: ...

    def execute(self, progress: ProgressSink, cancel: CancelSignal) -> SyncResult: ...
