from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime

from .models import Severity

logger = logging.getLogger("drmirror")

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: datetime
    message: str
    severity: Severity


class StatusReporter:
    """Append-only event log kept in chronological order."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._entries: list[LogEntry] = []
        self._ids = itertools.count(1)
        self._clock = clock or (lambda: datetime.now(UTC))

    def log(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        entry = LogEntry(
            id=str(next(self._ids)),
            timestamp=self._clock(),
            message=message,
            severity=Severity(severity),
        )
        self._entries.append(entry)
        logger.log(_LEVELS[entry.severity], "%s", message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.log(message, Severity.INFO)

    def success(self, message: str) -> LogEntry:
        return self.log(message, Severity.SUCCESS)

    def error(self, message: str) -> LogEntry:
        return self.log(message, Severity.ERROR)

    @property
    def entries(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    def newest_first(self) -> list[LogEntry]:
        return list(reversed(self._entries))

    def counts(self) -> dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for entry in self._entries:
            counts[entry.severity] += 1
        return counts

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))
