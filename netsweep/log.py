"""Writing scan results to a stream and reporting scan errors."""

from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, Iterator, Optional, Protocol, TextIO

_log = logging.getLogger("netsweep")


class Result(Protocol):
    """What every scan result offers to the writers."""

    def id(self) -> str: ...

    def to_json(self) -> str: ...


class ResultWriter(Protocol):
    def write(self, stream: TextIO, result: Result) -> None: ...


class PlainResultWriter:
    """Writes each result as its human-readable line."""

    def write(self, stream: TextIO, result: Result) -> None:
        stream.write(f"{result}\n")


class JSONResultWriter:
    """Writes each result as one JSON line."""

    def write(self, stream: TextIO, result: Result) -> None:
        data = result.to_json()
        stream.write(f"{data}\n")


def _stopped(stop: Optional[threading.Event]) -> bool:
    return stop is not None and stop.is_set()


class Logger:
    """Writes results to a stream and reports errors under a label."""

    def __init__(
        self,
        stream: TextIO,
        label: str,
        *,
        writer: Optional[ResultWriter] = None,
        flush_interval: float = 1.0,
    ) -> None:
        self.stream = stream
        self.label = label
        self.writer: ResultWriter = writer if writer is not None else PlainResultWriter()
        self.flush_interval = flush_interval

    def error(self, err: BaseException) -> None:
        """Report an error that occurred during the scan."""
        _log.error("%s: %s", self.label, err)

    def _flush(self) -> None:
        flush = getattr(self.stream, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except (OSError, ValueError) as exc:
            self.error(exc)

    def log_results(
        self,
        results: Optional[Iterable[Result]],
        stop: Optional[threading.Event] = None,
    ) -> None:
        """Write results until they run out or `stop` is set."""
        if results is None or _stopped(stop):
            self._flush()
            return
        next_flush = time.monotonic() + self.flush_interval
        try:
            for result in results:
                if _stopped(stop):
                    return
                try:
                    self.writer.write(self.stream, result)
                except Exception as exc:
                    self.error(exc)
                if time.monotonic() >= next_flush:
                    self._flush()
                    next_flush = time.monotonic() + self.flush_interval
        finally:
            self._flush()


def unique_results(
    results: Optional[Iterable[Result]],
    stop: Optional[threading.Event] = None,
) -> Iterator[Result]:
    """Yield only the first result seen for each id."""
    if results is None or _stopped(stop):
        return
    seen: set[str] = set()
    for result in results:
        if _stopped(stop):
            return
        result_id = result.id()
        if result_id in seen:
            continue
        seen.add(result_id)
        yield result


class UniqueLogger:
    """A logger that drops results whose id was already logged."""

    def __init__(self, logger: Logger) -> None:
        self.logger = logger

    def error(self, err: BaseException) -> None:
        self.logger.error(err)

    def log_results(
        self,
        results: Optional[Iterable[Result]],
        stop: Optional[threading.Event] = None,
    ) -> None:
        self.logger.log_results(unique_results(results, stop), stop)