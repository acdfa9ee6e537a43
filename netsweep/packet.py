"""Reading, processing and sending raw packets."""

from __future__ import annotations

import errno
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Protocol


@dataclass
class CaptureInfo:
    """Metadata of a captured packet."""

    timestamp: float = 0.0
    capture_length: int = 0
    length: int = 0
    interface_index: int = 0


@dataclass
class BufferData:
    """A serialized packet, or the error that prevented building it."""

    buf: Optional[bytes] = None
    err: Optional[Exception] = None


class Reader(Protocol):
    def read_packet_data(self) -> tuple[bytes, CaptureInfo]: ...


class Writer(Protocol):
    def write_packet_data(self, pkt: bytes) -> None: ...


class Processor(Protocol):
    def process_packet_data(self, data: bytes, ci: CaptureInfo) -> None: ...


class RateLimiter:
    """Blocks callers so that at most `rate` calls happen per `per` seconds."""

    def __init__(
        self,
        rate: int,
        per: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if per <= 0:
            raise ValueError("rate window must be positive")
        self._interval = per / rate
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def take(self) -> float:
        """Wait for the next slot and return its time."""
        with self._lock:
            now = self._clock()
            if self._last is not None:
                target = self._last + self._interval
                if target > now:
                    self._sleep(target - now)
                    now = target
            self._last = now
            return now


class RateLimitReadWriter:
    """Wraps a packet reader/writer, limiting the rate of written packets."""

    def __init__(self, delegate, limiter: RateLimiter) -> None:
        self._delegate = delegate
        self._limiter = limiter

    def read_packet_data(self) -> tuple[bytes, CaptureInfo]:
        return self._delegate.read_packet_data()

    def write_packet_data(self, pkt: bytes) -> None:
        self._limiter.take()
        self._delegate.write_packet_data(pkt)


_TEMPORARY_ERRNOS = {errno.EAGAIN, errno.EWOULDBLOCK, errno.ECONNRESET}


def _error_chain(err: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_temporary_error(err: BaseException) -> bool:
    """True for errors after which reading should be retried at once."""
    for e in _error_chain(err):
        if isinstance(e, (TimeoutError, BlockingIOError, ConnectionResetError)):
            return True
        if isinstance(e, OSError) and e.errno in _TEMPORARY_ERRNOS:
            return True
    return False


def is_unrecoverable_error(err: BaseException) -> bool:
    """True for errors after which the packet source is unusable."""
    if isinstance(err, (EOFError, BrokenPipeError)):
        return True
    if isinstance(err, OSError) and err.errno == errno.EBADF:
        return True
    message = str(err)
    return "use of closed file" in message or "operation on closed file" in message


def _stopped(stop: Optional[threading.Event]) -> bool:
    return stop is not None and stop.is_set()


class Receiver:
    """Reads packets from a source and hands them to a processor."""

    def __init__(self, reader: Reader, processor: Processor) -> None:
        self._reader = reader
        self._processor = processor

    def receive_packets(
        self, stop: Optional[threading.Event] = None
    ) -> Iterator[Exception]:
        """Receive until the source ends or `stop` is set, yielding errors."""
        while not _stopped(stop):
            try:
                data, ci = self._reader.read_packet_data()
            except Exception as exc:
                if is_temporary_error(exc):
                    continue
                if is_unrecoverable_error(exc):
                    return
                yield exc
                time.sleep(0.005)
                continue
            try:
                self._processor.process_packet_data(data, ci)
            except Exception as exc:
                if _stopped(stop):
                    return
                yield exc


class Sender:
    """Writes serialized packets to a packet writer."""

    def __init__(self, writer: Writer) -> None:
        self._writer = writer

    def send_packets(
        self, packets: Iterable[BufferData], stop: Optional[threading.Event] = None
    ) -> Iterator[Exception]:
        """Send every packet until input ends or `stop` is set, yielding errors."""
        if _stopped(stop):
            return
        for pkt in packets:
            if pkt.err is not None:
                yield pkt.err
            else:
                try:
                    self._writer.write_packet_data(pkt.buf or b"")
                except Exception as exc:
                    yield exc
            if _stopped(stop):
                return