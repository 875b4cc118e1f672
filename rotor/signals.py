"""
Control signal channel between the parsing pipeline and the loop controller

Only four tokens travel here. Diagnostic output goes to the activity log and
never through this channel, so a verbose log line can't be mistaken for a
decision. Several writers (classifier, watchdog) feed one reader; the reader
sees every token written before the last writer closes, in write order.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, List, Set

from .constants import LoopDefaults
from .errors import SignalChannelClosed

logger = logging.getLogger(__name__)


class ControlSignal(Enum):
    """Decision tokens understood by the loop controller"""
    WARN = "WARN"
    ROTATE = "ROTATE"
    GUTTER = "GUTTER"
    COMPLETE = "COMPLETE"

    @property
    def is_terminal(self) -> bool:
        """True when the current agent subprocess must be stopped"""
        return self is not ControlSignal.WARN


_CLOSED = object()


class SignalWriter:
    """Write end of a SignalChannel owned by one source"""

    def __init__(self, channel: 'SignalChannel', name: str):
        self._channel = channel
        self.name = name
        self.closed = False

    async def send(self, signal: ControlSignal) -> None:
        if not isinstance(signal, ControlSignal):
            raise TypeError(f"Only ControlSignal values may be sent, got {signal!r}")
        if self.closed:
            raise SignalChannelClosed(f"Writer '{self.name}' is closed")
        logger.debug(f"{self.name} -> {signal.value}")
        await self._channel._queue.put((self.name, signal))

    async def close(self) -> None:
        """Close this writer; idempotent"""
        if self.closed:
            return
        self.closed = True
        await self._channel._writer_closed(self)


class SignalChannel:
    """
    Bounded multi-writer, single-reader channel of ControlSignal tokens.

    Usage:
        channel = SignalChannel()
        parser_out = channel.open_writer("parser")
        watchdog_out = channel.open_writer("watchdog")
        async for source, signal in channel.receive():
            ...
    """

    def __init__(self, maxsize: int = LoopDefaults.SIGNAL_QUEUE_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._open_writers: Set[str] = set()
        self._reader_claimed = False
        self.received: List[ControlSignal] = []

    def open_writer(self, name: str) -> SignalWriter:
        if name in self._open_writers:
            raise ValueError(f"Writer '{name}' is already open")
        self._open_writers.add(name)
        return SignalWriter(self, name)

    @property
    def open_writer_count(self) -> int:
        return len(self._open_writers)

    async def _writer_closed(self, writer: SignalWriter) -> None:
        self._open_writers.discard(writer.name)
        if not self._open_writers:
            # Queued behind every token the writers put, so nothing is lost
            await self._queue.put((None, _CLOSED))

    async def receive(self) -> AsyncIterator[tuple]:
        """
        Yield (source, signal) pairs until every writer has closed.

        Only one reader may ever consume a channel.
        """
        if self._reader_claimed:
            raise RuntimeError("SignalChannel already has a reader")
        self._reader_claimed = True

        if not self._open_writers and self._queue.empty():
            return

        while True:
            source, signal = await self._queue.get()
            if signal is _CLOSED:
                if self._open_writers:
                    # A writer reopened after the close marker; keep reading
                    continue
                return
            self.received.append(signal)
            yield source, signal

