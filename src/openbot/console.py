"""Operator input: stdin lines delivered to the event loop."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import TextIO

from .approval import ApprovalRequest

logger = logging.getLogger(__name__)

_YES = {"y", "yes"}


class OperatorConsole:
    """Reads operator lines on a background thread and hands them to asyncio.

    ``next_line()`` returns ``None`` once the input stream has ended; after
    that the console stays closed.
    """

    def __init__(self, stream: TextIO | None = None, *, output: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._output = output if output is not None else sys.stderr
        self._queue: asyncio.Queue[str | None] | None = None
        self._thread: threading.Thread | None = None
        self._held: list[str] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the reader thread. Must be called from inside the running loop."""

        if self._thread is not None:
            return
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(target=self._read, args=(loop, self._queue), daemon=True)
        self._thread.start()

    def _read(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str | None]) -> None:
        try:
            for line in iter(self._stream.readline, ""):
                loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\r\n"))
            loop.call_soon_threadsafe(queue.put_nowait, None)
        except (OSError, ValueError) as exc:
            logger.debug("Operator input stopped", extra={"error": str(exc)})
            try:
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except RuntimeError:
                pass
        except RuntimeError:
            # Event loop already closed.
            pass

    async def next_line(self) -> str | None:
        if self._held:
            return self._held.pop(0)
        return await self._next_queued()

    async def _next_queued(self) -> str | None:
        if self._closed:
            return None
        self.start()
        assert self._queue is not None
        line = await self._queue.get()
        if line is None:
            self._closed = True
        return line

    def drain(self) -> list[str]:
        """Return every line already buffered without waiting."""

        lines = self._held + self._take_queued()
        self._held = []
        return lines

    def _take_queued(self) -> list[str]:
        if self._queue is None:
            return []
        lines: list[str] = []
        while True:
            try:
                line = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return lines
            if line is None:
                self._closed = True
                return lines
            lines.append(line)

    async def confirm(self, request: ApprovalRequest) -> bool | None:
        """Ask about ``request``. Only a line entered after the prompt can answer it.

        Lines typed earlier are held back and handed out later by ``drain()``
        as ordinary operator input.
        """

        self.start()
        await asyncio.sleep(0)
        self._held.extend(self._take_queued())
        if self._closed:
            return None
        self._output.write(request.describe() + "\nApprove? [y/N] ")
        self._output.flush()
        line = await self._next_queued()
        if line is None:
            return None
        return line.strip().lower() in _YES


__all__ = ["OperatorConsole"]
