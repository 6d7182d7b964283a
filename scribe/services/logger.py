import asyncio
import contextlib
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.services.manager import BaseAsyncLoggingService

LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

# Upper bound on lines written per file open
MAX_BATCH_LINES = 500

# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """
    Non-blocking logger for the pipeline services.

    Callers only enqueue formatted lines. One writer task drains the queue in
    batches and appends each batch to the log file with a single open, so
    capture pipelines never wait on log I/O.
    """

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "DEBUG",
    ):
        """
        Args:
            context: Context instance containing server and services
            log_dir: Directory for log files
            log_file: Log file name or absolute path (overrides use_timestamp)
            use_timestamp: Without log_file, name the file ``scribe_<timestamp>.log``
                instead of ``scribe.log``
            console_output: Echo every line to stdout
            min_level: Lines below this level are dropped before queueing
        """
        super().__init__(context)
        self.console_output = console_output
        self.min_level = LOG_LEVELS.get(min_level.upper(), LOG_LEVELS["DEBUG"])

        if log_file is None:
            suffix = f"_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}" if use_timestamp else ""
            log_file = f"scribe{suffix}.log"
        self.log_path = Path(log_dir) / log_file

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None
        self._dropped = 0

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._writer_loop())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Stop the writer, then write out anything still queued."""
        await super().on_close()

        if self._writer_task is not None:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        remaining = self._drain()
        while remaining:
            await self._append(remaining)
            remaining = self._drain()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO") -> None:
        if LOG_LEVELS.get(level, LOG_LEVELS["INFO"]) < self.min_level:
            self._dropped += 1
            return
        self._queue.put_nowait(f"[{datetime.now().isoformat()}] [{level}] {message}")

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    @property
    def dropped_count(self) -> int:
        """Lines filtered out by ``min_level`` so far."""
        return self._dropped

    # -------------------------------------------------------------- #
    # Writer
    # -------------------------------------------------------------- #

    async def _writer_loop(self) -> None:
        while True:
            first = await self._queue.get()
            await self._append([first, *self._drain()])

    def _drain(self) -> list[str]:
        lines: list[str] = []
        while len(lines) < MAX_BATCH_LINES:
            try:
                lines.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return lines

    async def _append(self, lines: list[str]) -> None:
        block = "\n".join(lines) + "\n"
        if self.console_output:
            sys.stdout.write(block)
            sys.stdout.flush()

        try:
            async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                await f.write(block)
        except OSError as e:
            print(
                f"[ERROR] Failed to write {len(lines)} line(s) to {self.log_path}: {e}",
                file=sys.stderr,
                flush=True,
            )
