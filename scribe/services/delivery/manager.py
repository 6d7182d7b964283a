from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.services.manager import Manager

# -------------------------------------------------------------- #
# Message Prefixes
# -------------------------------------------------------------- #

TRANSCRIPT_PREFIX = "📝 **Transcription:**"
SUMMARY_PREFIX = "📊 **Summary:**"
RECORDING_PREFIX = "🎵 Recording from"

# -------------------------------------------------------------- #
# Message Splitting
# -------------------------------------------------------------- #


def split_message(text: str, max_length: int = 2000) -> list[str]:
    """
    Split text into units of at most ``max_length`` characters.

    Whole lines are accumulated until the next one would overflow the unit.
    A line that is longer than a unit by itself is word-wrapped, and only a
    single word longer than a unit is cut mid-word. Joining the units with
    newlines gives back the original text, apart from the breaks that
    wrapping introduced.
    """
    if max_length < 1:
        raise ValueError("max_length must be at least 1")
    if not text:
        return []

    units: list[str] = []
    current: list[str] = []
    current_length = 0

    for line in text.split("\n"):
        pieces = [line] if len(line) <= max_length else _wrap_line(line, max_length)
        for piece in pieces:
            added = len(piece) + (1 if current else 0)
            if current and current_length + added > max_length:
                units.append("\n".join(current))
                current = [piece]
                current_length = len(piece)
            else:
                current.append(piece)
                current_length += added

    if current:
        units.append("\n".join(current))
    return units


def _wrap_line(line: str, max_length: int) -> list[str]:
    """
    Word-wrap one overlong line; hard-split words that cannot fit on their own.

    Runs of spaces (indentation included) are kept; only the single space at
    each wrap point is dropped.
    """
    pieces: list[str] = []
    current: str | None = None

    for word in line.split(" "):
        if len(word) > max_length:
            if current:
                pieces.append(current)
            chunks = [word[i : i + max_length] for i in range(0, len(word), max_length)]
            pieces.extend(chunks[:-1])
            current = chunks[-1]
            continue

        candidate = word if current is None else f"{current} {word}"
        if len(candidate) <= max_length:
            current = candidate
        else:
            if current:
                pieces.append(current)
            current = word

    if current:
        pieces.append(current)
    return pieces


# -------------------------------------------------------------- #
# Report Sink
# -------------------------------------------------------------- #


class ReportSink(ABC):
    """Presentation layer that progress and results are reported to."""

    @abstractmethod
    async def report(self, message: str, attachments: list[str] | None = None) -> None:
        """
        Send one message.

        Args:
            message: Text within the sink's message size limit
            attachments: Optional local file paths to attach
        """
        pass


# -------------------------------------------------------------- #
# Delivery Service
# -------------------------------------------------------------- #


class DeliveryService(Manager):
    """Reports session progress and results; delivery failures are logged, never raised."""

    def __init__(self, context: Context):
        super().__init__(context)

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"DeliveryService started (max message length {self.config.message_max_length})"
        )

    async def report(
        self, sink: ReportSink | None, message: str, attachments: list[str] | None = None
    ) -> bool:
        """Send a single message. Returns False when it could not be delivered."""
        if sink is None:
            await self.services.logging_service.debug(f"No report sink; dropping message: {message[:80]}")
            return False

        try:
            await sink.report(message, attachments)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to deliver message ({len(message)} chars, "
                f"{len(attachments or [])} attachment(s)): {type(e).__name__}: {e}"
            )
            return False

    async def deliver_text(self, sink: ReportSink | None, text: str, prefix: str | None = None) -> bool:
        """Split text into message units, each optionally headed by ``prefix``."""
        max_length = self.config.message_max_length
        if prefix:
            max_length -= len(prefix) + 1

        delivered = True
        for unit in split_message(text, max(1, max_length)):
            if not unit.strip():
                continue
            message = f"{prefix}\n{unit}" if prefix else unit
            delivered = await self.report(sink, message) and delivered
        return delivered

    async def deliver_transcript(self, sink: ReportSink | None, transcript: str) -> bool:
        return await self.deliver_text(sink, transcript, prefix=TRANSCRIPT_PREFIX)

    async def deliver_summary(self, sink: ReportSink | None, summary: str) -> bool:
        return await self.deliver_text(sink, summary, prefix=SUMMARY_PREFIX)

    async def deliver_notice(self, sink: ReportSink | None, message: str) -> bool:
        return await self.deliver_text(sink, message)

    async def deliver_recording(self, sink: ReportSink | None, label: str, path: str) -> bool:
        """Attach one participant's compressed recording."""
        return await self.report(sink, f"{RECORDING_PREFIX} {label}", attachments=[path])
