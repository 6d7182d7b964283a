"""
Transcription Orchestrator.

Turns one participant's compressed artifact into text. Small artifacts are
sent whole; large artifacts (or artifacts whose whole-file attempt failed)
are split into segments that are transcribed concurrently and concatenated
in segment order. Every call to the speech-to-text server goes through a
bounded retry loop that only retries transient failures.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp

if TYPE_CHECKING:
    from scribe.context import Context
    from scribe.services.ffmpeg_manager.manager import AudioSegment, CompressedArtifact

from scribe.server.common.whisper_server import TERMINAL_HTTP_STATUSES
from scribe.services.errors import (
    TerminalTranscriptionError,
    TranscodeError,
    TransientTranscriptionError,
)
from scribe.services.manager import Manager

# -------------------------------------------------------------- #
# Outcome Models
# -------------------------------------------------------------- #


class TranscriptionStatus(enum.Enum):
    DONE = "done"
    PARTIAL = "partial"  # some segments failed and were skipped
    FAILED = "failed"  # no unit produced text


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclass
class TranscriptionOutcome:
    text: str
    status: TranscriptionStatus
    attempted_units: int = 0
    failed_units: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status != TranscriptionStatus.FAILED


# -------------------------------------------------------------- #
# Transcription Service
# -------------------------------------------------------------- #


class TranscriptionService(Manager):
    """Retrying, chunk-aware front end to the speech-to-text server."""

    def __init__(self, context: Context):
        super().__init__(context)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_transcriptions)

        # Statistics
        self._total_calls = 0
        self._total_retries = 0
        self._total_failures = 0

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"TranscriptionService started (chunk threshold {self.config.chunk_threshold_bytes:,} bytes, "
            f"max {self.config.transcription_max_attempts} attempts, "
            f"{self.config.max_concurrent_transcriptions} concurrent)"
        )

    async def on_close(self):
        if self.services:
            await self.services.logging_service.info(
                f"TranscriptionService stopped. Calls: {self._total_calls}, "
                f"retries: {self._total_retries}, failed units: {self._total_failures}"
            )

    @property
    def transcriber(self):
        return self.server.whisper_server_client

    # -------------------------------------------------------------- #
    # Failure Classification
    # -------------------------------------------------------------- #

    @staticmethod
    def classify_failure(exc: BaseException) -> FailureKind:
        """
        Decide whether a failed call is worth retrying.

        Only failures known to be permanent are terminal; anything
        undetermined is treated as transient.
        """
        if isinstance(exc, TerminalTranscriptionError):
            return FailureKind.TERMINAL
        if isinstance(exc, TransientTranscriptionError):
            return FailureKind.TRANSIENT
        if isinstance(exc, aiohttp.ClientResponseError):
            if exc.status in TERMINAL_HTTP_STATUSES:
                return FailureKind.TERMINAL
            return FailureKind.TRANSIENT
        if isinstance(exc, FileNotFoundError):
            return FailureKind.TERMINAL
        return FailureKind.TRANSIENT

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failed attempt (1-based)."""
        return min(
            self.config.transcription_initial_backoff_seconds * (2 ** (attempt - 1)),
            self.config.transcription_max_backoff_seconds,
        )

    # -------------------------------------------------------------- #
    # Retrying Call
    # -------------------------------------------------------------- #

    async def call_with_retry(self, path: str) -> str | None:
        """
        Transcribe one file with bounded retries.

        Returns:
            The transcript ("" for silence), or None once attempts are
            exhausted or a terminal failure occurred
        """
        max_attempts = self.config.transcription_max_attempts

        for attempt in range(1, max_attempts + 1):
            self._total_calls += 1
            try:
                async with self._semaphore:
                    result = await self.transcriber.transcribe(path)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self.classify_failure(e) == FailureKind.TERMINAL:
                    await self.services.logging_service.error(
                        f"Terminal transcription failure for {path}: {type(e).__name__}: {e}"
                    )
                    return None
                await self.services.logging_service.warning(
                    f"Transient transcription failure for {path} "
                    f"(attempt {attempt}/{max_attempts}): {type(e).__name__}: {e}"
                )
            else:
                if result is not None:
                    if attempt > 1:
                        await self.services.logging_service.info(
                            f"Transcribed {path} on attempt {attempt}/{max_attempts}"
                        )
                    return result
                await self.services.logging_service.warning(
                    f"Transcriber returned no result for {path} (attempt {attempt}/{max_attempts})"
                )

            if attempt < max_attempts:
                self._total_retries += 1
                await asyncio.sleep(self.backoff_delay(attempt))

        await self.services.logging_service.error(
            f"Giving up on {path} after {max_attempts} attempt(s)"
        )
        return None

    # -------------------------------------------------------------- #
    # Artifact Transcription
    # -------------------------------------------------------------- #

    async def transcribe_artifact(self, artifact: CompressedArtifact) -> TranscriptionOutcome:
        """
        Transcribe a participant's artifact, chunking when needed.

        Artifacts at or below the chunk threshold get one whole-file attempt
        and fall back to chunking if it fails. Larger artifacts are chunked
        up front without a whole-file attempt.
        """
        threshold = self.config.chunk_threshold_bytes

        if artifact.size_bytes <= threshold:
            text = await self.call_with_retry(artifact.path)
            if text is not None:
                return TranscriptionOutcome(
                    text=text.strip(), status=TranscriptionStatus.DONE, attempted_units=1
                )
            await self.services.logging_service.warning(
                f"Whole-file transcription failed for {artifact.participant_id}; falling back to chunking"
            )
        else:
            await self.services.logging_service.info(
                f"Artifact for {artifact.participant_id} is {artifact.size_bytes:,} bytes "
                f"(> {threshold:,}); chunking before transcription"
            )

        return await self._transcribe_in_segments(artifact)

    async def _transcribe_in_segments(self, artifact: CompressedArtifact) -> TranscriptionOutcome:
        ffmpeg = self.services.ffmpeg_service_manager
        try:
            segments = await ffmpeg.split_artifact(artifact)
        except TranscodeError as e:
            self._total_failures += 1
            await self.services.logging_service.error(
                f"Could not split artifact for {artifact.participant_id}: {e}"
            )
            return TranscriptionOutcome(text="", status=TranscriptionStatus.FAILED, failed_units=1)

        results = await asyncio.gather(*(self._transcribe_segment(segment) for segment in segments))

        texts: list[str] = []
        failed = 0
        for segment, result in zip(segments, results):
            if result is None:
                failed += 1
                await self.services.logging_service.warning(
                    f"Skipping failed segment {segment.index} of {artifact.participant_id}"
                )
            elif result.strip():
                texts.append(result.strip())
        self._total_failures += failed

        if failed == len(segments):
            status = TranscriptionStatus.FAILED
        elif failed:
            status = TranscriptionStatus.PARTIAL
        else:
            status = TranscriptionStatus.DONE

        await self.services.logging_service.info(
            f"Transcribed {len(segments) - failed}/{len(segments)} segment(s) "
            f"for {artifact.participant_id} ({status.value})"
        )
        return TranscriptionOutcome(
            text=" ".join(texts),
            status=status,
            attempted_units=len(segments),
            failed_units=failed,
        )

    async def _transcribe_segment(self, segment: AudioSegment) -> str | None:
        """Transcribe one segment, deleting its file afterwards regardless of outcome."""
        try:
            return await self.call_with_retry(segment.path)
        finally:
            await self.services.recording_file_service_manager.delete_file(segment.path)
