import asyncio
import os
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.config import AudioFormatConstants
from scribe.services.errors import EmptyCaptureError, TranscodeError
from scribe.services.manager import BaseFFmpegServiceManager

# -------------------------------------------------------------- #
# Artifact Models
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class CompressedArtifact:
    """Transcoded audio for one participant; immutable once produced."""

    participant_id: str
    path: str
    size_bytes: int
    duration_seconds: float | None = None


@dataclass(frozen=True)
class AudioSegment:
    """A time-bounded, independently decodable slice of an artifact."""

    index: int
    path: str


# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    """Thin wrapper that runs ffmpeg/ffprobe commands off the event loop."""

    def __init__(self, ffmpeg_path: str, ffprobe_path: str = "ffprobe"):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        ok, _, _ = await self.run([self.ffmpeg_path, "-version"], timeout=5.0)
        return ok

    async def run(self, cmd: list[str], timeout: float) -> tuple[bool, str, str]:
        """
        Run a command in an executor with a hard timeout.

        subprocess.run kills the child when the timeout expires, so a hung
        conversion never outlives its timeout.

        Args:
            cmd: Full command line
            timeout: Seconds before the process is killed

        Returns:
            Tuple of (success: bool, stdout: str, stderr: str)
        """
        try:
            loop = asyncio.get_event_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        cmd,
                        capture_output=True,
                        timeout=timeout,
                        text=True,
                    ),
                ),
                timeout=timeout + 10.0,  # Slightly longer than subprocess timeout
            )
            return result.returncode == 0, result.stdout, result.stderr
        except (subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False, "", f"FFmpeg process timed out after {timeout:.0f}s"
        except OSError as e:
            return False, "", str(e)

    def build_pcm_to_mp3_command(
        self, input_path: str, output_path: str, bitrate: str, sample_rate: int
    ) -> list[str]:
        """Raw s16le 48 kHz stereo in, speech-grade mono MP3 out."""
        # Format options MUST come BEFORE -i for raw input
        return [
            self.ffmpeg_path,
            "-f",
            "s16le",
            "-ar",
            str(AudioFormatConstants.SAMPLE_RATE),
            "-ac",
            str(AudioFormatConstants.CHANNELS),
            "-i",
            input_path,
            "-ac",
            "1",
            "-ar",
            str(sample_rate),
            "-codec:a",
            "libmp3lame",
            "-b:a",
            bitrate,
            "-y",
            output_path,
        ]

    def build_segment_command(
        self, input_path: str, output_pattern: str, segment_seconds: int
    ) -> list[str]:
        """Stream-copy split with per-segment timestamps reset to zero."""
        return [
            self.ffmpeg_path,
            "-i",
            input_path,
            "-f",
            "segment",
            "-segment_time",
            str(segment_seconds),
            "-c",
            "copy",
            "-reset_timestamps",
            "1",
            "-y",
            output_pattern,
        ]

    def build_probe_command(self, input_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            input_path,
        ]


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Transcode & chunk engine: raw PCM to compressed artifact, artifact to segments."""

    SEGMENT_NAME_FORMAT = "{stem}_part_{index:03d}{ext}"

    def __init__(self, context: "Context", ffmpeg_path: str | None = None, ffprobe_path: str | None = None):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path or context.config.ffmpeg_path
        self.ffprobe_path = ffprobe_path or context.config.ffprobe_path
        self.handler = FFmpegHandler(self.ffmpeg_path, self.ffprobe_path)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(f"FFmpeg validated at path: {self.ffmpeg_path}")
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}"
            )
        return True

    # -------------------------------------------------------------- #
    # Timeouts
    # -------------------------------------------------------------- #

    def compute_timeout(self, size_bytes: int) -> float:
        """
        Conversion timeout proportional to input size, clamped to the configured bounds.

        Args:
            size_bytes: Size of the file being converted

        Returns:
            Timeout in seconds
        """
        size_mb = size_bytes / (1024 * 1024)
        scaled = size_mb * self.config.transcode_seconds_per_mb
        return max(
            self.config.transcode_timeout_min_seconds,
            min(scaled, self.config.transcode_timeout_max_seconds),
        )

    # -------------------------------------------------------------- #
    # Transcode
    # -------------------------------------------------------------- #

    async def transcode_capture(
        self, raw_path: str, artifact_path: str, participant_id: str | None = None
    ) -> CompressedArtifact:
        """
        Convert a participant's raw PCM capture into a compressed artifact.

        Args:
            raw_path: Path to the raw s16le capture
            artifact_path: Where to write the MP3 artifact
            participant_id: Owner of the capture (defaults to the artifact file stem)

        Returns:
            The produced CompressedArtifact

        Raises:
            EmptyCaptureError: The capture is missing or holds zero bytes
            TranscodeError: FFmpeg failed or exceeded its timeout
        """
        raw_size = await self._size(raw_path)
        if raw_size == 0:
            raise EmptyCaptureError(raw_path)

        timeout = self.compute_timeout(raw_size)
        cmd = self.handler.build_pcm_to_mp3_command(
            raw_path,
            artifact_path,
            bitrate=self.config.artifact_bitrate,
            sample_rate=self.config.artifact_sample_rate,
        )

        await self.services.logging_service.info(
            f"Transcoding {raw_path} ({raw_size:,} bytes) -> {artifact_path} (timeout {timeout:.0f}s)"
        )
        ok, _, stderr = await self.handler.run(cmd, timeout=timeout)
        if not ok:
            await self.services.logging_service.error(
                f"FFmpeg transcode failed for {raw_path}: {stderr.strip()[-500:]}"
            )
            raise TranscodeError(f"Transcode failed for {raw_path}: {stderr.strip()[-200:]}")

        artifact_size = await self._size(artifact_path)
        if artifact_size == 0:
            raise TranscodeError(f"Transcode produced an empty artifact for {raw_path}")

        duration = await self.probe_duration_seconds(artifact_path)
        participant_id = participant_id or os.path.splitext(os.path.basename(artifact_path))[0]

        await self.services.logging_service.info(
            f"Transcode completed: {artifact_path} ({artifact_size:,} bytes"
            + (f", {duration:.1f}s)" if duration is not None else ")")
        )
        return CompressedArtifact(
            participant_id=participant_id,
            path=artifact_path,
            size_bytes=artifact_size,
            duration_seconds=duration,
        )

    # -------------------------------------------------------------- #
    # Chunking
    # -------------------------------------------------------------- #

    def segment_path(self, artifact_path: str, index: int) -> str:
        stem, ext = os.path.splitext(artifact_path)
        return self.SEGMENT_NAME_FORMAT.format(stem=stem, index=index, ext=ext)

    async def split_artifact(
        self, artifact: CompressedArtifact, segment_seconds: int | None = None
    ) -> list[AudioSegment]:
        """
        Split an artifact into fixed-duration segments without re-encoding.

        Args:
            artifact: The artifact to split
            segment_seconds: Segment length (defaults to config.segment_seconds)

        Returns:
            Segments in playback order

        Raises:
            TranscodeError: FFmpeg failed or no segment was produced
        """
        segment_seconds = segment_seconds or self.config.segment_seconds
        stem, ext = os.path.splitext(artifact.path)
        output_pattern = f"{stem}_part_%03d{ext}"

        cmd = self.handler.build_segment_command(artifact.path, output_pattern, segment_seconds)
        timeout = self.compute_timeout(artifact.size_bytes)

        await self.services.logging_service.info(
            f"Splitting {artifact.path} ({artifact.size_bytes:,} bytes) into {segment_seconds}s segments"
        )
        ok, _, stderr = await self.handler.run(cmd, timeout=timeout)

        segments = await self.discover_segments(artifact.path)
        if not ok:
            # Partial output from a failed split is not trustworthy
            for segment in segments:
                await self._remove(segment.path)
            raise TranscodeError(f"Segmenting failed for {artifact.path}: {stderr.strip()[-200:]}")
        if not segments:
            raise TranscodeError(f"Segmenting produced no output for {artifact.path}")

        await self.services.logging_service.info(
            f"Split {artifact.path} into {len(segments)} segment(s)"
        )
        return segments

    async def discover_segments(self, artifact_path: str) -> list[AudioSegment]:
        """Probe segment names from index 0 upward until the first missing index."""
        loop = asyncio.get_event_loop()
        segments: list[AudioSegment] = []
        index = 0
        while True:
            path = self.segment_path(artifact_path, index)
            if not await loop.run_in_executor(None, os.path.exists, path):
                break
            segments.append(AudioSegment(index=index, path=path))
            index += 1
        return segments

    # -------------------------------------------------------------- #
    # Probing
    # -------------------------------------------------------------- #

    async def probe_duration_seconds(self, path: str) -> float | None:
        """Duration reported by ffprobe, or None when it cannot be determined."""
        ok, stdout, _ = await self.handler.run(self.handler.build_probe_command(path), timeout=30.0)
        if not ok:
            return None
        try:
            return float(stdout.strip())
        except ValueError:
            return None

    # -------------------------------------------------------------- #
    # Helpers
    # -------------------------------------------------------------- #

    async def _size(self, path: str) -> int:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, os.path.getsize, path)
        except FileNotFoundError:
            return 0

    async def _remove(self, path: str) -> None:
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, os.unlink, path)
        except FileNotFoundError:
            pass
