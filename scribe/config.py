"""
Pipeline configuration.

Thresholds for capture, transcode, transcription and delivery. Values are read
from the environment (``SCRIBE_*`` variables, optionally from a project-local
``.env.local``) and fall back to the defaults below.
"""

import os
import platform
from dataclasses import dataclass, fields

from dotenv import load_dotenv

# -------------------------------------------------------------- #
# Audio Format Constants
# -------------------------------------------------------------- #


class AudioFormatConstants:
    """Raw capture format produced by the decode pipeline."""

    SAMPLE_RATE = 48000  # 48 kHz
    BITS_PER_SAMPLE = 16  # 16-bit signed little-endian PCM
    CHANNELS = 2  # Stereo
    BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
    BYTES_PER_SECOND = SAMPLE_RATE * CHANNELS * BYTES_PER_SAMPLE  # 192,000
    FRAME_MS = 20  # Opus frame duration
    FRAME_SAMPLES = SAMPLE_RATE * FRAME_MS // 1000  # 960 samples per channel


# -------------------------------------------------------------- #
# Pipeline Configuration
# -------------------------------------------------------------- #


@dataclass
class PipelineConfig:
    """Tunable settings for a recording session and its post-processing."""

    # Storage
    recording_storage_path: str = "data/recordings"

    # Capture
    flush_interval_seconds: float = 15.0
    finalize_timeout_seconds: float = 5.0
    reconnect_attempts: int = 3
    reconnect_timeout_seconds: float = 10.0
    max_recording_seconds: float = 18000.0  # 5 hours

    # Transcode
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    artifact_bitrate: str = "64k"
    artifact_sample_rate: int = 24000
    transcode_timeout_min_seconds: float = 30.0
    transcode_timeout_max_seconds: float = 1800.0
    transcode_seconds_per_mb: float = 2.0

    # Chunking
    chunk_threshold_bytes: int = 12 * 1024 * 1024
    segment_seconds: int = 600

    # Transcription
    transcription_max_attempts: int = 3
    transcription_initial_backoff_seconds: float = 1.0
    transcription_max_backoff_seconds: float = 4.0
    max_concurrent_transcriptions: int = 4
    transcription_language: str = "en"
    whisper_endpoint: str = "http://localhost:50021"
    whisper_request_timeout_seconds: float = 600.0

    # Summarization
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"
    summary_timeout_seconds: float = 300.0
    summary_context: str = ""

    # Delivery
    message_max_length: int = 2000
    attach_recordings: bool = False

    @classmethod
    def from_env(cls, env_file: str | None = ".env.local", prefix: str = "SCRIBE_") -> "PipelineConfig":
        """
        Build a configuration from environment variables.

        Each field maps to ``<prefix><FIELD_NAME_UPPER>``; unset variables keep
        the default. ffmpeg/ffprobe also honour the platform specific
        ``WINDOWS_FFMPEG_PATH`` / ``MAC_FFMPEG_PATH`` variables.

        Args:
            env_file: Optional dotenv file to load first (existing env wins)
            prefix: Environment variable prefix

        Returns:
            Populated PipelineConfig
        """
        if env_file:
            load_dotenv(dotenv_path=env_file)

        values = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            values[f.name] = _coerce(raw, f.type)

        if "ffmpeg_path" not in values:
            platform_ffmpeg = (
                os.getenv("WINDOWS_FFMPEG_PATH")
                if platform.system().lower().startswith("win")
                else os.getenv("MAC_FFMPEG_PATH")
            )
            if platform_ffmpeg:
                values["ffmpeg_path"] = platform_ffmpeg

        if "ffprobe_path" not in values:
            platform_ffprobe = (
                os.getenv("WINDOWS_FFPROBE_PATH")
                if platform.system().lower().startswith("win")
                else os.getenv("MAC_FFPROBE_PATH")
            )
            if platform_ffprobe:
                values["ffprobe_path"] = platform_ffprobe

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        """Reject values that would break the pipeline's bounds."""
        if not 0 < self.flush_interval_seconds <= 60:
            raise ValueError("flush_interval_seconds must be in (0, 60]")
        if self.finalize_timeout_seconds <= 0:
            raise ValueError("finalize_timeout_seconds must be positive")
        if self.reconnect_attempts < 0:
            raise ValueError("reconnect_attempts must not be negative")
        if self.transcription_max_attempts < 1:
            raise ValueError("transcription_max_attempts must be at least 1")
        if self.transcode_timeout_min_seconds > self.transcode_timeout_max_seconds:
            raise ValueError("transcode timeout minimum exceeds maximum")
        if self.chunk_threshold_bytes <= 0 or self.segment_seconds <= 0:
            raise ValueError("chunk_threshold_bytes and segment_seconds must be positive")
        if self.max_concurrent_transcriptions < 1:
            raise ValueError("max_concurrent_transcriptions must be at least 1")
        if self.message_max_length < 1:
            raise ValueError("message_max_length must be at least 1")


def _coerce(raw: str, type_name) -> object:
    """Convert an environment string to the dataclass field's type."""
    type_name = type_name if isinstance(type_name, str) else type_name.__name__
    if type_name == "bool":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if type_name == "int":
        return int(raw)
    if type_name == "float":
        return float(raw)
    return raw
