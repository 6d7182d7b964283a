from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context
    from scribe.services.capture.transport import VoiceTransport
    from scribe.services.delivery.manager import ReportSink


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """
    Owns every pipeline service and their lifecycle.

    Services start in dependency order (logging first, the recorder last) and
    close in the reverse order, so the recorder can still transcode, transcribe
    and deliver while it stops the sessions that are open at shutdown.
    """

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        recording_file_service_manager: BaseRecordingFileServiceManager,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        session_registry: Manager,
        transcription_service_manager: Manager,
        summarization_service_manager: Manager,
        delivery_service_manager: Manager,
        recorder_service_manager: BaseRecorderServiceManager,
    ):
        self.context = context
        self.server = context.server_manager
        self.config = context.config

        self.logging_service = logging_service
        self.recording_file_service_manager = recording_file_service_manager
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.session_registry = session_registry
        self.transcription_service_manager = transcription_service_manager
        self.summarization_service_manager = summarization_service_manager
        self.delivery_service_manager = delivery_service_manager
        self.recorder_service_manager = recorder_service_manager

    @property
    def pipeline_services(self) -> list[Manager]:
        """Services between the logger and the recorder, in start order."""
        return [
            self.recording_file_service_manager,
            self.ffmpeg_service_manager,
            self.session_registry,
            self.transcription_service_manager,
            self.summarization_service_manager,
            self.delivery_service_manager,
        ]

    async def initialize_all(self) -> None:
        await self.logging_service.on_start(self)
        for service in self.pipeline_services:
            await service.on_start(self)
        await self.recorder_service_manager.on_start(self)

        await self.logging_service.info(
            f"[Services] {len(self.pipeline_services) + 2} services started"
        )

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Stop open sessions, close the pipeline, then flush the log.

        Args:
            timeout: Seconds allowed for open sessions to finish processing
        """
        log = self.logging_service
        await log.info("[Services] Shutdown requested")

        try:
            await asyncio.wait_for(self.recorder_service_manager.on_close(), timeout=timeout)
            await log.info("[Services] Open sessions stopped")

            for service in reversed(self.pipeline_services):
                await service.on_close()
            await log.info("[Services] Pipeline services closed")
        except asyncio.TimeoutError:
            await log.error(f"[Services] Sessions still processing after {timeout}s, closing anyway")
        except Exception as e:
            await log.error(f"[Services] Shutdown error: {e}")

        # The log is closed regardless of how the phases above ended
        try:
            await asyncio.wait_for(log.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services: ServicesManager | None = None

        # check if server has been initialized
        if self.server is not None and not self.server._initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    @property
    def config(self):
        """Pipeline configuration shared through the context."""
        return self.context.config

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Logger used by every service. Calls never block on file I/O."""

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        pass


class BaseRecordingFileServiceManager(Manager):
    """Specialized manager for per-session recording storage."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the absolute root path under which session directories live."""
        pass

    @abstractmethod
    async def create_session_dir(self, scope_id: str, session_id: str) -> str:
        """Create (if needed) and return the directory for one session of a scope."""
        pass

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Delete a single transient file, ignoring missing files."""
        pass

    @abstractmethod
    async def remove_session_dir(self, session_dir: str) -> None:
        """Remove a session directory and anything left inside it."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for FFmpeg services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def transcode_capture(
        self, raw_path: str, artifact_path: str, participant_id: str | None = None
    ):
        """Convert a participant's raw PCM capture into a compressed artifact."""
        pass

    @abstractmethod
    async def split_artifact(self, artifact, segment_seconds: int | None = None) -> list:
        """Split an artifact into independently decodable time-bounded segments."""
        pass


class BaseRecorderServiceManager(Manager):
    """Specialized manager coordinating recording sessions end to end."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def start_session(
        self,
        scope_id: str,
        transport: VoiceTransport,
        reporter: ReportSink | None = None,
        label_resolver: Callable[[str], str] | None = None,
    ):
        """Start a new recording session for a scope."""
        pass

    @abstractmethod
    async def stop_session(self, scope_id: str, reason: str | None = None):
        """Stop a recording session and process its captures."""
        pass
