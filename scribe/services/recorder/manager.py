import asyncio
import enum
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context
    from scribe.services.delivery.manager import ReportSink

from scribe.services.capture.decoder import FrameDecoder
from scribe.services.capture.manager import CaptureConstants, CaptureManager
from scribe.services.capture.models import ParticipantCapture, Session, SessionState, TransportEvent
from scribe.services.capture.transport import VoiceTransport
from scribe.services.errors import EmptyCaptureError, NoActiveSessionError
from scribe.services.manager import BaseRecorderServiceManager, ServicesManager
from scribe.services.summarization.manager import SummaryOutcome, SummaryStatus
from scribe.services.transcription.manager import TranscriptionStatus
from scribe.utils import format_duration

# -------------------------------------------------------------- #
# Status Messages
# -------------------------------------------------------------- #


class RecorderMessages:
    """User-facing status messages sent to the report sink."""

    STARTED = "✅ Started recording! Stop the recording when you are finished."
    STOPPED = "⏹️ Recording stopped! Duration: {duration}\n📁 Processing recordings..."
    AUTO_STOPPED = "⏹️ Recording stopped ({reason}). Duration: {duration}\n📁 Processing recordings..."
    NO_AUDIO = "📭 No audio was captured during this recording session."
    NO_TRANSCRIPTION = "⚠️ No transcription could be generated from the recordings."
    PARTICIPANT_FAILED = "⚠️ Could not transcribe audio from {label}."
    PARTICIPANT_PARTIAL = "⚠️ Parts of the audio from {label} could not be transcribed."
    SUMMARY_FAILED = "⚠️ A summary could not be generated for this session."
    PROCESSING_FAILED = "❌ Error processing recordings."


# -------------------------------------------------------------- #
# Report Models
# -------------------------------------------------------------- #


class ParticipantStatus(enum.Enum):
    TRANSCRIBED = "transcribed"
    PARTIAL = "partial"
    EMPTY = "empty"
    TRANSCODE_FAILED = "transcode_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"


@dataclass
class ParticipantResult:
    participant_id: str
    display_label: str
    status: ParticipantStatus
    text: str = ""
    artifact_path: str | None = None
    raw_retained: bool = False
    error: str | None = None


@dataclass
class SessionReport:
    """What a stopped session produced, in first-speech order."""

    scope_id: str
    reason: str | None = None
    duration_seconds: float = 0.0
    participants: list[ParticipantResult] = field(default_factory=list)
    transcript: str = ""
    summary: SummaryOutcome = field(
        default_factory=lambda: SummaryOutcome(status=SummaryStatus.SKIPPED_NO_TRANSCRIPT)
    )
    error: str | None = None

    @property
    def failed_participants(self) -> list[ParticipantResult]:
        return [
            p
            for p in self.participants
            if p.status in (ParticipantStatus.TRANSCODE_FAILED, ParticipantStatus.TRANSCRIPTION_FAILED)
        ]


@dataclass
class ActiveRecording:
    session: Session
    transport: VoiceTransport
    capture: CaptureManager
    reporter: "ReportSink | None" = None
    # Set once start_session has finished, whether or not it succeeded
    started: asyncio.Event = field(default_factory=asyncio.Event)
    start_error: str | None = None


# -------------------------------------------------------------- #
# Recorder Manager
# -------------------------------------------------------------- #


class RecorderManagerService(BaseRecorderServiceManager):
    """
    Coordinates recording sessions end to end.

    This class manages:
    - Session start through the registry (one session per scope)
    - Routing transport events to the session's capture manager
    - The stop path: finalize, transcode, transcribe, summarize, deliver
    - Cleanup of per-session storage and registry entries

    Failures after a session has started are turned into log entries and
    status messages; only start/stop requests that conflict with the
    registry raise to the caller.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)

        self.recordings: dict[str, ActiveRecording] = {}
        self._teardowns: dict[str, asyncio.Task] = {}

    # -------------------------------------------------------------- #
    # Recorder Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("Recorder Service Manager started")

    async def on_close(self) -> None:
        """Stop every active session and wait for in-flight processing."""
        for scope_id in list(self.recordings.keys()):
            session = self.services.session_registry.get(scope_id)
            if session is not None and session.state == SessionState.RECORDING:
                with suppress(NoActiveSessionError):
                    self._teardowns[scope_id] = self._begin_stop(scope_id, "shutdown")

        pending = list(self._teardowns.values())
        if pending:
            await self.services.logging_service.info(
                f"Waiting for {len(pending)} session(s) to finish processing"
            )
            await asyncio.gather(*pending, return_exceptions=True)

        await self.services.logging_service.info("Recorder Service Manager stopped")

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    async def start_session(
        self,
        scope_id: str,
        transport: VoiceTransport,
        reporter: "ReportSink | None" = None,
        label_resolver: Callable[[str], str] | None = None,
        decoder_factory: Callable[[], FrameDecoder] | None = None,
    ) -> Session:
        """
        Start recording a scope.

        The recording is registered before the first await, so a stop that
        arrives while the session directory is being created finds it and
        waits for the start to finish before tearing it down.

        Args:
            decoder_factory: Overrides the transport's own frame decoder

        Raises:
            AlreadyActiveError: The scope already has a non-closed session
        """
        registry = self.services.session_registry
        session = registry.try_start(scope_id)
        capture = CaptureManager(
            session=session,
            transport=transport,
            services=self.services,
            decoder_factory=decoder_factory,
            on_auto_stop=lambda reason: self._auto_stop(scope_id, reason),
            label_resolver=label_resolver,
        )
        recording = ActiveRecording(session=session, transport=transport, capture=capture, reporter=reporter)
        self.recordings[scope_id] = recording

        try:
            session.session_dir = await self.services.recording_file_service_manager.create_session_dir(
                scope_id, session.session_id
            )
            transport.set_event_handler(capture.dispatch)
            await capture.start()
            await self.services.logging_service.info(f"Started recording session for scope {scope_id}")
            await self.services.delivery_service_manager.deliver_notice(reporter, RecorderMessages.STARTED)
        except Exception as e:
            recording.start_error = f"{type(e).__name__}: {e}"
            await self.services.logging_service.error(
                f"Failed to start recording for scope {scope_id}: {recording.start_error}"
            )
            transport.set_event_handler(None)
            if self.recordings.get(scope_id) is recording:
                del self.recordings[scope_id]
            registry.close(session)
            raise
        finally:
            recording.started.set()

        return session

    async def handle_event(self, scope_id: str, event: TransportEvent) -> None:
        """Forward a transport event to the scope's capture manager."""
        recording = self.recordings.get(scope_id)
        if recording is None:
            await self.services.logging_service.debug(
                f"Dropping {type(event).__name__} for scope {scope_id}: no active recording"
            )
            return
        await recording.started.wait()
        if recording.start_error is None:
            await recording.capture.dispatch(event)

    async def stop_session(self, scope_id: str, reason: str | None = None) -> SessionReport:
        """
        Stop a scope's session and process everything it captured.

        Raises:
            NoActiveSessionError: Nothing is recording for the scope (or it is already stopping)
        """
        task = self._begin_stop(scope_id, reason)
        self._teardowns[scope_id] = task
        return await asyncio.shield(task)

    def get_active_session(self, scope_id: str) -> Session | None:
        recording = self.recordings.get(scope_id)
        return recording.session if recording else None

    def is_recording(self, scope_id: str) -> bool:
        return scope_id in self.recordings

    # -------------------------------------------------------------- #
    # Stop Path
    # -------------------------------------------------------------- #

    def _begin_stop(self, scope_id: str, reason: str | None) -> asyncio.Task:
        """Win the RECORDING -> STOPPING transition, then run the teardown as its own task."""
        session = self.services.session_registry.stop(scope_id)
        session.stop_reason = reason
        return asyncio.create_task(self._teardown(self.recordings[scope_id]))

    async def _auto_stop(self, scope_id: str, reason: str) -> None:
        """Stop requested from inside the session (reconnect exhausted, max duration)."""
        try:
            await self.stop_session(scope_id, reason=reason)
        except NoActiveSessionError:
            await self.services.logging_service.debug(
                f"Auto-stop ({reason}) for scope {scope_id} ignored: already stopping"
            )

    async def _teardown(self, recording: ActiveRecording) -> SessionReport:
        session = recording.session
        scope_id = session.scope_id
        report = SessionReport(scope_id=scope_id, reason=session.stop_reason)
        retained_raw = False

        await recording.started.wait()
        if recording.start_error is not None:
            # start_session has already released the scope
            report.error = recording.start_error
            self._teardowns.pop(scope_id, None)
            return report

        try:
            await self.services.logging_service.info(
                f"Stopping recording session for scope {scope_id}"
                + (f" ({session.stop_reason})" if session.stop_reason else "")
            )

            # Finalize every capture before anything reads a raw file
            await recording.capture.finalize_all()
            recording.transport.set_event_handler(None)
            await self._disconnect_transport(recording)

            report.duration_seconds = session.duration_seconds()
            await self._send_stop_notice(recording, report)

            session.state = SessionState.PROCESSING
            retained_raw = await self._process_session(recording, report)

        except Exception as e:
            report.error = f"{type(e).__name__}: {e}"
            await self.services.logging_service.error(
                f"Error processing recordings for scope {scope_id}: {report.error}"
            )
            await self.services.delivery_service_manager.deliver_notice(
                recording.reporter, RecorderMessages.PROCESSING_FAILED
            )

        finally:
            await self._cleanup(recording, keep_session_dir=retained_raw)

        await self.services.logging_service.info(
            f"Session for scope {scope_id} closed: {len(report.participants)} participant(s), "
            f"{len(report.failed_participants)} failed, summary {report.summary.status.value}"
        )
        return report

    async def _disconnect_transport(self, recording: ActiveRecording) -> None:
        try:
            await asyncio.wait_for(
                recording.transport.disconnect(), timeout=self.config.finalize_timeout_seconds
            )
        except asyncio.TimeoutError:
            await self.services.logging_service.warning(
                f"Transport disconnect timed out for scope {recording.session.scope_id}"
            )
        except Exception as e:
            await self.services.logging_service.warning(
                f"Transport disconnect failed for scope {recording.session.scope_id}: "
                f"{type(e).__name__}: {e}"
            )

    async def _send_stop_notice(self, recording: ActiveRecording, report: SessionReport) -> None:
        duration = format_duration(report.duration_seconds)
        reason = recording.session.stop_reason
        if reason in (CaptureConstants.REASON_CONNECTION_LOST, CaptureConstants.REASON_MAX_DURATION):
            message = RecorderMessages.AUTO_STOPPED.format(reason=reason, duration=duration)
        else:
            message = RecorderMessages.STOPPED.format(duration=duration)
        await self.services.delivery_service_manager.deliver_notice(recording.reporter, message)

    async def _process_session(self, recording: ActiveRecording, report: SessionReport) -> bool:
        """
        Transcode and transcribe every participant, then summarize and deliver.

        Returns:
            True when a raw capture had to be kept because its transcode failed
        """
        delivery = self.services.delivery_service_manager
        reporter = recording.reporter
        participants = recording.session.ordered_participants()

        if not participants:
            await delivery.deliver_notice(reporter, RecorderMessages.NO_AUDIO)
            return False

        # Participants are independent; results come back in first-speech order
        report.participants = list(
            await asyncio.gather(
                *(self._process_participant(recording.session, capture) for capture in participants)
            )
        )

        if all(p.status == ParticipantStatus.EMPTY for p in report.participants):
            await delivery.deliver_notice(reporter, RecorderMessages.NO_AUDIO)
            return False

        if self.config.attach_recordings:
            for result in report.participants:
                if result.artifact_path:
                    await delivery.deliver_recording(reporter, result.display_label, result.artifact_path)

        for result in report.participants:
            if result.artifact_path:
                await self.services.recording_file_service_manager.delete_file(result.artifact_path)

        for result in report.participants:
            if result in report.failed_participants:
                await delivery.deliver_notice(
                    reporter, RecorderMessages.PARTICIPANT_FAILED.format(label=result.display_label)
                )
            elif result.status == ParticipantStatus.PARTIAL:
                await delivery.deliver_notice(
                    reporter, RecorderMessages.PARTICIPANT_PARTIAL.format(label=result.display_label)
                )

        report.transcript = self.assemble_transcript(report.participants)
        if not report.transcript:
            await delivery.deliver_notice(reporter, RecorderMessages.NO_TRANSCRIPTION)
            return any(p.raw_retained for p in report.participants)

        await delivery.deliver_transcript(reporter, report.transcript)

        report.summary = await self.services.summarization_service_manager.summarize(report.transcript)
        if report.summary.status == SummaryStatus.SUMMARIZED:
            await delivery.deliver_summary(reporter, report.summary.text)
        elif report.summary.status == SummaryStatus.FAILED:
            await delivery.deliver_notice(reporter, RecorderMessages.SUMMARY_FAILED)

        return any(p.raw_retained for p in report.participants)

    async def _process_participant(self, session: Session, capture: ParticipantCapture) -> ParticipantResult:
        """Transcode then transcribe one participant; never raises."""
        files = self.services.recording_file_service_manager
        result = ParticipantResult(
            participant_id=capture.participant_id,
            display_label=capture.display_label,
            status=ParticipantStatus.TRANSCRIBED,
        )

        if capture.error:
            await self.services.logging_service.warning(
                f"Capture for {capture.display_label} ended with an error ({capture.error}); "
                f"processing the {capture.bytes_written:,} bytes it kept"
            )

        artifact_path = files.get_artifact_path(session.session_dir, capture.participant_id)
        try:
            artifact = await self.services.ffmpeg_service_manager.transcode_capture(
                capture.raw_path, artifact_path, participant_id=capture.participant_id
            )
        except EmptyCaptureError:
            await self.services.logging_service.info(
                f"No audio captured for {capture.display_label}; skipping"
            )
            await files.delete_file(capture.raw_path)
            result.status = ParticipantStatus.EMPTY
            return result
        except Exception as e:
            await self.services.logging_service.error(
                f"Transcode failed for {capture.display_label}; keeping raw capture at "
                f"{capture.raw_path}: {type(e).__name__}: {e}"
            )
            result.status = ParticipantStatus.TRANSCODE_FAILED
            result.raw_retained = True
            result.error = str(e)
            return result

        # Raw bytes are folded into the artifact; the raw file is no longer needed
        await files.delete_file(capture.raw_path)
        result.artifact_path = artifact.path

        try:
            outcome = await self.services.transcription_service_manager.transcribe_artifact(artifact)
        except Exception as e:
            await self.services.logging_service.error(
                f"Transcription failed for {capture.display_label}: {type(e).__name__}: {e}"
            )
            result.status = ParticipantStatus.TRANSCRIPTION_FAILED
            result.error = str(e)
            return result

        result.text = outcome.text
        if outcome.status == TranscriptionStatus.FAILED:
            result.status = ParticipantStatus.TRANSCRIPTION_FAILED
        elif outcome.status == TranscriptionStatus.PARTIAL:
            result.status = ParticipantStatus.PARTIAL
        return result

    @staticmethod
    def assemble_transcript(results: list[ParticipantResult]) -> str:
        """Speaker-labelled transcript in first-speech order."""
        blocks = [f"**{r.display_label}:**\n{r.text.strip()}" for r in results if r.text.strip()]
        return "\n\n".join(blocks)

    async def _cleanup(self, recording: ActiveRecording, keep_session_dir: bool) -> None:
        session = recording.session
        scope_id = session.scope_id
        try:
            if keep_session_dir:
                await self.services.logging_service.warning(
                    f"Keeping {session.session_dir} for scope {scope_id}: it holds raw audio "
                    f"that could not be transcoded"
                )
            else:
                await self.services.recording_file_service_manager.remove_session_dir(session.session_dir)
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to clean up storage for scope {scope_id}: {type(e).__name__}: {e}"
            )
        finally:
            self.recordings.pop(scope_id, None)
            self._teardowns.pop(scope_id, None)
            self.services.session_registry.close(session)
