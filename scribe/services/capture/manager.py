import asyncio
import os
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from scribe.services.manager import ServicesManager

from scribe.services.capture.decoder import FrameDecoder
from scribe.services.capture.models import (
    CaptureState,
    ConnectionLost,
    ConnectionRestored,
    ParticipantCapture,
    ParticipantLeft,
    Session,
    SessionState,
    SpeakingStarted,
    TransportEvent,
)
from scribe.services.capture.transport import VoiceTransport

AutoStopCallback = Callable[[str], Awaitable[None]]

# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class CaptureConstants:
    """Fixed timings of the capture pipeline that are not worth exposing as config."""

    # Grace period for a cancelled pipeline to close its file after a forced finalize
    FORCE_CANCEL_GRACE_SECONDS = 1.0

    # Pause between reconnect attempts
    RECONNECT_PAUSE_SECONDS = 1.0

    # Session stop reasons reported to the coordinator
    REASON_CONNECTION_LOST = "connection lost"
    REASON_MAX_DURATION = "maximum recording duration reached"


# -------------------------------------------------------------- #
# Capture Manager
# -------------------------------------------------------------- #


class CaptureManager:
    """
    Turns a bursty, push-driven event stream into one durable byte sequence per participant.

    This class handles:
    - A single dispatch point for typed transport events
    - One decode pipeline task per participant, appending PCM to its own file
    - A periodic flush timer per pipeline that fsyncs the destination
    - Finalization on participant leave, on session stop, and under a force deadline
    - Bounded reconnection after the transport drops

    Failure of one participant's pipeline only closes that participant's
    capture; the other pipelines and the session carry on.
    """

    def __init__(
        self,
        session: Session,
        transport: VoiceTransport,
        services: "ServicesManager",
        decoder_factory: Callable[[], FrameDecoder] | None = None,
        on_auto_stop: AutoStopCallback | None = None,
        label_resolver: Callable[[str], str] | None = None,
    ):
        self.session = session
        self.transport = transport
        self.services = services
        self.config = services.config
        self.decoder_factory = decoder_factory or transport.create_decoder
        self.on_auto_stop = on_auto_stop
        self.label_resolver = label_resolver or transport.display_label

        self._finalizers: dict[str, asyncio.Task] = {}
        self._reconnect_task: asyncio.Task | None = None
        self._max_duration_task: asyncio.Task | None = None
        self._auto_stop_task: asyncio.Task | None = None
        self._closed = False

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def start(self) -> None:
        """Start the session-level watchdogs."""
        self._max_duration_task = asyncio.create_task(self._max_duration_watchdog())
        await self.services.logging_service.info(
            f"Capture started for scope {self.session.scope_id} "
            f"(flush every {self.config.flush_interval_seconds}s, "
            f"max duration {self.config.max_recording_seconds:.0f}s)"
        )

    # -------------------------------------------------------------- #
    # Event Dispatch
    # -------------------------------------------------------------- #

    async def dispatch(self, event: TransportEvent) -> None:
        """
        Single entry point for transport events.

        Never raises: a failing handler is logged and the transport keeps
        delivering events.
        """
        try:
            if isinstance(event, SpeakingStarted):
                await self._on_speaking_started(str(event.participant_id))
            elif isinstance(event, ParticipantLeft):
                await self.finalize_participant(str(event.participant_id))
            elif isinstance(event, ConnectionLost):
                await self._on_connection_lost()
            elif isinstance(event, ConnectionRestored):
                await self._on_connection_restored()
            else:
                await self.services.logging_service.warning(
                    f"Ignoring unknown transport event {event!r} for scope {self.session.scope_id}"
                )
        except Exception as e:
            await self.services.logging_service.error(
                f"Error handling {type(event).__name__} for scope {self.session.scope_id}: "
                f"{type(e).__name__}: {e}"
            )

    async def _on_speaking_started(self, participant_id: str) -> None:
        if self._closed or self.session.state != SessionState.RECORDING:
            return

        capture = self.session.participants.get(participant_id)
        if capture is not None and capture.state != CaptureState.CLOSED:
            # CAPTURING: duplicate event. FINALIZING: speaker left, let the close finish.
            return

        # No await between the state check above and the task creation below,
        # so repeated events can never start a second pipeline.
        stream = self.transport.subscribe(participant_id)
        if capture is None:
            capture = ParticipantCapture(
                participant_id=participant_id,
                display_label=self._resolve_label(participant_id),
                raw_path=self.services.recording_file_service_manager.get_raw_capture_path(
                    self.session.session_dir, participant_id
                ),
            )
            self.session.participants[participant_id] = capture
            self.session.first_speech_order.append(participant_id)
            is_rejoin = False
        else:
            capture.state = CaptureState.CAPTURING
            capture.error = None
            is_rejoin = True

        capture.stream = stream
        capture.pipeline_task = asyncio.create_task(self._run_pipeline(capture))

        await self.services.logging_service.info(
            f"{'Resumed' if is_rejoin else 'Started'} capture for {capture.display_label} "
            f"({participant_id}) in scope {self.session.scope_id} -> {capture.raw_path}"
        )

    def _resolve_label(self, participant_id: str) -> str:
        try:
            return self.label_resolver(participant_id) or participant_id
        except Exception:
            return participant_id

    # -------------------------------------------------------------- #
    # Decode Pipeline
    # -------------------------------------------------------------- #

    async def _run_pipeline(self, capture: ParticipantCapture) -> None:
        """Decode frames and append them to the participant's destination until the stream ends."""
        write_lock = asyncio.Lock()
        flush_task: asyncio.Task | None = None
        try:
            decoder = self.decoder_factory()
            async with aiofiles.open(capture.raw_path, mode="ab") as f:
                flush_task = asyncio.create_task(self._flush_loop(capture, f, write_lock))
                try:
                    async for frame in capture.stream:
                        pcm = decoder.decode(frame)
                        if not pcm:
                            continue
                        async with write_lock:
                            await f.write(pcm)
                        capture.bytes_written += len(pcm)
                        capture.frames_decoded += 1
                finally:
                    flush_task.cancel()
                    with suppress(asyncio.CancelledError):
                        await flush_task
                    await self._sync_to_disk(f)

            await self.services.logging_service.info(
                f"Capture closed for {capture.display_label} ({capture.participant_id}): "
                f"{capture.bytes_written:,} bytes, {capture.frames_decoded} frames"
            )
        except asyncio.CancelledError:
            await self.services.logging_service.warning(
                f"Capture pipeline for {capture.participant_id} was force-closed "
                f"after {capture.bytes_written:,} bytes"
            )
            raise
        except Exception as e:
            capture.error = f"{type(e).__name__}: {e}"
            await self.services.logging_service.error(
                f"Capture pipeline failed for {capture.display_label} ({capture.participant_id}) "
                f"in scope {self.session.scope_id}: {capture.error}. "
                f"Keeping {capture.bytes_written:,} bytes captured so far."
            )
        finally:
            capture.state = CaptureState.CLOSED
            if capture.stream is not None:
                with suppress(Exception):
                    await asyncio.wait_for(
                        capture.stream.close(), timeout=CaptureConstants.FORCE_CANCEL_GRACE_SECONDS
                    )

    async def _flush_loop(self, capture: ParticipantCapture, f, write_lock: asyncio.Lock) -> None:
        """Force buffered writes to stable storage every flush interval."""
        while True:
            await asyncio.sleep(self.config.flush_interval_seconds)
            async with write_lock:
                await self._sync_to_disk(f)
            capture.flush_count += 1
            await self.services.logging_service.debug(
                f"Flushed capture for {capture.participant_id} "
                f"(flush #{capture.flush_count}, {capture.bytes_written:,} bytes)"
            )

    async def _sync_to_disk(self, f) -> None:
        await f.flush()
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, os.fsync, f.fileno())

    # -------------------------------------------------------------- #
    # Finalization
    # -------------------------------------------------------------- #

    async def finalize_participant(self, participant_id: str) -> None:
        """Finalize one participant right away (participant left the room)."""
        capture = self.session.participants.get(participant_id)
        if capture is None or not capture.is_capturing:
            return

        capture.state = CaptureState.FINALIZING
        deadline = asyncio.get_event_loop().time() + self.config.finalize_timeout_seconds
        task = asyncio.ensure_future(self._finalize(capture, deadline))
        self._finalizers[participant_id] = task

        await self.services.logging_service.info(
            f"{capture.display_label} ({participant_id}) left scope {self.session.scope_id}; finalizing capture"
        )
        await task

    async def finalize_all(self) -> None:
        """
        Finalize every capture concurrently under one shared deadline.

        Returns only once no participant is left CAPTURING or FINALIZING,
        even if a stream refuses to close.
        """
        self._closed = True
        self._cancel_watchdogs()

        deadline = asyncio.get_event_loop().time() + self.config.finalize_timeout_seconds
        pending: list[asyncio.Future] = []
        for participant_id, capture in list(self.session.participants.items()):
            if capture.is_capturing:
                capture.state = CaptureState.FINALIZING
                task = asyncio.ensure_future(self._finalize(capture, deadline))
                self._finalizers[participant_id] = task
                pending.append(task)
            elif participant_id in self._finalizers and not self._finalizers[participant_id].done():
                pending.append(self._finalizers[participant_id])

        await self.services.logging_service.info(
            f"Finalizing {len(pending)} capture(s) for scope {self.session.scope_id}"
        )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for capture in self.session.participants.values():
            if capture.state != CaptureState.CLOSED:
                capture.state = CaptureState.CLOSED

    async def _finalize(self, capture: ParticipantCapture, deadline: float) -> None:
        """Close a capture gracefully, forcing cancellation once the deadline passes."""
        loop = asyncio.get_event_loop()
        task = capture.pipeline_task

        try:
            if capture.stream is not None:
                await asyncio.wait_for(capture.stream.close(), timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            pass
        except Exception as e:
            await self.services.logging_service.warning(
                f"Error closing stream for {capture.participant_id}: {type(e).__name__}: {e}"
            )

        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=max(0.0, deadline - loop.time()))
            if not done:
                await self.services.logging_service.warning(
                    f"Capture for {capture.participant_id} did not close before the deadline; forcing"
                )
                task.cancel()
                await asyncio.wait({task}, timeout=CaptureConstants.FORCE_CANCEL_GRACE_SECONDS)

        capture.state = CaptureState.CLOSED

    # -------------------------------------------------------------- #
    # Connection Handling
    # -------------------------------------------------------------- #

    async def _on_connection_lost(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        await self.services.logging_service.warning(
            f"Voice connection lost for scope {self.session.scope_id}; attempting to reconnect"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _on_connection_restored(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reconnect_task
        await self.services.logging_service.info(
            f"Voice connection restored for scope {self.session.scope_id}"
        )

    async def _reconnect_loop(self) -> None:
        """Bounded reconnection; on exhaustion the whole session is torn down."""
        attempts = self.config.reconnect_attempts
        for attempt in range(1, attempts + 1):
            try:
                ok = await asyncio.wait_for(
                    self.transport.reconnect(), timeout=self.config.reconnect_timeout_seconds
                )
                if ok:
                    await self.services.logging_service.info(
                        f"Reconnected scope {self.session.scope_id} on attempt {attempt}/{attempts}"
                    )
                    return
                await self.services.logging_service.warning(
                    f"Reconnect attempt {attempt}/{attempts} for scope {self.session.scope_id} failed"
                )
            except asyncio.TimeoutError:
                await self.services.logging_service.warning(
                    f"Reconnect attempt {attempt}/{attempts} for scope {self.session.scope_id} "
                    f"timed out after {self.config.reconnect_timeout_seconds}s"
                )
            except Exception as e:
                await self.services.logging_service.warning(
                    f"Reconnect attempt {attempt}/{attempts} for scope {self.session.scope_id} "
                    f"raised {type(e).__name__}: {e}"
                )

            if attempt < attempts:
                await asyncio.sleep(CaptureConstants.RECONNECT_PAUSE_SECONDS)

        await self.services.logging_service.error(
            f"Reconnect exhausted after {attempts} attempt(s) for scope {self.session.scope_id}; "
            f"tearing down the session"
        )
        self._request_auto_stop(CaptureConstants.REASON_CONNECTION_LOST)

    # -------------------------------------------------------------- #
    # Watchdogs
    # -------------------------------------------------------------- #

    async def _max_duration_watchdog(self) -> None:
        await asyncio.sleep(self.config.max_recording_seconds)
        await self.services.logging_service.warning(
            f"Recording for scope {self.session.scope_id} reached the maximum duration "
            f"({self.config.max_recording_seconds:.0f}s); stopping"
        )
        self._request_auto_stop(CaptureConstants.REASON_MAX_DURATION)

    def _request_auto_stop(self, reason: str) -> None:
        """Hand the stop to a fresh task so finalize_all never cancels its own caller."""
        if self.on_auto_stop is None or self._auto_stop_task is not None:
            return
        self._auto_stop_task = asyncio.create_task(self.on_auto_stop(reason))

    def _cancel_watchdogs(self) -> None:
        current = asyncio.current_task()
        for task in (self._reconnect_task, self._max_duration_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
