"""
Unit tests for FFmpeg Manager Service.

FFmpeg itself is never invoked: ``FFmpegHandler.run`` is replaced with a
fake that writes the files a real conversion would produce.
"""

import os
from unittest.mock import AsyncMock

import pytest

from scribe.services.errors import EmptyCaptureError, TranscodeError
from scribe.services.ffmpeg_manager.manager import CompressedArtifact, FFmpegHandler

# -------------------------------------------------------------- #
# Fixtures
# -------------------------------------------------------------- #


@pytest.fixture
def ffmpeg_service(services_manager):
    return services_manager.ffmpeg_service_manager


@pytest.fixture
def session_dir(tmp_path):
    path = tmp_path / "session"
    path.mkdir()
    return path


def write_file(path, size: int) -> str:
    with open(path, "wb") as f:
        f.write(b"\x01" * size)
    return str(path)


def fake_ffmpeg(output_size: int = 1024, duration: str = "12.5", segments: int = 0, fail: bool = False):
    """Build a fake ``handler.run`` that mimics ffmpeg/ffprobe side effects."""

    async def _run(cmd, timeout):
        if "-show_entries" in cmd:
            return True, f"{duration}\n", ""
        if "segment" in cmd:
            pattern = cmd[-1]
            for index in range(segments):
                write_file(pattern.replace("%03d", f"{index:03d}"), 100)
            return (False, "", "segment muxer error") if fail else (True, "", "")
        if fail:
            return False, "", "Invalid data found when processing input"
        write_file(cmd[-1], output_size)
        return True, "", ""

    return AsyncMock(side_effect=_run)


# ============================================================================
# FFmpeg Handler Tests
# ============================================================================


@pytest.mark.unit
class TestFFmpegHandlerCommands:
    """Test command construction."""

    def test_pcm_command_declares_raw_format_before_input(self):
        handler = FFmpegHandler("ffmpeg")

        cmd = handler.build_pcm_to_mp3_command("in.pcm", "out.mp3", bitrate="64k", sample_rate=24000)

        input_index = cmd.index("-i")
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-f") + 1] == "s16le"
        assert cmd.index("-f") < input_index
        assert cmd[cmd.index("-ar") + 1] == "48000"
        assert cmd[input_index + 1] == "in.pcm"
        assert "libmp3lame" in cmd
        assert cmd[cmd.index("-b:a") + 1] == "64k"
        assert cmd[-1] == "out.mp3"

    def test_pcm_command_downmixes_to_mono(self):
        handler = FFmpegHandler("ffmpeg")

        cmd = handler.build_pcm_to_mp3_command("in.pcm", "out.mp3", bitrate="64k", sample_rate=16000)

        output_options = cmd[cmd.index("-i") + 2 :]
        assert output_options[output_options.index("-ac") + 1] == "1"
        assert output_options[output_options.index("-ar") + 1] == "16000"

    def test_segment_command_copies_and_resets_timestamps(self):
        handler = FFmpegHandler("/usr/bin/ffmpeg")

        cmd = handler.build_segment_command("a.mp3", "a_part_%03d.mp3", segment_seconds=600)

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-segment_time") + 1] == "600"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-reset_timestamps") + 1] == "1"
        assert cmd[-1] == "a_part_%03d.mp3"

    async def test_run_reports_missing_binary(self):
        handler = FFmpegHandler("/nonexistent/ffmpeg-binary")

        ok, stdout, stderr = await handler.run([handler.ffmpeg_path, "-version"], timeout=5.0)

        assert ok is False
        assert stdout == ""
        assert stderr


# ============================================================================
# FFmpeg Manager Service Tests
# ============================================================================


@pytest.mark.unit
class TestComputeTimeout:
    def test_small_files_get_minimum(self, ffmpeg_service):
        assert ffmpeg_service.compute_timeout(1024) == 30.0

    def test_scales_with_size(self, ffmpeg_service):
        assert ffmpeg_service.compute_timeout(100 * 1024 * 1024) == pytest.approx(200.0)

    def test_large_files_capped_at_maximum(self, ffmpeg_service):
        assert ffmpeg_service.compute_timeout(10 * 1024 * 1024 * 1024) == 1800.0


@pytest.mark.unit
class TestTranscodeCapture:
    async def test_missing_capture_is_empty(self, ffmpeg_service, session_dir):
        ffmpeg_service.handler.run = fake_ffmpeg()

        with pytest.raises(EmptyCaptureError):
            await ffmpeg_service.transcode_capture(
                str(session_dir / "alice.pcm"), str(session_dir / "alice.mp3")
            )

        ffmpeg_service.handler.run.assert_not_awaited()

    async def test_zero_byte_capture_is_empty(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "alice.pcm", 0)
        ffmpeg_service.handler.run = fake_ffmpeg()

        with pytest.raises(EmptyCaptureError) as exc_info:
            await ffmpeg_service.transcode_capture(raw, str(session_dir / "alice.mp3"))

        assert exc_info.value.path == raw
        ffmpeg_service.handler.run.assert_not_awaited()

    async def test_produces_artifact(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "alice.pcm", 192_000)
        ffmpeg_service.handler.run = fake_ffmpeg(output_size=8000, duration="1.0")

        artifact = await ffmpeg_service.transcode_capture(raw, str(session_dir / "alice.mp3"))

        assert artifact == CompressedArtifact(
            participant_id="alice",
            path=str(session_dir / "alice.mp3"),
            size_bytes=8000,
            duration_seconds=1.0,
        )
        first_call = ffmpeg_service.handler.run.await_args_list[0]
        assert first_call.kwargs["timeout"] == 30.0

    async def test_explicit_participant_id(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "raw.pcm", 100)
        ffmpeg_service.handler.run = fake_ffmpeg()

        artifact = await ffmpeg_service.transcode_capture(
            raw, str(session_dir / "out.mp3"), participant_id="12345"
        )

        assert artifact.participant_id == "12345"

    async def test_unknown_duration(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "alice.pcm", 100)
        ffmpeg_service.handler.run = fake_ffmpeg(duration="N/A")

        artifact = await ffmpeg_service.transcode_capture(raw, str(session_dir / "alice.mp3"))

        assert artifact.duration_seconds is None

    async def test_ffmpeg_failure_raises(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "alice.pcm", 100)
        ffmpeg_service.handler.run = fake_ffmpeg(fail=True)

        with pytest.raises(TranscodeError, match="Invalid data"):
            await ffmpeg_service.transcode_capture(raw, str(session_dir / "alice.mp3"))

        assert os.path.exists(raw)

    async def test_empty_output_raises(self, ffmpeg_service, session_dir):
        raw = write_file(session_dir / "alice.pcm", 100)
        ffmpeg_service.handler.run = fake_ffmpeg(output_size=0)

        with pytest.raises(TranscodeError, match="empty artifact"):
            await ffmpeg_service.transcode_capture(raw, str(session_dir / "alice.mp3"))


@pytest.mark.unit
class TestSplitArtifact:
    def make_artifact(self, session_dir, size: int = 20 * 1024 * 1024) -> CompressedArtifact:
        path = write_file(session_dir / "alice.mp3", 10)
        return CompressedArtifact(participant_id="alice", path=path, size_bytes=size)

    async def test_segment_names(self, ffmpeg_service):
        assert ffmpeg_service.segment_path("/tmp/s/alice.mp3", 7) == "/tmp/s/alice_part_007.mp3"

    async def test_discover_stops_at_first_gap(self, ffmpeg_service, session_dir):
        artifact_path = str(session_dir / "alice.mp3")
        for index in (0, 1, 3):
            write_file(ffmpeg_service.segment_path(artifact_path, index), 10)

        segments = await ffmpeg_service.discover_segments(artifact_path)

        assert [s.index for s in segments] == [0, 1]

    async def test_split_returns_segments_in_order(self, ffmpeg_service, session_dir):
        artifact = self.make_artifact(session_dir)
        ffmpeg_service.handler.run = fake_ffmpeg(segments=3)

        segments = await ffmpeg_service.split_artifact(artifact)

        assert [s.index for s in segments] == [0, 1, 2]
        assert [os.path.basename(s.path) for s in segments] == [
            "alice_part_000.mp3",
            "alice_part_001.mp3",
            "alice_part_002.mp3",
        ]
        cmd = ffmpeg_service.handler.run.await_args.args[0]
        assert cmd[cmd.index("-segment_time") + 1] == "600"

    async def test_split_uses_requested_length(self, ffmpeg_service, session_dir):
        artifact = self.make_artifact(session_dir)
        ffmpeg_service.handler.run = fake_ffmpeg(segments=1)

        await ffmpeg_service.split_artifact(artifact, segment_seconds=120)

        cmd = ffmpeg_service.handler.run.await_args.args[0]
        assert cmd[cmd.index("-segment_time") + 1] == "120"

    async def test_failed_split_removes_partial_output(self, ffmpeg_service, session_dir):
        artifact = self.make_artifact(session_dir)
        ffmpeg_service.handler.run = fake_ffmpeg(segments=2, fail=True)

        with pytest.raises(TranscodeError):
            await ffmpeg_service.split_artifact(artifact)

        assert await ffmpeg_service.discover_segments(artifact.path) == []

    async def test_split_without_output_raises(self, ffmpeg_service, session_dir):
        artifact = self.make_artifact(session_dir)
        ffmpeg_service.handler.run = fake_ffmpeg(segments=0)

        with pytest.raises(TranscodeError, match="no output"):
            await ffmpeg_service.split_artifact(artifact)
