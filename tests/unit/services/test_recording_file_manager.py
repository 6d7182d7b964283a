"""Unit tests for the per-session recording file layout."""

import os

import pytest


@pytest.fixture
def files(services_manager):
    return services_manager.recording_file_service_manager


@pytest.mark.unit
class TestRecordingFileLayout:
    def test_safe_ids_are_used_as_is(self, files):
        session_dir = files.get_session_dir("guild-1", "abc123")

        assert session_dir == os.path.join(files.get_storage_path(), "guild-1", "abc123")
        assert files.get_raw_capture_path(session_dir, "42") == os.path.join(session_dir, "42.pcm")
        assert files.get_artifact_path(session_dir, "42") == os.path.join(session_dir, "42.mp3")

    def test_sanitised_ids_never_collide(self, files):
        paths = {files.get_raw_capture_path("/s", pid) for pid in ("a/b", "a_b", "a b", "a:b")}

        assert len(paths) == 4
        assert "/s/a_b.pcm" in paths

    @pytest.mark.parametrize("participant_id", ["", ".", "..", "../etc"])
    def test_unsafe_ids_stay_inside_session_dir(self, files, participant_id):
        path = files.get_raw_capture_path("/s", participant_id)

        assert os.path.dirname(path) == "/s"
        assert os.path.basename(path) not in ("", ".pcm", "..pcm", "...pcm")

    async def test_session_dir_lifecycle(self, files):
        session_dir = await files.create_session_dir("guild-1", "abc123")
        raw = files.get_raw_capture_path(session_dir, "42")
        with open(raw, "wb") as f:
            f.write(b"\x00" * 16)

        await files.delete_file(raw)
        await files.delete_file(raw)
        assert not os.path.exists(raw)

        await files.remove_session_dir(session_dir)
        assert not os.path.exists(session_dir)
        assert not os.path.exists(os.path.dirname(session_dir))
