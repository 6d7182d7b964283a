"""Unit tests for the application wiring in TESTING mode."""

from unittest.mock import patch

import pytest

from scribe.app import check_servers, create_app, main, shutdown_app
from scribe.constructor import ServerManagerType
from scribe.services.capture.models import SessionState


@pytest.mark.unit
class TestAppWiring:
    async def test_create_and_shutdown(self, test_config, tmp_path, fake_transport):
        context = await create_app(
            ServerManagerType.TESTING,
            config=test_config,
            default_logging_path=str(tmp_path / "logs"),
            console_output=False,
        )

        assert context.server_manager.is_initialized
        recorder = context.services_manager.recorder_service_manager
        session = await recorder.start_session("guild-1", fake_transport)

        await shutdown_app(context, timeout=10.0)

        assert session.state == SessionState.CLOSED
        assert session.stop_reason == "shutdown"
        assert not context.server_manager.is_initialized
        assert not context.server_manager.whisper_server_client.is_connected

    async def test_check_servers(self, test_config, tmp_path):
        results = await check_servers(
            ServerManagerType.TESTING,
            config=test_config,
            default_logging_path=str(tmp_path / "logs"),
            console_output=False,
        )

        assert results == {"test_whisper_server": True, "test_ollama_server": True}


@pytest.mark.unit
class TestMain:
    @pytest.fixture(autouse=True)
    def isolated_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ("WINDOWS_FFMPEG_PATH", "MAC_FFMPEG_PATH"):
            monkeypatch.delenv(name, raising=False)

    def test_testing_mode_reports_healthy(self, tmp_path, capsys):
        with patch("scribe.app.configure_logging") as configure_logging:
            exit_code = main(["--testing", "--log-dir", str(tmp_path / "logs")])

        assert exit_code == 0
        configure_logging.assert_called_once_with(str(tmp_path / "logs"))
        out = capsys.readouterr().out
        assert "✅ test_whisper_server" in out
        assert "✅ test_ollama_server" in out

    def test_unhealthy_server_fails(self, tmp_path):
        with (
            patch("scribe.app.configure_logging"),
            patch("scribe.app.check_servers", return_value={"whisper_server": False}),
        ):
            exit_code = main(["--log-dir", str(tmp_path / "logs")])

        assert exit_code == 1
