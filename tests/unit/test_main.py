"""Unit tests for the command line entry point."""

import asyncio
import logging
import sys
from unittest.mock import patch

import pytest

from minutekeeper import main as main_module
from minutekeeper.config import MinuteKeeperConfig
from minutekeeper.services import LiveMeetingService


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "openai:\n"
        "  api_key: sk-test\n"
        "storage:\n"
        "  data_directory: data\n"
        "logging:\n"
        "  file_path: data/logs/test.log\n"
        "  console_output: false\n",
        encoding="utf-8",
    )
    return path


@pytest.mark.unit
class TestSetupLogging:

    def test_file_handler_created(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "app.log"
        config = MinuteKeeperConfig.from_dict({"logging": {"file_path": str(log_file)}})

        main_module.setup_logging(config, "DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
        assert any(type(h) is logging.StreamHandler for h in root.handlers)
        assert log_file.exists()

    def test_console_output_disabled(self, tmp_path, restore_logging):
        config = MinuteKeeperConfig.from_dict({
            "logging": {"file_path": str(tmp_path / "app.log"), "console_output": False}})

        main_module.setup_logging(config, "INFO")

        assert [type(h) for h in logging.getLogger().handlers] == [logging.FileHandler]


@pytest.mark.unit
class TestServer:

    def test_init_wires_components(self, config_path, restore_logging):
        server = main_module.Server(str(config_path))
        server.init()

        assert isinstance(server.service, LiveMeetingService)
        assert server.display in server.registry.observers
        assert server.file_manager.meetings_dir == config_path.parent / "data" / "meetings"
        assert server.realtime_client.api_key == "sk-test"

        asyncio.run(server.cleanup())

    def test_version_flag(self, capsys):
        with patch.object(sys, "argv", ["minutekeeper", "--version"]):
            with pytest.raises(SystemExit) as exc_info:
                main_module.main()

        assert exc_info.value.code == 0
        assert "MinuteKeeper v0.1.0" in capsys.readouterr().out

    def test_missing_config_exits_with_error(self, tmp_path, capsys):
        argv = ["minutekeeper", "--config", str(tmp_path / "missing.yaml")]
        with patch.object(sys, "argv", argv):
            with pytest.raises(SystemExit) as exc_info:
                main_module.main()

        assert exc_info.value.code == 1
        assert "Configuration file not found" in capsys.readouterr().out
