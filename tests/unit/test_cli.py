"""Unit tests for the command-line entry point and component wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from kiosk_resilience.__main__ import (
    DEFAULT_CONFIG_PATH,
    EXIT_CONFIG_ERROR,
    build_notifier,
    build_supervisor,
    main,
    parse_arguments,
)
from kiosk_resilience.core.config import MainConfig
from kiosk_resilience.core.scheduler import AsyncioScheduler
from kiosk_resilience.notifications import LoggingNotifier, WebhookNotifier
from kiosk_resilience.utils.http_client import AIOHTTPClient


def make_config(**sections: object) -> MainConfig:
    data: dict[str, object] = {
        "supervisor": {"command": ["/usr/bin/chromium", "http://localhost:8080"], "max_restarts": 2},
        "feeds": {
            "sources": [
                {"name": "mirror", "priority": 2, "url": "https://mirror.example.com/kiosk/"},
                {"name": "primary", "priority": 1, "url": "https://updates.example.com/kiosk/"},
            ],
            "max_retries": 4,
        },
    }
    data.update(sections)
    return MainConfig.model_validate(data)


@pytest.mark.unit
class TestParseArguments:
    def test_defaults(self) -> None:
        args = parse_arguments([])

        assert args.config == DEFAULT_CONFIG_PATH
        assert args.log_level is None
        assert args.no_syslog is False

    def test_all_options(self) -> None:
        args = parse_arguments(["-c", "/tmp/kiosk.yaml", "--log-level", "DEBUG", "--no-syslog"])

        assert args.config == Path("/tmp/kiosk.yaml")
        assert args.log_level == "DEBUG"
        assert args.no_syslog is True

    def test_invalid_log_level(self) -> None:
        with pytest.raises(SystemExit):
            _ = parse_arguments(["--log-level", "VERBOSE"])


@pytest.mark.unit
class TestWiring:
    """Test cases for building components from configuration."""

    def test_notifier_without_webhook_logs_only(self) -> None:
        assert isinstance(build_notifier(make_config(), AIOHTTPClient()), LoggingNotifier)

    def test_notifier_with_webhook(self) -> None:
        config = make_config(notifications={"webhook_url": "https://ops.example.com/hooks/kiosk"})

        assert isinstance(build_notifier(config, AIOHTTPClient()), WebhookNotifier)

    def test_build_supervisor(self) -> None:
        supervisor = build_supervisor(make_config(), AIOHTTPClient(), AsyncioScheduler())

        assert supervisor.policy.max_restarts == 2
        assert supervisor.feed_manager is not None
        assert [feed.name for feed in supervisor.feed_manager.feeds] == ["primary", "mirror"]
        assert supervisor.feed_manager.max_retries == 4
        assert supervisor.retry_engine is not None
        assert supervisor.retry_engine.default_config.max_attempts == 3


@pytest.mark.unit
class TestMain:
    def test_missing_config_exits_with_config_error(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "absent.yaml"), "--no-syslog"])

        assert exc_info.value.code == EXIT_CONFIG_ERROR
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_config_exits_with_config_error(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "config.yaml"
        _ = path.write_text("supervisor:\n  command: []\n", encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(path), "--no-syslog"])

        assert exc_info.value.code == EXIT_CONFIG_ERROR
        assert "supervisor → command" in capsys.readouterr().err
