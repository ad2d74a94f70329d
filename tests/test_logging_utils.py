"""Tests for logging_utils module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from loguru import logger

from milestone_pipeline.logging_utils import configure_logging, log_step, pretty


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    configure_logging("INFO")


class TestConfigureLogging:
    def test_without_log_dir_has_no_file(self) -> None:
        assert configure_logging("DEBUG") is None

    def test_file_sink_records_step_fields(self, tmp_path: Path) -> None:
        log_path = configure_logging("WARNING", tmp_path / "logs")

        assert log_path == tmp_path / "logs" / "run.log"
        log_step("m01/p01", "challenge", "verdict approved", current=2, total=3)
        logger.complete()

        line = log_path.read_text(encoding="utf-8").strip().splitlines()[-1]
        fields = [field.strip() for field in line.split("|")]
        assert fields[1:] == ["m01/p01", "challenge", "attempt:2/total:3", "verdict approved"]

    def test_plain_records_use_defaults(self, tmp_path: Path) -> None:
        log_path = configure_logging("INFO", tmp_path)
        logger.info("hello")
        logger.complete()

        line = log_path.read_text(encoding="utf-8").strip()
        assert " | - | - |  | hello" in line

    def test_console_level_filters(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("ERROR")
        log_step("m01", "draft", "quiet")
        log_step("m01", "draft", "loud", level="ERROR")
        err = capsys.readouterr().err
        assert "quiet" not in err
        assert "[m01]" in err and "loud" in err


class TestPretty:
    def test_json_serializable(self) -> None:
        assert json.loads(pretty({"a": [1, 2]})) == {"a": [1, 2]}

    def test_falls_back_to_default_str(self) -> None:
        assert pretty({"path": Path("x")}) == json.dumps({"path": "x"}, indent=2)

    def test_circular_falls_back_to_str(self) -> None:
        data: list = []
        data.append(data)
        assert pretty(data) == str(data)
