import pathlib

import pytest
from loguru import logger

from cd48 import CD48
from cd48.util import (
    clear_log,
    format_error_response,
    get_log_filename,
    shutdown_log,
    start_log,
)


class TestLogging:
    def test_start_log_writes_file(self, tmp_path: pathlib.Path):
        path = tmp_path / "cd48.log"
        start_log(log_to_file=True, log_path=str(path), log_level="INFO")
        try:
            logger.info("hello from the counter")
            assert get_log_filename() == str(path)
        finally:
            shutdown_log()
        assert get_log_filename() == ""
        text = path.read_text()
        assert "CD48 log started" in text
        assert "hello from the counter" in text

    def test_terminal_only_has_no_filename(self):
        start_log(log_to_file=False, log_to_stdout=True)
        try:
            assert get_log_filename() == ""
        finally:
            shutdown_log()

    def test_clear_log(self, tmp_path: pathlib.Path):
        path = tmp_path / "old.log"
        path.write_text("stale")
        clear_log(str(path))
        assert not path.exists()
        # missing file is fine
        clear_log(str(path))

    def test_long_runs_rotate(self, tmp_path: pathlib.Path):
        path = tmp_path / "cd48.log"
        start_log(log_path=str(path), rotation=500, retention=2)
        try:
            for i in range(200):
                logger.info("gate {} closed, counts recorded", i)
        finally:
            shutdown_log()
        files = list(tmp_path.glob("cd48*.log"))
        assert path.exists()
        assert 2 <= len(files) <= 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("log_wire", [False, True])
    async def test_wire_trace_is_opt_in(
        self, tmp_path: pathlib.Path, cd48: CD48, log_wire
    ):
        path = tmp_path / "wire.log"
        start_log(log_path=str(path), log_level="TRACE", log_wire=log_wire)
        try:
            await cd48.send_command("v")
        finally:
            shutdown_log()
        text = path.read_text()
        assert "-> 'v'" in text
        assert ("TX b'v\\r'" in text) == log_wire

    def test_format_error_response(self):
        try:
            raise ValueError("bad channel")
        except ValueError:
            msg = format_error_response()
        assert "ValueError: bad channel" in msg
        assert "Traceback" in msg
