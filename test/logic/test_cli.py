from unittest.mock import patch

import click.testing
import pytest
import simplejson as json

from cd48 import MockCD48, MockTransport
from cd48.cli import cli
from cd48.types.protocols import PortInfo


@pytest.fixture
def cli_runner():
    return click.testing.CliRunner()


@pytest.fixture
def device():
    return MockCD48(count_offsets=[100, 200, 0, 0, 5, 0, 0, 0])


@pytest.fixture
def fast_cfg(tmp_path):
    path = tmp_path / "cd48.json"
    path.write_text(
        json.dumps({"settle_delay": 0.0, "command_delay": 0.005, "command_timeout": 0.2})
    )
    return str(path)


@pytest.fixture
def run(cli_runner, device, fast_cfg):
    """Invoke the CLI with a mock device standing in for the serial port."""
    transports = []

    def fake_serial_transport(port=None):
        transport = MockTransport(device)
        transports.append(transport)
        return transport

    def _run(*args):
        with patch("cd48.cli.base.SerialTransport", new=fake_serial_transport):
            return cli_runner.invoke(
                cli, ["--no-log-to-file", "--config", fast_cfg, *args]
            )

    _run.transports = transports
    return _run


class TestTree:
    def test_tree(self, cli_runner):
        result = cli_runner.invoke(cli, ["--tree"])
        assert result.exit_code == 0
        for name in ("counts", "rate", "coincidence", "trigger", "ports"):
            assert f"└── {name}" in result.output
        rate_line = next(
            line for line in result.output.splitlines() if "└── rate" in line
        )
        assert "Measure the count rate on one channel" in rate_line

    def test_help(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "coincidence counter" in result.output


class TestDeviceCommands:
    def test_info(self, run):
        result = run("info")
        assert result.exit_code == 0, result.output
        assert "Parsed version: 1.2.0" in result.output
        assert "Firmware is compatible" in result.output

    def test_counts(self, run):
        result = run("counts")
        assert result.exit_code == 0, result.output
        assert "Channel 0: 100" in result.output
        assert "Channel 1: 200" in result.output
        assert "Overflow: 0" in result.output

    def test_counts_human(self, run):
        result = run("counts", "--human")
        assert result.exit_code == 0, result.output
        assert "Counter 4: 5" in result.output

    def test_rate(self, run, tmp_path):
        out = tmp_path / "rates.csv"
        result = run("rate", "-c", "1", "-d", "0.01", "-n", "2", "--save", str(out))
        assert result.exit_code == 0, result.output
        assert f"Saved to {out}" in result.output
        lines = out.read_text().splitlines()
        assert len(lines) == 3
        assert lines[1].startswith("1,200,")

    def test_rate_bad_save_format(self, run, tmp_path):
        result = run("rate", "-d", "0.01", "--save", str(tmp_path / "rates.txt"))
        assert result.exit_code != 0
        assert "Unsupported" in result.output

    def test_coincidence(self, run, tmp_path):
        out = tmp_path / "coinc.json"
        result = run("coincidence", "-d", "0.01", "--save", str(out))
        assert result.exit_code == 0, result.output
        assert "Singles A: 100" in result.output
        assert "Coincidences: 5" in result.output
        data = json.loads(out.read_text())
        assert data[0]["coincidences"] == 5

    def test_trigger(self, run, device):
        result = run("trigger", "2.048")
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert device.trigger_byte == 128

    def test_impedance(self, run, device):
        result = run("impedance", "50ohm")
        assert result.exit_code == 0, result.output
        assert device.impedance == "50ohm"

    def test_impedance_bad_choice(self, run):
        result = run("impedance", "75ohm")
        assert result.exit_code == 2

    def test_repeat(self, run, device):
        result = run("repeat", "20", "--toggle")
        assert result.exit_code == 0, result.output
        assert device.repeat_interval == 100
        assert device.repeat_enabled

    def test_repeat_needs_an_argument(self, run, device):
        result = run("repeat")
        assert result.exit_code != 0
        assert device.commands == []

    def test_leds(self, run):
        result = run("leds")
        assert result.exit_code == 0
        assert "LED test OK" in result.output

    def test_log_wire_option(self, run):
        result = run("--log-wire", "--log-level", "TRACE", "leds")
        assert result.exit_code == 0
        assert "LED test OK" in result.output

    def test_device_errors_become_click_errors(self, run, device):
        device.raw_count_reply = "garbage"
        result = run("counts")
        assert result.exit_code == 1
        assert "Invalid response format" in result.output

    def test_port_passed_to_transport(self, cli_runner, device, fast_cfg):
        seen = []

        def fake_serial_transport(port=None):
            seen.append(port)
            return MockTransport(device)

        with patch("cd48.cli.base.SerialTransport", new=fake_serial_transport):
            result = cli_runner.invoke(
                cli,
                ["--no-log-to-file", "--config", fast_cfg, "--port", "/dev/ttyX", "leds"],
            )
        assert result.exit_code == 0, result.output
        assert seen == ["/dev/ttyX"]


class TestConfigOption:
    def test_bad_config(self, cli_runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"not_a_setting": 1}')
        result = cli_runner.invoke(
            cli, ["--no-log-to-file", "--config", str(path), "leds"]
        )
        assert result.exit_code == 2
        assert "not_a_setting" in result.output


class TestPorts:
    @patch("cd48.cli.base.list_cd48_ports")
    def test_ports(self, mock_list, cli_runner):
        mock_list.return_value = [
            PortInfo(
                device="/dev/ttyACM0",
                description="CD48",
                hwid="USB VID:PID=04B4:1234",
                vid=0x04B4,
                pid=0x1234,
            )
        ]
        result = cli_runner.invoke(cli, ["--no-log-to-file", "ports"])
        assert result.exit_code == 0
        assert "/dev/ttyACM0" in result.output

    @patch("cd48.cli.base.list_cd48_ports")
    def test_no_ports(self, mock_list, cli_runner):
        mock_list.return_value = []
        result = cli_runner.invoke(cli, ["--no-log-to-file", "ports"])
        assert result.exit_code == 0
        assert "No matching serial ports found" in result.output

    @patch("cd48.cli.base.get_hw_ports")
    def test_all_ports(self, mock_ports, cli_runner):
        mock_ports.return_value = {"/dev/ttyS0": ("Serial", "PNP0501")}
        result = cli_runner.invoke(cli, ["--no-log-to-file", "ports", "--all"])
        assert result.exit_code == 0
        assert "/dev/ttyS0" in result.output
