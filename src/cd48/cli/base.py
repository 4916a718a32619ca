import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from cd48.device import CD48, SerialTransport
from cd48.types import CD48Config, CD48Error, PortFilter, load_config
from cd48.util import (
    DEFAULT_LOGLEVEL,
    USB_VENDOR_ID,
    format_error_response,
    start_log,
)
from cd48.util.check_hw import get_hw_ports, list_cd48_ports

T = TypeVar("T")


def print_tree(cmd, prefix="", parent_ctx=None):
    """Print the commands below `cmd`, each with its one-line help."""
    ctx = click.Context(cmd, info_name=cmd.name, parent=parent_ctx)
    if parent_ctx is None:
        click.echo(cmd.name)

    for name in sorted(cmd.list_commands(ctx)):
        sub_cmd = cmd.get_command(ctx, name)
        summary = sub_cmd.get_short_help_str(limit=60)
        click.echo(f"{prefix}└── {name:<12} {summary}".rstrip())
        if isinstance(sub_cmd, click.Group):
            print_tree(sub_cmd, prefix + "    ", ctx)


def tree_option(f):
    """Add --tree option to command."""

    def callback(ctx, param, value):
        if not value or ctx.resilient_parsing:
            return
        print_tree(ctx.command)
        ctx.exit()

    return click.option(
        "--tree",
        is_flag=True,
        help="Show command tree from this point",
        expose_value=False,
        is_eager=True,
        callback=callback,
    )(f)


@dataclass
class CliState:
    port: Optional[str]
    config: CD48Config


def run_with_device(state: CliState, action: Callable[[CD48], Awaitable[T]]) -> T:
    """Connect, run `action`, disconnect. CD48 errors become click errors."""

    async def _main():
        transport = SerialTransport(port=state.port)
        async with CD48(transport=transport, config=state.config) as cd48:
            return await action(cd48)

    try:
        return asyncio.run(_main())
    except CD48Error as e:
        logger.error("CLI command failed: {}", format_error_response())
        raise click.ClickException(str(e)) from e


def _save(path: Optional[str], records) -> None:
    if not path:
        return
    from cd48.util.save import save_measurements

    try:
        written = save_measurements(path, records)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--save") from e
    click.echo(f"Saved to {written}")


@click.group()
@tree_option
@click.option(
    "--port",
    "-p",
    default=None,
    help="Serial port of the CD48 (default: first matching USB device)",
)
@click.option(
    "--config",
    "-cfg",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="JSON config file (timeouts, retries, reconnect policy)",
)
@click.option(
    "--log-to-file/--no-log-to-file",
    "-ltf/",
    default=True,
    help="Enable/disable logging to file (default: enabled)",
)
@click.option(
    "--log-to-stdout/--no-log-to-stdout",
    "-lts/",
    default=False,
    help="Enable/disable console logging (default: disabled)",
)
@click.option(
    "--log-level",
    "-ll",
    default=DEFAULT_LOGLEVEL,
    help="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR) (default: INFO)",
)
@click.option(
    "--log-wire/--no-log-wire",
    default=False,
    help="Include the raw TX/RX byte trace at TRACE level (default: disabled)",
)
@click.pass_context
def cli(ctx, port, config_path, log_to_file, log_to_stdout, log_level, log_wire):
    """CD48 - coincidence counter control.

    Talks to a CD48 8-channel coincidence counter over USB serial:

    - Read raw counters and firmware information

    - Measure count rates and accidental-corrected coincidence rates

    - Configure trigger level, input impedance and auto-repeat
    """
    start_log(
        log_to_file=log_to_file,
        log_to_stdout=log_to_stdout,
        log_level=log_level,
        log_wire=log_wire,
    )
    try:
        config = load_config(config_path)
    except (ValueError, OSError) as e:
        raise click.BadParameter(str(e), param_hint="--config") from e
    ctx.obj = CliState(port=port, config=config)


@cli.command()
@click.option(
    "--all/--cd48-only", "-a/", default=False, help="Show every serial port"
)
def ports(all):
    """List serial ports a CD48 could be on.

    By default only ports with the CD48's USB vendor id are listed.
    """
    console = Console()
    if all:
        found = [(dev, *info) for dev, info in get_hw_ports().items()]
    else:
        found = [
            (p.device, p.description, p.hwid)
            for p in list_cd48_ports([PortFilter(usb_vendor_id=USB_VENDOR_ID)])
        ]

    if not found:
        click.echo("No matching serial ports found")
        return

    table = Table(title="Serial ports")
    table.add_column("Port")
    table.add_column("Description")
    table.add_column("Hardware ID")
    for row in found:
        table.add_row(*[str(v) for v in row[:3]])
    console.print(table)


@cli.command()
@click.pass_obj
def info(state: CliState):
    """Show firmware version and compatibility."""
    fw = run_with_device(state, lambda cd48: cd48.get_firmware_info())
    click.echo(f"Version string: {fw.version_string}")
    click.echo(f"Parsed version: {fw.version}")
    status = "compatible" if fw.is_compatible else "NOT compatible"
    click.echo(f"Firmware is {status} (minimum {fw.minimum_version})")


@cli.command()
@click.option("--human/--raw", "-h/", default=False, help="Device formatted output")
@click.pass_obj
def counts(state: CliState, human):
    """Read (and clear) all 8 counters."""
    data = run_with_device(state, lambda cd48: cd48.get_counts(human_readable=human))
    if human:
        click.echo(data)
        return
    for ch, n in enumerate(data.counts):
        click.echo(f"Channel {ch}: {n}")
    click.echo(f"Overflow: {data.overflow}")


@cli.command()
@click.option("--channel", "-c", type=int, default=0, help="Counter channel (0-7)")
@click.option(
    "--duration", "-d", type=float, default=1.0, help="Gate time in seconds"
)
@click.option("--repeats", "-n", type=int, default=1, help="Number of measurements")
@click.option(
    "--save", "-s", default=None, help="Save results (.json, .csv or .mat)"
)
@click.pass_obj
def rate(state: CliState, channel, duration, repeats, save):
    """Measure the count rate on one channel."""
    results = run_with_device(
        state,
        lambda cd48: cd48.measure_rate_series(channel, duration, repeats),
    )
    table = Table(title=f"Channel {channel}, {duration} s gates")
    table.add_column("#", justify="right")
    table.add_column("Counts", justify="right")
    table.add_column("Rate (/s)", justify="right")
    table.add_column("Uncertainty (/s)", justify="right")
    table.add_column("Relative (%)", justify="right")
    for i, m in enumerate(results):
        table.add_row(
            str(i),
            str(m.counts),
            f"{m.rate:.3f}",
            f"{m.uncertainty.rate:.3f}",
            f"{m.uncertainty.relative:.2f}",
        )
    Console().print(table)
    _save(save, results)


@cli.command()
@click.option(
    "--duration", "-d", type=float, default=1.0, help="Gate time in seconds"
)
@click.option("--singles-a", "-a", type=int, default=0, help="Singles channel A")
@click.option("--singles-b", "-b", type=int, default=1, help="Singles channel B")
@click.option(
    "--coincidence", "-c", type=int, default=4, help="Coincidence channel"
)
@click.option(
    "--window", "-w", type=float, default=25e-9, help="Coincidence window (s)"
)
@click.option(
    "--save", "-s", default=None, help="Save result (.json, .csv or .mat)"
)
@click.pass_obj
def coincidence(state: CliState, duration, singles_a, singles_b, coincidence, window, save):
    """Measure a coincidence rate corrected for accidentals."""
    m = run_with_device(
        state,
        lambda cd48: cd48.measure_coincidence_rate(
            duration=duration,
            singles_a_channel=singles_a,
            singles_b_channel=singles_b,
            coincidence_channel=coincidence,
            coincidence_window=window,
        ),
    )
    u = m.uncertainty
    click.echo(f"Singles A: {m.singles_a}  ({m.rate_a:.3f} +/- {u.rate_a:.3f} /s)")
    click.echo(f"Singles B: {m.singles_b}  ({m.rate_b:.3f} +/- {u.rate_b:.3f} /s)")
    click.echo(
        f"Coincidences: {m.coincidences}  "
        f"({m.coincidence_rate:.3f} +/- {u.coincidence_rate:.3f} /s)"
    )
    click.echo(f"Accidentals: {m.accidental_rate:.4g} +/- {u.accidental_rate:.2g} /s")
    click.echo(
        f"True coincidences: {m.true_coincidence_rate:.3f} "
        f"+/- {u.true_coincidence_rate:.3f} /s"
    )
    _save(save, [m])


@cli.command()
@click.argument("voltage", type=float)
@click.pass_obj
def trigger(state: CliState, voltage):
    """Set the input trigger level (0-4.08 V, clamped)."""
    reply = run_with_device(state, lambda cd48: cd48.set_trigger_level(voltage))
    click.echo(reply)


@cli.command()
@click.argument("mode", type=click.Choice(["50ohm", "highz"], case_sensitive=False))
@click.pass_obj
def impedance(state: CliState, mode):
    """Set the input impedance."""
    reply = run_with_device(state, lambda cd48: cd48.set_impedance(mode))
    click.echo(reply)


@cli.command()
@click.argument("interval_ms", type=int, required=False)
@click.option("--toggle", "-t", is_flag=True, help="Toggle auto-repeat on/off")
@click.pass_obj
def repeat(state: CliState, interval_ms, toggle):
    """Set the auto-repeat interval (100-65535 ms) and/or toggle it."""
    if interval_ms is None and not toggle:
        raise click.UsageError("Give an interval, --toggle, or both")

    async def _action(cd48: CD48):
        replies = []
        if interval_ms is not None:
            replies.append(await cd48.set_repeat(interval_ms))
        if toggle:
            replies.append(await cd48.toggle_repeat())
        return replies

    for reply in run_with_device(state, _action):
        click.echo(reply)


@cli.command()
@click.pass_obj
def leds(state: CliState):
    """Run the LED self test."""
    click.echo(run_with_device(state, lambda cd48: cd48.test_leds()))
