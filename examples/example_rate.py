import asyncio

import cd48.util
from cd48 import CD48, AbortController, CD48Config

# Serial port of the counter, None picks the first CD48 found
PORT = None
CHANNEL = 0
DURATION = 2.0

cd48.util.start_log(log_to_stdout=True, log_level="DEBUG")

config = CD48Config(
    auto_reconnect=True,  # survive a cable bump mid-run
    reconnect_attempts=5,
    command_retries=1,
)


async def main():
    transport = cd48.SerialTransport(port=PORT)
    counter = CD48(transport=transport, config=config)
    counter.on_connection_state_change(
        lambda change: print(f"link: {change.previous_state} -> {change.current_state}")
    )
    counter.on_reconnect_failed(lambda ev: print(f"gave up after {ev.attempts} tries"))

    await counter.connect()
    await counter.check_firmware_compatibility()

    # stop the series from another task with ctrl.abort()
    ctrl = AbortController()
    try:
        series = await counter.measure_rate_series(
            CHANNEL, DURATION, repeats=10, signal=ctrl.signal
        )
        for m in series:
            print(f"{m.counts} counts -> {m.rate:.1f} +/- {m.uncertainty.rate:.1f} /s")
    finally:
        await counter.disconnect()


asyncio.run(main())
