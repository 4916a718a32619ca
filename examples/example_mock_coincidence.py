import asyncio

import cd48.util
from cd48 import CD48, CD48Config, MockCD48, MockTransport
from cd48.util.save import save_measurements

# Gate time per measurement (s)
DURATION = 1.0
NUM_MEASUREMENTS = 5

cd48.util.start_log(log_to_stdout=True, log_level="INFO")  # also ~/.cd48/cd48.log

# A simulated counter: two detectors at ~50 kHz plus a true coincidence rate
device = MockCD48(count_rates=[50e3, 48e3, 0, 0, 1200, 0, 0, 0])
config = CD48Config(settle_delay=0.0)


async def main():
    async with CD48(transport=MockTransport(device), config=config) as counter:
        print(await counter.get_firmware_info())

        # counter 4 counts A AND B
        await counter.set_channel(4, a=1, b=1)
        await counter.set_trigger_level(0.5)

        results = []
        for _ in range(NUM_MEASUREMENTS):
            m = await counter.measure_coincidence_rate(duration=DURATION)
            print(
                f"R_A={m.rate_a:.0f}/s R_B={m.rate_b:.0f}/s "
                + f"R_C={m.coincidence_rate:.1f}/s "
                + f"R_acc={m.accidental_rate:.2f}/s "
                + f"R_true={m.true_coincidence_rate:.1f}"
                + f" +/- {m.uncertainty.true_coincidence_rate:.1f}/s"
            )
            results.append(m)

    save_measurements("coincidences.csv", results)


asyncio.run(main())
